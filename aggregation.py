"""Per-tag aggregation of a user's transactions across every bank table."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from amounts import Direction, Movement, account_display, classify, round_cents
from config import Settings, get_settings
from routing import bank_table
from scanner import PaginatedScanner
from store import DocumentStore, StoreError
from tag_resolver import Tag, TagCatalog

logger = logging.getLogger(__name__)

SUMMARY_TYPE = "tags_summary"
ZERO = Decimal("0")


def summary_key(user_id: str) -> str:
    return f"tags_summary_{user_id}"


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class _Totals:
    credit: Decimal = ZERO
    debit: Decimal = ZERO
    balance: Decimal = ZERO
    transaction_count: int = 0

    def _apply(self, movement: Movement) -> None:
        if movement.direction is Direction.CR:
            self.credit = round_cents(self.credit + movement.amount_abs)
        elif movement.direction is Direction.DR:
            self.debit = round_cents(self.debit + movement.amount_abs)
        self.balance = round_cents(self.credit - self.debit)
        self.transaction_count += 1

    def _totals_dict(self) -> dict:
        return {
            "credit": float(self.credit),
            "debit": float(self.debit),
            "balance": float(self.balance),
            "transactionCount": self.transaction_count,
        }


@dataclass
class BankBreakdown(_Totals):
    accounts: list[str] = field(default_factory=list)

    def add(self, movement: Movement, account: Optional[str]) -> None:
        self._apply(movement)
        if account and account not in self.accounts:
            self.accounts.append(account)

    def to_dict(self) -> dict:
        return {**self._totals_dict(), "accounts": list(self.accounts)}


@dataclass
class TagAggregate(_Totals):
    tag_id: str = ""
    tag_name: str = ""
    statement_ids: list[str] = field(default_factory=list)
    bank_breakdown: dict[str, BankBreakdown] = field(default_factory=dict)

    @classmethod
    def for_tag(cls, tag: Tag) -> "TagAggregate":
        return cls(tag_id=tag.id, tag_name=tag.name or "")

    def add(
        self,
        movement: Movement,
        bank_name: str,
        statement_id: Optional[str] = None,
        account: Optional[str] = None,
    ) -> None:
        self._apply(movement)
        if statement_id and statement_id not in self.statement_ids:
            self.statement_ids.append(statement_id)
        breakdown = self.bank_breakdown.setdefault(bank_name, BankBreakdown())
        breakdown.add(movement, account)

    def to_dict(self) -> dict:
        return {
            "tagId": self.tag_id,
            "tagName": self.tag_name,
            **self._totals_dict(),
            "statementIds": list(self.statement_ids),
            "bankBreakdown": {
                name: breakdown.to_dict()
                for name, breakdown in self.bank_breakdown.items()
            },
        }


@dataclass
class AggregationStats:
    banks_scanned: int = 0
    banks_skipped: int = 0
    transactions_seen: int = 0
    transactions_aggregated: int = 0
    transactions_unclassified: int = 0

    def to_dict(self) -> dict:
        return {
            "banksScanned": self.banks_scanned,
            "banksSkipped": self.banks_skipped,
            "transactionsSeen": self.transactions_seen,
            "transactionsAggregated": self.transactions_aggregated,
            "transactionsUnclassified": self.transactions_unclassified,
        }


@dataclass
class AggregationResult:
    user_id: str
    aggregates: list[TagAggregate]
    stats: AggregationStats


@dataclass(frozen=True)
class _Contribution:
    tags: list[Tag]
    movement: Movement
    statement_id: Optional[str]
    account: Optional[str]


class TagsSummaryEngine:
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.tag_scanner = PaginatedScanner(
            store,
            page_size=self.settings.page_size,
            page_delay=self.settings.tag_page_delay_secs,
            sleep=sleep,
        )
        self.transaction_scanner = PaginatedScanner(
            store,
            page_size=self.settings.page_size,
            page_delay=self.settings.page_delay_secs,
            sleep=sleep,
        )

    def load_catalog(self, user_id: str) -> TagCatalog:
        return TagCatalog.from_documents(
            self.tag_scanner.scan(self.settings.tags_table, {"userId": user_id})
        )

    def load_banks(self) -> list[dict]:
        return list(self.tag_scanner.scan(self.settings.banks_table))

    def recompute(self, user_id: str) -> AggregationResult:
        catalog = self.load_catalog(user_id)
        banks = self.load_banks()
        stats = AggregationStats()
        aggregates = {tag.id: TagAggregate.for_tag(tag) for tag in catalog.tags}

        for bank in banks:
            bank_name = str(bank.get("bankName") or "").strip()
            table = bank_table(bank, self.settings.table_prefix)
            if not bank_name or not table:
                continue
            try:
                contributions, seen, unclassified = self._scan_bank(
                    catalog, table, user_id
                )
            except StoreError:
                stats.banks_skipped += 1
                logger.warning(
                    f"tags_summary_bank_skipped: user_id={user_id} "
                    f"bank={bank_name} table={table}",
                    exc_info=True,
                )
                continue

            stats.banks_scanned += 1
            stats.transactions_seen += seen
            stats.transactions_unclassified += unclassified
            for contribution in contributions:
                stats.transactions_aggregated += 1
                for tag in contribution.tags:
                    aggregates[tag.id].add(
                        contribution.movement,
                        bank_name,
                        contribution.statement_id,
                        contribution.account,
                    )

        ordered = sorted(aggregates.values(), key=lambda agg: agg.tag_name)
        logger.info(
            f"tags_summary_recompute: user_id={user_id} tags={len(ordered)} "
            f"banks={stats.banks_scanned} skipped={stats.banks_skipped} "
            f"transactions={stats.transactions_aggregated}"
        )
        for agg in ordered:
            logger.debug(
                f"tags_summary_tag: tag={agg.tag_name} count={agg.transaction_count} "
                f"credit={agg.credit} debit={agg.debit} balance={agg.balance}"
            )
        return AggregationResult(user_id=user_id, aggregates=ordered, stats=stats)

    def _scan_bank(
        self, catalog: TagCatalog, table: str, user_id: str
    ) -> tuple[list[_Contribution], int, int]:
        # buffered so a bank that fails mid-scan contributes nothing
        contributions: list[_Contribution] = []
        seen = 0
        unclassified = 0
        for txn in self.transaction_scanner.scan(table, {"userId": user_id}):
            seen += 1
            tags = catalog.resolve_raw(txn.get("tags"))
            if not tags:
                continue
            movement = classify(txn)
            if not movement.is_known:
                unclassified += 1
                continue
            statement_id = txn.get("statementId")
            contributions.append(
                _Contribution(
                    tags=tags,
                    movement=movement,
                    statement_id=statement_id if isinstance(statement_id, str) else None,
                    account=account_display(txn),
                )
            )
        return contributions, seen, unclassified


class SummaryWriter:
    """Replaces a user's tags summary snapshot in a single upsert."""

    def __init__(
        self,
        store: DocumentStore,
        table: Optional[str] = None,
        clock: Callable[[], str] = utcnow_iso,
    ) -> None:
        self.store = store
        self.table = table or get_settings().reports_table
        self._clock = clock

    def write(self, user_id: str, aggregates: list[TagAggregate]) -> dict:
        now = self._clock()
        return self.store.update(
            self.table,
            summary_key(user_id),
            {
                "type": SUMMARY_TYPE,
                "userId": user_id,
                "tags": [agg.to_dict() for agg in aggregates],
                "updatedAt": now,
            },
            if_absent={"createdAt": now},
        )
