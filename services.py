from __future__ import annotations

import colorsys
import logging
import time
import uuid
from itertools import islice
from typing import Callable, Iterable, Optional

from aggregation import (
    AggregationStats,
    SummaryWriter,
    TagsSummaryEngine,
    summary_key,
    utcnow_iso,
)
from amounts import UNIFIED_AMOUNT_FIELDS, Direction, classify
from concurrency import SingleFlight
from config import Settings, get_settings
from models import JobStatus, RecomputeTrigger
from routing import bank_table, route_table
from scanner import PaginatedScanner
from schemas import TransactionUpdateIn
from store import DocumentStore, StoreError
from tag_resolver import Tag, TagCatalog, parse_tag_refs, ref_matches

logger = logging.getLogger(__name__)

Notify = Callable[[str, RecomputeTrigger], None]

TAG_COLORS = (
    "#3B82F6",
    "#10B981",
    "#F59E0B",
    "#EF4444",
    "#8B5CF6",
    "#06B6D4",
    "#F97316",
    "#EC4899",
    "#84CC16",
    "#6366F1",
    "#14B8A6",
    "#F43F5E",
    "#A855F7",
    "#22C55E",
    "#EAB308",
    "#F472B6",
    "#A3E635",
    "#34D399",
    "#FBBF24",
)

DESCRIPTION_FIELDS = ("Description", "Narration", "Particulars")


class NotFoundError(ValueError):
    pass


class ConflictError(ValueError):
    pass


def _no_notify(user_id: str, trigger: RecomputeTrigger) -> None:
    return None


def ensure_core_tables(store: DocumentStore, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    for table in (
        settings.tags_table,
        settings.banks_table,
        settings.reports_table,
        settings.jobs_table,
    ):
        if not store.table_exists(table):
            store.create_table(table)


def pick_tag_color(existing: Iterable[Optional[str]]) -> str:
    used = {color.upper() for color in existing if color}
    for color in TAG_COLORS:
        if color.upper() not in used:
            return color
    # palette exhausted: walk the hue circle by the golden angle
    index = len(used)
    while True:
        hue = (index * 0.618033988749895) % 1.0
        r, g, b = colorsys.hls_to_rgb(hue, 0.55, 0.7)
        color = f"#{round(r * 255):02X}{round(g * 255):02X}{round(b * 255):02X}"
        if color not in used:
            return color
        index += 1


def tag_ids(tags: Iterable[object]) -> list[str]:
    ids: list[str] = []
    for tag in tags:
        value = tag if isinstance(tag, str) else (
            tag.get("id") if isinstance(tag, dict) else None
        )
        if isinstance(value, str) and value and value not in ids:
            ids.append(value)
    return ids


def _scanner(store: DocumentStore, settings: Settings) -> PaginatedScanner:
    return PaginatedScanner(
        store, page_size=settings.page_size, page_delay=settings.tag_page_delay_secs
    )


class BankService:
    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def list_all(self) -> list[dict]:
        banks = _scanner(self.store, self.settings).scan(self.settings.banks_table)
        return sorted(banks, key=lambda bank: str(bank.get("bankName") or ""))

    def get_by_name(self, bank_name: str) -> Optional[dict]:
        wanted = bank_name.strip().lower()
        for bank in self.list_all():
            if str(bank.get("bankName") or "").strip().lower() == wanted:
                return bank
        return None

    def table_for(self, bank_name: str) -> str:
        bank = self.get_by_name(bank_name)
        if bank is not None:
            table = bank_table(bank, self.settings.table_prefix)
            if table:
                return table
        return route_table(bank_name.strip(), self.settings.table_prefix)

    def create(self, bank_name: str) -> dict:
        clean_name = bank_name.strip()
        if not clean_name:
            raise ValueError("Bank name cannot be empty")

        table = route_table(clean_name, self.settings.table_prefix)
        for existing in self.list_all():
            if bank_table(existing, self.settings.table_prefix) == table:
                raise ConflictError(
                    f"Bank '{clean_name}' collides with existing bank "
                    f"'{existing.get('bankName')}' (table {table})"
                )

        bank = {
            "id": str(uuid.uuid4()),
            "bankName": clean_name,
            "tableName": table,
            "createdAt": utcnow_iso(),
        }
        self.store.put(self.settings.banks_table, bank)
        if not self.store.table_exists(table):
            self.store.create_table(table)
        logger.info(f"bank_created: bank={clean_name} table={table}")
        return bank


class TagService:
    def __init__(
        self,
        store: DocumentStore,
        user_id: str,
        notify: Optional[Notify] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        if not user_id:
            raise ValueError("userId is required")
        self.store = store
        self.user_id = user_id
        self.notify = notify or _no_notify
        self.settings = settings or get_settings()

    def _documents(self) -> list[dict]:
        return list(
            _scanner(self.store, self.settings).scan(
                self.settings.tags_table, {"userId": self.user_id}
            )
        )

    def list_all(self) -> list[Tag]:
        catalog = TagCatalog.from_documents(self._documents())
        return sorted(catalog.tags, key=lambda tag: tag.name.lower())

    def get(self, tag_id: str) -> Tag:
        doc = self.store.get(self.settings.tags_table, tag_id)
        tag = Tag.from_document(doc) if doc else None
        if tag is None or tag.user_id != self.user_id:
            raise NotFoundError("Tag not found")
        return tag

    def _ensure_unique(self, name: str, exclude_id: Optional[str] = None) -> list[dict]:
        docs = self._documents()
        for doc in docs:
            if doc.get("id") == exclude_id:
                continue
            if str(doc.get("name") or "").lower() == name.lower():
                raise ConflictError("Tag with this name already exists")
        return docs

    def create(self, name: str, color: Optional[str] = None) -> Tag:
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")

        docs = self._ensure_unique(clean_name)
        tag = Tag(
            id=str(uuid.uuid4()),
            name=clean_name,
            user_id=self.user_id,
            color=color or pick_tag_color(doc.get("color") for doc in docs),
            created_at=utcnow_iso(),
        )
        self.store.put(self.settings.tags_table, tag.to_document())
        return tag

    def update(self, tag_id: str, name: str, color: Optional[str] = None) -> Tag:
        current = self.get(tag_id)
        clean_name = name.strip()
        if not clean_name:
            raise ValueError("Tag name cannot be empty")
        self._ensure_unique(clean_name, exclude_id=tag_id)

        updated = Tag(
            id=current.id,
            name=clean_name,
            user_id=current.user_id,
            color=color or current.color,
            created_at=current.created_at,
        )
        self.store.update(
            self.settings.tags_table,
            tag_id,
            {"name": updated.name, "color": updated.color},
        )
        if updated.name != current.name:
            self.notify(self.user_id, RecomputeTrigger.tag_renamed)
        return updated

    def delete(self, tag_id: str) -> int:
        """Delete a tag and strip it from every transaction referencing it.

        Returns the number of transactions that were rewritten.
        """
        self.get(tag_id)
        self.store.delete(self.settings.tags_table, tag_id)

        scanner = _scanner(self.store, self.settings)
        changed = 0
        for bank in BankService(self.store, self.settings).list_all():
            table = bank_table(bank, self.settings.table_prefix)
            if not table:
                continue
            try:
                # materialized first so rewrites don't disturb the scan cursor
                txns = list(scanner.scan(table, {"userId": self.user_id}))
                for txn in txns:
                    changed += self._strip_tag(table, txn, tag_id)
            except StoreError:
                logger.warning(
                    f"tag_delete_bank_skipped: tag_id={tag_id} table={table}",
                    exc_info=True,
                )
        logger.info(f"tag_deleted: tag_id={tag_id} transactions_updated={changed}")
        self.notify(self.user_id, RecomputeTrigger.tag_deleted)
        return changed

    def _strip_tag(self, table: str, txn: dict, tag_id: str) -> int:
        raw = txn.get("tags")
        txn_id = txn.get("id")
        if not isinstance(raw, list) or not raw or not isinstance(txn_id, str):
            return 0
        kept = []
        for entry in raw:
            refs = parse_tag_refs([entry])
            if refs and ref_matches(refs[0], tag_id):
                continue
            kept.append(entry)
        if len(kept) == len(raw):
            return 0
        self.store.update(table, txn_id, {"tags": kept})
        return 1


class TransactionService:
    def __init__(
        self,
        store: DocumentStore,
        notify: Optional[Notify] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self.store = store
        self.notify = notify or _no_notify
        self.settings = settings or get_settings()
        self.banks = BankService(store, self.settings)

    def _apply(
        self,
        table: str,
        transaction_id: str,
        fields: Optional[dict],
        tags: Optional[list],
    ) -> dict:
        changes = {k: v for k, v in (fields or {}).items() if k != "id"}
        if tags is not None:
            changes["tags"] = tag_ids(tags)
        if not changes:
            raise ValueError("No fields to update")
        if self.store.get(table, transaction_id) is None:
            raise NotFoundError("Transaction not found")
        return self.store.update(table, transaction_id, changes)

    def update(
        self,
        bank_name: str,
        transaction_id: str,
        fields: Optional[dict] = None,
        tags: Optional[list] = None,
    ) -> dict:
        table = self.banks.table_for(bank_name)
        updated = self._apply(table, transaction_id, fields, tags)
        user_id = updated.get("userId")
        if isinstance(user_id, str) and user_id:
            self.notify(user_id, RecomputeTrigger.transaction_updated)
        return updated

    def bulk_update(self, updates: list[TransactionUpdateIn]) -> list[dict]:
        results: list[dict] = []
        tables: dict[str, str] = {}
        users: list[str] = []
        for item in updates:
            try:
                table = tables.get(item.bank_name.strip().lower())
                if table is None:
                    table = self.banks.table_for(item.bank_name)
                    tables[item.bank_name.strip().lower()] = table
                updated = self._apply(
                    table, item.transaction_id, item.transaction_data, item.tags
                )
            except (ValueError, StoreError) as exc:
                results.append(
                    {
                        "transactionId": item.transaction_id,
                        "success": False,
                        "error": str(exc),
                    }
                )
                continue
            results.append({"transactionId": item.transaction_id, "success": True})
            user_id = updated.get("userId")
            if isinstance(user_id, str) and user_id and user_id not in users:
                users.append(user_id)

        for user_id in users:
            self.notify(user_id, RecomputeTrigger.transactions_bulk_updated)
        failed = sum(1 for result in results if not result["success"])
        logger.info(
            f"transactions_bulk_update: total={len(results)} failed={failed} "
            f"users={len(users)}"
        )
        return results


class JobService:
    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def start(self, user_id: str, trigger: RecomputeTrigger) -> dict:
        job = {
            "id": uuid.uuid4().hex,
            "userId": user_id,
            "trigger": trigger.value,
            "status": JobStatus.running.value,
            **AggregationStats().to_dict(),
            "error": None,
            "startedAt": utcnow_iso(),
            "finishedAt": None,
        }
        self.store.put(self.settings.jobs_table, job)
        return job

    def finish(
        self,
        job: dict,
        status: JobStatus,
        stats: Optional[AggregationStats] = None,
        error: Optional[str] = None,
    ) -> dict:
        fields: dict[str, object] = {
            "status": status.value,
            "error": error,
            "finishedAt": utcnow_iso(),
        }
        if stats is not None:
            fields.update(stats.to_dict())
        return self.store.update(self.settings.jobs_table, job["id"], fields)

    def get(self, job_id: str) -> dict:
        job = self.store.get(self.settings.jobs_table, job_id)
        if job is None:
            raise NotFoundError("Job not found")
        return job

    def list_for_user(self, user_id: str, limit: int = 20) -> list[dict]:
        jobs = _scanner(self.store, self.settings).scan(
            self.settings.jobs_table, {"userId": user_id}
        )
        ordered = sorted(jobs, key=lambda job: job.get("startedAt") or "", reverse=True)
        return ordered[:limit]


_recompute_flights: SingleFlight[dict] = SingleFlight()


class TagsSummaryService:
    def __init__(
        self,
        store: DocumentStore,
        settings: Optional[Settings] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self._sleep = sleep

    def recompute(
        self, user_id: str, trigger: RecomputeTrigger = RecomputeTrigger.manual
    ) -> dict:
        """Rebuild and persist the user's tags summary; returns the job record.

        Overlapping calls for the same user share one in-flight run, see
        :class:`concurrency.SingleFlight`.
        """
        if not user_id:
            raise ValueError("userId is required")
        return _recompute_flights.run(user_id, lambda: self._run(user_id, trigger))

    def _run(self, user_id: str, trigger: RecomputeTrigger) -> dict:
        jobs = JobService(self.store, self.settings)
        job = jobs.start(user_id, trigger)
        try:
            engine = TagsSummaryEngine(self.store, self.settings, sleep=self._sleep)
            result = engine.recompute(user_id)
            SummaryWriter(self.store, self.settings.reports_table).write(
                user_id, result.aggregates
            )
        except Exception as exc:
            logger.error(
                f"tags_summary_failed: user_id={user_id} trigger={trigger.value} "
                f"job_id={job['id']} error={exc}"
            )
            try:
                jobs.finish(job, JobStatus.failed, error=str(exc))
            except StoreError:
                logger.warning(f"job_record_update_failed: job_id={job['id']}")
            raise
        return jobs.finish(job, JobStatus.succeeded, stats=result.stats)

    def get(self, user_id: str) -> Optional[dict]:
        return self.store.get(self.settings.reports_table, summary_key(user_id))

    def check(self, user_id: str) -> dict:
        snapshot = self.get(user_id)
        if snapshot is None:
            raise NotFoundError("No tags summary found for this user")

        tags = snapshot.get("tags") or []
        analysis = []
        for tag in tags:
            breakdown = tag.get("bankBreakdown") or {}
            analysis.append(
                {
                    "tagName": tag.get("tagName"),
                    "tagId": tag.get("tagId"),
                    "credit": tag.get("credit", 0),
                    "debit": tag.get("debit", 0),
                    "balance": tag.get("balance", 0),
                    "transactionCount": tag.get("transactionCount", 0),
                    "hasBankBreakdown": bool(breakdown),
                    "bankBreakdown": [
                        {
                            "bankName": bank_name,
                            "credit": data.get("credit", 0),
                            "debit": data.get("debit", 0),
                            "balance": data.get("balance", 0),
                            "transactionCount": data.get("transactionCount", 0),
                            "accounts": len(data.get("accounts") or []),
                        }
                        for bank_name, data in breakdown.items()
                    ],
                }
            )
        return {
            "userId": user_id,
            "tagsSummaryId": summary_key(user_id),
            "totalTags": len(tags),
            "tagsWithCR": sum(1 for tag in analysis if tag["credit"] > 0),
            "tagsWithDR": sum(1 for tag in analysis if tag["debit"] > 0),
            "tagsWithBoth": sum(
                1 for tag in analysis if tag["credit"] > 0 and tag["debit"] > 0
            ),
            "updatedAt": snapshot.get("updatedAt"),
            "analysis": analysis,
        }

    def known_users(self) -> list[str]:
        users: list[str] = []
        for doc in _scanner(self.store, self.settings).scan(self.settings.tags_table):
            user_id = doc.get("userId")
            if isinstance(user_id, str) and user_id and user_id not in users:
                users.append(user_id)
        return users


class AnalysisService:
    """Ad-hoc inspection of how transactions classify and tag."""

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.scanner = PaginatedScanner(
            store,
            page_size=self.settings.page_size,
            page_delay=self.settings.page_delay_secs,
        )

    def crdr_analysis(self, user_id: str, bank_name: str, limit: int = 20) -> dict:
        table = BankService(self.store, self.settings).table_for(bank_name)
        rows = list(islice(self.scanner.scan(table, {"userId": user_id}), limit))

        analysis = []
        for txn in rows:
            movement = classify(txn)
            analysis.append(
                {
                    "transactionId": txn.get("id"),
                    "description": next(
                        (txn[f] for f in DESCRIPTION_FIELDS if txn.get(f)), None
                    ),
                    "amount": next(
                        (txn[f] for f in UNIFIED_AMOUNT_FIELDS if txn.get(f) is not None),
                        None,
                    ),
                    "amountAbs": float(movement.amount_abs),
                    "crdr": movement.direction.value,
                    "tags": txn.get("tags"),
                }
            )

        def _total(direction: Direction) -> float:
            return round(
                sum(row["amountAbs"] for row in analysis if row["crdr"] == direction.value),
                2,
            )

        summary = {
            "total": len(analysis),
            "cr": sum(1 for row in analysis if row["crdr"] == Direction.CR.value),
            "dr": sum(1 for row in analysis if row["crdr"] == Direction.DR.value),
            "unknown": sum(
                1 for row in analysis if row["crdr"] == Direction.UNKNOWN.value
            ),
            "crAmount": _total(Direction.CR),
            "drAmount": _total(Direction.DR),
        }
        return {
            "userId": user_id,
            "bankName": bank_name,
            "tableName": table,
            "summary": summary,
            "analysis": analysis,
        }

    def tag_count(self, user_id: str, tag_name: str, sample_size: int = 100) -> dict:
        engine = TagsSummaryEngine(self.store, self.settings)
        catalog = engine.load_catalog(user_id)
        target = catalog.by_name(tag_name) or catalog.by_id(tag_name)

        banks: dict[str, int] = {}
        skipped: list[str] = []
        transactions: list[dict] = []
        total = 0
        if target is not None:
            for bank in engine.load_banks():
                bank_name = str(bank.get("bankName") or "").strip()
                table = bank_table(bank, self.settings.table_prefix)
                if not bank_name or not table:
                    continue
                count = 0
                try:
                    for txn in self.scanner.scan(table, {"userId": user_id}):
                        if target not in catalog.resolve_raw(txn.get("tags")):
                            continue
                        count += 1
                        if len(transactions) < sample_size:
                            transactions.append(
                                {
                                    "id": txn.get("id"),
                                    "bankName": bank_name,
                                    "amount": next(
                                        (
                                            txn[f]
                                            for f in UNIFIED_AMOUNT_FIELDS
                                            if txn.get(f) is not None
                                        ),
                                        None,
                                    ),
                                    "tags": txn.get("tags"),
                                }
                            )
                except StoreError:
                    logger.warning(
                        f"tag_count_bank_skipped: bank={bank_name} table={table}",
                        exc_info=True,
                    )
                    skipped.append(bank_name)
                    continue
                banks[bank_name] = count
                total += count

        return {
            "userId": user_id,
            "tagName": tag_name,
            "tagId": target.id if target else None,
            "totalCount": total,
            "banks": banks,
            "skippedBanks": skipped,
            "transactions": transactions,
        }
