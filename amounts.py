"""Amount and direction classification for schema-less bank transactions.

Every bank exports its own columns. A transaction carries either a unified
amount next to a debit/credit indicator column, or separate credit and debit
columns, and the column names differ per bank. :func:`classify` turns one raw
record into a :class:`Movement` and never raises: records without a usable
signal come back as :data:`Direction.UNKNOWN` with a zero amount.

The numeric sign of a unified amount is never used to infer direction. Some
banks store debits as positive amounts and rely only on the indicator column.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Mapping, Optional

CENT = Decimal("0.01")

UNIFIED_AMOUNT_FIELDS = (
    "AmountRaw",
    "Amount",
    "amount",
    "Transaction Amount(INR)",
)

INDICATOR_FIELDS = (
    "Dr./Cr.",
    "Dr/Cr",
    "DR/CR",
    "dr/cr",
    "CR/DR",
    "cr/dr",
    "Cr/Dr",
    "Type",
    "Transaction Type",
    "Txn Type",
    "Debit/Credit",
    "DebitCredit",
    "DC",
    "D/C",
    "Dr / Cr",
    "Dr / Cr_1",
    "DR / CR",
    "DR / CR_1",
    "Cr / Dr",
    "CR / DR",
)

ACCOUNT_NUMBER_FIELDS = (
    "accountNumber",
    "AccountNumber",
    "account_number",
    "AccountNo",
    "accountNo",
)

_CURRENCY_SYMBOLS = re.compile("[₹$€£,]")
_NUMBER = re.compile(r"-?\d+(?:\.\d+)?")
_CR_TOKEN = re.compile(r"(^|\W)cr(\W|$)")
_DR_TOKEN = re.compile(r"(^|\W)dr(\W|$)")


class Direction(str, Enum):
    CR = "CR"
    DR = "DR"
    UNKNOWN = "UNKNOWN"


@dataclass(frozen=True)
class Movement:
    amount_abs: Decimal
    direction: Direction

    @property
    def is_known(self) -> bool:
        return self.direction is not Direction.UNKNOWN and self.amount_abs > 0


UNKNOWN_MOVEMENT = Movement(Decimal("0"), Direction.UNKNOWN)


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def parse_amount(value: object) -> Decimal:
    """Parse a bank amount cell, returning 0 when nothing numeric is found.

    Accepts numbers and strings such as ``"₹1,200.50"`` or ``"-450.00 Dr"``.
    """
    if isinstance(value, bool) or value is None:
        return Decimal("0")
    if isinstance(value, (int, float, Decimal)):
        try:
            amount = Decimal(str(value))
        except InvalidOperation:
            return Decimal("0")
        return amount if amount.is_finite() else Decimal("0")
    if not isinstance(value, str):
        return Decimal("0")
    match = _NUMBER.search(_CURRENCY_SYMBOLS.sub("", value))
    if not match:
        return Decimal("0")
    return Decimal(match.group(0))


def normalize_indicator(value: object) -> Optional[Direction]:
    if value is None or isinstance(value, (bool, dict, list)):
        return None
    norm = str(value).strip().upper()
    if norm in ("CR", "CREDIT"):
        return Direction.CR
    if norm in ("DR", "DEBIT"):
        return Direction.DR
    return None


def _is_blank(value: object) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def find_unified_amount(txn: Mapping[str, object]) -> Optional[Decimal]:
    for name in UNIFIED_AMOUNT_FIELDS:
        value = txn.get(name)
        if not _is_blank(value):
            return parse_amount(value)
    return None


def find_indicator(txn: Mapping[str, object]) -> Optional[Direction]:
    for name in INDICATOR_FIELDS:
        direction = normalize_indicator(txn.get(name))
        if direction is not None:
            return direction

    for name, value in txn.items():
        lowered = name.lower()
        if ("cr" in lowered and "dr" in lowered) or (
            "debit" in lowered or "credit" in lowered
        ):
            direction = normalize_indicator(value)
            if direction is not None:
                return direction
    return None


def _is_credit_column(name: str) -> bool:
    return (
        "credit" in name
        or "deposit" in name
        or "cr amount" in name
        or _CR_TOKEN.search(name) is not None
    )


def _is_debit_column(name: str) -> bool:
    return (
        "debit" in name
        or "withdraw" in name
        or "dr amount" in name
        or _DR_TOKEN.search(name) is not None
    )


def split_column_totals(txn: Mapping[str, object]) -> tuple[Decimal, Decimal]:
    credit = Decimal("0")
    debit = Decimal("0")
    for raw_name, value in txn.items():
        amount = parse_amount(value)
        if not amount:
            continue
        name = raw_name.lower()
        # a column matching both patterns counts on both sides
        if _is_credit_column(name):
            credit += abs(amount)
        if _is_debit_column(name):
            debit += abs(amount)
    return credit, debit


def classify(txn: Mapping[str, object]) -> Movement:
    amount = find_unified_amount(txn)
    if amount is not None:
        direction = find_indicator(txn)
        if direction is not None:
            return Movement(abs(amount), direction)

    credit, debit = split_column_totals(txn)
    if credit > 0 and debit == 0:
        return Movement(round_cents(credit), Direction.CR)
    if debit > 0 and credit == 0:
        return Movement(round_cents(debit), Direction.DR)
    return UNKNOWN_MOVEMENT


def account_display(txn: Mapping[str, object]) -> Optional[str]:
    """Human label for the account a transaction belongs to."""
    for name in ACCOUNT_NUMBER_FIELDS:
        value = txn.get(name)
        if isinstance(value, str) and value.strip():
            return value
    account_id = txn.get("accountId")
    if isinstance(account_id, str) and account_id:
        return f"Account-{account_id[:8]}..."
    return None
