import re
from typing import Optional

from config import get_settings

_NON_SLUG_CHAR = re.compile(r"[^a-z0-9]")


def route_table(bank_name: str, prefix: Optional[str] = None) -> str:
    """Storage table holding the transactions of the bank called ``bank_name``.

    Every character outside ``[a-z0-9]`` becomes ``-`` so ``"HDFC Bank"`` and
    ``"hdfc-bank"`` share a table. New banks persist the result once, see
    ``BankService.create``.
    """
    if prefix is None:
        prefix = get_settings().table_prefix
    return f"{prefix}{_NON_SLUG_CHAR.sub('-', bank_name.lower())}"


def bank_table(bank: dict, prefix: Optional[str] = None) -> Optional[str]:
    """Table for a bank registry document, or None when it has no name."""
    table = bank.get("tableName")
    if isinstance(table, str) and table:
        return table
    name = str(bank.get("bankName") or "").strip()
    if not name:
        return None
    return route_table(name, prefix)
