"""Document store adapters.

The engine talks to a schema-free document store through the small
:class:`DocumentStore` surface: filtered scans returning a bounded page plus an
opaque continuation cursor, point reads, and upserts. Two backends exist:

* :class:`SqlDocumentStore` keeps logical tables and their items in SQLAlchemy
  (SQLite by default).
* :class:`ExecuteStore` forwards every operation to an HTTP "execute" facade
  (``POST {url}/execute``) that fronts the production document database.
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from http.client import HTTPException
from typing import Iterator, Optional
from urllib.error import HTTPError
from urllib.request import Request, urlopen

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config import get_settings
from models import Document, StoreTable

logger = logging.getLogger(__name__)


class StoreError(RuntimeError):
    """A read or write against the document store failed."""


class TableNotFoundError(StoreError):
    def __init__(self, table: str) -> None:
        super().__init__(f"Table not found: {table}")
        self.table = table


@dataclass(frozen=True)
class ScanPage:
    items: list[dict] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _matches(item: dict, filters: Optional[dict]) -> bool:
    if not filters:
        return True
    return all(item.get(name) == value for name, value in filters.items())


class DocumentStore:
    def scan(
        self,
        table: str,
        *,
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> ScanPage:
        raise NotImplementedError

    def get(self, table: str, key: str) -> Optional[dict]:
        raise NotImplementedError

    def put(self, table: str, item: dict) -> None:
        raise NotImplementedError

    def update(
        self,
        table: str,
        key: str,
        fields: dict,
        *,
        if_absent: Optional[dict] = None,
    ) -> dict:
        """Upsert ``key``: set ``fields``, and ``if_absent`` only where missing."""
        raise NotImplementedError

    def delete(self, table: str, key: str) -> None:
        raise NotImplementedError

    def create_table(self, table: str) -> None:
        raise NotImplementedError

    def table_exists(self, table: str) -> bool:
        raise NotImplementedError


class SqlDocumentStore(DocumentStore):
    """Document store on top of the ``store_tables``/``documents`` tables.

    Like the production store, ``limit`` bounds the number of items *read*
    and the filter is applied afterwards, so a page may hold fewer matches
    than ``limit`` (even none) while still carrying a cursor.
    """

    def __init__(self, session: Session) -> None:
        self.session = session

    @contextmanager
    def _errors(self) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StoreError(str(exc)) from exc

    def _require_table(self, table: str) -> None:
        if self.session.get(StoreTable, table) is None:
            raise TableNotFoundError(table)

    def _document(self, table: str, key: str) -> Optional[Document]:
        return self.session.scalar(
            select(Document).where(Document.table_name == table, Document.key == key)
        )

    def table_exists(self, table: str) -> bool:
        with self._errors():
            return self.session.get(StoreTable, table) is not None

    def create_table(self, table: str) -> None:
        with self._errors():
            if self.session.get(StoreTable, table) is not None:
                return
            self.session.add(StoreTable(name=table))
            self.session.commit()
            logger.info(f"store_create_table: table={table}")

    def scan(
        self,
        table: str,
        *,
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> ScanPage:
        if limit is not None and limit <= 0:
            raise ValueError("Scan limit must be positive")
        after = _decode_cursor(cursor)
        with self._errors():
            self._require_table(table)
            stmt = (
                select(Document)
                .where(Document.table_name == table)
                .order_by(Document.seq)
            )
            if after is not None:
                stmt = stmt.where(Document.seq > after)
            if limit is not None:
                stmt = stmt.limit(limit + 1)
            rows = self.session.scalars(stmt).all()

        next_cursor = None
        if limit is not None and len(rows) > limit:
            rows = rows[:limit]
            next_cursor = str(rows[-1].seq)
        items = [dict(row.body) for row in rows if _matches(row.body, filters)]
        return ScanPage(items=items, next_cursor=next_cursor)

    def get(self, table: str, key: str) -> Optional[dict]:
        with self._errors():
            self._require_table(table)
            doc = self._document(table, key)
            return dict(doc.body) if doc else None

    def put(self, table: str, item: dict) -> None:
        key = item.get("id")
        if not isinstance(key, str) or not key:
            raise ValueError("Item requires a string 'id'")
        with self._errors():
            self._require_table(table)
            doc = self._document(table, key)
            if doc is None:
                self.session.add(Document(table_name=table, key=key, body=dict(item)))
            else:
                doc.body = dict(item)
            self.session.commit()

    def update(
        self,
        table: str,
        key: str,
        fields: dict,
        *,
        if_absent: Optional[dict] = None,
    ) -> dict:
        with self._errors():
            self._require_table(table)
            doc = self._document(table, key)
            body = dict(doc.body) if doc else {"id": key}
            body.update(fields)
            for name, value in (if_absent or {}).items():
                body.setdefault(name, value)
            if doc is None:
                self.session.add(Document(table_name=table, key=key, body=body))
            else:
                doc.body = body
            self.session.commit()
            return dict(body)

    def delete(self, table: str, key: str) -> None:
        with self._errors():
            self._require_table(table)
            doc = self._document(table, key)
            if doc is not None:
                self.session.delete(doc)
                self.session.commit()


def _decode_cursor(cursor: Optional[str]) -> Optional[int]:
    if cursor is None:
        return None
    try:
        return int(cursor)
    except (TypeError, ValueError) as exc:
        raise StoreError(f"Malformed scan cursor: {cursor!r}") from exc


class ExecuteStore(DocumentStore):
    """Client for the HTTP execute facade in front of the document database."""

    def __init__(
        self, base_url: str, token: Optional[str] = None, timeout: float = 30.0
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _execute(self, operation: str, table: str, **params: object) -> dict:
        payload: dict[str, object] = {
            "executeType": "crud",
            "crudOperation": operation,
            "tableName": table,
        }
        payload.update({k: v for k, v in params.items() if v is not None})
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        req = Request(
            f"{self.base_url}/execute",
            data=json.dumps(payload).encode("utf-8"),
            headers=headers,
            method="POST",
        )
        try:
            with urlopen(req, timeout=self.timeout) as resp:
                raw = resp.read().decode("utf-8")
        except HTTPError as exc:
            if exc.code == 404:
                raise TableNotFoundError(table) from exc
            raise StoreError(
                f"Execute {operation} on {table} failed: HTTP {exc.code}"
            ) from exc
        except (OSError, HTTPException) as exc:
            # dropped connections surface from getresponse() and read() unwrapped
            raise StoreError(f"Execute {operation} on {table} failed: {exc}") from exc

        try:
            result = json.loads(raw) if raw else {}
        except json.JSONDecodeError as exc:
            raise StoreError(f"Malformed response for {operation} on {table}") from exc
        if not isinstance(result, dict):
            raise StoreError(f"Malformed response for {operation} on {table}")
        return result

    def scan(
        self,
        table: str,
        *,
        filters: Optional[dict] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> ScanPage:
        result = self._execute(
            "scan", table, filters=filters or None, limit=limit, cursor=cursor
        )
        items = result.get("items", [])
        if not isinstance(items, list):
            raise StoreError(f"Malformed scan response for {table}")
        next_cursor = result.get("nextCursor")
        return ScanPage(
            items=[item for item in items if isinstance(item, dict)],
            next_cursor=str(next_cursor) if next_cursor else None,
        )

    def get(self, table: str, key: str) -> Optional[dict]:
        item = self._execute("get", table, id=key).get("item")
        return item if isinstance(item, dict) else None

    def put(self, table: str, item: dict) -> None:
        self._execute("put", table, item=item)

    def update(
        self,
        table: str,
        key: str,
        fields: dict,
        *,
        if_absent: Optional[dict] = None,
    ) -> dict:
        result = self._execute(
            "update", table, id=key, updates=fields, setIfAbsent=if_absent
        )
        item = result.get("item")
        if isinstance(item, dict):
            return item
        return {"id": key, **(if_absent or {}), **fields}

    def delete(self, table: str, key: str) -> None:
        self._execute("delete", table, id=key)

    def create_table(self, table: str) -> None:
        self._execute("createTable", table)

    def table_exists(self, table: str) -> bool:
        try:
            self._execute("describeTable", table)
        except TableNotFoundError:
            return False
        return True


def build_store(session: Optional[Session] = None) -> DocumentStore:
    settings = get_settings()
    if settings.store_backend == "execute":
        return ExecuteStore(
            settings.execute_url,
            token=settings.execute_token,
            timeout=settings.execute_timeout_secs,
        )
    if settings.store_backend != "sql":
        raise ValueError(f"Unsupported store backend: {settings.store_backend}")
    if session is None:
        raise ValueError("The SQL store requires a session")
    return SqlDocumentStore(session)
