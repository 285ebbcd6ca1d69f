from typing import Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from config import Settings
from database import Base
from services import BankService, TagService, ensure_core_tables
from store import SqlDocumentStore


def make_settings(**overrides) -> Settings:
    values = dict(
        database_url="sqlite:///:memory:",
        timezone="UTC",
        store_backend="sql",
        execute_url="http://execute.test",
        execute_token=None,
        execute_timeout_secs=5.0,
        table_prefix="brmh-",
        page_size=1000,
        page_delay_ms=0,
        tag_page_delay_ms=0,
        tags_table="tags",
        banks_table="banks",
        reports_table="reports",
        jobs_table="recompute-jobs",
        nightly_refresh_hour=3,
    )
    values.update(overrides)
    return Settings(**values)


def make_store(settings: Optional[Settings] = None) -> SqlDocumentStore:
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    store = SqlDocumentStore(Session(engine))
    ensure_core_tables(store, settings or make_settings())
    return store


def add_bank(store: SqlDocumentStore, name: str, settings: Settings) -> str:
    return BankService(store, settings).create(name)["tableName"]


def add_tag(store: SqlDocumentStore, user_id: str, name: str, settings: Settings) -> str:
    return TagService(store, user_id, settings=settings).create(name).id


def add_txn(store: SqlDocumentStore, table: str, txn_id: str, **fields) -> dict:
    item = {"id": txn_id, **fields}
    store.put(table, item)
    return item
