import os
from functools import lru_cache
from pathlib import Path
from typing import Optional


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        store_backend: str,
        execute_url: str,
        execute_token: Optional[str],
        execute_timeout_secs: float,
        table_prefix: str,
        page_size: int,
        page_delay_ms: int,
        tag_page_delay_ms: int,
        tags_table: str,
        banks_table: str,
        reports_table: str,
        jobs_table: str,
        nightly_refresh_hour: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.store_backend = store_backend
        self.execute_url = execute_url
        self.execute_token = execute_token
        self.execute_timeout_secs = execute_timeout_secs
        self.table_prefix = table_prefix
        self.page_size = page_size
        self.page_delay_ms = page_delay_ms
        self.tag_page_delay_ms = tag_page_delay_ms
        self.tags_table = tags_table
        self.banks_table = banks_table
        self.reports_table = reports_table
        self.jobs_table = jobs_table
        self.nightly_refresh_hour = nightly_refresh_hour

    @property
    def page_delay_secs(self) -> float:
        return self.page_delay_ms / 1000

    @property
    def tag_page_delay_secs(self) -> float:
        return self.tag_page_delay_ms / 1000


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "UTC")
    store_backend = os.getenv("LEDGER_STORE_BACKEND", "sql").lower()
    execute_url = os.getenv("LEDGER_EXECUTE_URL", "http://localhost:5001")
    execute_token = os.getenv("LEDGER_EXECUTE_TOKEN") or None
    execute_timeout_secs = float(os.getenv("LEDGER_EXECUTE_TIMEOUT_SECS", "30"))
    table_prefix = os.getenv("LEDGER_TABLE_PREFIX", "brmh-")
    page_size = int(os.getenv("LEDGER_PAGE_SIZE", "1000"))
    page_delay_ms = int(os.getenv("LEDGER_PAGE_DELAY_MS", "50"))
    tag_page_delay_ms = int(os.getenv("LEDGER_TAG_PAGE_DELAY_MS", "100"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        store_backend=store_backend,
        execute_url=execute_url,
        execute_token=execute_token,
        execute_timeout_secs=execute_timeout_secs,
        table_prefix=table_prefix,
        page_size=page_size,
        page_delay_ms=page_delay_ms,
        tag_page_delay_ms=tag_page_delay_ms,
        tags_table=os.getenv("LEDGER_TAGS_TABLE", "tags"),
        banks_table=os.getenv("LEDGER_BANKS_TABLE", "banks"),
        reports_table=os.getenv("LEDGER_REPORTS_TABLE", "brmh-fintech-user-reports"),
        jobs_table=os.getenv("LEDGER_JOBS_TABLE", "recompute-jobs"),
        nightly_refresh_hour=int(os.getenv("LEDGER_NIGHTLY_REFRESH_HOUR", "3")),
    )
