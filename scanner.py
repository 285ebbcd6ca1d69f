import logging
import time
from typing import Callable, Iterator, Optional

from store import DocumentStore, TableNotFoundError

logger = logging.getLogger(__name__)


class PaginatedScanner:
    """Reads every matching item of one table, page by page.

    Each call to :meth:`scan` starts from the beginning of the table. The
    store hands back an opaque cursor with every page that is not the last;
    between pages the scanner sleeps ``page_delay`` seconds to stay under the
    store's throughput limits.
    """

    def __init__(
        self,
        store: DocumentStore,
        page_size: int = 1000,
        page_delay: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be positive")
        self.store = store
        self.page_size = page_size
        self.page_delay = page_delay
        self._sleep = sleep

    def pages(
        self, table: str, filters: Optional[dict] = None
    ) -> Iterator[list[dict]]:
        cursor: Optional[str] = None
        page_count = 0
        while True:
            try:
                page = self.store.scan(
                    table, filters=filters, limit=self.page_size, cursor=cursor
                )
            except TableNotFoundError:
                if page_count:
                    raise
                logger.info(f"scan_skip_missing_table: table={table}")
                return
            page_count += 1
            yield page.items
            cursor = page.next_cursor
            if not cursor:
                return
            if self.page_delay > 0:
                self._sleep(self.page_delay)

    def scan(self, table: str, filters: Optional[dict] = None) -> Iterator[dict]:
        for items in self.pages(table, filters):
            yield from items
