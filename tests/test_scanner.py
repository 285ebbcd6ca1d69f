import pytest

from helpers import make_store
from scanner import PaginatedScanner
from store import DocumentStore, ScanPage, StoreError, TableNotFoundError


class PagedStore(DocumentStore):
    def __init__(self, pages: list[ScanPage], fail_at: int = -1) -> None:
        self.pages = pages
        self.fail_at = fail_at
        self.calls: list[tuple] = []

    def scan(self, table, *, filters=None, limit=None, cursor=None):
        call = len(self.calls)
        self.calls.append((table, filters, limit, cursor))
        if call == self.fail_at:
            raise StoreError("throttled")
        return self.pages[call]


def test_follows_cursor_until_exhausted_and_sleeps_between_pages() -> None:
    store = PagedStore(
        [
            ScanPage(items=[{"id": "a"}], next_cursor="c1"),
            ScanPage(items=[], next_cursor="c2"),
            ScanPage(items=[{"id": "b"}, {"id": "c"}]),
        ]
    )
    sleeps: list[float] = []
    scanner = PaginatedScanner(store, page_size=2, page_delay=0.05, sleep=sleeps.append)

    items = list(scanner.scan("brmh-hdfc", {"userId": "u1"}))

    assert [item["id"] for item in items] == ["a", "b", "c"]
    assert [call[3] for call in store.calls] == [None, "c1", "c2"]
    assert all(call[1] == {"userId": "u1"} and call[2] == 2 for call in store.calls)
    assert sleeps == [0.05, 0.05]


def test_scan_is_lazy() -> None:
    store = PagedStore([ScanPage(items=[{"id": "a"}], next_cursor="c1")])
    scanner = PaginatedScanner(store, page_delay=0)
    iterator = scanner.scan("t")
    assert store.calls == []
    assert next(iterator) == {"id": "a"}
    assert len(store.calls) == 1


def test_missing_table_yields_nothing() -> None:
    scanner = PaginatedScanner(make_store(), page_delay=0)
    assert list(scanner.scan("brmh-never-uploaded", {"userId": "u1"})) == []


def test_other_store_errors_propagate() -> None:
    store = PagedStore([ScanPage(items=[{"id": "a"}], next_cursor="c1")], fail_at=1)
    scanner = PaginatedScanner(store, page_delay=0)
    with pytest.raises(StoreError):
        list(scanner.scan("t"))


def test_table_vanishing_mid_scan_is_an_error() -> None:
    class VanishingStore(PagedStore):
        def scan(self, table, *, filters=None, limit=None, cursor=None):
            if cursor:
                raise TableNotFoundError(table)
            return super().scan(table, filters=filters, limit=limit, cursor=cursor)

    store = VanishingStore([ScanPage(items=[{"id": "a"}], next_cursor="c1")])
    scanner = PaginatedScanner(store, page_delay=0)
    with pytest.raises(TableNotFoundError):
        list(scanner.scan("t"))


def test_reads_real_store_in_pages() -> None:
    store = make_store()
    store.create_table("brmh-axis")
    for idx in range(7):
        store.put("brmh-axis", {"id": f"tx-{idx}", "userId": "u1"})
    scanner = PaginatedScanner(store, page_size=3, page_delay=0)

    pages = list(scanner.pages("brmh-axis", {"userId": "u1"}))

    assert [len(page) for page in pages] == [3, 3, 1]
    assert [item["id"] for item in scanner.scan("brmh-axis")] == [
        f"tx-{idx}" for idx in range(7)
    ]
