import pytest

from helpers import make_settings, make_store
from routing import bank_table, route_table
from services import BankService, ConflictError


def test_route_table_slugs_bank_names() -> None:
    assert route_table("HDFC", "brmh-") == "brmh-hdfc"
    assert route_table("ICICI Bank", "brmh-") == "brmh-icici-bank"
    assert route_table("Kotak-Mahindra (Old)", "x_") == "x_kotak-mahindra--old-"


def test_bank_table_prefers_persisted_name() -> None:
    assert bank_table({"bankName": "HDFC", "tableName": "legacy_hdfc"}, "brmh-") == "legacy_hdfc"
    assert bank_table({"bankName": " SBI "}, "brmh-") == "brmh-sbi"
    assert bank_table({"bankName": "   "}, "brmh-") is None
    assert bank_table({}, "brmh-") is None


def test_create_persists_table_and_creates_it() -> None:
    settings = make_settings()
    store = make_store(settings)
    bank = BankService(store, settings).create("  ICICI Bank ")

    assert bank["bankName"] == "ICICI Bank"
    assert bank["tableName"] == "brmh-icici-bank"
    assert store.table_exists("brmh-icici-bank")
    assert store.get(settings.banks_table, bank["id"]) == bank


def test_colliding_bank_names_are_rejected() -> None:
    settings = make_settings()
    store = make_store(settings)
    service = BankService(store, settings)
    service.create("HDFC Bank")

    with pytest.raises(ConflictError):
        service.create("hdfc-bank")
    with pytest.raises(ValueError):
        service.create("   ")
    assert [bank["bankName"] for bank in service.list_all()] == ["HDFC Bank"]


def test_table_for_uses_registry_then_falls_back() -> None:
    settings = make_settings()
    store = make_store(settings)
    store.put(settings.banks_table, {"id": "b1", "bankName": "Axis", "tableName": "axis_v1"})
    service = BankService(store, settings)

    assert service.table_for("axis") == "axis_v1"
    assert service.table_for("Never Uploaded") == "brmh-never-uploaded"
