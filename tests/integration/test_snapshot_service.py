"""Tests for snapshot_service export/import."""

import json
from decimal import Decimal

import pytest

from stockbook.models import StockType
from stockbook.services import (
    batch_service,
    cash_ledger_service,
    deposit_order_service,
    loan_service,
    production_service,
    sale_service,
    snapshot_service,
)
from stockbook.services.exceptions import ValidationError
from stockbook.utils.constants import SNAPSHOT_VERSION


@pytest.fixture
def ledger(test_db, day):
    """A ledger touching every collection."""
    batch_service.create_batch(
        "Flour", StockType.RAW_MATERIAL, quantity=10, unit_cost=2, received_at=day(0)
    )
    batch_service.create_batch(
        "Shirt", StockType.FINISHED_GOOD, unit_cost=5, variants={"S": 2, "M": 3},
        received_at=day(0),
    )
    production = production_service.start_production(
        "Bread",
        planned_ingredients={"Flour": 4},
        operational_costs=[{"amount": 6, "description": "gas"}],
        started_at=day(1),
    )
    production_service.complete_production(production.id, actual_quantity=5, completed_at=day(1))
    sale_service.record_sale("Bread", 2, 9, sold_at=day(2))
    sale_service.record_sale("Shirt", 1, 15, variant_label="M", sold_at=day(2))
    order = deposit_order_service.create_deposit_order(
        "Ana", "Bread", 1, 12, 4, ordered_at=day(2)
    )
    deposit_order_service.complete_deposit_order(order.id, completed_at=day(3))
    loan = loan_service.create_loan("Bank A", 500, borrowed_at=day(0))
    loan_service.repay_loan(loan.id, principal=100, interest=5, paid_at=day(3))
    cash_ledger_service.transfer_funds(50, "CASH", "BANK", occurred_at=day(4))
    cash_ledger_service.add_manual_transaction("cash_out", "operational", 7, occurred_at=day(4))


def collections(snapshot):
    return {name: snapshot[name] for name in snapshot_service.COLLECTIONS}


def test_export_contains_every_collection(ledger):
    snapshot = snapshot_service.export_snapshot()

    assert snapshot["version"] == SNAPSHOT_VERSION
    assert {name: len(records) for name, records in collections(snapshot).items()} == {
        "batches": 3,
        "productions": 1,
        "production_usages": 1,
        "deposit_orders": 1,
        "sales": 3,
        "sale_consumptions": 3,
        "loans": 1,
        "transactions": 13,
    }
    production = snapshot["productions"][0]
    assert production["batch_uuid_created"] == snapshot["batches"][2]["uuid"]
    assert [s["order_uuid"] is not None for s in snapshot["sales"]] == [False, False, True]
    # Snapshots must survive a JSON round trip unchanged.
    assert json.loads(json.dumps(snapshot)) == snapshot


def test_import_restores_ledger(ledger):
    before = snapshot_service.export_snapshot()
    balance = cash_ledger_service.get_cash_balance()

    result = snapshot_service.import_snapshot(before)

    assert result.total_records == 26
    assert collections(snapshot_service.export_snapshot()) == collections(before)
    assert cash_ledger_service.get_cash_balance() == balance
    assert batch_service.get_available_quantity("Bread") == Decimal("2")


def test_imported_ledger_stays_consistent(ledger):
    snapshot_service.import_snapshot(snapshot_service.export_snapshot())

    sale = sale_service.list_sales(product_name="Shirt")[0]
    sale_service.delete_sale(sale.id)
    assert batch_service.get_available_quantity("Shirt", variant_label="M") == Decimal("3")

    order = deposit_order_service.list_deposit_orders()[0]
    assert deposit_order_service.get_deposit_order(order.id).sale is not None


def test_import_replaces_existing_data(ledger, day):
    empty = {"version": SNAPSHOT_VERSION}
    snapshot_service.import_snapshot(empty)

    assert batch_service.list_batches(include_empty=True) == []
    assert cash_ledger_service.get_transactions() == []


def test_unknown_reference_leaves_ledger_unchanged(ledger):
    before = snapshot_service.export_snapshot()
    broken = json.loads(json.dumps(before))
    broken["sale_consumptions"][0]["batch_uuid"] = "missing"

    with pytest.raises(ValidationError, match=r"sale_consumptions\[0\]\.batch_uuid"):
        snapshot_service.import_snapshot(broken)

    assert collections(snapshot_service.export_snapshot()) == collections(before)


def test_variant_total_mismatch_rejected(ledger):
    broken = snapshot_service.export_snapshot()
    broken["batches"][1]["variants"][0]["quantity"] = "9"

    with pytest.raises(ValidationError, match="Variant quantities"):
        snapshot_service.import_snapshot(broken)


@pytest.mark.parametrize("snapshot", [{"version": "0.9"}, {}, ["not", "a", "dict"]])
def test_rejects_unsupported_snapshots(ledger, snapshot):
    with pytest.raises(ValidationError, match="Snapshot"):
        snapshot_service.import_snapshot(snapshot)
    assert len(batch_service.list_batches(include_empty=True)) == 3


def test_save_and_load(ledger, tmp_path):
    path = tmp_path / "backup" / "ledger.json"

    exported = snapshot_service.save_snapshot(str(path))

    assert path.exists()
    assert exported.record_count == 26
    assert "26 records" in exported.get_summary()

    snapshot_service.import_snapshot({"version": SNAPSHOT_VERSION})
    imported = snapshot_service.load_snapshot(str(path))

    assert imported.entity_counts["transactions"] == 13
    assert "Total Records: 26" in imported.get_summary()
    assert len(sale_service.list_sales()) == 3


def test_load_invalid_json(test_db, tmp_path):
    path = tmp_path / "bad.json"
    path.write_text("{not json", encoding="utf-8")

    with pytest.raises(ValidationError, match="Invalid JSON"):
        snapshot_service.load_snapshot(str(path))
