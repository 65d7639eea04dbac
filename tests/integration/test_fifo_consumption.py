"""Tests for consumption_service: FIFO order, costing and all-or-nothing behavior."""

import logging
from decimal import Decimal

import pytest

from stockbook.models import StockType
from stockbook.services import batch_service, consumption_service
from stockbook.services.exceptions import InsufficientStockError, ValidationError


@pytest.fixture
def two_layers(test_db, day):
    """5 units @ 10 received first, 5 units @ 20 received a day later."""
    older = batch_service.create_batch(
        "Wax", StockType.RAW_MATERIAL, quantity=5, unit_cost=10, received_at=day(0)
    )
    newer = batch_service.create_batch(
        "Wax", StockType.RAW_MATERIAL, quantity=5, unit_cost=20, received_at=day(1)
    )
    return older, newer


class TestConsumeFifo:
    def test_consumes_oldest_first(self, two_layers):
        older, newer = two_layers

        result = consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, 7)

        assert result["consumed"] == Decimal("7")
        assert result["total_cost"] == Decimal("90")
        assert [(e["batch_id"], e["quantity"], e["unit_cost"]) for e in result["breakdown"]] == [
            (older.id, Decimal("5"), Decimal("10")),
            (newer.id, Decimal("2"), Decimal("20")),
        ]
        assert batch_service.get_batch(older.id).current_quantity == Decimal("0")
        assert batch_service.get_batch(newer.id).current_quantity == Decimal("3")

    def test_insufficient_stock_changes_nothing(self, two_layers, caplog):
        older, newer = two_layers

        with caplog.at_level(logging.WARNING):
            with pytest.raises(InsufficientStockError) as exc_info:
                consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, 11)

        assert exc_info.value.required == Decimal("11")
        assert exc_info.value.available == Decimal("10")
        assert batch_service.get_batch(older.id).current_quantity == Decimal("5")
        assert batch_service.get_batch(newer.id).current_quantity == Decimal("5")
        assert "insufficient_stock" in caplog.text

    def test_dry_run_does_not_modify(self, two_layers):
        older, _newer = two_layers

        result = consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, 7, dry_run=True)

        assert result["total_cost"] == Decimal("90")
        assert result["breakdown"][0]["remaining_in_batch"] == Decimal("0")
        assert batch_service.get_batch(older.id).current_quantity == Decimal("5")

    def test_later_received_batch_created_first_is_consumed_later(self, test_db, day):
        late = batch_service.create_batch(
            "Wax", StockType.RAW_MATERIAL, quantity=5, unit_cost=30, received_at=day(5)
        )
        early = batch_service.create_batch(
            "Wax", StockType.RAW_MATERIAL, quantity=5, unit_cost=10, received_at=day(1)
        )

        result = consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, 5)

        assert result["breakdown"][0]["batch_id"] == early.id
        assert batch_service.get_batch(late.id).current_quantity == Decimal("5")

    def test_identical_timestamps_use_insertion_order(self, test_db, day):
        first = batch_service.create_batch(
            "Wax", StockType.RAW_MATERIAL, quantity=2, unit_cost=7, received_at=day(0)
        )
        second = batch_service.create_batch(
            "Wax", StockType.RAW_MATERIAL, quantity=2, unit_cost=9, received_at=day(0)
        )

        result = consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, 3)

        assert [e["batch_id"] for e in result["breakdown"]] == [first.id, second.id]
        assert result["total_cost"] == Decimal("23")

    def test_product_name_is_case_insensitive(self, two_layers):
        result = consumption_service.consume_fifo("  wax ", StockType.RAW_MATERIAL, 1)
        assert result["total_cost"] == Decimal("10")

    def test_stock_types_are_separate(self, two_layers):
        with pytest.raises(InsufficientStockError):
            consumption_service.consume_fifo("Wax", StockType.FINISHED_GOOD, 1)

    @pytest.mark.parametrize("quantity", [0, -1, "abc"])
    def test_non_positive_quantity_rejected(self, two_layers, quantity):
        with pytest.raises(ValidationError):
            consumption_service.consume_fifo("Wax", StockType.RAW_MATERIAL, quantity)


class TestVariantConsumption:
    def test_consumes_only_requested_variant(self, test_db, day):
        first = batch_service.create_batch(
            "Shirt", StockType.FINISHED_GOOD, unit_cost=5, variants={"S": 2, "M": 3},
            received_at=day(0),
        )
        second = batch_service.create_batch(
            "Shirt", StockType.FINISHED_GOOD, unit_cost=6, variants={"S": 5}, received_at=day(1)
        )

        result = consumption_service.consume_fifo(
            "Shirt", StockType.FINISHED_GOOD, 4, variant_label="S"
        )

        assert result["total_cost"] == Decimal("22")
        assert [(e["batch_id"], e["variant_label"], e["quantity"]) for e in result["breakdown"]] == [
            (first.id, "S", Decimal("2")),
            (second.id, "S", Decimal("2")),
        ]
        first = batch_service.get_batch(first.id)
        assert first.get_variant("M").quantity == Decimal("3")
        assert first.current_quantity == Decimal("3")
        assert batch_service.get_batch(second.id).current_quantity == Decimal("3")

    def test_missing_variant_is_insufficient(self, test_db):
        batch_service.create_batch("Shirt", StockType.FINISHED_GOOD, variants={"S": 2})
        with pytest.raises(InsufficientStockError) as exc_info:
            consumption_service.consume_fifo("Shirt", StockType.FINISHED_GOOD, 1, variant_label="XL")
        assert exc_info.value.variant_label == "XL"
        assert exc_info.value.available == Decimal("0")


class TestCheckAvailability:
    def test_reports_shortfall(self, two_layers):
        report = consumption_service.check_availability("wax", StockType.RAW_MATERIAL, 12)
        assert report == {
            "product_name": "WAX",
            "variant_label": None,
            "required": Decimal("12"),
            "available": Decimal("10"),
            "shortfall": Decimal("2"),
            "can_consume": False,
        }

    def test_enough_stock(self, two_layers):
        report = consumption_service.check_availability("Wax", StockType.RAW_MATERIAL, 10)
        assert report["can_consume"] is True
        assert report["shortfall"] == Decimal("0")
