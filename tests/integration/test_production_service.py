"""Tests for production_service.

Covers:
- Operational costs paid at start
- FIFO material consumption and output unit cost on completion
- Completing twice is a no-op
- A short ingredient leaves every batch untouched
- Deletion reverses consumption exactly, unless the output was sold
"""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from stockbook.models import ProductionStatus, StockType, TransactionCategory
from stockbook.services import (
    batch_service,
    cash_ledger_service,
    production_service,
    sale_service,
)
from stockbook.services.exceptions import (
    BatchNotFound,
    ConflictError,
    DatabaseError,
    InsufficientStockError,
    ProductionNotFound,
    ValidationError,
)


@pytest.fixture
def raw_materials(test_db, day):
    """FLOUR: 10 @ 2 then 10 @ 3; SUGAR: 5 @ 4."""
    flour_old = batch_service.create_batch(
        "Flour", StockType.RAW_MATERIAL, quantity=10, unit_cost=2, received_at=day(0)
    )
    flour_new = batch_service.create_batch(
        "Flour", StockType.RAW_MATERIAL, quantity=10, unit_cost=3, received_at=day(1)
    )
    sugar = batch_service.create_batch(
        "Sugar", StockType.RAW_MATERIAL, quantity=5, unit_cost=4, received_at=day(0)
    )
    return {"flour_old": flour_old, "flour_new": flour_new, "sugar": sugar}


@pytest.fixture
def bread_run(raw_materials, day):
    return production_service.start_production(
        "Bread",
        target_quantity=10,
        planned_ingredients={"Flour": 12, "Sugar": 2},
        operational_costs=[{"amount": 30, "description": "oven gas"}],
        started_at=day(2),
    )


def current(batch):
    return batch_service.get_batch(batch.id).current_quantity


class TestStartProduction:
    def test_start_records_plan_and_costs(self, bread_run):
        production = production_service.get_production(bread_run.id)

        assert production.status == ProductionStatus.IN_PROGRESS.value
        assert production.output_product_name == "BREAD"
        assert production.operational_cost == Decimal("30")
        assert {i.product_name: i.planned_quantity for i in production.ingredients} == {
            "FLOUR": Decimal("12"),
            "SUGAR": Decimal("2"),
        }

        costs = cash_ledger_service.get_transactions(
            category=TransactionCategory.PRODUCTION_COST, related_id=production.uuid
        )
        assert [t.amount for t in costs] == [Decimal("30")]
        assert "oven gas" in costs[0].description

    def test_start_does_not_consume(self, raw_materials, bread_run):
        assert current(raw_materials["flour_old"]) == Decimal("10")

    def test_zero_planned_quantities_allowed(self, test_db):
        production = production_service.start_production(
            "Bread", planned_ingredients=[{"product_name": "Flour", "quantity": 0}]
        )
        assert production.ingredients[0].planned_quantity == Decimal("0")

    def test_negative_cost_rejected(self, test_db):
        with pytest.raises(ValidationError, match="Operational cost"):
            production_service.start_production("Bread", operational_costs=[{"amount": -5}])

    def test_update_plan(self, bread_run):
        production_service.update_production(
            bread_run.id, {"planned_ingredients": {"Flour": 5}, "target_quantity": 4}
        )
        production = production_service.get_production(bread_run.id)
        assert [(i.product_name, i.planned_quantity) for i in production.ingredients] == [
            ("FLOUR", Decimal("5"))
        ]
        assert production.target_quantity == Decimal("4")

    def test_update_wraps_database_error(self, bread_run, monkeypatch):
        def fail(session, production_id):
            raise OperationalError("SELECT productions", {}, Exception("database is locked"))

        monkeypatch.setattr(production_service, "_get_production", fail)

        with pytest.raises(DatabaseError, match="Failed to update production"):
            production_service.update_production(bread_run.id, {"notes": "late"})


class TestCompleteProduction:
    def test_complete_consumes_fifo_and_creates_output(self, raw_materials, bread_run, day):
        production = production_service.complete_production(
            bread_run.id, actual_quantity=10, completed_at=day(3)
        )

        # FLOUR 10 @ 2 + 2 @ 3, SUGAR 2 @ 4
        assert production.material_cost == Decimal("34")
        assert production.total_cost == Decimal("64")
        assert production.status == ProductionStatus.COMPLETED.value
        assert production.output_quantity == Decimal("10")
        assert len(production.usages) == 3

        assert current(raw_materials["flour_old"]) == Decimal("0")
        assert current(raw_materials["flour_new"]) == Decimal("8")
        assert current(raw_materials["sugar"]) == Decimal("3")

        output = batch_service.get_batch(production.output_batch.id)
        assert output.product_name == "BREAD"
        assert output.stock_type == StockType.FINISHED_GOOD.value
        assert output.current_quantity == Decimal("10")
        assert output.unit_cost == Decimal("6.4")

    def test_output_batch_has_no_purchase_transaction(self, bread_run):
        production = production_service.complete_production(bread_run.id, actual_quantity=10)
        assert cash_ledger_service.get_transactions(
            related_id=production.output_batch.uuid
        ) == []

    def test_actual_ingredients_override_plan(self, raw_materials, bread_run):
        production = production_service.complete_production(
            bread_run.id, actual_quantity=5, actual_ingredients={"Flour": 3}
        )

        assert production.material_cost == Decimal("6")
        assert current(raw_materials["sugar"]) == Decimal("5")
        actual = {i.product_name: i.actual_quantity for i in production.ingredients}
        assert actual == {"FLOUR": Decimal("3"), "SUGAR": Decimal("0")}

    def test_complete_twice_is_noop(self, raw_materials, bread_run):
        production_service.complete_production(bread_run.id, actual_quantity=10)
        again = production_service.complete_production(bread_run.id, actual_quantity=10)

        assert again.status == ProductionStatus.COMPLETED.value
        assert current(raw_materials["flour_new"]) == Decimal("8")
        assert len(batch_service.list_batches(stock_type=StockType.FINISHED_GOOD)) == 1

    def test_short_ingredient_consumes_nothing(self, raw_materials, day):
        production = production_service.start_production(
            "Bread", planned_ingredients={"Sugar": 2, "Flour": 25}, started_at=day(2)
        )

        with pytest.raises(InsufficientStockError) as exc_info:
            production_service.complete_production(production.id, actual_quantity=10)

        assert exc_info.value.product_name == "FLOUR"
        assert exc_info.value.available == Decimal("20")
        assert current(raw_materials["sugar"]) == Decimal("5")
        assert current(raw_materials["flour_old"]) == Decimal("10")
        assert production_service.get_production(production.id).status == (
            ProductionStatus.IN_PROGRESS.value
        )
        assert batch_service.list_batches(stock_type=StockType.FINISHED_GOOD) == []

    def test_check_can_complete_lists_every_shortage(self, raw_materials):
        production = production_service.start_production(
            "Bread", planned_ingredients={"Flour": 25, "Sugar": 6, "Salt": 1}
        )

        report = production_service.check_can_complete(production.id)

        assert report["can_complete"] is False
        assert [(m["product_name"], m["shortfall"]) for m in report["missing"]] == [
            ("FLOUR", Decimal("5")),
            ("SUGAR", Decimal("1")),
            ("SALT", Decimal("1")),
        ]
        assert current(raw_materials["flour_old"]) == Decimal("10")

    def test_output_variants_split_output(self, bread_run):
        production = production_service.complete_production(
            bread_run.id, actual_quantity=10, output_variants={"Small": 4, "Large": 6}
        )
        output = batch_service.get_batch(production.output_batch.id)
        assert {v.label: v.quantity for v in output.variants} == {
            "Small": Decimal("4"),
            "Large": Decimal("6"),
        }

    def test_output_variants_must_sum_to_quantity(self, raw_materials, bread_run):
        with pytest.raises(ValidationError, match="Output variants"):
            production_service.complete_production(
                bread_run.id, actual_quantity=10, output_variants={"Small": 4, "Large": 5}
            )
        assert current(raw_materials["flour_old"]) == Decimal("10")

    def test_zero_output_has_zero_unit_cost(self, bread_run):
        production = production_service.complete_production(bread_run.id, actual_quantity=0)
        assert production.output_batch.unit_cost == Decimal("0")

    def test_missing_production(self, test_db):
        with pytest.raises(ProductionNotFound):
            production_service.complete_production(404, actual_quantity=1)

    def test_completed_production_cannot_be_edited(self, bread_run):
        production_service.complete_production(bread_run.id, actual_quantity=10)
        with pytest.raises(ConflictError):
            production_service.update_production(bread_run.id, {"notes": "late"})


class TestDeleteProduction:
    def test_delete_restores_materials(self, raw_materials, bread_run):
        production = production_service.complete_production(bread_run.id, actual_quantity=10)
        output_id = production.output_batch.id

        production_service.delete_production(bread_run.id)

        assert current(raw_materials["flour_old"]) == Decimal("10")
        assert current(raw_materials["flour_new"]) == Decimal("10")
        assert current(raw_materials["sugar"]) == Decimal("5")
        with pytest.raises(BatchNotFound):
            batch_service.get_batch(output_id)
        with pytest.raises(ProductionNotFound):
            production_service.get_production(bread_run.id)
        assert cash_ledger_service.get_transactions(
            category=TransactionCategory.PRODUCTION_COST
        ) == []

    def test_delete_in_progress(self, bread_run):
        production_service.delete_production(bread_run.id)
        assert production_service.list_productions() == []

    def test_delete_after_output_sold_rejected(self, raw_materials, bread_run, day):
        production_service.complete_production(bread_run.id, actual_quantity=10, completed_at=day(3))
        sale_service.record_sale("Bread", 1, 12, sold_at=day(4))

        with pytest.raises(ConflictError, match="already been sold"):
            production_service.delete_production(bread_run.id)
        assert current(raw_materials["flour_old"]) == Decimal("0")

    def test_consumed_raw_batch_cannot_be_deleted(self, raw_materials, bread_run):
        production_service.complete_production(bread_run.id, actual_quantity=10)
        with pytest.raises(ConflictError):
            batch_service.delete_batch(raw_materials["sugar"].id)

    def test_output_batch_cannot_be_deleted_directly(self, bread_run):
        production = production_service.complete_production(bread_run.id, actual_quantity=10)
        with pytest.raises(ConflictError, match="delete the production"):
            batch_service.delete_batch(production.output_batch.id)


def test_list_productions_by_status(bread_run, day):
    other = production_service.start_production("Cake", started_at=day(5))
    production_service.complete_production(other.id, actual_quantity=0)

    in_progress = production_service.list_productions(status=ProductionStatus.IN_PROGRESS)
    completed = production_service.list_productions(status=ProductionStatus.COMPLETED)

    assert [p.id for p in in_progress] == [bread_run.id]
    assert [p.id for p in completed] == [other.id]
