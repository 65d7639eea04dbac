"""
Complete workflow integration tests.

Runs one month of a small candle workshop through every service and checks
that stock, cash and profit agree at the end, and still agree after the
ledger is exported and imported again.

Workflow:
- Borrow from the bank and move some of it to the cash drawer
- Buy raw materials
- Produce candles and sell some directly
- Fulfil one deposit order and cancel another
- Repay part of the loan and pay rent
"""

import logging
from decimal import Decimal

import pytest

from stockbook.models import OrderStatus, StockType
from stockbook.services import (
    batch_service,
    cash_ledger_service,
    deposit_order_service,
    loan_service,
    production_service,
    sale_service,
    snapshot_service,
)

logger = logging.getLogger(__name__)


class TestCompleteWorkflows:
    """Cross-service scenario for one trading month."""

    @pytest.fixture
    def month(self, test_db, day):
        loan = loan_service.create_loan("Bank A", 2000, borrowed_at=day(0), payment_method="BANK")
        cash_ledger_service.transfer_funds(500, "BANK", "CASH", occurred_at=day(0))

        batch_service.create_batch(
            "Wax", StockType.RAW_MATERIAL, quantity=20, unit_cost=5, received_at=day(1)
        )
        batch_service.create_batch(
            "Wick", StockType.RAW_MATERIAL, quantity=50, unit_cost="0.2", received_at=day(1)
        )

        run = production_service.start_production(
            "Candle",
            target_quantity=20,
            planned_ingredients={"Wax": 10, "Wick": 20},
            operational_costs=[{"amount": 30, "description": "moulds"}],
            started_at=day(2),
        )
        production_service.complete_production(run.id, actual_quantity=20, completed_at=day(3))

        sale_service.record_sale("Candle", 8, 12, sold_at=day(4))

        kept = deposit_order_service.create_deposit_order(
            "Ana", "Candle", 5, total_amount=60, deposit_amount=20, ordered_at=day(5)
        )
        deposit_order_service.complete_deposit_order(kept.id, completed_at=day(6))
        dropped = deposit_order_service.create_deposit_order(
            "Ben", "Candle", 3, total_amount=36, deposit_amount=15, ordered_at=day(5)
        )
        deposit_order_service.cancel_deposit_order(dropped.id, cancelled_at=day(7))

        loan_service.repay_loan(
            loan.id, principal=300, interest=12, paid_at=day(8), payment_method="BANK"
        )
        cash_ledger_service.add_manual_transaction(
            "cash_out", "operational", 25, description="Stall rent", occurred_at=day(9)
        )
        return {"run": run, "kept": kept, "dropped": dropped}

    def test_stock_after_month(self, month):
        production = production_service.get_production(month["run"].id)
        assert production.total_cost == Decimal("84")
        assert production.output_batch.unit_cost == Decimal("4.2")

        assert batch_service.get_available_quantity("Candle") == Decimal("7")
        assert batch_service.get_available_quantity("Wax") == Decimal("10")
        assert batch_service.get_available_quantity("Wick") == Decimal("30")
        assert batch_service.get_inventory_value() == Decimal("85.4")

    def test_cash_after_month(self, month):
        assert cash_ledger_service.get_cash_balance("CASH") == Decimal("506")
        assert cash_ledger_service.get_cash_balance("BANK") == Decimal("1188")
        assert cash_ledger_service.get_cash_balance() == Decimal("1694")
        assert loan_service.get_total_debt() == Decimal("1700")

    def test_orders_after_month(self, month):
        kept = deposit_order_service.get_deposit_order(month["kept"].id)
        dropped = deposit_order_service.get_deposit_order(month["dropped"].id)

        assert kept.status == OrderStatus.COMPLETED.value
        assert kept.sale.total_cogs == Decimal("21")
        assert dropped.status == OrderStatus.CANCELLED.value
        assert dropped.sale is None

    def test_profit_after_month(self, month):
        summary = cash_ledger_service.get_profit_summary()

        logger.info(f"Month summary: {summary}")
        assert summary["revenue"] == Decimal("156")
        assert summary["cogs"] == Decimal("54.6")
        assert summary["gross_profit"] == Decimal("101.4")
        assert summary["operational_expenses"] == Decimal("37")
        assert summary["forfeited_deposits"] == Decimal("15")
        assert summary["net_profit"] == Decimal("79.4")

    def test_month_survives_snapshot_round_trip(self, month):
        summary = cash_ledger_service.get_profit_summary()
        balance = cash_ledger_service.get_cash_balance()

        snapshot_service.import_snapshot(snapshot_service.export_snapshot())

        assert cash_ledger_service.get_profit_summary() == summary
        assert cash_ledger_service.get_cash_balance() == balance
        assert batch_service.get_available_quantity("Candle") == Decimal("7")

    def test_undoing_the_month(self, month):
        """Deleting everything in reverse order leaves only the purchases and loan."""
        for sale in sale_service.list_sales():
            sale_service.delete_sale(sale.id)
        for order in deposit_order_service.list_deposit_orders():
            deposit_order_service.delete_deposit_order(order.id)
        production_service.delete_production(month["run"].id)

        assert batch_service.get_available_quantity("Wax") == Decimal("20")
        assert batch_service.get_available_quantity("Wick") == Decimal("50")
        assert batch_service.get_available_quantity("Candle") == Decimal("0")
        assert cash_ledger_service.get_profit_summary()["revenue"] == Decimal("0")
