"""Tests for cash_ledger_service: manual entries, ownership guards, transfers, reports."""

from decimal import Decimal

import pytest

from stockbook.models import StockType, TransactionCategory, TransactionType
from stockbook.services import (
    batch_service,
    cash_ledger_service,
    deposit_order_service,
    sale_service,
)
from stockbook.services.exceptions import (
    ConflictError,
    TransactionNotFound,
    ValidationError,
)


@pytest.fixture
def rent(test_db, day):
    return cash_ledger_service.add_manual_transaction(
        TransactionType.CASH_OUT,
        TransactionCategory.OPERATIONAL,
        50,
        description="Stall rent",
        occurred_at=day(1),
    )


class TestManualTransactions:
    def test_add_and_get(self, rent):
        loaded = cash_ledger_service.get_transaction(rent.id)

        assert loaded.type == "cash_out"
        assert loaded.category == "operational"
        assert loaded.amount == Decimal("50")
        assert loaded.payment_method == "CASH"
        assert loaded.related_id is None
        assert cash_ledger_service.get_cash_balance() == Decimal("-50")

    def test_update(self, rent):
        cash_ledger_service.update_transaction(
            rent.id, {"amount": 70, "payment_method": "BANK", "description": "Rent (March)"}
        )

        loaded = cash_ledger_service.get_transaction(rent.id)
        assert loaded.amount == Decimal("70")
        assert cash_ledger_service.get_cash_balance("BANK") == Decimal("-70")
        assert cash_ledger_service.get_cash_balance("CASH") == Decimal("0")

    def test_update_validates(self, rent):
        with pytest.raises(ValidationError, match="Amount"):
            cash_ledger_service.update_transaction(rent.id, {"amount": 0})
        assert cash_ledger_service.get_transaction(rent.id).amount == Decimal("50")

    def test_delete(self, rent):
        cash_ledger_service.delete_transaction(rent.id)
        with pytest.raises(TransactionNotFound):
            cash_ledger_service.get_transaction(rent.id)

    def test_delete_missing(self, test_db):
        with pytest.raises(TransactionNotFound):
            cash_ledger_service.delete_transaction(42)

    @pytest.mark.parametrize("category", ["transfer", "deposit_settled", "order_balance"])
    def test_linked_only_categories_rejected(self, test_db, category):
        with pytest.raises(ValidationError, match="created by their own module"):
            cash_ledger_service.add_manual_transaction("cash_in", category, 10)

    @pytest.mark.parametrize(
        "kwargs, message",
        [
            ({"transaction_type": "refund"}, "Type"),
            ({"category": "misc"}, "Category"),
            ({"amount": -3}, "Amount"),
            ({"payment_method": "CARD"}, "Payment method"),
        ],
    )
    def test_invalid_fields(self, test_db, kwargs, message):
        values = {"transaction_type": "cash_in", "category": "operational", "amount": 10}
        values.update(kwargs)
        with pytest.raises(ValidationError, match=message):
            cash_ledger_service.add_manual_transaction(**values)
        assert cash_ledger_service.get_transactions() == []


class TestSystemOwnedTransactions:
    @pytest.fixture
    def purchase(self, test_db):
        batch = batch_service.create_batch("Flour", StockType.RAW_MATERIAL, quantity=5, unit_cost=2)
        return cash_ledger_service.get_transactions(related_id=batch.uuid)[0]

    def test_update_rejected_naming_module(self, purchase):
        with pytest.raises(ConflictError, match="batches"):
            cash_ledger_service.update_transaction(purchase.id, {"amount": 1})
        assert cash_ledger_service.get_transaction(purchase.id).amount == Decimal("10")

    def test_delete_rejected(self, purchase):
        with pytest.raises(ConflictError, match="created automatically"):
            cash_ledger_service.delete_transaction(purchase.id)


class TestTransfers:
    def test_transfer_moves_between_methods(self, test_db, day):
        cash_ledger_service.add_manual_transaction(
            "cash_in", "operational", 500, occurred_at=day(0)
        )

        group_id = cash_ledger_service.transfer_funds(200, "CASH", "BANK", note="weekly")

        assert cash_ledger_service.get_cash_balance("CASH") == Decimal("300")
        assert cash_ledger_service.get_cash_balance("BANK") == Decimal("200")
        assert cash_ledger_service.get_cash_balance() == Decimal("500")
        legs = cash_ledger_service.get_transactions(related_id=group_id)
        assert sorted(t.type for t in legs) == ["cash_in", "cash_out"]
        assert all("weekly" in t.description for t in legs)

    def test_transfer_legs_cannot_be_edited(self, test_db):
        group_id = cash_ledger_service.transfer_funds(10, "BANK", "CASH")
        leg = cash_ledger_service.get_transactions(related_id=group_id)[0]
        with pytest.raises(ConflictError, match="transfers"):
            cash_ledger_service.delete_transaction(leg.id)

    def test_delete_transfer(self, test_db):
        group_id = cash_ledger_service.transfer_funds(10, "BANK", "CASH")

        cash_ledger_service.delete_transfer(group_id)

        assert cash_ledger_service.get_transactions() == []
        with pytest.raises(TransactionNotFound):
            cash_ledger_service.delete_transfer(group_id)

    def test_same_method_rejected(self, test_db):
        with pytest.raises(ValidationError, match="Must differ"):
            cash_ledger_service.transfer_funds(10, "CASH", "CASH")

    def test_transfers_are_not_expenses(self, test_db):
        cash_ledger_service.transfer_funds(10, "CASH", "BANK")
        assert cash_ledger_service.get_profit_summary()["operational_expenses"] == Decimal("0")


class TestProfitSummary:
    @pytest.fixture
    def trading(self, test_db, day):
        batch_service.create_batch(
            "Candle", StockType.FINISHED_GOOD, quantity=10, unit_cost=100, received_at=day(0)
        )
        sale_service.record_sale("Candle", 4, 200, sold_at=day(1))
        cash_ledger_service.add_manual_transaction(
            "cash_out", "operational", 50, description="Rent", occurred_at=day(2)
        )
        order = deposit_order_service.create_deposit_order(
            "Ana", "Candle", 1, 250, 100, ordered_at=day(3)
        )
        deposit_order_service.cancel_deposit_order(order.id)

    def test_summary(self, trading):
        summary = cash_ledger_service.get_profit_summary()

        assert summary == {
            "revenue": Decimal("800"),
            "cogs": Decimal("400"),
            "gross_profit": Decimal("400"),
            "operational_expenses": Decimal("50"),
            "forfeited_deposits": Decimal("100"),
            "net_profit": Decimal("450"),
        }

    def test_stock_purchases_are_not_expenses(self, trading):
        assert cash_ledger_service.get_cash_balance() == Decimal("-1000") + Decimal("800") - Decimal(
            "50"
        ) + Decimal("100")

    def test_date_range(self, trading, day):
        summary = cash_ledger_service.get_profit_summary(start=day(2), end=day(3))

        assert summary["revenue"] == Decimal("0")
        assert summary["operational_expenses"] == Decimal("50")
        assert summary["net_profit"] == Decimal("-50")

    def test_transaction_filters(self, trading, day):
        assert len(cash_ledger_service.get_transactions(category="sales")) == 1
        assert len(cash_ledger_service.get_transactions(start=day(1), end=day(3))) == 2
        assert len(cash_ledger_service.get_transactions(payment_method="BANK")) == 0
