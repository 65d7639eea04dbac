"""
Enumerations for the ledger models.

This module contains enums used across the ledger models:
- StockType: Raw material vs finished good batches
- ProductionStatus: Lifecycle of a production run
- OrderStatus: Lifecycle of a deposit (pre-)order
- TransactionType: Direction of a cash movement
- TransactionCategory: Classification of a cash movement
- PaymentMethod: Cash drawer vs bank account

Values are stored as plain strings in the database.
"""

from enum import Enum


class StockType(str, Enum):
    """
    Kind of stock held by a batch. A batch is never both.

    Values:
        RAW_MATERIAL: Bought to be consumed by production
        FINISHED_GOOD: Bought or produced to be sold
    """

    RAW_MATERIAL = "raw_material"
    FINISHED_GOOD = "finished_good"


class ProductionStatus(str, Enum):
    """
    Production run lifecycle. IN_PROGRESS -> COMPLETED (terminal).
    """

    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class OrderStatus(str, Enum):
    """
    Deposit order lifecycle. PENDING -> COMPLETED | CANCELLED (both terminal).
    """

    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransactionType(str, Enum):
    """Direction of a cash movement."""

    CASH_IN = "cash_in"
    CASH_OUT = "cash_out"


class TransactionCategory(str, Enum):
    """
    Classification of a cash movement.

    Values:
        STOCK_PURCHASE: Cash out for a purchased batch
        SALES: Cash in for a direct sale
        PRODUCTION_COST: Operational cost of a production run
        OPERATIONAL: General expense (includes loan interest)
        DEPOSIT: Deposit received for a pending order
        DEPOSIT_SETTLED: Deposit of an order that has been fulfilled
        ORDER_BALANCE: Remaining balance paid when an order is fulfilled
        FORFEITED_DEPOSIT: Deposit kept after an order was cancelled
        LOAN_PROCEEDS: Loan amount received
        LOAN_REPAYMENT: Loan principal paid back
        TRANSFER: Movement between cash and bank
    """

    STOCK_PURCHASE = "stock_purchase"
    SALES = "sales"
    PRODUCTION_COST = "production_cost"
    OPERATIONAL = "operational"
    DEPOSIT = "deposit"
    DEPOSIT_SETTLED = "deposit_settled"
    ORDER_BALANCE = "order_balance"
    FORFEITED_DEPOSIT = "forfeited_deposit"
    LOAN_PROCEEDS = "loan_proceeds"
    LOAN_REPAYMENT = "loan_repayment"
    TRANSFER = "transfer"


class PaymentMethod(str, Enum):
    """Where the cash moved."""

    CASH = "CASH"
    BANK = "BANK"
