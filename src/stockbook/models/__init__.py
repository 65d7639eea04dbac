"""
Database models package.

This package contains all SQLAlchemy ORM models for the ledger.
"""

from .base import Base, BaseModel
from .enums import (
    StockType,
    ProductionStatus,
    OrderStatus,
    TransactionType,
    TransactionCategory,
    PaymentMethod,
)
from .batch import Batch, BatchVariant, normalize_product_name
from .production import Production, ProductionIngredient, ProductionUsage
from .sale import Sale, SaleConsumption
from .deposit_order import DepositOrder
from .loan import Loan
from .cash_transaction import CashTransaction

__all__ = [
    "Base",
    "BaseModel",
    # Enums
    "StockType",
    "ProductionStatus",
    "OrderStatus",
    "TransactionType",
    "TransactionCategory",
    "PaymentMethod",
    # Batch ledger
    "Batch",
    "BatchVariant",
    "normalize_product_name",
    # Production
    "Production",
    "ProductionIngredient",
    "ProductionUsage",
    # Sales and orders
    "Sale",
    "SaleConsumption",
    "DepositOrder",
    # Cash and loans
    "Loan",
    "CashTransaction",
]
