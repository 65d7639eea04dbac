"""Services package - Business logic layer for Stockbook.

This package contains all service modules that provide business logic
and database operations for the ledger.

Architecture:
- Services: Stateless functions organized by domain (batch, production, sale, ...)
- Transactions: Managed via session_scope() context manager; every public
  mutation commits as a whole or rolls back as a whole
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- batch_service: Stock batches with optional variants
- consumption_service: FIFO consumption and its exact reversal
- production_service: Production runs turning ingredients into finished goods
- sale_service: Sales with FIFO cost of goods sold
- deposit_order_service: Customer pre-orders secured by a deposit
- loan_service: Borrowed funds and repayments
- cash_ledger_service: Cash transactions, transfers, balances and profit
- snapshot_service: JSON export and atomic import of the whole ledger

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured operation logging
"""

from . import (
    database,
    cash_ledger_service,
    consumption_service,
    batch_service,
    production_service,
    sale_service,
    deposit_order_service,
    loan_service,
    snapshot_service,
)

from .database import session_scope, initialize_app_database

from .exceptions import (
    ServiceError,
    ValidationError,
    InsufficientStockError,
    ConflictError,
    BatchNotFound,
    ProductionNotFound,
    SaleNotFound,
    DepositOrderNotFound,
    LoanNotFound,
    TransactionNotFound,
    DatabaseError,
)

__all__ = [
    # Modules
    "database",
    "cash_ledger_service",
    "consumption_service",
    "batch_service",
    "production_service",
    "sale_service",
    "deposit_order_service",
    "loan_service",
    "snapshot_service",
    # Database
    "session_scope",
    "initialize_app_database",
    # Exceptions
    "ServiceError",
    "ValidationError",
    "InsufficientStockError",
    "ConflictError",
    "BatchNotFound",
    "ProductionNotFound",
    "SaleNotFound",
    "DepositOrderNotFound",
    "LoanNotFound",
    "TransactionNotFound",
    "DatabaseError",
]
