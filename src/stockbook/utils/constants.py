"""
Constants and enumerations for the Stockbook application.

This module defines all system-wide constants including:
- Application metadata
- Numeric precision for quantities and money
- Transaction description templates
- Default thresholds
"""

from decimal import Decimal

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Stockbook"
APP_VERSION = "0.1.0"
DATABASE_FILENAME = "stockbook.db"
DATABASE_VERSION = "1.0"

# Snapshot (JSON export) format version
SNAPSHOT_VERSION = "1.0"

# ============================================================================
# Numeric Precision
# ============================================================================

# Quantities are kept at 3 decimal places, money at 4
QUANTITY_SCALE = 3
MONEY_SCALE = 4

ZERO = Decimal("0")

# Batches with less than this remaining are reported as low stock
DEFAULT_LOW_STOCK_THRESHOLD = Decimal("5")

# ============================================================================
# Payment Methods
# ============================================================================

PAYMENT_METHODS = ["CASH", "BANK"]
DEFAULT_PAYMENT_METHOD = "CASH"

# ============================================================================
# Variants
# ============================================================================

MAX_VARIANT_LABEL_LENGTH = 100
MAX_NAME_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 500

# ============================================================================
# Transaction Descriptions
# ============================================================================

DESC_STOCK_PURCHASE = "Stock purchase: {product}"
DESC_PRODUCTION_COST = "Production {product} ({description})"
DESC_SALE = "Sale: {product}"
DESC_SALE_VARIANT = "Sale: {product} ({variant})"
DESC_DEPOSIT = "Deposit order: {customer} ({product})"
DESC_DEPOSIT_SETTLED = "Deposit settled: {customer} ({product})"
DESC_ORDER_BALANCE = "Order balance: {customer} ({product})"
DESC_FORFEITED_DEPOSIT = "Deposit forfeited: {customer} ({product})"
DESC_LOAN_PROCEEDS = "Loan proceeds: {source}"
DESC_LOAN_PRINCIPAL = "Loan principal repayment: {source}"
DESC_LOAN_INTEREST = "Loan interest: {source}"
DESC_TRANSFER_OUT = "Transfer: {source} -> {target}"
DESC_TRANSFER_IN = "Transfer received from {source}"

# ============================================================================
# Error Messages
# ============================================================================

ERROR_REQUIRED_FIELD = "This field is required"
ERROR_INVALID_NUMBER = "Must be a valid number"
ERROR_INVALID_POSITIVE = "Must be greater than zero"
ERROR_INVALID_NON_NEGATIVE = "Cannot be negative"
ERROR_INVALID_PAYMENT_METHOD = f"Must be one of: {', '.join(PAYMENT_METHODS)}"
