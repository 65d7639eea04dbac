"""Service layer exception classes for Stockbook.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application. Every error is raised
synchronously by the violating operation, after which the enclosing database
transaction is rolled back, so no partial mutation is ever observed.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError          malformed input, caught before any mutation
    ├── InsufficientStockError   consumption exceeds available stock
    ├── ConflictError            referential / state invariant violated
    ├── BatchNotFound
    ├── ProductionNotFound
    ├── SaleNotFound
    ├── DepositOrderNotFound
    ├── LoanNotFound
    ├── TransactionNotFound
    └── DatabaseError
"""

from decimal import Decimal
from typing import List, Optional


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions inherit from this class.

    Attributes:
        http_status_code: Status code an HTTP front end should map this to
    """

    http_status_code = 500


class ValidationError(ServiceError):
    """Raised when input validation fails.

    Args:
        errors: List of human-readable validation messages

    Example:
        >>> raise ValidationError(["Quantity: Must be greater than zero"])
        ValidationError: Validation failed: Quantity: Must be greater than zero
    """

    http_status_code = 400

    def __init__(self, errors: List[str]):
        if isinstance(errors, str):
            errors = [errors]
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class InsufficientStockError(ServiceError):
    """Raised when a consumption needs more than the batches hold.

    Args:
        product_name: Product being consumed
        required: Quantity requested
        available: Total quantity available across matching batches
        variant_label: Variant requested, if any
    """

    http_status_code = 409

    def __init__(
        self,
        product_name: str,
        required: Decimal,
        available: Decimal,
        variant_label: Optional[str] = None,
    ):
        self.product_name = product_name
        self.required = required
        self.available = available
        self.variant_label = variant_label
        label = f"{product_name} ({variant_label})" if variant_label else product_name
        super().__init__(
            f"Insufficient stock for {label}: required {required}, available {available}"
        )


class ConflictError(ServiceError):
    """Raised when a deletion or edit would break a referential invariant.

    Examples: deleting a batch that has been consumed, deleting a production
    whose output has been sold, deleting a partially repaid loan, editing a
    system-owned cash transaction directly.
    """

    http_status_code = 409

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class _EntityNotFound(ServiceError):
    """Shared base for lookups by id."""

    http_status_code = 404
    entity_name = "Entity"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_name} with ID {entity_id} not found")


class BatchNotFound(_EntityNotFound):
    """Raised when a batch cannot be found by ID."""

    entity_name = "Batch"

    @property
    def batch_id(self):
        return self.entity_id


class ProductionNotFound(_EntityNotFound):
    """Raised when a production run cannot be found by ID."""

    entity_name = "Production"

    @property
    def production_id(self):
        return self.entity_id


class SaleNotFound(_EntityNotFound):
    """Raised when a sale cannot be found by ID."""

    entity_name = "Sale"

    @property
    def sale_id(self):
        return self.entity_id


class DepositOrderNotFound(_EntityNotFound):
    """Raised when a deposit order cannot be found by ID."""

    entity_name = "Deposit order"

    @property
    def order_id(self):
        return self.entity_id


class LoanNotFound(_EntityNotFound):
    """Raised when a loan cannot be found by ID."""

    entity_name = "Loan"

    @property
    def loan_id(self):
        return self.entity_id


class TransactionNotFound(_EntityNotFound):
    """Raised when a cash transaction cannot be found by ID."""

    entity_name = "Transaction"

    @property
    def transaction_id(self):
        return self.entity_id


class DatabaseError(ServiceError):
    """Raised when a database operation fails unexpectedly."""

    http_status_code = 500

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")
