"""
Input validation functions for the Stockbook application.

This module provides validation functions for all service inputs including:
- Numeric validation (positive, non-negative)
- String validation (length, required fields)
- Payment method validation

Each validator returns a ``(is_valid, error_message)`` tuple; services
collect the messages and raise a single ValidationError before mutating
anything.
"""

from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from .constants import (
    ERROR_INVALID_NON_NEGATIVE,
    ERROR_INVALID_NUMBER,
    ERROR_INVALID_PAYMENT_METHOD,
    ERROR_INVALID_POSITIVE,
    ERROR_REQUIRED_FIELD,
    PAYMENT_METHODS,
)


def to_decimal(value: Any) -> Optional[Decimal]:
    """
    Convert a numeric value to Decimal.

    Floats go through str() so 0.1 stays 0.1.

    Returns:
        Decimal value, or None if value is not numeric
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return None
    return result if result.is_finite() else None


def validate_required_string(value: Optional[str], field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a string field is not empty.

    Args:
        value: The string value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value is None or (isinstance(value, str) and value.strip() == ""):
        return False, f"{field_name}: {ERROR_REQUIRED_FIELD}"
    return True, ""


def validate_string_length(
    value: Optional[str], max_length: int, field_name: str = "Field"
) -> Tuple[bool, str]:
    """
    Validate that a string doesn't exceed maximum length.

    Args:
        value: The string value to validate
        max_length: Maximum allowed length
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    if value and len(value) > max_length:
        return False, f"{field_name}: Must be {max_length} characters or less"
    return True, ""


def validate_positive_number(value: Any, field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a value is a positive number (> 0).

    Args:
        value: The value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    num_value = to_decimal(value)
    if num_value is None:
        return False, f"{field_name}: {ERROR_INVALID_NUMBER}"
    if num_value <= 0:
        return False, f"{field_name}: {ERROR_INVALID_POSITIVE}"
    return True, ""


def validate_non_negative_number(value: Any, field_name: str = "Field") -> Tuple[bool, str]:
    """
    Validate that a value is a non-negative number (>= 0).

    Args:
        value: The value to validate
        field_name: Name of the field for error messages

    Returns:
        Tuple of (is_valid, error_message)
    """
    num_value = to_decimal(value)
    if num_value is None:
        return False, f"{field_name}: {ERROR_INVALID_NUMBER}"
    if num_value < 0:
        return False, f"{field_name}: {ERROR_INVALID_NON_NEGATIVE}"
    return True, ""


def validate_payment_method(value: Optional[str], field_name: str = "Payment method") -> Tuple[bool, str]:
    """Validate that a payment method is CASH or BANK."""
    if value not in PAYMENT_METHODS:
        return False, f"{field_name}: {ERROR_INVALID_PAYMENT_METHOD}"
    return True, ""


def collect_errors(*results: Tuple[bool, str]) -> List[str]:
    """Return the error messages of every failed validation result."""
    return [message for is_valid, message in results if not is_valid]
