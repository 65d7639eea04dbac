"""Service layer logging utilities.

Provides structured logging functions for service operations, enabling
consistent log format and context across batch, production, sale and cash
operations.

Usage:
    from stockbook.services.logging_utils import get_service_logger, log_operation

    logger = get_service_logger(__name__)

    log_operation(
        logger,
        operation="complete_production",
        outcome="success",
        production_id=12,
        batch_id=40,
    )
"""

import logging
from typing import Any


def get_service_logger(name: str) -> logging.Logger:
    """
    Get a logger configured for service operations.

    Args:
        name: Logger name (typically __name__ of the calling module)

    Returns:
        Logger instance with the 'stockbook.services' prefix.

    Example:
        >>> logger = get_service_logger("stockbook.services.sale_service")
        >>> logger.name
        'stockbook.services.sale_service'
    """
    if "." in name:
        name = name.split(".")[-1]
    return logging.getLogger(f"stockbook.services.{name}")


def log_operation(
    logger: logging.Logger,
    operation: str,
    outcome: str,
    level: int = logging.INFO,
    **context: Any,
) -> None:
    """
    Log a service operation with structured context.

    The context is passed via the 'extra' parameter for structured logging.

    Args:
        logger: Logger instance to use
        operation: Operation name (e.g., "record_sale", "delete_batch")
        outcome: Outcome description (e.g., "success", "insufficient_stock")
        level: Log level (default: INFO)
        **context: Additional context fields (entity IDs, quantities, error details)

    Example:
        >>> log_operation(
        ...     logger,
        ...     operation="record_sale",
        ...     outcome="insufficient_stock",
        ...     level=logging.WARNING,
        ...     product_name="BREAD",
        ...     required="12",
        ... )
    """
    extra = {
        "operation": operation,
        "outcome": outcome,
        **context,
    }
    logger.log(level, f"{operation}: {outcome}", extra=extra)
