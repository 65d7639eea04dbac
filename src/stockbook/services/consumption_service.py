"""FIFO consumption service - the cost-layer selector.

This module implements the consumption algorithm shared by production
completion, sales and deposit-order fulfillment:

    1. Select batches of the product and stock type with stock left,
       ordered by (received_at, id), oldest first
    2. Sum what they can contribute (per variant when a label is given)
    3. Refuse the whole request with InsufficientStockError if the sum falls
       short, before any batch is touched
    4. Otherwise draw each batch down in order and record a per-batch
       breakdown (batch, variant, quantity, unit cost)

The breakdown is what callers persist as ProductionUsage / SaleConsumption
rows; restore_consumption() puts those quantities back exactly.
"""

from contextlib import nullcontext
from decimal import Decimal
import logging
from typing import Any, Dict, Iterable, List, Optional

from ..models import Batch, normalize_product_name
from ..utils.constants import ZERO
from ..utils.validators import to_decimal
from .database import session_scope
from .exceptions import InsufficientStockError, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def _stock_type_value(stock_type) -> str:
    return stock_type.value if hasattr(stock_type, "value") else stock_type


def fifo_batches(session, product_name: str, stock_type) -> List[Batch]:
    """
    Batches of a product with stock left, in consumption order.

    The id is the secondary key so batches received at the same instant are
    always consumed in insertion order.
    """
    return (
        session.query(Batch)
        .filter(
            Batch.product_name == normalize_product_name(product_name),
            Batch.stock_type == _stock_type_value(stock_type),
            Batch.current_quantity > 0,
        )
        .order_by(Batch.received_at.asc(), Batch.id.asc())
        .all()
    )


def _available_in(batches: Iterable[Batch], variant_label: Optional[str]) -> Decimal:
    return sum((b.available_quantity(variant_label) for b in batches), ZERO)


def check_availability(
    product_name: str,
    stock_type,
    quantity,
    variant_label: Optional[str] = None,
    session=None,
) -> Dict[str, Any]:
    """
    Report whether a quantity could be consumed, without consuming it.

    Args:
        product_name: Product to check
        stock_type: StockType of the batches to draw from
        quantity: Quantity that would be needed
        variant_label: Variant to check, if any
        session: Optional database session

    Returns:
        Dict with "product_name", "variant_label", "required", "available",
        "shortfall" and "can_consume"
    """
    required = to_decimal(quantity) or ZERO
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        available = _available_in(
            fifo_batches(session, product_name, stock_type), variant_label
        )

    shortfall = max(ZERO, required - available)
    return {
        "product_name": normalize_product_name(product_name),
        "variant_label": variant_label,
        "required": required,
        "available": available,
        "shortfall": shortfall,
        "can_consume": shortfall == ZERO,
    }


def consume_fifo(
    product_name: str,
    stock_type,
    quantity,
    variant_label: Optional[str] = None,
    dry_run: bool = False,
    session=None,
) -> Dict[str, Any]:
    """Consume stock using FIFO (First In, First Out) logic.

    **CRITICAL FUNCTION**: every sale, order fulfillment and production
    completion goes through here.

    Algorithm:
        1. Query batches of the product/stock type with stock left, ordered
           by (received_at, id)
        2. Sum available quantity (the variant's quantity where the batch
           has variants and a label is given, else the batch quantity)
        3. Raise InsufficientStockError if the sum is short, mutating nothing
        4. Take min(available, remaining) from each batch oldest-first,
           accumulating quantity x unit_cost

    Args:
        product_name: Product to consume
        stock_type: StockType of the batches to draw from
        quantity: Amount to consume (> 0)
        variant_label: Variant to consume, if any
        dry_run: If True, compute the breakdown and cost without modifying
                 any batch
        session: Optional database session. If provided, the caller owns the
                 transaction and this function will NOT commit.

    Returns:
        Dict[str, Any]: Consumption result with keys:
            - "consumed" (Decimal): Amount consumed
            - "total_cost" (Decimal): FIFO cost of the consumed amount
            - "breakdown" (List[Dict]): Per-batch entries with batch_id,
              batch_uuid, variant_label, quantity, unit_cost, cost and
              remaining_in_batch

    Raises:
        ValidationError: If quantity is not a positive number
        InsufficientStockError: If matching batches hold less than quantity
    """
    needed = to_decimal(quantity)
    if needed is None or needed <= 0:
        raise ValidationError(["Quantity: Must be greater than zero"])

    def _do_consume(sess):
        batches = fifo_batches(sess, product_name, stock_type)
        available = _available_in(batches, variant_label)

        if available < needed:
            log_operation(
                logger,
                operation="consume_fifo",
                outcome="insufficient_stock",
                level=logging.WARNING,
                product_name=normalize_product_name(product_name),
                variant_label=variant_label,
                required=str(needed),
                available=str(available),
            )
            raise InsufficientStockError(
                normalize_product_name(product_name), needed, available, variant_label
            )

        consumed = ZERO
        total_cost = ZERO
        breakdown = []
        remaining_needed = needed

        for batch in batches:
            if remaining_needed <= 0:
                break

            batch_available = batch.available_quantity(variant_label)
            if batch_available <= 0:
                continue

            to_consume = min(batch_available, remaining_needed)
            unit_cost = Decimal(batch.unit_cost)

            if dry_run:
                portions = [(variant_label if batch.has_variants else None, to_consume)]
                remaining_in_batch = Decimal(batch.current_quantity) - to_consume
            else:
                portions = batch.take(to_consume, variant_label)
                remaining_in_batch = Decimal(batch.current_quantity)

            for label, portion in portions:
                breakdown.append(
                    {
                        "batch_id": batch.id,
                        "batch_uuid": batch.uuid,
                        "variant_label": label,
                        "quantity": portion,
                        "unit_cost": unit_cost,
                        "cost": portion * unit_cost,
                        "remaining_in_batch": remaining_in_batch,
                    }
                )

            total_cost += to_consume * unit_cost
            consumed += to_consume
            remaining_needed -= to_consume

        if not dry_run:
            sess.flush()

        return {
            "consumed": consumed,
            "total_cost": total_cost,
            "breakdown": breakdown,
        }

    cm = nullcontext(session) if session is not None else session_scope()
    with cm as sess:
        return _do_consume(sess)


def restore_consumption(session, entries: Iterable[Any]) -> Decimal:
    """
    Put recorded consumption back into the batches it came from.

    Args:
        session: Session of the reversing operation
        entries: ProductionUsage or SaleConsumption rows (anything with
                 batch, variant_label and quantity_used or quantity)

    Returns:
        Total quantity restored
    """
    restored = ZERO
    for entry in entries:
        quantity = Decimal(
            entry.quantity_used if hasattr(entry, "quantity_used") else entry.quantity
        )
        entry.batch.put_back(quantity, entry.variant_label)
        restored += quantity
    session.flush()
    return restored
