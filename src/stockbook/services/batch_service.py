"""Batch ledger service - stock purchases, edits, deletion and stock queries.

A batch is one FIFO cost layer. Purchased batches own exactly one
STOCK_PURCHASE cash transaction (quantity x unit cost) that is kept in sync
when the batch is edited and removed when it is deleted. Batches produced by
a production run carry no purchase transaction; they change only through
their production.

Variants, once present, are the source of truth for a batch's quantity:
current_quantity is always their sum.
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..models import (
    Batch,
    BatchVariant,
    StockType,
    TransactionCategory,
    TransactionType,
    normalize_product_name,
)
from ..utils.config import get_config
from ..utils.constants import (
    DESC_STOCK_PURCHASE,
    MAX_NAME_LENGTH,
    MAX_VARIANT_LABEL_LENGTH,
    ZERO,
)
from ..utils.datetime_utils import ensure_utc, utc_now
from ..utils.validators import (
    collect_errors,
    to_decimal,
    validate_non_negative_number,
    validate_payment_method,
    validate_positive_number,
    validate_required_string,
    validate_string_length,
)
from . import cash_ledger_service
from .database import session_scope
from .exceptions import BatchNotFound, ConflictError, DatabaseError, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

EDITABLE_FIELDS = {
    "product_name",
    "stock_type",
    "initial_quantity",
    "unit_cost",
    "received_at",
    "notes",
    "variants",
}


def _stock_type_value(stock_type) -> Optional[str]:
    if stock_type is None:
        return None
    return stock_type.value if hasattr(stock_type, "value") else stock_type


def parse_variants(variants) -> Tuple[List[Tuple[str, Decimal]], List[str]]:
    """
    Normalize variant input.

    Accepts a mapping of label -> quantity or a list of dicts with "label"
    and "quantity" keys.

    Returns:
        Tuple of ([(label, quantity), ...], errors)
    """
    if isinstance(variants, dict):
        items = list(variants.items())
    else:
        items = [(v.get("label"), v.get("quantity")) for v in variants]

    parsed = []
    errors = []
    seen = set()
    for label, quantity in items:
        label = label.strip() if isinstance(label, str) else label
        errors.extend(
            collect_errors(
                validate_required_string(label, "Variant label"),
                validate_string_length(label, MAX_VARIANT_LABEL_LENGTH, "Variant label"),
                validate_non_negative_number(quantity, f"Variant '{label}' quantity"),
            )
        )
        if label in seen:
            errors.append(f"Variant label: '{label}' is listed more than once")
        seen.add(label)
        parsed.append((label, to_decimal(quantity)))
    return parsed, errors


def new_batch(
    session,
    product_name: str,
    stock_type,
    quantity: Decimal,
    unit_cost: Decimal,
    received_at: Optional[datetime] = None,
    variants: Optional[List[Tuple[str, Decimal]]] = None,
    notes: Optional[str] = None,
) -> Batch:
    """
    Add a batch to the ledger within an existing session (no cash effect).

    When variants are given, the batch quantity is their sum.
    """
    if variants:
        quantity = sum((q for _label, q in variants), ZERO)

    batch = Batch(
        product_name=product_name,
        stock_type=_stock_type_value(stock_type),
        initial_quantity=quantity,
        current_quantity=quantity,
        unit_cost=unit_cost,
        received_at=ensure_utc(received_at) or utc_now(),
        notes=notes,
    )
    for label, variant_quantity in variants or []:
        batch.variants.append(BatchVariant(label=label, quantity=variant_quantity))
    session.add(batch)
    session.flush()
    return batch


def _purchase_description(batch: Batch) -> str:
    return DESC_STOCK_PURCHASE.format(product=batch.product_name)


def create_batch(
    product_name: str,
    stock_type,
    quantity=None,
    unit_cost=0,
    received_at: Optional[datetime] = None,
    variants=None,
    notes: Optional[str] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> Batch:
    """
    Record a stock purchase as a new batch.

    Emits one CASH_OUT STOCK_PURCHASE transaction of quantity x unit_cost
    linked to the batch.

    Args:
        product_name: Product (grouping key, stored upper-cased)
        stock_type: StockType.RAW_MATERIAL or StockType.FINISHED_GOOD
        quantity: Units purchased (> 0); may be omitted when variants are given
        unit_cost: Cost per unit (>= 0)
        received_at: Purchase time, defines FIFO order (defaults to now)
        variants: Optional label -> quantity mapping or list of
                  {"label", "quantity"} dicts; quantity becomes their sum
        notes: Optional notes
        payment_method: CASH or BANK (defaults from config)
        session: Optional database session

    Returns:
        The created Batch

    Raises:
        ValidationError: If any field is invalid
    """
    stock_type = _stock_type_value(stock_type)
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)

    parsed_variants: List[Tuple[str, Decimal]] = []
    errors = collect_errors(
        validate_required_string(product_name, "Product name"),
        validate_string_length(product_name, MAX_NAME_LENGTH, "Product name"),
        validate_non_negative_number(unit_cost, "Unit cost"),
        validate_payment_method(payment_method),
    )
    if stock_type not in [s.value for s in StockType]:
        errors.append(f"Stock type: Must be one of: {', '.join(s.value for s in StockType)}")

    if variants:
        parsed_variants, variant_errors = parse_variants(variants)
        errors.extend(variant_errors)
        if not variant_errors:
            total = sum((q for _label, q in parsed_variants), ZERO)
            if total <= 0:
                errors.append("Variants: Total quantity must be greater than zero")
            elif quantity is not None and to_decimal(quantity) != total:
                errors.append(f"Quantity: Must equal the variant total ({total})")
            quantity = total
    else:
        errors.extend(collect_errors(validate_positive_number(quantity, "Quantity")))

    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            batch = new_batch(
                session,
                product_name,
                stock_type,
                to_decimal(quantity),
                to_decimal(unit_cost),
                received_at=received_at,
                variants=parsed_variants,
                notes=notes,
            )
            cash_ledger_service.record_transaction(
                session,
                TransactionType.CASH_OUT,
                TransactionCategory.STOCK_PURCHASE,
                Decimal(batch.initial_quantity) * Decimal(batch.unit_cost),
                _purchase_description(batch),
                payment_method=payment_method,
                occurred_at=batch.received_at,
                related_id=batch.uuid,
            )
            log_operation(
                logger,
                operation="create_batch",
                outcome="success",
                batch_id=batch.id,
                product_name=batch.product_name,
                stock_type=batch.stock_type,
                quantity=str(batch.initial_quantity),
                unit_cost=str(batch.unit_cost),
            )
            return batch
    except SQLAlchemyError as e:
        logger.error(f"Database error creating batch: {e}")
        raise DatabaseError("Failed to create batch", original_error=e)


def get_batch(batch_id: int, session=None) -> Batch:
    """
    Retrieve a batch by ID, variants loaded.

    Raises:
        BatchNotFound: If no batch has this ID
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        batch = session.get(Batch, batch_id)
        if batch is None:
            raise BatchNotFound(batch_id)
        batch.variants  # load before the session closes
        return batch


def list_batches(
    stock_type=None,
    product_name: Optional[str] = None,
    include_empty: bool = True,
    session=None,
) -> List[Batch]:
    """
    List batches in FIFO order (product, received_at, id).

    Args:
        stock_type: Only batches of this StockType
        product_name: Only batches of this product (case-insensitive)
        include_empty: If False, skip batches with nothing left
        session: Optional database session
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Batch)
        if stock_type is not None:
            query = query.filter(Batch.stock_type == _stock_type_value(stock_type))
        if product_name is not None:
            query = query.filter(Batch.product_name == normalize_product_name(product_name))
        if not include_empty:
            query = query.filter(Batch.current_quantity > 0)
        batches = query.order_by(Batch.product_name, Batch.received_at, Batch.id).all()
        for batch in batches:
            batch.variants
        return batches


def edit_batch(
    batch_id: int,
    updates: Dict[str, Any],
    payment_method: Optional[str] = None,
    session=None,
) -> Batch:
    """
    Apply a user edit to a batch.

    Quantity edits preserve what has already been consumed: changing
    initial_quantity moves current_quantity by the same amount, and a new
    variant list sets current_quantity to the variant sum and
    initial_quantity to that sum plus the consumed quantity. The linked
    purchase transaction is updated to match (amount, description, date and
    optionally payment method).

    Args:
        batch_id: ID of the batch
        updates: Any of product_name, initial_quantity, unit_cost,
                 received_at, notes, variants
        payment_method: New payment method for the purchase transaction
        session: Optional database session

    Returns:
        The updated Batch

    Raises:
        BatchNotFound: If the batch doesn't exist
        ValidationError: If a field is invalid, the stock type would change,
                         or quantities would drop below what was consumed
    """
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError([f"{field}: Field cannot be edited" for field in sorted(unknown)])

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise BatchNotFound(batch_id)

            errors = []
            if "stock_type" in updates and _stock_type_value(updates["stock_type"]) != batch.stock_type:
                errors.append("Stock type: Cannot change the stock type of a batch")
            if "product_name" in updates:
                errors.extend(
                    collect_errors(
                        validate_required_string(updates["product_name"], "Product name"),
                        validate_string_length(updates["product_name"], MAX_NAME_LENGTH, "Product name"),
                    )
                )
            if "unit_cost" in updates:
                errors.extend(collect_errors(validate_non_negative_number(updates["unit_cost"], "Unit cost")))
            if payment_method is not None:
                errors.extend(collect_errors(validate_payment_method(payment_method)))

            consumed = batch.consumed_quantity
            parsed_variants = None
            if updates.get("variants"):
                parsed_variants, variant_errors = parse_variants(updates["variants"])
                errors.extend(variant_errors)
            elif "initial_quantity" in updates:
                errors.extend(
                    collect_errors(validate_positive_number(updates["initial_quantity"], "Initial quantity"))
                )
                if not errors and to_decimal(updates["initial_quantity"]) < consumed:
                    errors.append(
                        f"Initial quantity: Cannot be less than the {consumed} already consumed"
                    )
                elif (
                    not errors
                    and batch.has_variants
                    and to_decimal(updates["initial_quantity"]) != Decimal(batch.initial_quantity)
                ):
                    errors.append("Initial quantity: Edit the variants of a variant batch instead")

            if errors:
                raise ValidationError(errors)

            if "product_name" in updates:
                batch.product_name = updates["product_name"]
            if "unit_cost" in updates:
                batch.unit_cost = to_decimal(updates["unit_cost"])
            if updates.get("received_at") is not None:
                batch.received_at = ensure_utc(updates["received_at"])
            if "notes" in updates:
                batch.notes = updates["notes"]

            if parsed_variants is not None:
                existing = {v.label: v for v in batch.variants}
                wanted = {label for label, _q in parsed_variants}
                for label, variant in existing.items():
                    if label not in wanted:
                        batch.variants.remove(variant)
                for label, quantity in parsed_variants:
                    if label in existing:
                        existing[label].quantity = quantity
                    else:
                        batch.variants.append(BatchVariant(label=label, quantity=quantity))
                total = sum((q for _label, q in parsed_variants), ZERO)
                batch.initial_quantity = total + consumed
                batch.current_quantity = total
            elif "initial_quantity" in updates:
                new_initial = to_decimal(updates["initial_quantity"])
                delta = new_initial - Decimal(batch.initial_quantity)
                batch.initial_quantity = new_initial
                batch.current_quantity = Decimal(batch.current_quantity) + delta

            for transaction in cash_ledger_service.find_linked_transactions(
                session, batch.uuid, TransactionCategory.STOCK_PURCHASE
            ):
                transaction.amount = Decimal(batch.initial_quantity) * Decimal(batch.unit_cost)
                transaction.description = _purchase_description(batch)
                transaction.occurred_at = batch.received_at
                if payment_method is not None:
                    transaction.payment_method = payment_method

            session.flush()
            log_operation(
                logger,
                operation="edit_batch",
                outcome="success",
                batch_id=batch.id,
                fields=sorted(updates),
            )
            return batch
    except SQLAlchemyError as e:
        logger.error(f"Database error editing batch {batch_id}: {e}")
        raise DatabaseError(f"Failed to edit batch {batch_id}", original_error=e)


def delete_batch(batch_id: int, session=None) -> None:
    """
    Delete a batch and its purchase transaction.

    Raises:
        BatchNotFound: If the batch doesn't exist
        ConflictError: If the batch has ever been consumed, or was produced
                       by a production run (delete the production instead)
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            batch = session.get(Batch, batch_id)
            if batch is None:
                raise BatchNotFound(batch_id)

            if batch.has_been_consumed:
                log_operation(
                    logger,
                    operation="delete_batch",
                    outcome="already_consumed",
                    level=logging.WARNING,
                    batch_id=batch_id,
                )
                raise ConflictError(
                    f"Batch {batch_id} ({batch.product_name}) has already been consumed "
                    f"and cannot be deleted"
                )
            if batch.source_production is not None:
                raise ConflictError(
                    f"Batch {batch_id} was produced by production "
                    f"{batch.source_production.id}; delete the production instead"
                )

            cash_ledger_service.delete_linked_transactions(session, batch.uuid)
            session.delete(batch)
            session.flush()
            log_operation(logger, operation="delete_batch", outcome="success", batch_id=batch_id)
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting batch {batch_id}: {e}")
        raise DatabaseError(f"Failed to delete batch {batch_id}", original_error=e)


# ============================================================================
# Stock queries
# ============================================================================


def get_available_quantity(
    product_name: str,
    stock_type=None,
    variant_label: Optional[str] = None,
    session=None,
) -> Decimal:
    """
    Total quantity of a product (or one of its variants) still in stock.

    Args:
        product_name: Product to total
        stock_type: Only batches of this StockType (None for both)
        variant_label: Only this variant
        session: Optional database session
    """
    batches = list_batches(
        stock_type=stock_type, product_name=product_name, include_empty=False, session=session
    )
    return sum((b.available_quantity(variant_label) for b in batches), ZERO)


def get_inventory_value(stock_type=None, session=None) -> Decimal:
    """Value of stock on hand: sum of current_quantity x unit_cost."""
    batches = list_batches(stock_type=stock_type, include_empty=False, session=session)
    return sum(
        (Decimal(b.current_quantity) * Decimal(b.unit_cost) for b in batches), ZERO
    )


def get_low_stock_batches(
    threshold=None, stock_type=None, session=None
) -> List[Batch]:
    """
    Batches that are running out: 0 < current_quantity < threshold.

    Args:
        threshold: Quantity limit (defaults to the configured low stock threshold)
        stock_type: Only batches of this StockType
        session: Optional database session
    """
    if threshold is None:
        threshold = get_config().low_stock_threshold
    threshold = to_decimal(threshold)
    batches = list_batches(stock_type=stock_type, include_empty=False, session=session)
    return [b for b in batches if Decimal(b.current_quantity) < threshold]
