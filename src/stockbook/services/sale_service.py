"""Sale service - realized sales of finished goods.

A sale consumes finished-good batches FIFO and keeps one SaleConsumption
row per batch (and variant) it drew from, the same way production runs keep
ProductionUsage rows. Editing or deleting a sale puts exactly those
quantities back before anything else happens, so COGS attribution never
drifts.

Direct sales own one SALES cash-in transaction. Sales created by fulfilling
a deposit order have no SALES transaction of their own: their cash is the
order's settled deposit plus its ORDER_BALANCE entry.
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import (
    OrderStatus,
    Sale,
    SaleConsumption,
    StockType,
    TransactionCategory,
    TransactionType,
    normalize_product_name,
)
from ..utils.constants import (
    DESC_DEPOSIT,
    DESC_ORDER_BALANCE,
    DESC_SALE,
    DESC_SALE_VARIANT,
    MAX_NAME_LENGTH,
    MAX_VARIANT_LABEL_LENGTH,
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
from . import cash_ledger_service, consumption_service
from .database import session_scope
from .exceptions import DatabaseError, InsufficientStockError, SaleNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def sale_description(product_name: str, variant_label: Optional[str] = None) -> str:
    if variant_label:
        return DESC_SALE_VARIANT.format(product=product_name, variant=variant_label)
    return DESC_SALE.format(product=product_name)


def _validate_sale_fields(product_name, quantity, sale_price, variant_label) -> List[str]:
    return collect_errors(
        validate_required_string(product_name, "Product name"),
        validate_string_length(product_name, MAX_NAME_LENGTH, "Product name"),
        validate_string_length(variant_label, MAX_VARIANT_LABEL_LENGTH, "Variant label"),
        validate_positive_number(quantity, "Quantity"),
        validate_non_negative_number(sale_price, "Sale price"),
    )


def _consume_for_sale(session, sale: Sale) -> None:
    """Consume stock for the sale's current product/variant/quantity."""
    result = consumption_service.consume_fifo(
        sale.product_name,
        StockType.FINISHED_GOOD,
        Decimal(sale.quantity),
        variant_label=sale.variant_label,
        session=session,
    )
    for entry in result["breakdown"]:
        sale.consumptions.append(
            SaleConsumption(
                batch_id=entry["batch_id"],
                variant_label=entry["variant_label"],
                quantity=entry["quantity"],
                unit_cost=entry["unit_cost"],
            )
        )
    sale.total_cogs = result["total_cost"]


def _reverse_consumption(session, sale: Sale) -> Decimal:
    """Restore the sale's recorded consumption and drop the rows."""
    restored = consumption_service.restore_consumption(session, sale.consumptions)
    sale.consumptions.clear()
    session.flush()
    return restored


def create_sale(
    session,
    product_name: str,
    quantity: Decimal,
    sale_price: Decimal,
    variant_label: Optional[str] = None,
    sold_at: Optional[datetime] = None,
    total_revenue: Optional[Decimal] = None,
    order=None,
) -> Sale:
    """
    Consume stock and add a Sale within an existing session (no cash effect).

    Raises:
        InsufficientStockError: If the stock is short (nothing consumed)
    """
    sale = Sale(
        product_name=product_name,
        variant_label=variant_label or None,
        quantity=quantity,
        sale_price=sale_price,
        total_revenue=total_revenue if total_revenue is not None else quantity * sale_price,
        sold_at=ensure_utc(sold_at) or utc_now(),
    )
    _consume_for_sale(session, sale)
    sale.order = order
    session.add(sale)
    session.flush()
    return sale


def record_sale(
    product_name: str,
    quantity,
    sale_price,
    variant_label: Optional[str] = None,
    sold_at: Optional[datetime] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> Sale:
    """
    Record a direct sale of a finished good.

    Args:
        product_name: Product sold
        quantity: Units sold (> 0)
        sale_price: Price per unit (>= 0)
        variant_label: Variant sold, if any
        sold_at: Sale time (defaults to now)
        payment_method: CASH or BANK (defaults from config)
        session: Optional database session

    Returns:
        The created Sale, with total_revenue = quantity x sale_price and
        total_cogs from FIFO consumption

    Raises:
        ValidationError: If any field is invalid
        InsufficientStockError: If stock is short (nothing is persisted)
    """
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)
    errors = _validate_sale_fields(product_name, quantity, sale_price, variant_label)
    errors.extend(collect_errors(validate_payment_method(payment_method)))
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            sale = create_sale(
                session,
                product_name,
                to_decimal(quantity),
                to_decimal(sale_price),
                variant_label=variant_label,
                sold_at=sold_at,
            )
            cash_ledger_service.record_transaction(
                session,
                TransactionType.CASH_IN,
                TransactionCategory.SALES,
                Decimal(sale.total_revenue),
                sale_description(sale.product_name, sale.variant_label),
                payment_method=payment_method,
                occurred_at=sale.sold_at,
                related_id=sale.uuid,
            )
            log_operation(
                logger,
                operation="record_sale",
                outcome="success",
                sale_id=sale.id,
                product_name=sale.product_name,
                variant_label=sale.variant_label,
                quantity=str(sale.quantity),
                total_revenue=str(sale.total_revenue),
                total_cogs=str(sale.total_cogs),
            )
            return sale
    except SQLAlchemyError as e:
        logger.error(f"Database error recording sale: {e}")
        raise DatabaseError("Failed to record sale", original_error=e)


def edit_sale(
    sale_id: int,
    updates: Dict[str, Any],
    payment_method: Optional[str] = None,
    session=None,
) -> Sale:
    """
    Edit a sale, re-running its stock consumption.

    Steps:
        1. Restore exactly what the sale consumed (per recorded batch/variant)
        2. Consume FIFO again for the new product/variant/quantity
        3. Recompute revenue and COGS and update the linked cash entries

    If step 2 finds too little stock, InsufficientStockError propagates and
    the enclosing transaction rolls back to the pre-edit state. Callers
    passing their own session must roll it back on error.

    For a sale that fulfilled a deposit order, the order's total follows the
    new revenue and its ORDER_BALANCE entry becomes revenue - deposit.

    Args:
        sale_id: ID of the sale
        updates: Any of product_name, variant_label, quantity, sale_price, sold_at
        payment_method: New payment method for the sale's cash entry
        session: Optional database session

    Returns:
        The updated Sale

    Raises:
        SaleNotFound: If the sale doesn't exist
        ValidationError: If a field is invalid
        InsufficientStockError: If the new quantity cannot be covered
    """
    allowed = {"product_name", "variant_label", "quantity", "sale_price", "sold_at"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError([f"{field}: Field cannot be edited" for field in sorted(unknown)])
    if payment_method is not None:
        payment_method = cash_ledger_service.resolve_payment_method(payment_method)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            sale = session.get(Sale, sale_id)
            if sale is None:
                raise SaleNotFound(sale_id)

            product_name = updates.get("product_name", sale.product_name)
            variant_label = updates.get("variant_label", sale.variant_label) or None
            quantity = updates.get("quantity", sale.quantity)
            sale_price = updates.get("sale_price", sale.sale_price)

            errors = _validate_sale_fields(product_name, quantity, sale_price, variant_label)
            if payment_method is not None:
                errors.extend(collect_errors(validate_payment_method(payment_method)))
            order = sale.order
            new_revenue = None
            if not errors:
                if "quantity" in updates or "sale_price" in updates:
                    new_revenue = to_decimal(quantity) * to_decimal(sale_price)
                else:
                    # Order sales store a rounded unit price; keep the exact total.
                    new_revenue = Decimal(sale.total_revenue)
                if order is not None and new_revenue < Decimal(order.deposit_amount):
                    errors.append(
                        f"Sale price: Revenue {new_revenue} is below the order deposit "
                        f"{order.deposit_amount}"
                    )
            if errors:
                raise ValidationError(errors)

            restored = _reverse_consumption(session, sale)

            sale.product_name = product_name
            sale.variant_label = variant_label
            sale.quantity = to_decimal(quantity)
            sale.sale_price = to_decimal(sale_price)
            sale.total_revenue = new_revenue
            if updates.get("sold_at") is not None:
                sale.sold_at = ensure_utc(updates["sold_at"])

            try:
                _consume_for_sale(session, sale)
            except InsufficientStockError:
                log_operation(
                    logger,
                    operation="edit_sale",
                    outcome="insufficient_stock",
                    level=logging.WARNING,
                    sale_id=sale_id,
                    restored_quantity=str(restored),
                )
                raise

            for transaction in cash_ledger_service.find_linked_transactions(
                session, sale.uuid, TransactionCategory.SALES
            ):
                transaction.amount = new_revenue
                transaction.description = sale_description(sale.product_name, sale.variant_label)
                transaction.occurred_at = sale.sold_at
                if payment_method is not None:
                    transaction.payment_method = payment_method

            if order is not None:
                order.total_amount = new_revenue
                order.product_name = sale.product_name
                order.variant_label = sale.variant_label
                order.quantity = sale.quantity
                for transaction in cash_ledger_service.find_linked_transactions(
                    session, order.uuid, TransactionCategory.ORDER_BALANCE
                ):
                    transaction.amount = new_revenue - Decimal(order.deposit_amount)
                    transaction.description = DESC_ORDER_BALANCE.format(
                        customer=order.customer_name, product=sale.product_name
                    )

            session.flush()
            log_operation(
                logger,
                operation="edit_sale",
                outcome="success",
                sale_id=sale_id,
                quantity=str(sale.quantity),
                total_revenue=str(sale.total_revenue),
                total_cogs=str(sale.total_cogs),
            )
            return sale
    except SQLAlchemyError as e:
        logger.error(f"Database error editing sale {sale_id}: {e}")
        raise DatabaseError(f"Failed to edit sale {sale_id}", original_error=e)


def delete_sale(sale_id: int, session=None) -> None:
    """
    Delete a sale and put its stock back.

    If the sale fulfilled a deposit order, the order returns to PENDING: its
    ORDER_BALANCE entry is removed and its settled deposit becomes a plain
    DEPOSIT again.

    Raises:
        SaleNotFound: If the sale doesn't exist
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            sale = session.get(Sale, sale_id)
            if sale is None:
                raise SaleNotFound(sale_id)

            restored = _reverse_consumption(session, sale)
            cash_ledger_service.delete_linked_transactions(session, sale.uuid)

            order = sale.order
            if order is not None:
                order.status = OrderStatus.PENDING.value
                order.closed_at = None
                cash_ledger_service.delete_linked_transactions(
                    session, order.uuid, TransactionCategory.ORDER_BALANCE
                )
                for transaction in cash_ledger_service.find_linked_transactions(
                    session, order.uuid, TransactionCategory.DEPOSIT_SETTLED
                ):
                    transaction.category = TransactionCategory.DEPOSIT.value
                    transaction.description = DESC_DEPOSIT.format(
                        customer=order.customer_name, product=order.product_name
                    )
                sale.order = None

            session.delete(sale)
            session.flush()
            log_operation(
                logger,
                operation="delete_sale",
                outcome="success",
                sale_id=sale_id,
                order_id=order.id if order is not None else None,
                restored_quantity=str(restored),
            )
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting sale {sale_id}: {e}")
        raise DatabaseError(f"Failed to delete sale {sale_id}", original_error=e)


def get_sale(sale_id: int, session=None) -> Sale:
    """
    Retrieve a sale by ID with its consumption breakdown loaded.

    Raises:
        SaleNotFound: If the sale doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sale = session.get(Sale, sale_id)
        if sale is None:
            raise SaleNotFound(sale_id)
        sale.consumptions
        return sale


def list_sales(
    product_name: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session=None,
) -> List[Sale]:
    """List sales, newest first, optionally by product and date range [start, end)."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Sale)
        if product_name is not None:
            query = query.filter(Sale.product_name == normalize_product_name(product_name))
        if start is not None:
            query = query.filter(Sale.sold_at >= ensure_utc(start))
        if end is not None:
            query = query.filter(Sale.sold_at < ensure_utc(end))
        return query.order_by(Sale.sold_at.desc(), Sale.id.desc()).all()
