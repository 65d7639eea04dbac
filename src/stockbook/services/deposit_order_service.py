"""Deposit order service - pre-orders paid partially upfront.

Order lifecycle: PENDING -> COMPLETED | CANCELLED. Both end states are
terminal, and any transition out of a non-PENDING order raises
ConflictError. No stock is reserved while an order is pending.

Cash entries owned by an order (related_id = order uuid):
    DEPOSIT            deposit received, while pending
    DEPOSIT_SETTLED    the same entry, once the order is fulfilled
    ORDER_BALANCE      total - deposit, paid at fulfillment
    FORFEITED_DEPOSIT  the deposit entry, once the order is cancelled

Deleting the fulfilling sale (sale_service.delete_sale) returns a COMPLETED
order to PENDING.
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import DepositOrder, OrderStatus, TransactionCategory, TransactionType
from ..utils.constants import (
    DESC_DEPOSIT,
    DESC_DEPOSIT_SETTLED,
    DESC_FORFEITED_DEPOSIT,
    DESC_ORDER_BALANCE,
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
from . import cash_ledger_service, sale_service
from .database import session_scope
from .exceptions import (
    ConflictError,
    DatabaseError,
    DepositOrderNotFound,
    InsufficientStockError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

EDITABLE_FIELDS = {
    "customer_name",
    "product_name",
    "variant_label",
    "quantity",
    "total_amount",
    "deposit_amount",
    "ordered_at",
    "notes",
}


def _validate_order_fields(
    customer_name, product_name, variant_label, quantity, total_amount, deposit_amount
) -> List[str]:
    errors = collect_errors(
        validate_required_string(customer_name, "Customer name"),
        validate_string_length(customer_name, MAX_NAME_LENGTH, "Customer name"),
        validate_required_string(product_name, "Product name"),
        validate_string_length(product_name, MAX_NAME_LENGTH, "Product name"),
        validate_string_length(variant_label, MAX_VARIANT_LABEL_LENGTH, "Variant label"),
        validate_positive_number(quantity, "Quantity"),
        validate_non_negative_number(total_amount, "Total amount"),
        validate_non_negative_number(deposit_amount, "Deposit amount"),
    )
    if not errors and to_decimal(deposit_amount) > to_decimal(total_amount):
        errors.append("Deposit amount: Cannot exceed the total amount")
    return errors


def _get_order(session, order_id: int) -> DepositOrder:
    order = session.get(DepositOrder, order_id)
    if order is None:
        raise DepositOrderNotFound(order_id)
    return order


def _require_pending(order: DepositOrder, operation: str) -> None:
    if not order.is_pending:
        log_operation(
            logger,
            operation=operation,
            outcome="not_pending",
            level=logging.WARNING,
            order_id=order.id,
            status=order.status,
        )
        raise ConflictError(f"Deposit order {order.id} is {order.status}, not pending")


def _describe(template: str, order: DepositOrder) -> str:
    return template.format(customer=order.customer_name, product=order.product_name)


def create_deposit_order(
    customer_name: str,
    product_name: str,
    quantity,
    total_amount,
    deposit_amount,
    variant_label: Optional[str] = None,
    ordered_at: Optional[datetime] = None,
    notes: Optional[str] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> DepositOrder:
    """
    Take a pre-order and record its deposit.

    Args:
        customer_name: Who ordered
        product_name: Finished good ordered
        quantity: Units ordered (> 0)
        total_amount: Full price of the order (>= 0)
        deposit_amount: Paid now (0 <= deposit <= total)
        variant_label: Variant ordered, if any
        ordered_at: Order time (defaults to now)
        notes: Optional notes
        payment_method: CASH or BANK for the deposit (defaults from config)
        session: Optional database session

    Returns:
        The PENDING DepositOrder

    Raises:
        ValidationError: If any field is invalid
    """
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)
    errors = _validate_order_fields(
        customer_name, product_name, variant_label, quantity, total_amount, deposit_amount
    )
    errors.extend(collect_errors(validate_payment_method(payment_method)))
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = DepositOrder(
                customer_name=customer_name.strip(),
                product_name=product_name,
                variant_label=variant_label or None,
                quantity=to_decimal(quantity),
                total_amount=to_decimal(total_amount),
                deposit_amount=to_decimal(deposit_amount),
                status=OrderStatus.PENDING.value,
                ordered_at=ensure_utc(ordered_at) or utc_now(),
                notes=notes,
            )
            session.add(order)
            session.flush()

            cash_ledger_service.record_transaction(
                session,
                TransactionType.CASH_IN,
                TransactionCategory.DEPOSIT,
                Decimal(order.deposit_amount),
                _describe(DESC_DEPOSIT, order),
                payment_method=payment_method,
                occurred_at=order.ordered_at,
                related_id=order.uuid,
            )
            log_operation(
                logger,
                operation="create_deposit_order",
                outcome="success",
                order_id=order.id,
                customer_name=order.customer_name,
                product_name=order.product_name,
                total_amount=str(order.total_amount),
                deposit_amount=str(order.deposit_amount),
            )
            return order
    except SQLAlchemyError as e:
        logger.error(f"Database error creating deposit order: {e}")
        raise DatabaseError("Failed to create deposit order", original_error=e)


def update_deposit_order(
    order_id: int,
    updates: Dict[str, Any],
    payment_method: Optional[str] = None,
    session=None,
) -> DepositOrder:
    """
    Edit a pending order; its DEPOSIT entry follows the new values.

    Raises:
        DepositOrderNotFound: If the order doesn't exist
        ConflictError: If the order is not pending
        ValidationError: If a field is invalid
    """
    unknown = set(updates) - EDITABLE_FIELDS
    if unknown:
        raise ValidationError([f"{field}: Field cannot be edited" for field in sorted(unknown)])
    if payment_method is not None:
        payment_method = cash_ledger_service.resolve_payment_method(payment_method)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, order_id)
            _require_pending(order, "update_deposit_order")

            values = {field: updates.get(field, getattr(order, field)) for field in EDITABLE_FIELDS}
            errors = _validate_order_fields(
                values["customer_name"],
                values["product_name"],
                values["variant_label"],
                values["quantity"],
                values["total_amount"],
                values["deposit_amount"],
            )
            if payment_method is not None:
                errors.extend(collect_errors(validate_payment_method(payment_method)))
            if errors:
                raise ValidationError(errors)

            order.customer_name = values["customer_name"].strip()
            order.product_name = values["product_name"]
            order.variant_label = values["variant_label"] or None
            order.quantity = to_decimal(values["quantity"])
            order.total_amount = to_decimal(values["total_amount"])
            order.deposit_amount = to_decimal(values["deposit_amount"])
            order.notes = values["notes"]
            if updates.get("ordered_at") is not None:
                order.ordered_at = ensure_utc(updates["ordered_at"])

            for transaction in cash_ledger_service.find_linked_transactions(
                session, order.uuid, TransactionCategory.DEPOSIT
            ):
                transaction.amount = Decimal(order.deposit_amount)
                transaction.description = _describe(DESC_DEPOSIT, order)
                transaction.occurred_at = order.ordered_at
                if payment_method is not None:
                    transaction.payment_method = payment_method

            session.flush()
            log_operation(
                logger,
                operation="update_deposit_order",
                outcome="success",
                order_id=order_id,
                fields=sorted(updates),
            )
            return order
    except SQLAlchemyError as e:
        logger.error(f"Database error updating deposit order {order_id}: {e}")
        raise DatabaseError(f"Failed to update deposit order {order_id}", original_error=e)


def complete_deposit_order(
    order_id: int,
    completed_at: Optional[datetime] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> DepositOrder:
    """
    Fulfill a pending order from stock.

    Consumes the ordered quantity FIFO exactly like a direct sale and links
    the resulting Sale (revenue = total_amount) to the order. The deposit
    entry becomes DEPOSIT_SETTLED and the remaining balance is recorded as
    ORDER_BALANCE.

    Args:
        order_id: ID of the order
        completed_at: Fulfillment time (defaults to now)
        payment_method: CASH or BANK for the balance (defaults from config)
        session: Optional database session

    Returns:
        The COMPLETED DepositOrder (its sale loaded)

    Raises:
        DepositOrderNotFound: If the order doesn't exist
        ConflictError: If the order is not pending
        InsufficientStockError: If stock is short; the order stays PENDING
    """
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)
    errors = collect_errors(validate_payment_method(payment_method))
    if errors:
        raise ValidationError(errors)
    completed_at = ensure_utc(completed_at) or utc_now()

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, order_id)
            _require_pending(order, "complete_deposit_order")

            quantity = Decimal(order.quantity)
            total_amount = Decimal(order.total_amount)
            try:
                sale = sale_service.create_sale(
                    session,
                    order.product_name,
                    quantity,
                    total_amount / quantity,
                    variant_label=order.variant_label,
                    sold_at=completed_at,
                    total_revenue=total_amount,
                    order=order,
                )
            except InsufficientStockError:
                log_operation(
                    logger,
                    operation="complete_deposit_order",
                    outcome="insufficient_stock",
                    level=logging.WARNING,
                    order_id=order_id,
                    product_name=order.product_name,
                )
                raise

            for transaction in cash_ledger_service.find_linked_transactions(
                session, order.uuid, TransactionCategory.DEPOSIT
            ):
                transaction.category = TransactionCategory.DEPOSIT_SETTLED.value
                transaction.description = _describe(DESC_DEPOSIT_SETTLED, order)

            cash_ledger_service.record_transaction(
                session,
                TransactionType.CASH_IN,
                TransactionCategory.ORDER_BALANCE,
                order.balance_due,
                _describe(DESC_ORDER_BALANCE, order),
                payment_method=payment_method,
                occurred_at=completed_at,
                related_id=order.uuid,
            )

            order.status = OrderStatus.COMPLETED.value
            order.closed_at = completed_at
            session.flush()

            log_operation(
                logger,
                operation="complete_deposit_order",
                outcome="success",
                order_id=order_id,
                sale_id=sale.id,
                balance=str(order.balance_due),
                total_cogs=str(sale.total_cogs),
            )
            return order
    except SQLAlchemyError as e:
        logger.error(f"Database error completing deposit order {order_id}: {e}")
        raise DatabaseError(f"Failed to complete deposit order {order_id}", original_error=e)


def cancel_deposit_order(
    order_id: int, cancelled_at: Optional[datetime] = None, session=None
) -> DepositOrder:
    """
    Cancel a pending order; the deposit is kept as forfeited income.

    Inventory is never touched.

    Raises:
        DepositOrderNotFound: If the order doesn't exist
        ConflictError: If the order is not pending
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, order_id)
            _require_pending(order, "cancel_deposit_order")

            for transaction in cash_ledger_service.find_linked_transactions(
                session, order.uuid, TransactionCategory.DEPOSIT
            ):
                transaction.category = TransactionCategory.FORFEITED_DEPOSIT.value
                transaction.description = _describe(DESC_FORFEITED_DEPOSIT, order)

            order.status = OrderStatus.CANCELLED.value
            order.closed_at = ensure_utc(cancelled_at) or utc_now()
            session.flush()

            log_operation(
                logger,
                operation="cancel_deposit_order",
                outcome="success",
                order_id=order_id,
                forfeited=str(order.deposit_amount),
            )
            return order
    except SQLAlchemyError as e:
        logger.error(f"Database error cancelling deposit order {order_id}: {e}")
        raise DatabaseError(f"Failed to cancel deposit order {order_id}", original_error=e)


def delete_deposit_order(order_id: int, session=None) -> None:
    """
    Delete a pending or cancelled order and its cash entries.

    Raises:
        DepositOrderNotFound: If the order doesn't exist
        ConflictError: If the order is completed (delete its sale first)
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            order = _get_order(session, order_id)
            if order.status == OrderStatus.COMPLETED.value:
                raise ConflictError(
                    f"Deposit order {order_id} is completed; delete its sale first so "
                    f"stock and revenue are restored"
                )
            cash_ledger_service.delete_linked_transactions(session, order.uuid)
            session.delete(order)
            session.flush()
            log_operation(
                logger, operation="delete_deposit_order", outcome="success", order_id=order_id
            )
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting deposit order {order_id}: {e}")
        raise DatabaseError(f"Failed to delete deposit order {order_id}", original_error=e)


def get_deposit_order(order_id: int, session=None) -> DepositOrder:
    """
    Retrieve a deposit order by ID.

    Raises:
        DepositOrderNotFound: If the order doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        order = _get_order(session, order_id)
        order.sale
        return order


def list_deposit_orders(status=None, session=None) -> List[DepositOrder]:
    """List deposit orders, oldest first, optionally filtered by OrderStatus."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(DepositOrder)
        if status is not None:
            query = query.filter(
                DepositOrder.status == (status.value if hasattr(status, "value") else status)
            )
        return query.order_by(DepositOrder.ordered_at, DepositOrder.id).all()
