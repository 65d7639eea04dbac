"""Cash ledger service - transaction log, transfers and reporting.

Every inventory-affecting operation records its cash effect through
record_transaction() inside the caller's session, so the cash movement and
the inventory mutation commit or roll back together. Entries recorded that
way carry the owning entity's uuid in related_id and are system-owned:
update_transaction() and delete_transaction() refuse them and name the
module the user should go through instead.

Manual entries (no related_id) are freely editable.

Reporting:
    - get_cash_balance(): signed sum of all entries, optionally per method
    - get_profit_summary(): revenue, COGS, operational expenses and forfeited
      deposits over a date range
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional
import uuid as uuid_lib

from sqlalchemy.exc import SQLAlchemyError

from ..models import CashTransaction, Sale, TransactionCategory, TransactionType
from ..utils.config import get_config
from ..utils.constants import (
    DESC_TRANSFER_IN,
    DESC_TRANSFER_OUT,
    MAX_DESCRIPTION_LENGTH,
    ZERO,
)
from ..utils.datetime_utils import ensure_utc, utc_now
from ..utils.validators import (
    collect_errors,
    to_decimal,
    validate_payment_method,
    validate_positive_number,
    validate_string_length,
)
from .database import session_scope
from .exceptions import ConflictError, DatabaseError, TransactionNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

# Categories that only exist as part of another entity's lifecycle
LINKED_ONLY_CATEGORIES = {
    TransactionCategory.TRANSFER.value,
    TransactionCategory.DEPOSIT_SETTLED.value,
    TransactionCategory.ORDER_BALANCE.value,
}

# Cash-out categories that are not operational expenses
NON_EXPENSE_CATEGORIES = {
    TransactionCategory.STOCK_PURCHASE.value,
    TransactionCategory.PRODUCTION_COST.value,
    TransactionCategory.LOAN_REPAYMENT.value,
    TransactionCategory.TRANSFER.value,
}

_OWNING_MODULES = {
    TransactionCategory.STOCK_PURCHASE.value: "batches",
    TransactionCategory.SALES.value: "sales",
    TransactionCategory.PRODUCTION_COST.value: "productions",
    TransactionCategory.DEPOSIT.value: "deposit orders",
    TransactionCategory.DEPOSIT_SETTLED.value: "deposit orders",
    TransactionCategory.ORDER_BALANCE.value: "deposit orders",
    TransactionCategory.FORFEITED_DEPOSIT.value: "deposit orders",
    TransactionCategory.LOAN_PROCEEDS.value: "loans",
    TransactionCategory.LOAN_REPAYMENT.value: "loans",
    # Only loan interest is recorded as a linked operational expense
    TransactionCategory.OPERATIONAL.value: "loans",
    TransactionCategory.TRANSFER.value: "transfers",
}


def _enum_value(value):
    return value.value if hasattr(value, "value") else value


def resolve_payment_method(payment_method: Optional[str]) -> str:
    """Return the given payment method, or the configured default."""
    if payment_method is None:
        return get_config().default_payment_method
    return _enum_value(payment_method)


def owning_module(transaction: CashTransaction) -> str:
    """Name of the module that owns a system-owned transaction."""
    return _OWNING_MODULES.get(transaction.category, "the related module")


# ============================================================================
# Internal helpers (always run inside the caller's session)
# ============================================================================


def record_transaction(
    session,
    transaction_type,
    category,
    amount: Decimal,
    description: str,
    payment_method: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    related_id: Optional[str] = None,
) -> CashTransaction:
    """
    Append one entry to the cash ledger within an existing session.

    Args:
        session: Session of the operation producing the cash effect
        transaction_type: TransactionType (or its value)
        category: TransactionCategory (or its value)
        amount: Non-negative amount
        description: Human-readable description
        payment_method: CASH or BANK (defaults from config)
        occurred_at: When the cash moved (defaults to now)
        related_id: uuid of the owning entity

    Returns:
        The new CashTransaction (flushed)
    """
    transaction = CashTransaction(
        type=_enum_value(transaction_type),
        category=_enum_value(category),
        amount=Decimal(amount),
        description=description,
        payment_method=resolve_payment_method(payment_method),
        occurred_at=ensure_utc(occurred_at) or utc_now(),
        related_id=related_id,
    )
    session.add(transaction)
    session.flush()
    return transaction


def find_linked_transactions(
    session, related_id: str, category=None
) -> List[CashTransaction]:
    """Return the transactions owned by an entity, optionally of one category."""
    query = session.query(CashTransaction).filter(CashTransaction.related_id == related_id)
    if category is not None:
        query = query.filter(CashTransaction.category == _enum_value(category))
    return query.order_by(CashTransaction.id).all()


def delete_linked_transactions(session, related_id: str, category=None) -> int:
    """Delete the transactions owned by an entity; return how many were removed."""
    transactions = find_linked_transactions(session, related_id, category)
    for transaction in transactions:
        session.delete(transaction)
    session.flush()
    return len(transactions)


# ============================================================================
# Manual transactions
# ============================================================================


def _validate_manual_fields(
    transaction_type, category, amount, description, payment_method
) -> List[str]:
    errors = collect_errors(
        validate_positive_number(amount, "Amount"),
        validate_string_length(description, MAX_DESCRIPTION_LENGTH, "Description"),
        validate_payment_method(payment_method),
    )
    if transaction_type not in [t.value for t in TransactionType]:
        errors.append(f"Type: Must be one of: {', '.join(t.value for t in TransactionType)}")
    if category not in [c.value for c in TransactionCategory]:
        errors.append(f"Category: Unknown category '{category}'")
    elif category in LINKED_ONLY_CATEGORIES:
        errors.append(f"Category: '{category}' entries are created by their own module")
    return errors


def add_manual_transaction(
    transaction_type,
    category,
    amount,
    description: str = "",
    payment_method: Optional[str] = None,
    occurred_at: Optional[datetime] = None,
    session=None,
) -> CashTransaction:
    """
    Record a manual (user-owned) cash transaction.

    Args:
        transaction_type: TransactionType (cash_in / cash_out)
        category: TransactionCategory, e.g. OPERATIONAL for a utility bill
        amount: Amount (> 0)
        description: Free text
        payment_method: CASH or BANK (defaults from config)
        occurred_at: When the cash moved (defaults to now)
        session: Optional database session

    Returns:
        The created CashTransaction

    Raises:
        ValidationError: If any field is invalid
    """
    transaction_type = _enum_value(transaction_type)
    category = _enum_value(category)
    payment_method = resolve_payment_method(payment_method)
    description = description or ""

    errors = _validate_manual_fields(
        transaction_type, category, amount, description, payment_method
    )
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            transaction = record_transaction(
                session,
                transaction_type,
                category,
                to_decimal(amount),
                description,
                payment_method=payment_method,
                occurred_at=occurred_at,
            )
            log_operation(
                logger,
                operation="add_manual_transaction",
                outcome="success",
                transaction_id=transaction.id,
                category=category,
                amount=str(transaction.amount),
            )
            return transaction
    except SQLAlchemyError as e:
        logger.error(f"Database error adding transaction: {e}")
        raise DatabaseError("Failed to add transaction", original_error=e)


def get_transaction(transaction_id: int, session=None) -> CashTransaction:
    """
    Retrieve a cash transaction by ID.

    Raises:
        TransactionNotFound: If no transaction has this ID
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        transaction = session.get(CashTransaction, transaction_id)
        if transaction is None:
            raise TransactionNotFound(transaction_id)
        return transaction


def _get_manual_transaction(session, transaction_id: int, operation: str) -> CashTransaction:
    transaction = session.get(CashTransaction, transaction_id)
    if transaction is None:
        raise TransactionNotFound(transaction_id)
    if transaction.is_system_owned:
        module = owning_module(transaction)
        log_operation(
            logger,
            operation=operation,
            outcome="system_owned",
            level=logging.WARNING,
            transaction_id=transaction_id,
            owning_module=module,
        )
        raise ConflictError(
            f"Transaction {transaction_id} was created automatically by {module}; "
            f"change it through {module} to keep stock and cash in sync"
        )
    return transaction


def update_transaction(
    transaction_id: int, updates: Dict[str, Any], session=None
) -> CashTransaction:
    """
    Update a manual cash transaction.

    Args:
        transaction_id: ID of the transaction
        updates: Any of type, category, amount, description, payment_method,
                 occurred_at
        session: Optional database session

    Returns:
        The updated CashTransaction

    Raises:
        TransactionNotFound: If the transaction doesn't exist
        ConflictError: If the transaction is system-owned
        ValidationError: If the resulting fields are invalid
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            transaction = _get_manual_transaction(session, transaction_id, "update_transaction")

            transaction_type = _enum_value(updates.get("type", transaction.type))
            category = _enum_value(updates.get("category", transaction.category))
            amount = updates.get("amount", transaction.amount)
            description = updates.get("description", transaction.description) or ""
            payment_method = _enum_value(
                updates.get("payment_method", transaction.payment_method)
            )

            errors = _validate_manual_fields(
                transaction_type, category, amount, description, payment_method
            )
            if errors:
                raise ValidationError(errors)

            transaction.type = transaction_type
            transaction.category = category
            transaction.amount = to_decimal(amount)
            transaction.description = description
            transaction.payment_method = payment_method
            if updates.get("occurred_at") is not None:
                transaction.occurred_at = ensure_utc(updates["occurred_at"])
            session.flush()

            log_operation(
                logger,
                operation="update_transaction",
                outcome="success",
                transaction_id=transaction_id,
            )
            return transaction
    except SQLAlchemyError as e:
        logger.error(f"Database error updating transaction {transaction_id}: {e}")
        raise DatabaseError(f"Failed to update transaction {transaction_id}", original_error=e)


def delete_transaction(transaction_id: int, session=None) -> None:
    """
    Delete a manual cash transaction.

    Raises:
        TransactionNotFound: If the transaction doesn't exist
        ConflictError: If the transaction is system-owned
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            transaction = _get_manual_transaction(session, transaction_id, "delete_transaction")
            session.delete(transaction)
            session.flush()
            log_operation(
                logger,
                operation="delete_transaction",
                outcome="success",
                transaction_id=transaction_id,
            )
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting transaction {transaction_id}: {e}")
        raise DatabaseError(f"Failed to delete transaction {transaction_id}", original_error=e)


def get_transactions(
    category=None,
    payment_method: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    related_id: Optional[str] = None,
    session=None,
) -> List[CashTransaction]:
    """
    List cash transactions, oldest first.

    Args:
        category: Only this TransactionCategory
        payment_method: Only CASH or only BANK
        start: Inclusive lower bound on occurred_at
        end: Exclusive upper bound on occurred_at
        related_id: Only entries owned by this entity uuid
        session: Optional database session
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(CashTransaction)
        if category is not None:
            query = query.filter(CashTransaction.category == _enum_value(category))
        if payment_method is not None:
            query = query.filter(CashTransaction.payment_method == _enum_value(payment_method))
        if start is not None:
            query = query.filter(CashTransaction.occurred_at >= ensure_utc(start))
        if end is not None:
            query = query.filter(CashTransaction.occurred_at < ensure_utc(end))
        if related_id is not None:
            query = query.filter(CashTransaction.related_id == related_id)
        return query.order_by(CashTransaction.occurred_at, CashTransaction.id).all()


# ============================================================================
# Transfers
# ============================================================================


def transfer_funds(
    amount,
    from_method: str,
    to_method: str,
    note: str = "",
    occurred_at: Optional[datetime] = None,
    session=None,
) -> str:
    """
    Move money between the cash drawer and the bank account.

    Records a CASH_OUT on the source method and a CASH_IN on the target
    method, both owned by a shared transfer-group id.

    Args:
        amount: Amount moved (> 0)
        from_method: Source payment method
        to_method: Target payment method (must differ from source)
        note: Optional note appended to both descriptions
        occurred_at: When the transfer happened (defaults to now)
        session: Optional database session

    Returns:
        The transfer-group id (pass to delete_transfer to undo)

    Raises:
        ValidationError: If amount or methods are invalid
    """
    from_method = _enum_value(from_method)
    to_method = _enum_value(to_method)

    errors = collect_errors(
        validate_positive_number(amount, "Amount"),
        validate_payment_method(from_method, "From"),
        validate_payment_method(to_method, "To"),
    )
    if not errors and from_method == to_method:
        errors.append("To: Must differ from the source payment method")
    if errors:
        raise ValidationError(errors)

    amount = to_decimal(amount)
    suffix = f" ({note})" if note else ""
    occurred_at = ensure_utc(occurred_at) or utc_now()
    group_id = str(uuid_lib.uuid4())

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            record_transaction(
                session,
                TransactionType.CASH_OUT,
                TransactionCategory.TRANSFER,
                amount,
                DESC_TRANSFER_OUT.format(source=from_method, target=to_method) + suffix,
                payment_method=from_method,
                occurred_at=occurred_at,
                related_id=group_id,
            )
            record_transaction(
                session,
                TransactionType.CASH_IN,
                TransactionCategory.TRANSFER,
                amount,
                DESC_TRANSFER_IN.format(source=from_method) + suffix,
                payment_method=to_method,
                occurred_at=occurred_at,
                related_id=group_id,
            )
            log_operation(
                logger,
                operation="transfer_funds",
                outcome="success",
                group_id=group_id,
                amount=str(amount),
                from_method=from_method,
                to_method=to_method,
            )
            return group_id
    except SQLAlchemyError as e:
        logger.error(f"Database error transferring funds: {e}")
        raise DatabaseError("Failed to transfer funds", original_error=e)


def delete_transfer(group_id: str, session=None) -> None:
    """
    Delete both legs of a transfer.

    Raises:
        TransactionNotFound: If no transfer has this group id
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        removed = delete_linked_transactions(session, group_id, TransactionCategory.TRANSFER)
        if removed == 0:
            raise TransactionNotFound(group_id)
        log_operation(logger, operation="delete_transfer", outcome="success", group_id=group_id)


# ============================================================================
# Reporting
# ============================================================================


def get_cash_balance(payment_method: Optional[str] = None, session=None) -> Decimal:
    """
    Current cash position: cash in minus cash out.

    Args:
        payment_method: CASH or BANK for one account, None for both
        session: Optional database session
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(CashTransaction)
        if payment_method is not None:
            query = query.filter(CashTransaction.payment_method == _enum_value(payment_method))
        return sum((Decimal(t.signed_amount) for t in query), ZERO)


def get_profit_summary(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    session=None,
) -> Dict[str, Decimal]:
    """
    Profit and loss over a date range.

    Revenue and COGS come from sales; operational expenses are cash-out
    entries that are neither stock purchases, production costs, loan
    principal nor transfers (production cost is already inside COGS through
    the unit cost of produced batches).

    Args:
        start: Inclusive lower bound (None for no bound)
        end: Exclusive upper bound (None for no bound)
        session: Optional database session

    Returns:
        Dict with revenue, cogs, gross_profit, operational_expenses,
        forfeited_deposits and net_profit
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        sales = session.query(Sale)
        transactions = session.query(CashTransaction)
        if start is not None:
            sales = sales.filter(Sale.sold_at >= ensure_utc(start))
            transactions = transactions.filter(CashTransaction.occurred_at >= ensure_utc(start))
        if end is not None:
            sales = sales.filter(Sale.sold_at < ensure_utc(end))
            transactions = transactions.filter(CashTransaction.occurred_at < ensure_utc(end))

        revenue = sum((Decimal(s.total_revenue) for s in sales), ZERO)
        cogs = sum((Decimal(s.total_cogs) for s in sales), ZERO)

        operational = ZERO
        forfeited = ZERO
        for transaction in transactions:
            if transaction.category == TransactionCategory.FORFEITED_DEPOSIT.value:
                forfeited += Decimal(transaction.amount)
            elif (
                transaction.type == TransactionType.CASH_OUT.value
                and transaction.category not in NON_EXPENSE_CATEGORIES
            ):
                operational += Decimal(transaction.amount)

    gross_profit = revenue - cogs
    return {
        "revenue": revenue,
        "cogs": cogs,
        "gross_profit": gross_profit,
        "operational_expenses": operational,
        "forfeited_deposits": forfeited,
        "net_profit": gross_profit - operational + forfeited,
    }
