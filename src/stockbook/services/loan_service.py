"""Loan service - borrowed funds and their repayment.

A loan owns one LOAN_PROCEEDS cash-in entry for the amount borrowed.
Repayments split into principal (LOAN_REPAYMENT, reduces remaining_amount)
and interest (an OPERATIONAL expense). Once any principal has been repaid
the loan can no longer be deleted.
"""

from contextlib import nullcontext
from datetime import datetime
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..models import Loan, TransactionCategory, TransactionType
from ..utils.constants import (
    DESC_LOAN_INTEREST,
    DESC_LOAN_PRINCIPAL,
    DESC_LOAN_PROCEEDS,
    MAX_NAME_LENGTH,
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
from .exceptions import ConflictError, DatabaseError, LoanNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


def _get_loan(session, loan_id: int) -> Loan:
    loan = session.get(Loan, loan_id)
    if loan is None:
        raise LoanNotFound(loan_id)
    return loan


def create_loan(
    source: str,
    initial_amount,
    borrowed_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> Loan:
    """
    Record money borrowed.

    Args:
        source: Lender
        initial_amount: Amount borrowed (> 0)
        borrowed_at: When the funds arrived (defaults to now)
        note: Optional note
        payment_method: CASH or BANK receiving the funds (defaults from config)
        session: Optional database session

    Returns:
        The new Loan (remaining_amount = initial_amount)

    Raises:
        ValidationError: If any field is invalid
    """
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)
    errors = collect_errors(
        validate_required_string(source, "Source"),
        validate_string_length(source, MAX_NAME_LENGTH, "Source"),
        validate_positive_number(initial_amount, "Initial amount"),
        validate_payment_method(payment_method),
    )
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            amount = to_decimal(initial_amount)
            loan = Loan(
                source=source.strip(),
                initial_amount=amount,
                remaining_amount=amount,
                borrowed_at=ensure_utc(borrowed_at) or utc_now(),
                note=note,
            )
            session.add(loan)
            session.flush()

            cash_ledger_service.record_transaction(
                session,
                TransactionType.CASH_IN,
                TransactionCategory.LOAN_PROCEEDS,
                amount,
                DESC_LOAN_PROCEEDS.format(source=loan.source),
                payment_method=payment_method,
                occurred_at=loan.borrowed_at,
                related_id=loan.uuid,
            )
            log_operation(
                logger,
                operation="create_loan",
                outcome="success",
                loan_id=loan.id,
                source=loan.source,
                amount=str(amount),
            )
            return loan
    except SQLAlchemyError as e:
        logger.error(f"Database error creating loan: {e}")
        raise DatabaseError("Failed to create loan", original_error=e)


def update_loan(
    loan_id: int,
    updates: Dict[str, Any],
    payment_method: Optional[str] = None,
    session=None,
) -> Loan:
    """
    Edit a loan.

    Changing initial_amount shifts remaining_amount by the same difference,
    so principal already repaid stays repaid. The LOAN_PROCEEDS entry follows
    the new amount, source and date.

    Args:
        loan_id: ID of the loan
        updates: Any of source, initial_amount, borrowed_at, note
        payment_method: New payment method for the proceeds entry
        session: Optional database session

    Raises:
        LoanNotFound: If the loan doesn't exist
        ValidationError: If a field is invalid or the new amount is below
                         what has already been repaid
    """
    allowed = {"source", "initial_amount", "borrowed_at", "note"}
    unknown = set(updates) - allowed
    if unknown:
        raise ValidationError([f"{field}: Field cannot be edited" for field in sorted(unknown)])

    errors = []
    if "source" in updates:
        errors.extend(
            collect_errors(
                validate_required_string(updates["source"], "Source"),
                validate_string_length(updates["source"], MAX_NAME_LENGTH, "Source"),
            )
        )
    if "initial_amount" in updates:
        errors.extend(collect_errors(validate_positive_number(updates["initial_amount"], "Initial amount")))
    if payment_method is not None:
        payment_method = cash_ledger_service.resolve_payment_method(payment_method)
        errors.extend(collect_errors(validate_payment_method(payment_method)))
    if errors:
        raise ValidationError(errors)

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            loan = _get_loan(session, loan_id)

            if "initial_amount" in updates:
                new_initial = to_decimal(updates["initial_amount"])
                if new_initial < loan.repaid_amount:
                    raise ValidationError(
                        [f"Initial amount: Cannot be less than the {loan.repaid_amount} already repaid"]
                    )
                delta = new_initial - Decimal(loan.initial_amount)
                loan.initial_amount = new_initial
                loan.remaining_amount = Decimal(loan.remaining_amount) + delta
            if "source" in updates:
                loan.source = updates["source"].strip()
            if updates.get("borrowed_at") is not None:
                loan.borrowed_at = ensure_utc(updates["borrowed_at"])
            if "note" in updates:
                loan.note = updates["note"]

            for transaction in cash_ledger_service.find_linked_transactions(
                session, loan.uuid, TransactionCategory.LOAN_PROCEEDS
            ):
                transaction.amount = Decimal(loan.initial_amount)
                transaction.description = DESC_LOAN_PROCEEDS.format(source=loan.source)
                transaction.occurred_at = loan.borrowed_at
                if payment_method is not None:
                    transaction.payment_method = payment_method

            session.flush()
            log_operation(
                logger,
                operation="update_loan",
                outcome="success",
                loan_id=loan_id,
                fields=sorted(updates),
            )
            return loan
    except SQLAlchemyError as e:
        logger.error(f"Database error updating loan {loan_id}: {e}")
        raise DatabaseError(f"Failed to update loan {loan_id}", original_error=e)


def repay_loan(
    loan_id: int,
    principal=0,
    interest=0,
    paid_at: Optional[datetime] = None,
    payment_method: Optional[str] = None,
    session=None,
) -> Loan:
    """
    Record a loan repayment.

    Emits up to two cash-out entries: principal as LOAN_REPAYMENT and
    interest as an OPERATIONAL expense. Only the principal reduces
    remaining_amount.

    Args:
        loan_id: ID of the loan
        principal: Principal paid back (0 <= principal <= remaining)
        interest: Interest paid (>= 0)
        paid_at: Payment time (defaults to now)
        payment_method: CASH or BANK (defaults from config)
        session: Optional database session

    Returns:
        The updated Loan

    Raises:
        LoanNotFound: If the loan doesn't exist
        ValidationError: If amounts are invalid, both are zero, or principal
                         exceeds the remaining amount
    """
    payment_method = cash_ledger_service.resolve_payment_method(payment_method)
    errors = collect_errors(
        validate_non_negative_number(principal, "Principal"),
        validate_non_negative_number(interest, "Interest"),
        validate_payment_method(payment_method),
    )
    if not errors and to_decimal(principal) + to_decimal(interest) <= 0:
        errors.append("Principal: Principal or interest must be greater than zero")
    if errors:
        raise ValidationError(errors)

    principal = to_decimal(principal)
    interest = to_decimal(interest)
    paid_at = ensure_utc(paid_at) or utc_now()

    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            loan = _get_loan(session, loan_id)
            if principal > Decimal(loan.remaining_amount):
                raise ValidationError(
                    [f"Principal: Cannot exceed the remaining amount {loan.remaining_amount}"]
                )

            if principal > 0:
                cash_ledger_service.record_transaction(
                    session,
                    TransactionType.CASH_OUT,
                    TransactionCategory.LOAN_REPAYMENT,
                    principal,
                    DESC_LOAN_PRINCIPAL.format(source=loan.source),
                    payment_method=payment_method,
                    occurred_at=paid_at,
                    related_id=loan.uuid,
                )
            if interest > 0:
                cash_ledger_service.record_transaction(
                    session,
                    TransactionType.CASH_OUT,
                    TransactionCategory.OPERATIONAL,
                    interest,
                    DESC_LOAN_INTEREST.format(source=loan.source),
                    payment_method=payment_method,
                    occurred_at=paid_at,
                    related_id=loan.uuid,
                )

            loan.remaining_amount = Decimal(loan.remaining_amount) - principal
            session.flush()
            log_operation(
                logger,
                operation="repay_loan",
                outcome="success",
                loan_id=loan_id,
                principal=str(principal),
                interest=str(interest),
                remaining=str(loan.remaining_amount),
            )
            return loan
    except SQLAlchemyError as e:
        logger.error(f"Database error repaying loan {loan_id}: {e}")
        raise DatabaseError(f"Failed to repay loan {loan_id}", original_error=e)


def delete_loan(loan_id: int, session=None) -> None:
    """
    Delete a loan that has no repayments, with its proceeds entry.

    Raises:
        LoanNotFound: If the loan doesn't exist
        ConflictError: If any principal has been repaid
    """
    try:
        cm = nullcontext(session) if session is not None else session_scope()
        with cm as session:
            loan = _get_loan(session, loan_id)
            if loan.has_repayments:
                log_operation(
                    logger,
                    operation="delete_loan",
                    outcome="has_repayments",
                    level=logging.WARNING,
                    loan_id=loan_id,
                    repaid=str(loan.repaid_amount),
                )
                raise ConflictError(
                    f"Loan {loan_id} ({loan.source}) has repayments and cannot be deleted"
                )
            cash_ledger_service.delete_linked_transactions(session, loan.uuid)
            session.delete(loan)
            session.flush()
            log_operation(logger, operation="delete_loan", outcome="success", loan_id=loan_id)
    except SQLAlchemyError as e:
        logger.error(f"Database error deleting loan {loan_id}: {e}")
        raise DatabaseError(f"Failed to delete loan {loan_id}", original_error=e)


def get_loan(loan_id: int, session=None) -> Loan:
    """
    Retrieve a loan by ID.

    Raises:
        LoanNotFound: If the loan doesn't exist
    """
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        return _get_loan(session, loan_id)


def list_loans(outstanding_only: bool = False, session=None) -> List[Loan]:
    """List loans, oldest first; optionally only those with principal left."""
    cm = nullcontext(session) if session is not None else session_scope()
    with cm as session:
        query = session.query(Loan)
        if outstanding_only:
            query = query.filter(Loan.remaining_amount > 0)
        return query.order_by(Loan.borrowed_at, Loan.id).all()


def get_total_debt(session=None) -> Decimal:
    """Sum of remaining principal over all loans."""
    loans = list_loans(session=session)
    return sum((Decimal(loan.remaining_amount) for loan in loans), ZERO)
