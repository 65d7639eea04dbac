"""
Loan model for borrowed funds.

remaining_amount only goes down, through repayments; a loan with any
repayment applied can no longer be deleted.
"""

from decimal import Decimal

from sqlalchemy import CheckConstraint, Column, DateTime, Numeric, String, Text

from .base import BaseModel
from ..utils.datetime_utils import utc_now


class Loan(BaseModel):
    """
    Loan model.

    Attributes:
        source: Lender (bank, family member, ...)
        initial_amount: Amount borrowed
        remaining_amount: Principal still owed
        borrowed_at: When the funds were received
        note: Optional free text
    """

    __tablename__ = "loans"

    source = Column(String(200), nullable=False)
    initial_amount = Column(Numeric(14, 4), nullable=False)
    remaining_amount = Column(Numeric(14, 4), nullable=False)
    borrowed_at = Column(DateTime, nullable=False, default=utc_now)
    note = Column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint("initial_amount >= 0", name="ck_loan_initial_non_negative"),
        CheckConstraint("remaining_amount >= 0", name="ck_loan_remaining_non_negative"),
    )

    @property
    def has_repayments(self) -> bool:
        return Decimal(self.remaining_amount) < Decimal(self.initial_amount)

    @property
    def repaid_amount(self) -> Decimal:
        return Decimal(self.initial_amount) - Decimal(self.remaining_amount)

    def __repr__(self) -> str:
        return (
            f"Loan(id={self.id}, source='{self.source}', "
            f"remaining={self.remaining_amount}/{self.initial_amount})"
        )
