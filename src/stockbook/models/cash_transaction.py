"""
CashTransaction model for the cash ledger.

Every inventory-affecting operation emits one or more cash transactions in
the same database transaction as its inventory mutation. Entries with a
related_id are system-owned: they belong to the entity with that uuid (batch,
production, sale, order, loan, transfer group) and change only through it.
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Numeric, String, Text

from .base import BaseModel
from .enums import TransactionType
from ..utils.datetime_utils import utc_now


class CashTransaction(BaseModel):
    """
    CashTransaction model.

    Attributes:
        type: TransactionType value (cash_in / cash_out)
        category: TransactionCategory value
        amount: Non-negative amount; direction comes from type
        description: Human-readable description
        payment_method: CASH or BANK
        occurred_at: When the cash moved
        related_id: uuid of the owning entity, None for manual entries
    """

    __tablename__ = "cash_transactions"

    type = Column(String(20), nullable=False)
    category = Column(String(30), nullable=False)
    amount = Column(Numeric(14, 4), nullable=False)
    description = Column(Text, nullable=False, default="")
    payment_method = Column(String(10), nullable=False, default="CASH")
    occurred_at = Column(DateTime, nullable=False, default=utc_now)
    related_id = Column(String(36), nullable=True)

    __table_args__ = (
        Index("idx_cash_transaction_related", "related_id"),
        Index("idx_cash_transaction_occurred_at", "occurred_at"),
        Index("idx_cash_transaction_category", "category"),
        CheckConstraint("amount >= 0", name="ck_cash_transaction_amount_non_negative"),
    )

    @property
    def is_system_owned(self) -> bool:
        return self.related_id is not None

    @property
    def signed_amount(self):
        """Amount with sign: positive for cash in, negative for cash out."""
        if self.type == TransactionType.CASH_IN.value:
            return self.amount
        return -self.amount

    def __repr__(self) -> str:
        return (
            f"CashTransaction(id={self.id}, type={self.type}, "
            f"category={self.category}, amount={self.amount})"
        )
