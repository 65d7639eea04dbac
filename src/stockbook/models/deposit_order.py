"""
DepositOrder model for pre-orders paid partially upfront.

An order is PENDING until it is either fulfilled from stock (COMPLETED,
linked to the Sale it produced) or cancelled (CANCELLED, deposit forfeited).
No stock is reserved while an order is pending.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from .batch import normalize_product_name
from .enums import OrderStatus
from ..utils.datetime_utils import utc_now


class DepositOrder(BaseModel):
    """
    DepositOrder model.

    Attributes:
        customer_name: Who placed the order
        product_name: Finished good ordered (upper-cased)
        variant_label: Variant ordered, if any
        quantity: Units ordered
        total_amount: Full price of the order
        deposit_amount: Amount paid upfront
        status: OrderStatus value
        ordered_at: When the order was placed
        closed_at: When the order was completed or cancelled
    """

    __tablename__ = "deposit_orders"

    customer_name = Column(String(200), nullable=False)
    product_name = Column(String(200), nullable=False)
    variant_label = Column(String(100), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    total_amount = Column(Numeric(14, 4), nullable=False)
    deposit_amount = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    status = Column(String(20), nullable=False, default=OrderStatus.PENDING.value)
    ordered_at = Column(DateTime, nullable=False, default=utc_now)
    closed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    sale = relationship("Sale", back_populates="order", uselist=False)

    __table_args__ = (
        Index("idx_deposit_order_status", "status"),
        CheckConstraint("quantity > 0", name="ck_deposit_order_quantity_positive"),
        CheckConstraint("total_amount >= 0", name="ck_deposit_order_total_non_negative"),
        CheckConstraint("deposit_amount >= 0", name="ck_deposit_order_deposit_non_negative"),
    )

    @validates("product_name")
    def _validate_product_name(self, _key, value):
        return normalize_product_name(value)

    @property
    def balance_due(self) -> Decimal:
        """Amount still owed when the order is fulfilled."""
        return Decimal(self.total_amount) - Decimal(self.deposit_amount)

    @property
    def is_pending(self) -> bool:
        return self.status == OrderStatus.PENDING.value

    def __repr__(self) -> str:
        return (
            f"DepositOrder(id={self.id}, customer='{self.customer_name}', "
            f"product_name='{self.product_name}', status={self.status})"
        )
