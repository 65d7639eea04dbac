"""
Sale models.

This module contains:
- Sale: one realized sale of a finished good
- SaleConsumption: per-batch consumption ledger entry of a sale

Sales keep their per-batch breakdown the same way production runs do, so
editing or deleting a sale restores exactly the batches it drew from.
"""

from decimal import Decimal

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from .batch import normalize_product_name
from ..utils.datetime_utils import utc_now


class Sale(BaseModel):
    """
    Sale model.

    Attributes:
        product_name: Finished good sold (upper-cased)
        variant_label: Variant sold, if any
        quantity: Units sold (> 0)
        sale_price: Price per unit
        total_revenue: quantity * sale_price
        total_cogs: FIFO cost of the consumed batches
        sold_at: When the sale happened
        order_id: Deposit order fulfilled by this sale, if any
    """

    __tablename__ = "sales"

    product_name = Column(String(200), nullable=False)
    variant_label = Column(String(100), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    sale_price = Column(Numeric(14, 4), nullable=False)
    total_revenue = Column(Numeric(14, 4), nullable=False)
    total_cogs = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    sold_at = Column(DateTime, nullable=False, default=utc_now)

    order_id = Column(
        Integer, ForeignKey("deposit_orders.id", ondelete="SET NULL"), nullable=True
    )

    # Relationships
    consumptions = relationship(
        "SaleConsumption",
        back_populates="sale",
        cascade="all, delete-orphan",
        order_by="SaleConsumption.id",
    )
    order = relationship("DepositOrder", back_populates="sale")

    __table_args__ = (
        Index("idx_sale_product", "product_name"),
        Index("idx_sale_sold_at", "sold_at"),
        Index("idx_sale_order", "order_id"),
        CheckConstraint("quantity > 0", name="ck_sale_quantity_positive"),
        CheckConstraint("sale_price >= 0", name="ck_sale_price_non_negative"),
        CheckConstraint("total_cogs >= 0", name="ck_sale_cogs_non_negative"),
    )

    @validates("product_name")
    def _validate_product_name(self, _key, value):
        return normalize_product_name(value)

    @property
    def gross_profit(self) -> Decimal:
        return Decimal(self.total_revenue) - Decimal(self.total_cogs)

    def __repr__(self) -> str:
        return (
            f"Sale(id={self.id}, product_name='{self.product_name}', "
            f"quantity={self.quantity}, total_revenue={self.total_revenue})"
        )


class SaleConsumption(BaseModel):
    """
    Consumption ledger entry for a sale.

    Attributes:
        sale_id: Foreign key to parent Sale
        batch_id: Foreign key to consumed Batch (RESTRICT: consumed batches stay)
        variant_label: Variant drawn from, if the batch had variants
        quantity: Amount taken from the batch
        unit_cost: Batch unit cost at consumption time
    """

    __tablename__ = "sale_consumptions"

    sale_id = Column(Integer, ForeignKey("sales.id", ondelete="CASCADE"), nullable=False)
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    variant_label = Column(String(100), nullable=True)
    quantity = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False)

    sale = relationship("Sale", back_populates="consumptions")
    batch = relationship("Batch", back_populates="sale_consumptions")

    __table_args__ = (
        Index("idx_sale_consumption_sale", "sale_id"),
        Index("idx_sale_consumption_batch", "batch_id"),
        CheckConstraint("quantity > 0", name="ck_sale_consumption_quantity_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"SaleConsumption(id={self.id}, sale_id={self.sale_id}, "
            f"batch_id={self.batch_id}, quantity={self.quantity})"
        )
