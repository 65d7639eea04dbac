"""
Batch model for FIFO cost layers.

This module contains the Batch model, a chronologically ordered layer of
stock sharing one unit cost, and BatchVariant, a named sub-partition of a
batch's remaining quantity (size, color, ...).

FIFO order among batches of the same product is (received_at, id); the
autoincrement id breaks ties between identical timestamps.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from ..utils.datetime_utils import utc_now


def normalize_product_name(name: Optional[str]) -> Optional[str]:
    """Product names group batches case-insensitively; store them upper-cased."""
    if name is None:
        return None
    return " ".join(name.split()).upper()


class Batch(BaseModel):
    """
    Batch model representing one cost layer of stock.

    Attributes:
        product_name: Grouping key (upper-cased)
        stock_type: StockType value (raw_material or finished_good)
        initial_quantity: Quantity at creation (changed only by explicit edit)
        current_quantity: Quantity remaining (0 <= current <= initial)
        unit_cost: Cost per unit, fixed at creation
        received_at: Defines FIFO order among batches of the same product
        notes: Optional notes
    """

    __tablename__ = "batches"

    product_name = Column(String(200), nullable=False)
    stock_type = Column(String(20), nullable=False)

    initial_quantity = Column(Numeric(12, 3), nullable=False)
    current_quantity = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))

    received_at = Column(DateTime, nullable=False, default=utc_now)
    notes = Column(Text, nullable=True)

    # Relationships
    variants = relationship(
        "BatchVariant",
        back_populates="batch",
        cascade="all, delete-orphan",
        order_by="BatchVariant.id",
    )
    production_usages = relationship("ProductionUsage", back_populates="batch")
    sale_consumptions = relationship("SaleConsumption", back_populates="batch")
    source_production = relationship(
        "Production", back_populates="output_batch", uselist=False
    )

    __table_args__ = (
        Index("idx_batch_product_fifo", "product_name", "stock_type", "received_at"),
        CheckConstraint("initial_quantity >= 0", name="ck_batch_initial_non_negative"),
        CheckConstraint("current_quantity >= 0", name="ck_batch_current_non_negative"),
        CheckConstraint(
            "current_quantity <= initial_quantity", name="ck_batch_current_within_initial"
        ),
        CheckConstraint("unit_cost >= 0", name="ck_batch_unit_cost_non_negative"),
    )

    @validates("product_name")
    def _validate_product_name(self, _key, value):
        return normalize_product_name(value)

    def __repr__(self) -> str:
        """String representation of batch."""
        return (
            f"Batch(id={self.id}, product_name='{self.product_name}', "
            f"current={self.current_quantity}/{self.initial_quantity}, "
            f"unit_cost={self.unit_cost})"
        )

    @property
    def has_variants(self) -> bool:
        return len(self.variants) > 0

    @property
    def consumed_quantity(self) -> Decimal:
        """Quantity taken out of this batch so far."""
        return Decimal(self.initial_quantity) - Decimal(self.current_quantity)

    @property
    def has_been_consumed(self) -> bool:
        return bool(self.production_usages) or bool(self.sale_consumptions)

    def get_variant(self, label: str) -> Optional["BatchVariant"]:
        """Find a variant by label, or None."""
        for variant in self.variants:
            if variant.label == label:
                return variant
        return None

    def variant_total(self) -> Decimal:
        return sum((Decimal(v.quantity) for v in self.variants), Decimal("0"))

    def sync_quantity_from_variants(self) -> None:
        """Keep current_quantity equal to the variant sum."""
        if self.variants:
            self.current_quantity = self.variant_total()

    def available_quantity(self, variant_label: Optional[str] = None) -> Decimal:
        """
        Quantity this batch can contribute to a consumption.

        With a variant label and variants present, only that variant counts;
        otherwise the whole remaining quantity counts.
        """
        if variant_label and self.variants:
            variant = self.get_variant(variant_label)
            return Decimal(variant.quantity) if variant else Decimal("0")
        return Decimal(self.current_quantity)

    def take(
        self, quantity: Decimal, variant_label: Optional[str] = None
    ) -> List[Tuple[Optional[str], Decimal]]:
        """
        Remove quantity from this batch.

        Unlabeled consumption from a batch with variants drains the variants
        in insertion order, so current_quantity stays equal to their sum.

        Args:
            quantity: Amount to remove (must not exceed available_quantity)
            variant_label: Variant to take from, if any

        Returns:
            List of (variant_label, quantity) portions actually removed
        """
        portions: List[Tuple[Optional[str], Decimal]] = []

        if variant_label and self.variants:
            variant = self.get_variant(variant_label)
            variant.quantity = Decimal(variant.quantity) - quantity
            portions.append((variant.label, quantity))
        elif self.variants:
            remaining = quantity
            for variant in self.variants:
                if remaining <= 0:
                    break
                portion = min(Decimal(variant.quantity), remaining)
                if portion <= 0:
                    continue
                variant.quantity = Decimal(variant.quantity) - portion
                portions.append((variant.label, portion))
                remaining -= portion
        else:
            portions.append((None, quantity))

        if self.variants:
            self.sync_quantity_from_variants()
        else:
            self.current_quantity = Decimal(self.current_quantity) - quantity
        return portions

    def put_back(self, quantity: Decimal, variant_label: Optional[str] = None) -> None:
        """
        Return quantity to this batch (exact reversal of take()).

        A variant removed by an edit since the consumption is recreated.
        """
        if self.variants:
            variant = self.get_variant(variant_label) if variant_label else self.variants[0]
            if variant is None:
                variant = BatchVariant(label=variant_label, quantity=Decimal("0"))
                self.variants.append(variant)
            variant.quantity = Decimal(variant.quantity) + quantity
            self.sync_quantity_from_variants()
        else:
            self.current_quantity = Decimal(self.current_quantity) + quantity

    def to_dict(self, include_relationships: bool = False) -> dict:
        """
        Convert batch to dictionary.

        Variants are always included since they partition the quantity.
        """
        result = super().to_dict(include_relationships)
        result["variants"] = [v.to_dict() for v in self.variants]
        return result


class BatchVariant(BaseModel):
    """
    BatchVariant model: a named sub-quantity of a batch.

    Attributes:
        batch_id: Foreign key to parent Batch
        label: Variant label, unique within its batch
        quantity: Remaining quantity of this variant
    """

    __tablename__ = "batch_variants"

    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="CASCADE"), nullable=False)
    label = Column(String(100), nullable=False)
    quantity = Column(Numeric(12, 3), nullable=False, default=Decimal("0.000"))

    batch = relationship("Batch", back_populates="variants")

    __table_args__ = (
        Index("idx_batch_variant_batch", "batch_id"),
        UniqueConstraint("batch_id", "label", name="uq_batch_variant_label"),
        CheckConstraint("quantity >= 0", name="ck_batch_variant_quantity_non_negative"),
    )

    def __repr__(self) -> str:
        return f"BatchVariant(id={self.id}, label='{self.label}', quantity={self.quantity})"
