"""
Production models for manufacturing runs.

This module contains:
- Production: a run converting raw-material batches into one finished-good batch
- ProductionIngredient: planned and actual quantity of one input product
- ProductionUsage: consumption ledger entry (which batch, how much, at what cost)

Raw materials are only consumed when the run is completed, so planned
quantities may be zero or approximate at start.
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
    Text,
)
from sqlalchemy.orm import relationship, validates

from .base import BaseModel
from .batch import normalize_product_name
from .enums import ProductionStatus
from ..utils.datetime_utils import utc_now


class Production(BaseModel):
    """
    Production model for a manufacturing run.

    Attributes:
        output_product_name: Finished good being produced (upper-cased)
        target_quantity: Planned output (editable while in progress)
        output_quantity: Actual output, set at completion
        status: ProductionStatus value
        operational_cost: Sum of operational costs paid at start
        material_cost: FIFO cost of raw materials consumed at completion
        total_cost: operational_cost + material_cost
        started_at: When the run was started
        completed_at: When the run was completed
        batch_id_created: Finished-good batch produced at completion (1:1)
    """

    __tablename__ = "productions"

    output_product_name = Column(String(200), nullable=False)
    target_quantity = Column(Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    output_quantity = Column(Numeric(12, 3), nullable=True)
    status = Column(String(20), nullable=False, default=ProductionStatus.IN_PROGRESS.value)

    operational_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    material_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))
    total_cost = Column(Numeric(14, 4), nullable=False, default=Decimal("0.0000"))

    started_at = Column(DateTime, nullable=False, default=utc_now)
    completed_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)

    batch_id_created = Column(
        Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=True, unique=True
    )

    # Relationships
    ingredients = relationship(
        "ProductionIngredient",
        back_populates="production",
        cascade="all, delete-orphan",
        order_by="ProductionIngredient.id",
    )
    usages = relationship(
        "ProductionUsage",
        back_populates="production",
        cascade="all, delete-orphan",
        order_by="ProductionUsage.id",
    )
    output_batch = relationship("Batch", back_populates="source_production")

    __table_args__ = (
        Index("idx_production_status", "status"),
        Index("idx_production_started_at", "started_at"),
        CheckConstraint("target_quantity >= 0", name="ck_production_target_non_negative"),
        CheckConstraint("total_cost >= 0", name="ck_production_total_cost_non_negative"),
    )

    @validates("output_product_name")
    def _validate_output_product_name(self, _key, value):
        return normalize_product_name(value)

    @property
    def is_completed(self) -> bool:
        return self.status == ProductionStatus.COMPLETED.value

    @property
    def unit_cost(self) -> Decimal:
        """Cost per produced unit (0 when nothing was produced)."""
        if not self.output_quantity:
            return Decimal("0.0000")
        return Decimal(self.total_cost) / Decimal(self.output_quantity)

    def __repr__(self) -> str:
        """String representation of production."""
        return (
            f"Production(id={self.id}, output='{self.output_product_name}', "
            f"status={self.status}, total_cost={self.total_cost})"
        )

    def to_dict(self, include_relationships: bool = False) -> dict:
        result = super().to_dict(include_relationships)
        result["ingredients"] = [i.to_dict() for i in self.ingredients]
        result["batch_uuid_created"] = self.output_batch.uuid if self.output_batch else None
        return result


class ProductionIngredient(BaseModel):
    """
    Input product of a production run.

    planned_quantity is recorded at start; actual_quantity is the confirmed
    consumption recorded at completion (None until then).
    """

    __tablename__ = "production_ingredients"

    production_id = Column(
        Integer, ForeignKey("productions.id", ondelete="CASCADE"), nullable=False
    )
    product_name = Column(String(200), nullable=False)
    planned_quantity = Column(Numeric(12, 3), nullable=False, default=Decimal("0.000"))
    actual_quantity = Column(Numeric(12, 3), nullable=True)

    production = relationship("Production", back_populates="ingredients")

    __table_args__ = (
        Index("idx_production_ingredient_production", "production_id"),
        CheckConstraint(
            "planned_quantity >= 0", name="ck_production_ingredient_planned_non_negative"
        ),
    )

    @validates("product_name")
    def _validate_product_name(self, _key, value):
        return normalize_product_name(value)

    def __repr__(self) -> str:
        return (
            f"ProductionIngredient(id={self.id}, product_name='{self.product_name}', "
            f"planned={self.planned_quantity}, actual={self.actual_quantity})"
        )


class ProductionUsage(BaseModel):
    """
    Consumption ledger entry for a production run.

    Records which raw-material batch was drawn down, by how much and at what
    unit cost, so deleting the run can restore every batch exactly.

    Attributes:
        production_id: Foreign key to parent Production
        batch_id: Foreign key to consumed Batch (RESTRICT: consumed batches stay)
        variant_label: Variant drawn from, if the batch had variants
        quantity_used: Amount consumed from the batch
        unit_cost: Batch unit cost at consumption time
    """

    __tablename__ = "production_usages"

    production_id = Column(
        Integer, ForeignKey("productions.id", ondelete="CASCADE"), nullable=False
    )
    batch_id = Column(Integer, ForeignKey("batches.id", ondelete="RESTRICT"), nullable=False)
    variant_label = Column(String(100), nullable=True)
    quantity_used = Column(Numeric(12, 3), nullable=False)
    unit_cost = Column(Numeric(14, 4), nullable=False)

    production = relationship("Production", back_populates="usages")
    batch = relationship("Batch", back_populates="production_usages")

    __table_args__ = (
        Index("idx_production_usage_production", "production_id"),
        Index("idx_production_usage_batch", "batch_id"),
        CheckConstraint("quantity_used > 0", name="ck_production_usage_quantity_positive"),
        CheckConstraint("unit_cost >= 0", name="ck_production_usage_cost_non_negative"),
    )

    @property
    def total_cost(self) -> Decimal:
        return Decimal(self.quantity_used) * Decimal(self.unit_cost)

    def __repr__(self) -> str:
        return (
            f"ProductionUsage(id={self.id}, production_id={self.production_id}, "
            f"batch_id={self.batch_id}, quantity_used={self.quantity_used})"
        )
