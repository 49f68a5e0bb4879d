"""
Physical inventory count models.

This module contains:
- InventoryCount: A count session for one store at one moment (reconciliation checkpoint)
- InventoryCountLine: One counted quantity of one item at one location

A count line *sets* on-hand for its (item, location) key. The unit cost in
effect when the line was recorded is snapshotted so historical valuations
never move when item costs change later.
"""

from sqlalchemy import (
    Column,
    String,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    Index,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from platecost.utils.datetime_utils import utc_now


class InventoryCount(BaseModel):
    """
    Count session.

    Attributes:
        store_id: Store being counted
        counted_at: When the count was taken
        note: Optional free text
    """

    __tablename__ = "inventory_counts"

    store_id = Column(String(36), nullable=False)
    counted_at = Column(DateTime, nullable=False, default=utc_now)
    note = Column(Text, nullable=True)

    lines = relationship(
        "InventoryCountLine",
        back_populates="count",
        cascade="all, delete-orphan",
    )

    __table_args__ = (Index("idx_inventory_count_store_counted", "store_id", "counted_at"),)


class InventoryCountLine(BaseModel):
    """
    Counted quantity for one item at one location within a count session.

    Attributes:
        count_id: Parent count session
        inventory_item_id: Item counted
        location_id: Storage location counted
        qty: Quantity as entered, in unit_id
        unit_id: Unit the quantity was entered in
        derived_base_units: qty converted to base units at record time
        unit_cost_snapshot: Item last_cost (per base unit) at record time
    """

    __tablename__ = "inventory_count_lines"

    count_id = Column(
        String(36), ForeignKey("inventory_counts.id", ondelete="CASCADE"), nullable=False
    )
    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False
    )
    location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False
    )
    qty = Column(Numeric(18, 6), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    derived_base_units = Column(Numeric(18, 6), nullable=False)
    unit_cost_snapshot = Column(Numeric(18, 8), nullable=False)

    count = relationship("InventoryCount", back_populates="lines")

    __table_args__ = (
        UniqueConstraint(
            "count_id", "inventory_item_id", "location_id", name="uq_count_line_item_location"
        ),
        Index("idx_count_line_count", "count_id"),
        Index("idx_count_line_item_location", "inventory_item_id", "location_id"),
        CheckConstraint("qty >= 0", name="ck_count_line_qty_non_negative"),
    )
