"""
WasteLog model - immutable record of stock lost to spoilage, damage, etc.
"""

from sqlalchemy import (
    Column,
    String,
    Numeric,
    DateTime,
    Text,
    ForeignKey,
    Index,
    CheckConstraint,
)

from .base import BaseModel
from platecost.utils.datetime_utils import utc_now


class WasteLog(BaseModel):
    """
    Waste event.

    Attributes:
        inventory_item_id: Item wasted
        location_id: Location it was taken from
        qty: Quantity as entered, in unit_id
        unit_id: Unit of qty
        derived_base_units: qty in base units at record time
        reason_code: One of WASTE_REASON_CODES (SPOILED, DAMAGED, ...)
        total_value: derived_base_units * item last_cost at record time
        notes: Optional free text
        wasted_at: When the waste happened
    """

    __tablename__ = "waste_logs"

    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False
    )
    location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False
    )
    qty = Column(Numeric(18, 6), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    derived_base_units = Column(Numeric(18, 6), nullable=False)
    reason_code = Column(String(30), nullable=False)
    total_value = Column(Numeric(18, 4), nullable=False)
    notes = Column(Text, nullable=True)
    wasted_at = Column(DateTime, nullable=False, default=utc_now)

    __table_args__ = (
        Index("idx_waste_location_wasted", "location_id", "wasted_at"),
        Index("idx_waste_reason", "reason_code"),
        CheckConstraint("qty > 0", name="ck_waste_qty_positive"),
    )
