"""
TransferLog model - immutable record of stock moved between locations.
"""

from sqlalchemy import (
    Column,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
)

from .base import BaseModel
from platecost.utils.datetime_utils import utc_now


class TransferLog(BaseModel):
    """
    Stock movement from one storage location to another.

    Attributes:
        inventory_item_id: Item moved
        from_location_id: Source location (debited)
        to_location_id: Destination location (credited)
        qty: Quantity as entered, in unit_id
        unit_id: Unit of qty
        derived_base_units: qty in base units at record time
        transferred_at: When the transfer happened
        reason: Optional free text
    """

    __tablename__ = "transfer_logs"

    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False
    )
    from_location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False
    )
    to_location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False
    )
    qty = Column(Numeric(18, 6), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    derived_base_units = Column(Numeric(18, 6), nullable=False)
    transferred_at = Column(DateTime, nullable=False, default=utc_now)
    reason = Column(String(500), nullable=True)

    __table_args__ = (
        Index("idx_transfer_from_transferred", "from_location_id", "transferred_at"),
        Index("idx_transfer_to_transferred", "to_location_id", "transferred_at"),
        CheckConstraint("from_location_id <> to_location_id", name="ck_transfer_distinct_locations"),
        CheckConstraint("qty > 0", name="ck_transfer_qty_positive"),
    )
