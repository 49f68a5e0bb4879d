"""
InventoryLevel model - running on-hand total per (item, location).

The level is a derived value, not a source of truth: it can be
reconstructed by replaying count, receipt, transfer and waste events
(see ledger_service.rebuild_on_hand).
"""

from decimal import Decimal

from sqlalchemy import Column, String, Numeric, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from .base import BaseModel


class InventoryLevel(BaseModel):
    """
    On-hand quantity for one inventory item at one storage location.

    Attributes:
        inventory_item_id: Item
        location_id: Storage location
        on_hand_base_units: Current quantity in the item's base unit
    """

    __tablename__ = "inventory_levels"

    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False
    )
    location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="CASCADE"), nullable=False
    )
    on_hand_base_units = Column(Numeric(18, 6), nullable=False, default=Decimal("0"))

    inventory_item = relationship("InventoryItem")
    location = relationship("StorageLocation")

    __table_args__ = (
        UniqueConstraint("inventory_item_id", "location_id", name="uq_inventory_level_key"),
    )

    def __repr__(self) -> str:
        """String representation of inventory level."""
        return (
            f"InventoryLevel(item='{self.inventory_item_id}', "
            f"location='{self.location_id}', on_hand={self.on_hand_base_units})"
        )
