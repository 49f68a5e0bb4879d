"""
Inventory item models.

This module contains:
- InventoryItem: A purchasable product tracked in inventory
- inventory_item_locations: Association of items to the locations that stock them
- InventoryItemPriceHistory: Append-only record of last-cost changes
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Numeric,
    DateTime,
    ForeignKey,
    Index,
    Table,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from .base import Base, BaseModel
from platecost.utils.constants import DEFAULT_YIELD_PERCENT
from platecost.utils.datetime_utils import utc_now
from platecost.utils.decimal_utils import ZERO, percent_fraction, safe_divide


inventory_item_locations = Table(
    "inventory_item_locations",
    Base.metadata,
    Column(
        "inventory_item_id",
        String(36),
        ForeignKey("inventory_items.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    Column(
        "storage_location_id",
        String(36),
        ForeignKey("storage_locations.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class InventoryItem(BaseModel):
    """
    Inventory item (product) model.

    Attributes:
        name: Item name
        unit_id: Unit the item is counted in; its kind fixes the base unit
        case_size: Base units per purchase case
        last_cost: Cost per base unit from the most recent receipt (moving last cost)
        yield_percent: Usable fraction after trim, in (0, 100]; None/0 means 100
        par_level: Optional target on-hand level (base units)
        reorder_level: Optional reorder trigger (base units)
    """

    __tablename__ = "inventory_items"

    name = Column(String(200), nullable=False, index=True)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    case_size = Column(Numeric(18, 6), nullable=False, default=Decimal("1"))
    last_cost = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    yield_percent = Column(Numeric(7, 3), nullable=True, default=DEFAULT_YIELD_PERCENT)
    par_level = Column(Numeric(18, 6), nullable=True)
    reorder_level = Column(Numeric(18, 6), nullable=True)

    unit = relationship("Unit", lazy="joined")
    storage_locations = relationship(
        "StorageLocation",
        secondary=inventory_item_locations,
        lazy="select",
    )
    price_history = relationship(
        "InventoryItemPriceHistory",
        back_populates="inventory_item",
        cascade="all, delete-orphan",
        order_by="InventoryItemPriceHistory.effective_at",
    )

    __table_args__ = (
        CheckConstraint(
            "yield_percent IS NULL OR (yield_percent >= 0 AND yield_percent <= 100)",
            name="ck_inventory_item_yield_range",
        ),
        CheckConstraint("last_cost >= 0", name="ck_inventory_item_cost_non_negative"),
    )

    def yield_fraction(self, override=None) -> Decimal:
        """
        Usable fraction of the purchased quantity.

        Args:
            override: Optional yield percent that replaces the item's own value

        Returns:
            Fraction in (0, 1]; missing or zero percentages resolve to 1
        """
        percent = override if override is not None else self.yield_percent
        return percent_fraction(percent, DEFAULT_YIELD_PERCENT)

    def effective_cost_per_base_unit(self, yield_override=None) -> Decimal:
        """
        Cost per usable base unit: last_cost / (yield_percent / 100).

        Args:
            yield_override: Optional yield percent from a recipe component

        Returns:
            Yield-inflated cost per base unit
        """
        last_cost = Decimal(self.last_cost) if self.last_cost is not None else ZERO
        return safe_divide(last_cost, self.yield_fraction(yield_override))

    def __repr__(self) -> str:
        """String representation of inventory item."""
        return f"InventoryItem(id='{self.id}', name='{self.name}', last_cost={self.last_cost})"


class InventoryItemPriceHistory(BaseModel):
    """
    Price history row, appended whenever an item's last_cost changes.

    Attributes:
        inventory_item_id: Item whose cost changed
        effective_at: When the new price took effect
        price_per_unit: New cost per base unit
        source: "receipt" or "manual"
        note: Optional free text (e.g., receipt reference)
    """

    __tablename__ = "inventory_item_price_history"

    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="CASCADE"), nullable=False
    )
    effective_at = Column(DateTime, nullable=False, default=utc_now)
    price_per_unit = Column(Numeric(18, 8), nullable=False)
    source = Column(String(20), nullable=False)
    note = Column(String(500), nullable=True)

    inventory_item = relationship("InventoryItem", back_populates="price_history")

    __table_args__ = (
        Index("idx_price_history_item_effective", "inventory_item_id", "effective_at"),
    )
