"""
Menu and point-of-sale models.

This module contains:
- MenuItem: A sellable item, optionally linked to the recipe that produces it
- PosSale: One ticket / sales batch at a store
- PosSalesLine: Quantity sold of one menu item
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Numeric,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from platecost.utils.datetime_utils import utc_now


class MenuItem(BaseModel):
    """
    Sellable menu item.

    Attributes:
        name: Display name
        plu_sku: POS lookup code, unique
        recipe_id: Recipe consumed when the item sells (None for non-recipe items)
        serving_qty: Recipe yields consumed per unit sold (default 1)
        price: Optional menu price
        is_active: Inactive items are hidden but keep sales history
    """

    __tablename__ = "menu_items"

    name = Column(String(200), nullable=False)
    plu_sku = Column(String(100), unique=True, nullable=False, index=True)
    recipe_id = Column(String(36), ForeignKey("recipes.id", ondelete="SET NULL"), nullable=True)
    serving_qty = Column(Numeric(18, 6), nullable=False, default=Decimal("1"))
    price = Column(Numeric(18, 4), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    recipe = relationship("Recipe")


class PosSale(BaseModel):
    """
    Point-of-sale ticket.

    Attributes:
        store_id: Selling store
        occurred_at: When the sale happened
    """

    __tablename__ = "pos_sales"

    store_id = Column(String(36), nullable=False)
    occurred_at = Column(DateTime, nullable=False, default=utc_now)

    lines = relationship("PosSalesLine", back_populates="sale", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_pos_sale_store_occurred", "store_id", "occurred_at"),)


class PosSalesLine(BaseModel):
    """
    Quantity sold of one menu item on a ticket.

    Attributes:
        sale_id: Parent sale
        menu_item_id: Menu item sold
        qty_sold: Units sold
    """

    __tablename__ = "pos_sales_lines"

    sale_id = Column(String(36), ForeignKey("pos_sales.id", ondelete="CASCADE"), nullable=False)
    menu_item_id = Column(
        String(36), ForeignKey("menu_items.id", ondelete="RESTRICT"), nullable=False
    )
    qty_sold = Column(Numeric(18, 4), nullable=False)

    sale = relationship("PosSale", back_populates="lines")
    menu_item = relationship("MenuItem")

    __table_args__ = (Index("idx_pos_sales_line_sale", "sale_id"),)
