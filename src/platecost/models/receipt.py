"""
Receipt models - goods received from vendors.

This module contains:
- Receipt: One delivery received at a store
- ReceiptLine: One item received into one storage location
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
from sqlalchemy.orm import relationship

from .base import BaseModel
from platecost.utils.datetime_utils import utc_now


class Receipt(BaseModel):
    """
    Receipt header.

    Attributes:
        store_id: Receiving store
        received_at: When the goods were received
        reference: Optional vendor invoice / PO reference
    """

    __tablename__ = "receipts"

    store_id = Column(String(36), nullable=False)
    received_at = Column(DateTime, nullable=False, default=utc_now)
    reference = Column(String(100), nullable=True)

    lines = relationship("ReceiptLine", back_populates="receipt", cascade="all, delete-orphan")

    __table_args__ = (Index("idx_receipt_store_received", "store_id", "received_at"),)


class ReceiptLine(BaseModel):
    """
    Received quantity of one item.

    Attributes:
        receipt_id: Parent receipt
        inventory_item_id: Item received
        location_id: Storage location the goods were put away in
        qty: Quantity as entered, in unit_id
        unit_id: Unit of qty
        derived_base_units: qty in base units at record time
        price_each: Price paid for the line; last_cost becomes price_each / derived_base_units
    """

    __tablename__ = "receipt_lines"

    receipt_id = Column(String(36), ForeignKey("receipts.id", ondelete="CASCADE"), nullable=False)
    inventory_item_id = Column(
        String(36), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False
    )
    location_id = Column(
        String(36), ForeignKey("storage_locations.id", ondelete="RESTRICT"), nullable=False
    )
    qty = Column(Numeric(18, 6), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    derived_base_units = Column(Numeric(18, 6), nullable=False)
    price_each = Column(Numeric(18, 4), nullable=False)

    receipt = relationship("Receipt", back_populates="lines")

    __table_args__ = (
        Index("idx_receipt_line_receipt", "receipt_id"),
        Index("idx_receipt_line_item", "inventory_item_id"),
        CheckConstraint("qty > 0", name="ck_receipt_line_qty_positive"),
        CheckConstraint("price_each >= 0", name="ck_receipt_line_price_non_negative"),
    )
