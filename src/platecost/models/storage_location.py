"""
StorageLocation model.

A store owns one or more storage locations (walk-in, dry storage, bar).
Ledger on-hand is tracked per (inventory item, storage location); store-level
figures aggregate every location that belongs to the store.
"""

from sqlalchemy import Column, String, Boolean, Index, UniqueConstraint

from .base import BaseModel


class StorageLocation(BaseModel):
    """
    Storage location within a store.

    Attributes:
        name: Location name (e.g., "Walk-in Cooler")
        store_id: Opaque ID of the owning store
        is_active: Inactive locations are hidden from pickers but keep history
    """

    __tablename__ = "storage_locations"

    name = Column(String(100), nullable=False)
    store_id = Column(String(36), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("idx_storage_location_store", "store_id"),
        UniqueConstraint("store_id", "name", name="uq_storage_location_store_name"),
    )
