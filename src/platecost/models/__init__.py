"""
Record-store models for Plate Cost.

This package contains all SQLAlchemy ORM models.
"""

from .base import Base, BaseModel
from .unit import Unit
from .storage_location import StorageLocation
from .inventory_item import InventoryItem, InventoryItemPriceHistory, inventory_item_locations
from .recipe import Recipe, RecipeComponent, RecipeCostSnapshot
from .inventory_level import InventoryLevel
from .inventory_count import InventoryCount, InventoryCountLine
from .receipt import Receipt, ReceiptLine
from .transfer_log import TransferLog
from .waste_log import WasteLog
from .menu_item import MenuItem, PosSale, PosSalesLine

__all__ = [
    "Base",
    "BaseModel",
    "Unit",
    "StorageLocation",
    "InventoryItem",
    "InventoryItemPriceHistory",
    "inventory_item_locations",
    "Recipe",
    "RecipeComponent",
    "RecipeCostSnapshot",
    "InventoryLevel",
    "InventoryCount",
    "InventoryCountLine",
    "Receipt",
    "ReceiptLine",
    "TransferLog",
    "WasteLog",
    "MenuItem",
    "PosSale",
    "PosSalesLine",
]
