"""Services package - costing and inventory-reconciliation logic for Plate Cost.

Architecture:
- Services: Stateless functions organized by domain
- Transactions: Managed via session_scope(); every public function also
  accepts an optional session so callers can compose operations atomically
- Exceptions: Consistent error handling via the ServiceError hierarchy
- Concurrency: Ledger writers serialize per (item, location) via key_locks

Service Modules:
- unit_service: Unit registry and base-unit conversion
- costing_service: Recursive recipe cost, component impact, cost cache refresh
- inventory_item_service: Inventory items, last cost and price history
- recipe_service: Recipes and the component graph (cycle-checked on write)
- location_service: Storage locations per store
- menu_service: Menu items and point-of-sale sales
- ledger_service: Counts, receipts, transfers, waste and on-hand
- usage_service: Theoretical usage, actual usage and variance
- on_hand_service: Estimated on-hand since the last count

Infrastructure:
- database: Engine, session factory and session_scope
- exceptions: Service layer exception classes
- logging_utils: Structured operation logging
- key_locks: Per-key lock registry for ledger writers
- dto: Result dataclasses
"""

from . import (
    database,
    unit_service,
    costing_service,
    inventory_item_service,
    recipe_service,
    location_service,
    menu_service,
    ledger_service,
    usage_service,
    on_hand_service,
)

from .exceptions import (
    ServiceError,
    NotFoundError,
    UnitNotFound,
    UnknownUnit,
    InvalidUnit,
    InventoryItemNotFound,
    RecipeNotFound,
    StorageLocationNotFound,
    InventoryCountNotFound,
    ReceiptNotFound,
    CountLineNotFound,
    MenuItemNotFound,
    CyclicRecipeError,
    InsufficientInventory,
    ValidationError,
    DatabaseError,
)

from .costing_service import resolve_recipe_cost, resolve_component_impact, explode_recipe
from .ledger_service import (
    apply_count,
    apply_receipt,
    apply_transfer,
    apply_waste,
    correct_count_line,
    delete_count_session,
)
from .usage_service import theoretical_usage, actual_usage, variance
from .on_hand_service import estimate

__all__ = [
    "database",
    "unit_service",
    "costing_service",
    "inventory_item_service",
    "recipe_service",
    "location_service",
    "menu_service",
    "ledger_service",
    "usage_service",
    "on_hand_service",
    "ServiceError",
    "NotFoundError",
    "UnitNotFound",
    "UnknownUnit",
    "InvalidUnit",
    "InventoryItemNotFound",
    "RecipeNotFound",
    "StorageLocationNotFound",
    "InventoryCountNotFound",
    "ReceiptNotFound",
    "CountLineNotFound",
    "MenuItemNotFound",
    "CyclicRecipeError",
    "InsufficientInventory",
    "ValidationError",
    "DatabaseError",
    "resolve_recipe_cost",
    "resolve_component_impact",
    "explode_recipe",
    "apply_count",
    "apply_receipt",
    "apply_transfer",
    "apply_waste",
    "correct_count_line",
    "delete_count_session",
    "theoretical_usage",
    "actual_usage",
    "variance",
    "estimate",
]
