"""Service layer exception classes for Plate Cost.

Exception Hierarchy:
    ServiceError (base)
    ├── NotFoundError (recoverable: caller retries with a valid ID)
    │   ├── UnitNotFound (aliases: UnknownUnit, InvalidUnit)
    │   ├── InventoryItemNotFound
    │   ├── RecipeNotFound
    │   ├── StorageLocationNotFound
    │   ├── InventoryCountNotFound
    │   ├── CountLineNotFound
    │   └── MenuItemNotFound
    ├── CyclicRecipeError (fatal: recipe graph is corrupt)
    ├── InsufficientInventory (business rule: surface to the user, do not retry blindly)
    ├── ValidationError
    └── DatabaseError
"""

from decimal import Decimal
from typing import List, Sequence


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions inherit from this class.
    """

    pass


class NotFoundError(ServiceError):
    """Base class for lookups of an ID that does not resolve."""

    entity = "Record"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} with ID {entity_id} not found")


class UnitNotFound(NotFoundError):
    """Raised when a unit ID does not resolve.

    Example:
        >>> raise UnitNotFound("b7c1...")
        UnitNotFound: Unit with ID b7c1... not found
    """

    entity = "Unit"

    @property
    def unit_id(self) -> str:
        return self.entity_id


# Conversion-time names for the same failure
UnknownUnit = UnitNotFound
InvalidUnit = UnitNotFound


class InventoryItemNotFound(NotFoundError):
    """Raised when an inventory item cannot be found by ID."""

    entity = "Inventory item"

    @property
    def inventory_item_id(self) -> str:
        return self.entity_id


class RecipeNotFound(NotFoundError):
    """Raised when a recipe cannot be found by ID."""

    entity = "Recipe"

    @property
    def recipe_id(self) -> str:
        return self.entity_id


class StorageLocationNotFound(NotFoundError):
    """Raised when a storage location cannot be found by ID."""

    entity = "Storage location"


class InventoryCountNotFound(NotFoundError):
    """Raised when a count session cannot be found by ID."""

    entity = "Inventory count"


class ReceiptNotFound(NotFoundError):
    """Raised when a receipt cannot be found by ID."""

    entity = "Receipt"


class CountLineNotFound(NotFoundError):
    """Raised when a count line cannot be found by ID."""

    entity = "Count line"


class MenuItemNotFound(NotFoundError):
    """Raised when a menu item cannot be found by ID."""

    entity = "Menu item"


class CyclicRecipeError(ServiceError):
    """Raised when a recipe (transitively) contains itself.

    Args:
        path: Recipe IDs from the outermost recipe to the repeated one

    Example:
        >>> raise CyclicRecipeError(["r1", "r2", "r1"])
        CyclicRecipeError: Recipe cycle detected: r1 -> r2 -> r1
    """

    def __init__(self, path: Sequence[str]):
        self.path = list(path)
        super().__init__(f"Recipe cycle detected: {' -> '.join(self.path)}")


class InsufficientInventory(ServiceError):
    """Raised when a transfer or waste exceeds the on-hand quantity.

    Args:
        inventory_item_id: Item being moved or wasted
        location_id: Location being debited
        required: Base units requested
        available: Base units on hand
    """

    def __init__(
        self, inventory_item_id: str, location_id: str, required: Decimal, available: Decimal
    ):
        self.inventory_item_id = inventory_item_id
        self.location_id = location_id
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient inventory for item {inventory_item_id} at location {location_id}: "
            f"required {required}, available {available}"
        )


class ValidationError(ServiceError):
    """Raised when input validation fails.

    Args:
        errors: List of human-readable validation messages
    """

    def __init__(self, errors: List[str]):
        self.errors = errors
        error_msg = "; ".join(errors)
        super().__init__(f"Validation failed: {error_msg}")


class DatabaseError(ServiceError):
    """Raised when a database operation fails."""

    def __init__(self, message: str, original_error: Exception = None):
        self.original_error = original_error
        super().__init__(f"Database error: {message}")
