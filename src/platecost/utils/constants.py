"""
Constants for the Plate Cost engine.

This module defines system-wide constants including:
- Application metadata
- Unit kinds, systems and the default unit table
- Recipe component types
- Waste reason codes
- Numeric defaults (neutral yield and waste)
"""

from decimal import Decimal
from typing import Dict, List, Tuple

# ============================================================================
# Application Metadata
# ============================================================================

APP_NAME = "Plate Cost"
APP_VERSION = "0.1.0"
DATABASE_VERSION = "1.0"
DATABASE_FILENAME = "platecost.db"

# ============================================================================
# Units
# ============================================================================

UNIT_KIND_MASS = "mass"
UNIT_KIND_VOLUME = "volume"
UNIT_KIND_COUNT = "count"

UNIT_KINDS: List[str] = [UNIT_KIND_MASS, UNIT_KIND_VOLUME, UNIT_KIND_COUNT]

UNIT_SYSTEM_US = "us"
UNIT_SYSTEM_METRIC = "metric"

UNIT_SYSTEMS: List[str] = [UNIT_SYSTEM_US, UNIT_SYSTEM_METRIC]

# Default unit table: (name, abbreviation, kind, to_base_ratio, system)
# Base units: ounce (mass), fluid ounce (volume), each (count)
DEFAULT_UNITS: List[Tuple[str, str, str, str, str]] = [
    # Mass (base: ounce)
    ("ounce", "oz", UNIT_KIND_MASS, "1", UNIT_SYSTEM_US),
    ("pound", "lb", UNIT_KIND_MASS, "16", UNIT_SYSTEM_US),
    ("gram", "g", UNIT_KIND_MASS, "0.03527396", UNIT_SYSTEM_METRIC),
    ("kilogram", "kg", UNIT_KIND_MASS, "35.27396195", UNIT_SYSTEM_METRIC),
    # Volume (base: fluid ounce)
    ("fluid ounce", "fl oz", UNIT_KIND_VOLUME, "1", UNIT_SYSTEM_US),
    ("teaspoon", "tsp", UNIT_KIND_VOLUME, "0.16666667", UNIT_SYSTEM_US),
    ("tablespoon", "tbsp", UNIT_KIND_VOLUME, "0.5", UNIT_SYSTEM_US),
    ("cup", "cup", UNIT_KIND_VOLUME, "8", UNIT_SYSTEM_US),
    ("pint", "pt", UNIT_KIND_VOLUME, "16", UNIT_SYSTEM_US),
    ("quart", "qt", UNIT_KIND_VOLUME, "32", UNIT_SYSTEM_US),
    ("gallon", "gal", UNIT_KIND_VOLUME, "128", UNIT_SYSTEM_US),
    ("milliliter", "ml", UNIT_KIND_VOLUME, "0.03381402", UNIT_SYSTEM_METRIC),
    ("liter", "l", UNIT_KIND_VOLUME, "33.81402270", UNIT_SYSTEM_METRIC),
    # Count (base: each)
    ("each", "ea", UNIT_KIND_COUNT, "1", UNIT_SYSTEM_US),
    ("dozen", "dz", UNIT_KIND_COUNT, "12", UNIT_SYSTEM_US),
]

# ============================================================================
# Recipes
# ============================================================================

COMPONENT_TYPE_INVENTORY_ITEM = "inventory_item"
COMPONENT_TYPE_RECIPE = "recipe"

COMPONENT_TYPES: List[str] = [COMPONENT_TYPE_INVENTORY_ITEM, COMPONENT_TYPE_RECIPE]

# Neutral values for missing optional percentages
DEFAULT_YIELD_PERCENT = Decimal("100")
DEFAULT_WASTE_PERCENT = Decimal("0")

# ============================================================================
# Ledger
# ============================================================================

WASTE_REASON_CODES: Dict[str, str] = {
    "SPOILED": "Spoiled / expired",
    "DAMAGED": "Damaged in storage or handling",
    "DROPPED": "Dropped",
    "OVERPRODUCTION": "Prepared but not sold",
    "RETURNED": "Returned by guest",
    "OTHER": "Other (see notes)",
}

PRICE_SOURCE_RECEIPT = "receipt"
PRICE_SOURCE_MANUAL = "manual"

# ============================================================================
# Validation Limits
# ============================================================================

MAX_NAME_LENGTH = 200
MAX_NOTES_LENGTH = 2000
