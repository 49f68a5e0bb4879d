"""Data Transfer Objects for the costing and reconciliation services.

Results that cross the engine boundary are plain dataclasses holding
``Decimal`` quantities in base units and ``Decimal`` money values.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

ZERO = Decimal("0")


@dataclass
class ItemUsage:
    """Consumption of one inventory item produced by exploding a recipe.

    Attributes:
        inventory_item_id: Item consumed
        base_qty: As-used quantity in base units
        purchased_qty: base_qty inflated by the item's yield (quantity drawn from stock)
        cost: Cost of that consumption, including recipe waste multipliers on the path
    """

    inventory_item_id: str
    base_qty: Decimal = ZERO
    purchased_qty: Decimal = ZERO
    cost: Decimal = ZERO

    def add(self, other: "ItemUsage") -> None:
        """Accumulate another usage of the same item."""
        self.base_qty += other.base_qty
        self.purchased_qty += other.purchased_qty
        self.cost += other.cost

    def scaled(self, factor: Decimal) -> "ItemUsage":
        """Return a copy with every quantity and cost multiplied by factor."""
        return ItemUsage(
            inventory_item_id=self.inventory_item_id,
            base_qty=self.base_qty * factor,
            purchased_qty=self.purchased_qty * factor,
            cost=self.cost * factor,
        )


@dataclass
class ComponentImpact:
    """How much of one inventory item a recipe consumes, and what it costs.

    Attributes:
        recipe_id: Recipe scanned
        inventory_item_id: Target item
        uses_item: True if the item appears anywhere in the recipe tree
        base_qty_consumed: Base units of the item per full recipe yield
        cost_contribution: Share of the recipe cost attributable to the item
    """

    recipe_id: str
    inventory_item_id: str
    uses_item: bool = False
    base_qty_consumed: Decimal = ZERO
    cost_contribution: Decimal = ZERO


@dataclass
class CostBreakdownLine:
    """One component's contribution to its recipe's cost (before recipe waste)."""

    component_id: str
    component_type: str
    name: str
    qty: Decimal
    unit_id: str
    base_qty: Decimal
    cost: Decimal


@dataclass
class UsageVariance:
    """Actual vs theoretical usage of one item over a period.

    variance = actual_usage - theoretical_usage; variance_percent is 0
    when theoretical usage is 0.
    """

    inventory_item_id: str
    actual_usage: Decimal
    theoretical_usage: Decimal
    variance: Decimal
    variance_cost: Decimal
    variance_percent: Decimal
    inventory_item_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a dictionary with Decimal values rendered as strings."""
        return {
            key: str(value) if isinstance(value, Decimal) else value
            for key, value in asdict(self).items()
        }


@dataclass
class TheoreticalContribution:
    """Theoretical usage of one item attributable to one menu item."""

    menu_item_id: str
    menu_item_name: str
    qty_sold: Decimal = ZERO
    theoretical_qty: Decimal = ZERO
    cost: Decimal = ZERO


@dataclass
class OnHandActivity:
    """One ledger or sales event counted in an on-hand estimate.

    activity_type is one of "receipt", "waste", "transfer_out",
    "transfer_in" or "usage"; qty is always positive base units.
    """

    activity_type: str
    occurred_at: datetime
    qty: Decimal
    reference_id: str
    location_id: Optional[str] = None
    detail: Optional[str] = None


@dataclass
class OnHandEstimate:
    """Estimated on-hand for one item at one store.

    When no count exists for the item at the store, has_baseline is False
    and estimated_on_hand is None rather than an assumed zero.
    """

    inventory_item_id: str
    store_id: str
    has_baseline: bool
    last_count_id: Optional[str] = None
    last_counted_at: Optional[datetime] = None
    last_count_qty: Decimal = ZERO
    received_qty: Decimal = ZERO
    waste_qty: Decimal = ZERO
    theoretical_usage_qty: Decimal = ZERO
    transferred_out_qty: Decimal = ZERO
    transferred_in_qty: Decimal = ZERO
    estimated_on_hand: Optional[Decimal] = None
    activity: List[OnHandActivity] = field(default_factory=list)
