"""
Costing Service - recursive recipe cost resolution.

This service provides:
- resolve_recipe_cost: fully-loaded cost of one full recipe yield
- resolve_component_impact: how much of an item a recipe tree consumes and costs
- explode_recipe: per-item consumption of a recipe tree (shared with usage_service)
- Cost cache maintenance: refresh_recipe_cost / refresh_dependent_costs
- Reporting helpers: cost breakdown, "recipes using item X", daily snapshots

Cost algorithm (per recipe):
    1. Convert each component quantity to base units.
    2. Inventory item: base_qty * last_cost / (yield_percent / 100).
    3. Sub-recipe: (sub cost / sub yield in base units) * base_qty.
       A zero sub-yield contributes 0 rather than raising.
    4. Sum, then multiply by (1 + waste_percent / 100).

Every recursive walk carries the chain of recipe IDs on the current call
stack. Meeting a recipe already on the chain raises CyclicRecipeError; no
partial cost is ever returned.

The computed_cost column is a cache. It is recomputed eagerly whenever an
upstream write happens (component change, item cost/yield change, sub-recipe
change) through refresh_dependent_costs, which walks the reverse component
graph to every transitive parent.
"""

import logging
from collections import deque
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import InventoryItem, Recipe, RecipeComponent, RecipeCostSnapshot
from ..utils.constants import (
    COMPONENT_TYPE_INVENTORY_ITEM,
    COMPONENT_TYPE_RECIPE,
    DEFAULT_WASTE_PERCENT,
)
from ..utils.datetime_utils import utc_now
from ..utils.decimal_utils import ONE, ZERO, percent_fraction, safe_divide
from .database import session_scope
from .dto import ComponentImpact, CostBreakdownLine, ItemUsage
from .exceptions import (
    CyclicRecipeError,
    DatabaseError,
    InventoryItemNotFound,
    RecipeNotFound,
    ServiceError,
)
from .logging_utils import get_service_logger, log_operation
from .unit_service import _load_unit, to_base

logger = get_service_logger(__name__)

Path = Tuple[str, ...]


# ============================================================================
# Loading helpers
# ============================================================================


def _load_recipe(sess: Session, recipe_id: str) -> Recipe:
    recipe = sess.get(Recipe, recipe_id) if recipe_id is not None else None
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    return recipe


def _load_item(sess: Session, item_id: str) -> InventoryItem:
    item = sess.get(InventoryItem, item_id) if item_id is not None else None
    if item is None:
        raise InventoryItemNotFound(item_id)
    return item


def _enter(recipe: Recipe, path: Path) -> Path:
    """Push recipe onto the call chain, failing if it is already there."""
    if recipe.id in path:
        cycle = path[path.index(recipe.id):] + (recipe.id,)
        log_operation(
            logger,
            operation="resolve_recipe",
            outcome="cycle_detected",
            level=logging.ERROR,
            recipe_id=recipe.id,
            cycle=list(cycle),
        )
        raise CyclicRecipeError(cycle)
    return path + (recipe.id,)


def component_base_qty(sess: Session, component: RecipeComponent) -> Decimal:
    """A component's quantity expressed in base units."""
    return to_base(component.qty, _load_unit(sess, component.unit_id))


def recipe_yield_base_qty(sess: Session, recipe: Recipe) -> Decimal:
    """A recipe's yield expressed in base units of its yield unit's kind."""
    return to_base(recipe.yield_qty, _load_unit(sess, recipe.yield_unit_id))


def waste_multiplier(recipe: Recipe) -> Decimal:
    """1 + waste_percent / 100, treating a missing waste percent as 0."""
    if recipe.waste_percent is None:
        return ONE
    return ONE + percent_fraction(recipe.waste_percent, DEFAULT_WASTE_PERCENT)


def _ordered_components(recipe: Recipe) -> List[RecipeComponent]:
    return sorted(recipe.components, key=lambda c: c.sort_order or 0)


# ============================================================================
# Core recursion
# ============================================================================


def _resolve_cost(
    sess: Session, recipe: Recipe, path: Path, memo: Dict[str, Decimal]
) -> Decimal:
    """Cost of one full yield of recipe.

    memo only ever holds recipes whose resolution has completed, so a recipe
    still on the call chain is never served from it and cycles are still
    detected.
    """
    path = _enter(recipe, path)
    if recipe.id in memo:
        return memo[recipe.id]

    subtotal = ZERO
    for component in _ordered_components(recipe):
        base_qty = component_base_qty(sess, component)

        if component.component_type == COMPONENT_TYPE_INVENTORY_ITEM:
            item = _load_item(sess, component.component_id)
            subtotal += base_qty * item.effective_cost_per_base_unit(component.yield_override)
        elif component.component_type == COMPONENT_TYPE_RECIPE:
            sub_recipe = _load_recipe(sess, component.component_id)
            sub_cost = _resolve_cost(sess, sub_recipe, path, memo)
            cost_per_base = safe_divide(sub_cost, recipe_yield_base_qty(sess, sub_recipe))
            subtotal += cost_per_base * base_qty

    total = subtotal * waste_multiplier(recipe)
    memo[recipe.id] = total
    return total


def _explode(
    sess: Session, recipe: Recipe, multiplier: Decimal, path: Path
) -> Dict[str, ItemUsage]:
    """Per-item consumption of ``multiplier`` full yields of recipe."""
    path = _enter(recipe, path)
    usage: Dict[str, ItemUsage] = {}

    def _merge(entry: ItemUsage) -> None:
        if entry.inventory_item_id in usage:
            usage[entry.inventory_item_id].add(entry)
        else:
            usage[entry.inventory_item_id] = entry

    for component in _ordered_components(recipe):
        base_qty = component_base_qty(sess, component) * multiplier

        if component.component_type == COMPONENT_TYPE_INVENTORY_ITEM:
            item = _load_item(sess, component.component_id)
            fraction = item.yield_fraction(component.yield_override)
            _merge(
                ItemUsage(
                    inventory_item_id=item.id,
                    base_qty=base_qty,
                    purchased_qty=safe_divide(base_qty, fraction),
                    cost=base_qty * item.effective_cost_per_base_unit(component.yield_override),
                )
            )
        elif component.component_type == COMPONENT_TYPE_RECIPE:
            sub_recipe = _load_recipe(sess, component.component_id)
            sub_yield = recipe_yield_base_qty(sess, sub_recipe)
            sub_usage = _explode(sess, sub_recipe, safe_divide(base_qty, sub_yield), path)
            for entry in sub_usage.values():
                _merge(entry)

    factor = waste_multiplier(recipe)
    for entry in usage.values():
        entry.cost = entry.cost * factor
    return usage


def _scan_impact(
    sess: Session, recipe: Recipe, target_item_id: str, path: Path
) -> Tuple[bool, Decimal, Decimal]:
    """Depth-first scan for one item. Returns (uses_item, base_qty, cost) per full yield."""
    path = _enter(recipe, path)
    uses_item = False
    qty = ZERO
    cost = ZERO

    for component in _ordered_components(recipe):
        if component.component_type == COMPONENT_TYPE_INVENTORY_ITEM:
            if component.component_id != target_item_id:
                continue
            item = _load_item(sess, component.component_id)
            base_qty = component_base_qty(sess, component)
            uses_item = True
            qty += base_qty
            cost += base_qty * item.effective_cost_per_base_unit(component.yield_override)
        elif component.component_type == COMPONENT_TYPE_RECIPE:
            sub_recipe = _load_recipe(sess, component.component_id)
            sub_uses, sub_qty, sub_cost = _scan_impact(sess, sub_recipe, target_item_id, path)
            if not sub_uses:
                continue
            uses_item = True
            scale = safe_divide(
                component_base_qty(sess, component), recipe_yield_base_qty(sess, sub_recipe)
            )
            qty += sub_qty * scale
            cost += sub_cost * scale

    return uses_item, qty, cost * waste_multiplier(recipe)


# ============================================================================
# Public operations
# ============================================================================


def resolve_recipe_cost(recipe_id: str, session: Optional[Session] = None) -> Decimal:
    """
    Resolve the fully-loaded cost of one full yield of a recipe.

    Read-only: the cost cache is not written (see refresh_recipe_cost).

    Args:
        recipe_id: Recipe to cost
        session: Optional database session

    Returns:
        Decimal cost per full yield

    Raises:
        RecipeNotFound: If the recipe or a sub-recipe does not exist
        InventoryItemNotFound: If a component item does not exist
        UnitNotFound: If a component or yield unit does not resolve
        CyclicRecipeError: If the recipe tree contains a cycle

    Example:
        >>> # Sauce yields 32 oz and costs $8.00; Pizza uses 4 oz of Sauce
        >>> resolve_recipe_cost(pizza.id) == Decimal("1")
        True
    """

    def _impl(sess: Session) -> Decimal:
        recipe = _load_recipe(sess, recipe_id)
        cost = _resolve_cost(sess, recipe, (), {})
        log_operation(
            logger,
            operation="resolve_recipe_cost",
            outcome="success",
            level=logging.DEBUG,
            recipe_id=recipe_id,
            cost=str(cost),
        )
        return cost

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to resolve cost for recipe {recipe_id}", e)


def resolve_component_impact(
    recipe_id: str, target_item_id: str, session: Optional[Session] = None
) -> ComponentImpact:
    """
    Determine whether and how much a recipe tree consumes one inventory item.

    Sub-recipe impacts are scaled by (component base qty / sub-recipe yield
    base qty). The cost contribution includes the waste multipliers of every
    recipe on the path, so the contributions of all items in a recipe add up
    to resolve_recipe_cost.

    Returns:
        ComponentImpact for one full yield of the recipe

    Raises:
        RecipeNotFound, InventoryItemNotFound, UnitNotFound, CyclicRecipeError
    """

    def _impl(sess: Session) -> ComponentImpact:
        recipe = _load_recipe(sess, recipe_id)
        uses_item, qty, cost = _scan_impact(sess, recipe, target_item_id, ())
        return ComponentImpact(
            recipe_id=recipe_id,
            inventory_item_id=target_item_id,
            uses_item=uses_item,
            base_qty_consumed=qty,
            cost_contribution=cost,
        )

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to resolve impact for recipe {recipe_id}", e)


def explode_recipe(
    recipe_id: str, multiplier=ONE, session: Optional[Session] = None
) -> Dict[str, ItemUsage]:
    """
    Expand a recipe tree into per-item consumption.

    Args:
        recipe_id: Recipe to expand
        multiplier: Number of full recipe yields (e.g., batches or portions sold)
        session: Optional database session

    Returns:
        Dict mapping inventory_item_id -> ItemUsage (base_qty, purchased_qty, cost)

    Raises:
        RecipeNotFound, InventoryItemNotFound, UnitNotFound, CyclicRecipeError
    """

    def _impl(sess: Session) -> Dict[str, ItemUsage]:
        recipe = _load_recipe(sess, recipe_id)
        return _explode(sess, recipe, Decimal(multiplier), ())

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to explode recipe {recipe_id}", e)


def get_recipe_cost_breakdown(recipe_id: str, session: Optional[Session] = None) -> Dict:
    """
    Itemize a recipe's cost by component.

    Returns:
        Dict with keys:
            - "recipe_id", "recipe_name"
            - "lines" (List[CostBreakdownLine]): one per component, before waste
            - "subtotal" (Decimal): sum of line costs
            - "waste_multiplier" (Decimal)
            - "total_cost" (Decimal): subtotal * waste_multiplier
            - "cost_per_yield_unit" (Decimal): total_cost / yield_qty (0 for zero yield)
    """

    def _impl(sess: Session) -> Dict:
        recipe = _load_recipe(sess, recipe_id)
        path = _enter(recipe, ())
        memo: Dict[str, Decimal] = {}
        lines = []
        subtotal = ZERO

        for component in _ordered_components(recipe):
            base_qty = component_base_qty(sess, component)
            if component.component_type == COMPONENT_TYPE_INVENTORY_ITEM:
                item = _load_item(sess, component.component_id)
                name = item.name
                cost = base_qty * item.effective_cost_per_base_unit(component.yield_override)
            else:
                sub_recipe = _load_recipe(sess, component.component_id)
                name = sub_recipe.name
                sub_cost = _resolve_cost(sess, sub_recipe, path, memo)
                cost = safe_divide(sub_cost, recipe_yield_base_qty(sess, sub_recipe)) * base_qty
            subtotal += cost
            lines.append(
                CostBreakdownLine(
                    component_id=component.component_id,
                    component_type=component.component_type,
                    name=name,
                    qty=Decimal(component.qty),
                    unit_id=component.unit_id,
                    base_qty=base_qty,
                    cost=cost,
                )
            )

        multiplier = waste_multiplier(recipe)
        total = subtotal * multiplier
        return {
            "recipe_id": recipe.id,
            "recipe_name": recipe.name,
            "lines": lines,
            "subtotal": subtotal,
            "waste_multiplier": multiplier,
            "total_cost": total,
            "cost_per_yield_unit": safe_divide(total, Decimal(recipe.yield_qty)),
        }

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to build cost breakdown for recipe {recipe_id}", e)


# ============================================================================
# Dependency graph and cache maintenance
# ============================================================================


def _dependent_recipe_ids(
    sess: Session, item_id: Optional[str] = None, recipe_id: Optional[str] = None
) -> Set[str]:
    """Recipes whose cost depends on an item or a recipe (the recipe itself included)."""
    found: Set[str] = set()
    frontier: deque = deque()

    if recipe_id is not None:
        found.add(recipe_id)
        frontier.append(recipe_id)

    if item_id is not None:
        direct = (
            sess.query(RecipeComponent.recipe_id)
            .filter(
                RecipeComponent.component_type == COMPONENT_TYPE_INVENTORY_ITEM,
                RecipeComponent.component_id == item_id,
            )
            .distinct()
            .all()
        )
        for (parent_id,) in direct:
            if parent_id not in found:
                found.add(parent_id)
                frontier.append(parent_id)

    while frontier:
        current = frontier.popleft()
        parents = (
            sess.query(RecipeComponent.recipe_id)
            .filter(
                RecipeComponent.component_type == COMPONENT_TYPE_RECIPE,
                RecipeComponent.component_id == current,
            )
            .distinct()
            .all()
        )
        for (parent_id,) in parents:
            if parent_id not in found:
                found.add(parent_id)
                frontier.append(parent_id)

    return found


def refresh_recipe_cost(recipe_id: str, session: Optional[Session] = None) -> Decimal:
    """
    Recompute a recipe's cost and store it in the computed_cost cache.

    Returns:
        The freshly resolved cost

    Raises:
        RecipeNotFound, InventoryItemNotFound, UnitNotFound, CyclicRecipeError
    """

    def _impl(sess: Session) -> Decimal:
        recipe = _load_recipe(sess, recipe_id)
        cost = _resolve_cost(sess, recipe, (), {})
        recipe.computed_cost = cost
        recipe.cost_computed_at = utc_now()
        sess.flush()
        return cost

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to refresh cost for recipe {recipe_id}", e)


def refresh_dependent_costs(
    item_id: Optional[str] = None,
    recipe_id: Optional[str] = None,
    session: Optional[Session] = None,
) -> Dict[str, Decimal]:
    """
    Eagerly recompute the cached cost of every recipe affected by a write.

    Pass item_id after an item's cost or yield changes, recipe_id after a
    recipe's own fields or components change. The recipe itself and every
    transitive parent are recomputed.

    Returns:
        Dict mapping recipe_id -> new computed_cost

    Raises:
        CyclicRecipeError: If any affected recipe tree contains a cycle
    """

    def _impl(sess: Session) -> Dict[str, Decimal]:
        affected = _dependent_recipe_ids(sess, item_id=item_id, recipe_id=recipe_id)
        memo: Dict[str, Decimal] = {}
        refreshed: Dict[str, Decimal] = {}
        now = utc_now()
        for affected_id in sorted(affected):
            recipe = _load_recipe(sess, affected_id)
            cost = _resolve_cost(sess, recipe, (), memo)
            recipe.computed_cost = cost
            recipe.cost_computed_at = now
            refreshed[affected_id] = cost
        sess.flush()
        log_operation(
            logger,
            operation="refresh_dependent_costs",
            outcome="success",
            level=logging.DEBUG,
            inventory_item_id=item_id,
            recipe_id=recipe_id,
            refreshed=len(refreshed),
        )
        return refreshed

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to refresh dependent recipe costs", e)


def get_recipes_using_item(item_id: str, session: Optional[Session] = None) -> List[ComponentImpact]:
    """
    Find every recipe whose tree uses an inventory item, directly or nested.

    Returns:
        ComponentImpact per recipe, ordered by recipe name

    Raises:
        InventoryItemNotFound: If the item does not exist
    """

    def _impl(sess: Session) -> List[ComponentImpact]:
        _load_item(sess, item_id)
        recipe_ids = _dependent_recipe_ids(sess, item_id=item_id)
        if not recipe_ids:
            return []
        recipes = (
            sess.query(Recipe).filter(Recipe.id.in_(recipe_ids)).order_by(Recipe.name).all()
        )
        impacts = []
        for recipe in recipes:
            uses_item, qty, cost = _scan_impact(sess, recipe, item_id, ())
            impacts.append(
                ComponentImpact(
                    recipe_id=recipe.id,
                    inventory_item_id=item_id,
                    uses_item=uses_item,
                    base_qty_consumed=qty,
                    cost_contribution=cost,
                )
            )
        return impacts

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to find recipes using item {item_id}", e)


def snapshot_recipe_cost(
    recipe_id: str, effective_date: Optional[date] = None, session: Optional[Session] = None
) -> RecipeCostSnapshot:
    """
    Record the recipe's current cost for a day (one snapshot per recipe per day).

    An existing snapshot for the same day is overwritten.

    Args:
        recipe_id: Recipe to snapshot
        effective_date: Day the snapshot applies to (defaults to today, UTC)

    Returns:
        The created or updated RecipeCostSnapshot
    """
    day = effective_date or utc_now().date()

    def _impl(sess: Session) -> RecipeCostSnapshot:
        recipe = _load_recipe(sess, recipe_id)
        cost = _resolve_cost(sess, recipe, (), {})
        yield_qty = Decimal(recipe.yield_qty)

        snapshot = (
            sess.query(RecipeCostSnapshot)
            .filter(
                RecipeCostSnapshot.recipe_id == recipe_id,
                RecipeCostSnapshot.effective_date == day,
            )
            .first()
        )
        if snapshot is None:
            snapshot = RecipeCostSnapshot(recipe_id=recipe_id, effective_date=day)
            sess.add(snapshot)

        snapshot.computed_cost = cost
        snapshot.yield_qty = yield_qty
        snapshot.yield_unit_id = recipe.yield_unit_id
        snapshot.cost_per_yield_unit = safe_divide(cost, yield_qty)
        sess.flush()
        return snapshot

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to snapshot cost for recipe {recipe_id}", e)
