"""
Recipe Service - recipes and their component graph.

Recipes combine inventory items and other recipes (sub-recipes) in any
unit. Every write that can change a cost refreshes the cached cost of the
recipe and of every recipe that (transitively) uses it, in the same
transaction.

Graph rules enforced on write:
- A recipe may only be used as a component if can_be_ingredient is True.
- A component may not close a cycle (a recipe may not contain itself at
  any depth). CyclicRecipeError is raised before anything is written.
"""

from typing import Any, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import InventoryItem, MenuItem, Recipe, RecipeComponent
from ..utils.constants import (
    COMPONENT_TYPE_INVENTORY_ITEM,
    COMPONENT_TYPE_RECIPE,
    COMPONENT_TYPES,
    DEFAULT_WASTE_PERCENT,
    MAX_NAME_LENGTH,
)
from ..utils.decimal_utils import HUNDRED, ZERO, to_decimal
from .costing_service import refresh_dependent_costs
from .database import session_scope
from .exceptions import (
    CyclicRecipeError,
    DatabaseError,
    InventoryItemNotFound,
    RecipeNotFound,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .unit_service import _load_unit

logger = get_service_logger(__name__)

RECIPE_UPDATABLE_FIELDS = (
    "name",
    "yield_qty",
    "yield_unit_id",
    "waste_percent",
    "can_be_ingredient",
    "is_active",
)

# Fields whose change alters the cost of the recipe or its parents
COST_FIELDS = ("yield_qty", "yield_unit_id", "waste_percent")

COMPONENT_UPDATABLE_FIELDS = ("qty", "unit_id", "sort_order", "yield_override")


# ============================================================================
# Helpers
# ============================================================================


def _load_recipe(sess: Session, recipe_id: str) -> Recipe:
    recipe = sess.get(Recipe, recipe_id) if recipe_id is not None else None
    if recipe is None:
        raise RecipeNotFound(recipe_id)
    return recipe


def _load_component(sess: Session, component_row_id: str) -> RecipeComponent:
    component = sess.get(RecipeComponent, component_row_id)
    if component is None:
        raise ValidationError([f"Recipe component {component_row_id} not found"])
    return component


def _validate_recipe_data(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    errors = []
    cleaned = dict(data)

    if creating or "name" in data:
        name = data.get("name")
        if not name or not str(name).strip():
            errors.append("Recipe name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(f"Recipe name must be at most {MAX_NAME_LENGTH} characters")
        else:
            cleaned["name"] = name.strip()

    if creating and not data.get("yield_unit_id"):
        errors.append("yield_unit_id is required")

    if creating or "yield_qty" in data:
        try:
            cleaned["yield_qty"] = to_decimal(data.get("yield_qty"))
            if cleaned["yield_qty"] < ZERO:
                errors.append("yield_qty cannot be negative")
        except ValueError:
            errors.append("yield_qty must be a number")

    if data.get("waste_percent") is not None:
        try:
            cleaned["waste_percent"] = to_decimal(data["waste_percent"])
            if cleaned["waste_percent"] < ZERO:
                errors.append("waste_percent cannot be negative")
        except ValueError:
            errors.append("waste_percent must be a number")

    if errors:
        raise ValidationError(errors)
    return cleaned


def _validate_yield_override(value) -> Optional[Any]:
    if value is None:
        return None
    try:
        override = to_decimal(value)
    except ValueError:
        raise ValidationError(["yield_override must be a number"])
    if not (ZERO <= override <= HUNDRED):
        raise ValidationError(["yield_override must be between 0 and 100"])
    return override


def _positive_qty(value, label: str = "Component quantity"):
    try:
        qty = to_decimal(value)
    except ValueError:
        raise ValidationError([f"{label} must be a number"])
    if qty <= ZERO:
        raise ValidationError([f"{label} must be greater than 0"])
    return qty


def _find_recipe_path(sess: Session, start_id: str, target_id: str) -> Optional[List[str]]:
    """Path of recipe IDs from start down to target through sub-recipe components."""
    visited = set()

    def _walk(current_id: str, path: List[str]) -> Optional[List[str]]:
        if current_id == target_id:
            return path
        if current_id in visited:
            return None
        visited.add(current_id)
        children = (
            sess.query(RecipeComponent.component_id)
            .filter(
                RecipeComponent.recipe_id == current_id,
                RecipeComponent.component_type == COMPONENT_TYPE_RECIPE,
            )
            .all()
        )
        for (child_id,) in children:
            found = _walk(child_id, path + [child_id])
            if found is not None:
                return found
        return None

    return _walk(start_id, [start_id])


def _check_cycle(sess: Session, recipe_id: str, component_recipe_id: str) -> None:
    """Raise CyclicRecipeError if adding component_recipe_id under recipe_id closes a loop."""
    path = _find_recipe_path(sess, component_recipe_id, recipe_id)
    if path is not None:
        cycle = [recipe_id] + path
        log_operation(
            logger,
            operation="add_recipe_component",
            outcome="cycle_rejected",
            recipe_id=recipe_id,
            component_recipe_id=component_recipe_id,
            cycle=cycle,
        )
        raise CyclicRecipeError(cycle)


def _is_used_as_component(sess: Session, recipe_id: str) -> bool:
    return (
        sess.query(RecipeComponent.id)
        .filter(
            RecipeComponent.component_type == COMPONENT_TYPE_RECIPE,
            RecipeComponent.component_id == recipe_id,
        )
        .first()
        is not None
    )


# ============================================================================
# Recipe CRUD
# ============================================================================


def create_recipe(
    name: str,
    yield_qty,
    yield_unit_id: str,
    waste_percent=DEFAULT_WASTE_PERCENT,
    can_be_ingredient: bool = False,
    components: Optional[List[Dict[str, Any]]] = None,
    session: Optional[Session] = None,
) -> Recipe:
    """
    Create a recipe, optionally with its components.

    Args:
        name: Recipe name
        yield_qty: Quantity one full batch produces
        yield_unit_id: Unit of yield_qty
        waste_percent: Production waste added on top of ingredient cost
        can_be_ingredient: Whether other recipes may use this one as a component
        components: Optional list of dicts accepted by add_recipe_component
            (component_type, component_id, qty, unit_id, sort_order, yield_override)

    Returns:
        The new Recipe with computed_cost populated

    Raises:
        ValidationError, UnitNotFound, RecipeNotFound, InventoryItemNotFound
    """
    data = _validate_recipe_data(
        {
            "name": name,
            "yield_qty": yield_qty,
            "yield_unit_id": yield_unit_id,
            "waste_percent": waste_percent,
        },
        creating=True,
    )

    def _impl(sess: Session) -> Recipe:
        _load_unit(sess, yield_unit_id)
        recipe = Recipe(
            name=data["name"],
            yield_qty=data["yield_qty"],
            yield_unit_id=yield_unit_id,
            waste_percent=data.get("waste_percent"),
            can_be_ingredient=bool(can_be_ingredient),
        )
        sess.add(recipe)
        sess.flush()

        for component in components or []:
            _add_component(sess, recipe, **component)

        refresh_dependent_costs(recipe_id=recipe.id, session=sess)
        log_operation(
            logger,
            operation="create_recipe",
            outcome="success",
            recipe_id=recipe.id,
            recipe_name=recipe.name,
            components=len(components or []),
        )
        return recipe

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create recipe '{name}'", e)


def get_recipe(recipe_id: str, session: Optional[Session] = None) -> Recipe:
    """Get a recipe by ID.

    Raises:
        RecipeNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> Recipe:
        recipe = _load_recipe(sess, recipe_id)
        _ = recipe.components
        return recipe

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get recipe {recipe_id}", e)


def list_recipes(
    name_search: Optional[str] = None,
    ingredients_only: bool = False,
    include_inactive: bool = False,
    session: Optional[Session] = None,
) -> List[Recipe]:
    """
    List recipes ordered by name.

    Args:
        name_search: Optional case-insensitive substring match on name
        ingredients_only: Only recipes usable as components
        include_inactive: Include recipes flagged inactive
    """

    def _impl(sess: Session) -> List[Recipe]:
        query = sess.query(Recipe)
        if name_search:
            query = query.filter(Recipe.name.ilike(f"%{name_search}%"))
        if ingredients_only:
            query = query.filter(Recipe.can_be_ingredient.is_(True))
        if not include_inactive:
            query = query.filter(Recipe.is_active.is_(True))
        return query.order_by(Recipe.name).all()

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to list recipes", e)


def update_recipe(
    recipe_id: str, data: Dict[str, Any], session: Optional[Session] = None
) -> Recipe:
    """
    Update a recipe's own fields.

    Changing yield or waste recomputes the recipe's cost and the cost of
    every recipe that uses it.

    Raises:
        RecipeNotFound, UnitNotFound
        ValidationError: If a field is invalid, or can_be_ingredient is turned
            off while another recipe still uses this one
    """
    unknown = sorted(set(data) - set(RECIPE_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError([f"Cannot update field '{field_name}'" for field_name in unknown])
    cleaned = _validate_recipe_data(data, creating=False)

    def _impl(sess: Session) -> Recipe:
        recipe = _load_recipe(sess, recipe_id)
        if "yield_unit_id" in cleaned:
            _load_unit(sess, cleaned["yield_unit_id"])
        if cleaned.get("can_be_ingredient") is False and _is_used_as_component(sess, recipe_id):
            raise ValidationError(
                [f"Recipe '{recipe.name}' is used as a component and must stay usable as one"]
            )

        for field_name, value in cleaned.items():
            setattr(recipe, field_name, value)
        sess.flush()

        if any(field_name in cleaned for field_name in COST_FIELDS):
            refresh_dependent_costs(recipe_id=recipe.id, session=sess)

        log_operation(
            logger,
            operation="update_recipe",
            outcome="success",
            recipe_id=recipe.id,
            fields=sorted(cleaned),
        )
        return recipe

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update recipe {recipe_id}", e)


def delete_recipe(recipe_id: str, session: Optional[Session] = None) -> bool:
    """
    Delete a recipe and its components.

    Menu items pointing at the recipe are detached (recipe_id set to None).

    Raises:
        RecipeNotFound: If the recipe does not exist
        ValidationError: If another recipe uses it as a component
    """

    def _impl(sess: Session) -> bool:
        recipe = _load_recipe(sess, recipe_id)
        if _is_used_as_component(sess, recipe_id):
            raise ValidationError(
                [f"Recipe '{recipe.name}' is used as a component and cannot be deleted"]
            )
        for menu_item in sess.query(MenuItem).filter(MenuItem.recipe_id == recipe_id).all():
            menu_item.recipe_id = None
        sess.delete(recipe)
        sess.flush()
        log_operation(logger, operation="delete_recipe", outcome="success", recipe_id=recipe_id)
        return True

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to delete recipe {recipe_id}", e)


# ============================================================================
# Component management
# ============================================================================


def _add_component(
    sess: Session,
    recipe: Recipe,
    component_type: str,
    component_id: str,
    qty,
    unit_id: str,
    sort_order: Optional[int] = None,
    yield_override=None,
) -> RecipeComponent:
    if component_type not in COMPONENT_TYPES:
        raise ValidationError([f"Unknown component type '{component_type}'"])
    qty = _positive_qty(qty)
    override = _validate_yield_override(yield_override)
    _load_unit(sess, unit_id)

    if component_type == COMPONENT_TYPE_INVENTORY_ITEM:
        if sess.get(InventoryItem, component_id) is None:
            raise InventoryItemNotFound(component_id)
    else:
        if override is not None:
            raise ValidationError(["yield_override applies to inventory item components only"])
        if component_id == recipe.id:
            raise CyclicRecipeError([recipe.id, recipe.id])
        sub_recipe = _load_recipe(sess, component_id)
        if not sub_recipe.can_be_ingredient:
            raise ValidationError([f"Recipe '{sub_recipe.name}' cannot be used as an ingredient"])
        _check_cycle(sess, recipe.id, component_id)

    if sort_order is None:
        max_order = (
            sess.query(func.max(RecipeComponent.sort_order))
            .filter(RecipeComponent.recipe_id == recipe.id)
            .scalar()
        )
        sort_order = (max_order or 0) + 1

    component = RecipeComponent(
        component_type=component_type,
        component_id=component_id,
        qty=qty,
        unit_id=unit_id,
        sort_order=sort_order,
        yield_override=override,
    )
    recipe.components.append(component)
    sess.flush()
    return component


def add_recipe_component(
    recipe_id: str,
    component_type: str,
    component_id: str,
    qty,
    unit_id: str,
    sort_order: Optional[int] = None,
    yield_override=None,
    session: Optional[Session] = None,
) -> RecipeComponent:
    """
    Add an inventory item or a sub-recipe to a recipe.

    Args:
        recipe_id: Parent recipe
        component_type: "inventory_item" or "recipe"
        component_id: ID of the item or sub-recipe
        qty: Quantity in unit_id (> 0)
        unit_id: Unit of qty
        sort_order: Display/evaluation order (default: append to end)
        yield_override: Optional yield percent replacing the item's own

    Returns:
        The created RecipeComponent

    Raises:
        RecipeNotFound, InventoryItemNotFound, UnitNotFound, ValidationError
        CyclicRecipeError: If the sub-recipe (transitively) contains the parent
    """

    def _impl(sess: Session) -> RecipeComponent:
        recipe = _load_recipe(sess, recipe_id)
        component = _add_component(
            sess,
            recipe,
            component_type=component_type,
            component_id=component_id,
            qty=qty,
            unit_id=unit_id,
            sort_order=sort_order,
            yield_override=yield_override,
        )
        refresh_dependent_costs(recipe_id=recipe.id, session=sess)
        log_operation(
            logger,
            operation="add_recipe_component",
            outcome="success",
            recipe_id=recipe.id,
            component_type=component_type,
            component_id=component_id,
        )
        return component

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to add recipe component", e)


def update_recipe_component(
    component_row_id: str, data: Dict[str, Any], session: Optional[Session] = None
) -> RecipeComponent:
    """
    Update quantity, unit, order or yield override of a component.

    Raises:
        ValidationError: If the component does not exist or a value is invalid
        UnitNotFound: If a new unit_id does not resolve
    """
    unknown = sorted(set(data) - set(COMPONENT_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError([f"Cannot update field '{field_name}'" for field_name in unknown])
    cleaned = dict(data)
    if "qty" in data:
        cleaned["qty"] = _positive_qty(data["qty"])
    if "yield_override" in data:
        cleaned["yield_override"] = _validate_yield_override(data["yield_override"])

    def _impl(sess: Session) -> RecipeComponent:
        component = _load_component(sess, component_row_id)
        if "unit_id" in cleaned:
            _load_unit(sess, cleaned["unit_id"])
        if cleaned.get("yield_override") is not None and component.is_sub_recipe:
            raise ValidationError(["yield_override applies to inventory item components only"])

        for field_name, value in cleaned.items():
            setattr(component, field_name, value)
        sess.flush()

        refresh_dependent_costs(recipe_id=component.recipe_id, session=sess)
        return component

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update recipe component {component_row_id}", e)


def remove_recipe_component(component_row_id: str, session: Optional[Session] = None) -> bool:
    """
    Remove a component from its recipe.

    Returns:
        True if removed, False if the component did not exist
    """

    def _impl(sess: Session) -> bool:
        component = sess.get(RecipeComponent, component_row_id)
        if component is None:
            return False
        recipe = component.recipe
        recipe.components.remove(component)
        sess.flush()
        refresh_dependent_costs(recipe_id=recipe.id, session=sess)
        return True

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to remove recipe component {component_row_id}", e)


def get_recipe_components(recipe_id: str, session: Optional[Session] = None) -> List[RecipeComponent]:
    """Components of a recipe ordered by sort_order.

    Raises:
        RecipeNotFound: If the recipe does not exist
    """

    def _impl(sess: Session) -> List[RecipeComponent]:
        _load_recipe(sess, recipe_id)
        return (
            sess.query(RecipeComponent)
            .filter(RecipeComponent.recipe_id == recipe_id)
            .order_by(RecipeComponent.sort_order)
            .all()
        )

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get components for recipe {recipe_id}", e)


def get_recipes_using_recipe(recipe_id: str, session: Optional[Session] = None) -> List[Recipe]:
    """Recipes that use a recipe directly as a component, ordered by name."""

    def _impl(sess: Session) -> List[Recipe]:
        _load_recipe(sess, recipe_id)
        return (
            sess.query(Recipe)
            .join(RecipeComponent, Recipe.id == RecipeComponent.recipe_id)
            .filter(
                RecipeComponent.component_type == COMPONENT_TYPE_RECIPE,
                RecipeComponent.component_id == recipe_id,
            )
            .order_by(Recipe.name)
            .distinct()
            .all()
        )

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get recipes using {recipe_id}", e)
