"""
Menu Service - sellable menu items and point-of-sale sales.

A menu item optionally links to a recipe. serving_qty is the number of full
recipe yields consumed per unit sold, so selling N units consumes
N * serving_qty yields of the recipe. Menu items without a recipe (napkins,
bottled drinks bought for resale) are ignored by theoretical usage.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import MenuItem, PosSale, PosSalesLine, Recipe
from ..utils.constants import MAX_NAME_LENGTH
from ..utils.datetime_utils import utc_now
from ..utils.decimal_utils import HUNDRED, ONE, ZERO, safe_divide, to_decimal
from .costing_service import resolve_recipe_cost
from .database import session_scope
from .exceptions import (
    DatabaseError,
    MenuItemNotFound,
    RecipeNotFound,
    ServiceError,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

MENU_ITEM_UPDATABLE_FIELDS = ("name", "plu_sku", "recipe_id", "serving_qty", "price", "is_active")


def _load_menu_item(sess: Session, menu_item_id: str) -> MenuItem:
    menu_item = sess.get(MenuItem, menu_item_id) if menu_item_id is not None else None
    if menu_item is None:
        raise MenuItemNotFound(menu_item_id)
    return menu_item


def _validate_menu_item_data(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    errors = []
    cleaned = dict(data)

    if creating or "name" in data:
        name = data.get("name")
        if not name or not str(name).strip():
            errors.append("Menu item name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(f"Menu item name must be at most {MAX_NAME_LENGTH} characters")
        else:
            cleaned["name"] = name.strip()

    if creating or "plu_sku" in data:
        plu_sku = data.get("plu_sku")
        if not plu_sku or not str(plu_sku).strip():
            errors.append("PLU/SKU is required")
        else:
            cleaned["plu_sku"] = str(plu_sku).strip()

    if data.get("serving_qty") is not None:
        try:
            cleaned["serving_qty"] = to_decimal(data["serving_qty"])
            if cleaned["serving_qty"] <= ZERO:
                errors.append("serving_qty must be greater than 0")
        except ValueError:
            errors.append("serving_qty must be a number")

    if data.get("price") is not None:
        try:
            cleaned["price"] = to_decimal(data["price"])
            if cleaned["price"] < ZERO:
                errors.append("price cannot be negative")
        except ValueError:
            errors.append("price must be a number")

    if errors:
        raise ValidationError(errors)
    return cleaned


def _check_plu_free(sess: Session, plu_sku: str, exclude_id: Optional[str] = None) -> None:
    query = sess.query(MenuItem.id).filter(MenuItem.plu_sku == plu_sku)
    if exclude_id is not None:
        query = query.filter(MenuItem.id != exclude_id)
    if query.first() is not None:
        raise ValidationError([f"PLU/SKU '{plu_sku}' is already in use"])


def create_menu_item(
    name: str,
    plu_sku: str,
    recipe_id: Optional[str] = None,
    serving_qty=ONE,
    price=None,
    session: Optional[Session] = None,
) -> MenuItem:
    """
    Create a menu item.

    Args:
        name: Display name
        plu_sku: Unique point-of-sale code
        recipe_id: Optional recipe the item is made from
        serving_qty: Recipe yields consumed per unit sold (> 0)
        price: Optional selling price

    Raises:
        ValidationError: If a field is invalid or the PLU is taken
        RecipeNotFound: If recipe_id does not resolve
    """
    data = _validate_menu_item_data(
        {"name": name, "plu_sku": plu_sku, "serving_qty": serving_qty, "price": price},
        creating=True,
    )

    def _impl(sess: Session) -> MenuItem:
        _check_plu_free(sess, data["plu_sku"])
        if recipe_id is not None and sess.get(Recipe, recipe_id) is None:
            raise RecipeNotFound(recipe_id)
        menu_item = MenuItem(
            name=data["name"],
            plu_sku=data["plu_sku"],
            recipe_id=recipe_id,
            serving_qty=data.get("serving_qty") if data.get("serving_qty") is not None else ONE,
            price=data.get("price"),
        )
        sess.add(menu_item)
        sess.flush()
        log_operation(
            logger,
            operation="create_menu_item",
            outcome="success",
            menu_item_id=menu_item.id,
            plu_sku=menu_item.plu_sku,
        )
        return menu_item

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create menu item '{name}'", e)


def get_menu_item(menu_item_id: str, session: Optional[Session] = None) -> MenuItem:
    """Get a menu item by ID.

    Raises:
        MenuItemNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> MenuItem:
        return _load_menu_item(sess, menu_item_id)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get menu item {menu_item_id}", e)


def get_menu_item_by_plu(plu_sku: str, session: Optional[Session] = None) -> Optional[MenuItem]:
    """Look up a menu item by PLU/SKU; None if no item carries it."""

    def _impl(sess: Session) -> Optional[MenuItem]:
        return sess.query(MenuItem).filter(MenuItem.plu_sku == plu_sku).first()

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to look up PLU '{plu_sku}'", e)


def list_menu_items(include_inactive: bool = False, session: Optional[Session] = None) -> List[MenuItem]:
    """List menu items ordered by name."""

    def _impl(sess: Session) -> List[MenuItem]:
        query = sess.query(MenuItem)
        if not include_inactive:
            query = query.filter(MenuItem.is_active.is_(True))
        return query.order_by(MenuItem.name).all()

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to list menu items", e)


def update_menu_item(
    menu_item_id: str, data: Dict[str, Any], session: Optional[Session] = None
) -> MenuItem:
    """
    Update a menu item.

    Raises:
        MenuItemNotFound, RecipeNotFound, ValidationError
    """
    unknown = sorted(set(data) - set(MENU_ITEM_UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError([f"Cannot update field '{field_name}'" for field_name in unknown])
    cleaned = _validate_menu_item_data(data, creating=False)

    def _impl(sess: Session) -> MenuItem:
        menu_item = _load_menu_item(sess, menu_item_id)
        if "plu_sku" in cleaned:
            _check_plu_free(sess, cleaned["plu_sku"], exclude_id=menu_item_id)
        if cleaned.get("recipe_id") is not None and sess.get(Recipe, cleaned["recipe_id"]) is None:
            raise RecipeNotFound(cleaned["recipe_id"])
        for field_name, value in cleaned.items():
            setattr(menu_item, field_name, value)
        sess.flush()
        return menu_item

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update menu item {menu_item_id}", e)


def get_menu_item_cost(menu_item_id: str, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Plate cost of one unit sold and its share of the selling price.

    Returns:
        Dict with keys:
            - "menu_item_id"
            - "plate_cost" (Decimal): recipe cost * serving_qty (0 without a recipe)
            - "price" (Decimal or None)
            - "food_cost_percent" (Decimal or None): plate_cost / price * 100,
              None when no price is set

    Raises:
        MenuItemNotFound, CyclicRecipeError
    """

    def _impl(sess: Session) -> Dict[str, Any]:
        menu_item = _load_menu_item(sess, menu_item_id)
        plate_cost = ZERO
        if menu_item.recipe_id is not None:
            plate_cost = resolve_recipe_cost(menu_item.recipe_id, session=sess) * Decimal(
                menu_item.serving_qty
            )
        price = Decimal(menu_item.price) if menu_item.price is not None else None
        food_cost_percent = None
        if price is not None:
            food_cost_percent = safe_divide(plate_cost, price) * HUNDRED
        return {
            "menu_item_id": menu_item.id,
            "plate_cost": plate_cost,
            "price": price,
            "food_cost_percent": food_cost_percent,
        }

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to cost menu item {menu_item_id}", e)


def record_sale(
    store_id: str,
    lines: List[Dict[str, Any]],
    occurred_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> PosSale:
    """
    Record a point-of-sale ticket.

    Args:
        store_id: Store the sale happened at
        lines: Dicts with "qty_sold" and either "menu_item_id" or "plu_sku"
        occurred_at: Sale time (defaults to now)

    Returns:
        The created PosSale with its lines

    Raises:
        ValidationError: If store_id or lines are missing, a quantity is not
            positive, or a PLU does not resolve
        MenuItemNotFound: If a menu_item_id does not resolve
    """
    if not store_id:
        raise ValidationError(["store_id is required"])
    if not lines:
        raise ValidationError(["A sale needs at least one line"])

    def _impl(sess: Session) -> PosSale:
        sale = PosSale(store_id=store_id, occurred_at=occurred_at or utc_now())
        for line in lines:
            try:
                qty_sold = to_decimal(line.get("qty_sold"))
            except ValueError:
                raise ValidationError(["qty_sold must be a number"])
            if qty_sold <= ZERO:
                raise ValidationError(["qty_sold must be greater than 0"])

            if line.get("menu_item_id"):
                menu_item = _load_menu_item(sess, line["menu_item_id"])
            else:
                plu_sku = line.get("plu_sku")
                menu_item = sess.query(MenuItem).filter(MenuItem.plu_sku == plu_sku).first()
                if menu_item is None:
                    raise ValidationError([f"Unknown PLU/SKU '{plu_sku}'"])

            sale.lines.append(PosSalesLine(menu_item_id=menu_item.id, qty_sold=qty_sold))

        sess.add(sale)
        sess.flush()
        log_operation(
            logger,
            operation="record_sale",
            outcome="success",
            sale_id=sale.id,
            store_id=store_id,
            lines=len(sale.lines),
        )
        return sale

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to record sale for store {store_id}", e)
