"""
Inventory Item Service - purchasable products and their costs.

Items carry a moving last cost per base unit and a yield percentage. Any
change to either is an upstream cost write: a price-history row is appended
(for cost changes) and every recipe that uses the item, directly or through
sub-recipes, has its cached cost recomputed in the same transaction.

All functions accept an optional session parameter so they can take part in
a caller's transaction (the ledger uses this when a receipt sets a new cost).
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import InventoryItem, InventoryItemPriceHistory, StorageLocation
from ..utils.constants import (
    DEFAULT_YIELD_PERCENT,
    MAX_NAME_LENGTH,
    PRICE_SOURCE_MANUAL,
    PRICE_SOURCE_RECEIPT,
)
from ..utils.datetime_utils import utc_now
from ..utils.decimal_utils import HUNDRED, ONE, ZERO, to_decimal
from .costing_service import refresh_dependent_costs
from .database import session_scope
from .exceptions import (
    DatabaseError,
    InventoryItemNotFound,
    ServiceError,
    StorageLocationNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation
from .unit_service import _load_unit

logger = get_service_logger(__name__)

UPDATABLE_FIELDS = (
    "name",
    "unit_id",
    "case_size",
    "last_cost",
    "yield_percent",
    "par_level",
    "reorder_level",
)


def _load_item(sess: Session, inventory_item_id: str) -> InventoryItem:
    item = sess.get(InventoryItem, inventory_item_id) if inventory_item_id is not None else None
    if item is None:
        raise InventoryItemNotFound(inventory_item_id)
    return item


def _validate_item_data(data: Dict[str, Any], creating: bool) -> Dict[str, Any]:
    """Coerce numeric fields and collect validation errors.

    Returns:
        A copy of data with Decimal values for every numeric field present
    """
    errors = []
    cleaned = dict(data)

    if creating or "name" in data:
        name = data.get("name")
        if not name or not str(name).strip():
            errors.append("Item name is required")
        elif len(name) > MAX_NAME_LENGTH:
            errors.append(f"Item name must be at most {MAX_NAME_LENGTH} characters")
        else:
            cleaned["name"] = name.strip()

    if creating and not data.get("unit_id"):
        errors.append("unit_id is required")

    for field_name in ("case_size", "last_cost", "yield_percent", "par_level", "reorder_level"):
        if data.get(field_name) is None:
            continue
        try:
            cleaned[field_name] = to_decimal(data[field_name])
        except ValueError:
            errors.append(f"{field_name} must be a number")

    if not errors:
        if cleaned.get("last_cost") is not None and cleaned["last_cost"] < ZERO:
            errors.append("last_cost cannot be negative")
        if cleaned.get("case_size") is not None and cleaned["case_size"] <= ZERO:
            errors.append("case_size must be greater than 0")
        yield_percent = cleaned.get("yield_percent")
        if yield_percent is not None and not (ZERO <= yield_percent <= HUNDRED):
            errors.append("yield_percent must be between 0 and 100")

    if errors:
        raise ValidationError(errors)
    return cleaned


def _record_price(
    sess: Session, item: InventoryItem, price_per_unit: Decimal, source: str, note: Optional[str]
) -> InventoryItemPriceHistory:
    entry = InventoryItemPriceHistory(
        inventory_item_id=item.id,
        effective_at=utc_now(),
        price_per_unit=price_per_unit,
        source=source,
        note=note,
    )
    sess.add(entry)
    return entry


def create_inventory_item(
    name: str,
    unit_id: str,
    last_cost=ZERO,
    yield_percent=DEFAULT_YIELD_PERCENT,
    case_size=ONE,
    par_level=None,
    reorder_level=None,
    storage_location_ids: Optional[List[str]] = None,
    session: Optional[Session] = None,
) -> InventoryItem:
    """
    Create an inventory item.

    Args:
        name: Item name
        unit_id: Unit the item is counted in (fixes its base unit kind)
        last_cost: Initial cost per base unit
        yield_percent: Usable percentage after trim, 0-100 (0 means 100)
        case_size: Base units per purchase case
        par_level: Optional target on-hand (base units)
        reorder_level: Optional reorder trigger (base units)
        storage_location_ids: Locations the item is stocked at

    Returns:
        The new InventoryItem

    Raises:
        ValidationError: If a field is missing or out of range
        UnitNotFound: If unit_id does not resolve
        StorageLocationNotFound: If a location ID does not resolve
    """
    data = _validate_item_data(
        {
            "name": name,
            "unit_id": unit_id,
            "last_cost": last_cost,
            "yield_percent": yield_percent,
            "case_size": case_size,
            "par_level": par_level,
            "reorder_level": reorder_level,
        },
        creating=True,
    )

    def _impl(sess: Session) -> InventoryItem:
        _load_unit(sess, unit_id)
        item = InventoryItem(
            name=data["name"],
            unit_id=unit_id,
            last_cost=data.get("last_cost") if data.get("last_cost") is not None else ZERO,
            yield_percent=data.get("yield_percent"),
            case_size=data.get("case_size") if data.get("case_size") is not None else ONE,
            par_level=data.get("par_level"),
            reorder_level=data.get("reorder_level"),
        )
        for location_id in storage_location_ids or []:
            location = sess.get(StorageLocation, location_id)
            if location is None:
                raise StorageLocationNotFound(location_id)
            item.storage_locations.append(location)
        sess.add(item)
        sess.flush()

        if item.last_cost:
            _record_price(sess, item, Decimal(item.last_cost), PRICE_SOURCE_MANUAL, "Initial cost")
            sess.flush()

        log_operation(
            logger,
            operation="create_inventory_item",
            outcome="success",
            inventory_item_id=item.id,
            item_name=item.name,
        )
        return item

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create inventory item '{name}'", e)


def get_inventory_item(inventory_item_id: str, session: Optional[Session] = None) -> InventoryItem:
    """Get an inventory item by ID.

    Raises:
        InventoryItemNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> InventoryItem:
        return _load_item(sess, inventory_item_id)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get inventory item {inventory_item_id}", e)


def list_inventory_items(
    name_search: Optional[str] = None,
    location_id: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[InventoryItem]:
    """
    List inventory items ordered by name.

    Args:
        name_search: Optional case-insensitive substring match on name
        location_id: Optional filter to items stocked at a location
    """

    def _impl(sess: Session) -> List[InventoryItem]:
        query = sess.query(InventoryItem)
        if name_search:
            query = query.filter(InventoryItem.name.ilike(f"%{name_search}%"))
        if location_id:
            query = query.filter(InventoryItem.storage_locations.any(StorageLocation.id == location_id))
        return query.order_by(InventoryItem.name).all()

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to list inventory items", e)


def update_inventory_item(
    inventory_item_id: str,
    data: Dict[str, Any],
    price_source: str = PRICE_SOURCE_MANUAL,
    price_note: Optional[str] = None,
    session: Optional[Session] = None,
) -> InventoryItem:
    """
    Update an inventory item.

    A changed last_cost appends a price-history row; a changed last_cost or
    yield_percent recomputes the cached cost of every dependent recipe.

    Args:
        inventory_item_id: Item to update
        data: Fields to change (see UPDATABLE_FIELDS); unknown keys are rejected
        price_source: "receipt" or "manual", recorded in price history
        price_note: Optional note for the price-history row

    Returns:
        The updated InventoryItem

    Raises:
        InventoryItemNotFound, UnitNotFound, ValidationError
    """
    unknown = sorted(set(data) - set(UPDATABLE_FIELDS))
    if unknown:
        raise ValidationError([f"Cannot update field '{field_name}'" for field_name in unknown])
    if price_source not in (PRICE_SOURCE_MANUAL, PRICE_SOURCE_RECEIPT):
        raise ValidationError([f"Unknown price source '{price_source}'"])
    cleaned = _validate_item_data(data, creating=False)

    def _impl(sess: Session) -> InventoryItem:
        item = _load_item(sess, inventory_item_id)
        if "unit_id" in cleaned:
            _load_unit(sess, cleaned["unit_id"])

        old_cost = Decimal(item.last_cost) if item.last_cost is not None else ZERO
        old_yield = item.yield_percent

        for field_name, value in cleaned.items():
            setattr(item, field_name, value)

        cost_changed = "last_cost" in cleaned and cleaned["last_cost"] != old_cost
        yield_changed = "yield_percent" in cleaned and cleaned["yield_percent"] != old_yield

        if cost_changed:
            _record_price(sess, item, cleaned["last_cost"], price_source, price_note)
        sess.flush()

        if cost_changed or yield_changed:
            refresh_dependent_costs(item_id=item.id, session=sess)

        log_operation(
            logger,
            operation="update_inventory_item",
            outcome="success",
            inventory_item_id=item.id,
            fields=sorted(cleaned),
            cost_changed=cost_changed,
        )
        return item

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to update inventory item {inventory_item_id}", e)


def update_item_cost(
    inventory_item_id: str,
    cost_per_base_unit,
    source: str = PRICE_SOURCE_MANUAL,
    note: Optional[str] = None,
    session: Optional[Session] = None,
) -> InventoryItem:
    """Set an item's last cost per base unit (shorthand for update_inventory_item)."""
    return update_inventory_item(
        inventory_item_id,
        {"last_cost": cost_per_base_unit},
        price_source=source,
        price_note=note,
        session=session,
    )


def get_price_history(
    inventory_item_id: str, session: Optional[Session] = None
) -> List[InventoryItemPriceHistory]:
    """Price history for an item, oldest first.

    Raises:
        InventoryItemNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> List[InventoryItemPriceHistory]:
        _load_item(sess, inventory_item_id)
        return (
            sess.query(InventoryItemPriceHistory)
            .filter(InventoryItemPriceHistory.inventory_item_id == inventory_item_id)
            .order_by(InventoryItemPriceHistory.effective_at, InventoryItemPriceHistory.created_at)
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
        raise DatabaseError(f"Failed to get price history for item {inventory_item_id}", e)
