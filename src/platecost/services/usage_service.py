"""
Usage Service - theoretical usage, actual usage and variance.

Theoretical usage is what recipes say should have been consumed by the
sales in a period; actual usage is what the counts say was consumed. Their
difference (variance) is shrink: waste, over-portioning, theft or data
errors.

    theoretical(item) = sum over sales lines of
                        explode(recipe, qty_sold * serving_qty)[item].purchased_qty
    actual(item)      = starting_on_hand + receipts_in_period - ending_on_hand
                        (per storage location, net of transfers, then summed)
    variance          = actual - theoretical
    variance_cost     = variance * last_cost
    variance_percent  = variance / theoretical * 100   (0 when theoretical is 0)

Theoretical quantities are purchased quantities: a recipe calling for 9 oz
of trimmed beef at 90% yield draws 10 oz from stock. They carry no recipe
waste inflation; waste_percent only affects cost.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    InventoryCount,
    InventoryCountLine,
    InventoryItem,
    MenuItem,
    PosSale,
    PosSalesLine,
    Receipt,
    ReceiptLine,
    TransferLog,
)
from ..utils.decimal_utils import HUNDRED, ONE, ZERO, safe_divide
from .costing_service import explode_recipe
from .database import session_scope
from .dto import ItemUsage, TheoreticalContribution, UsageVariance
from .exceptions import DatabaseError, InventoryItemNotFound, ServiceError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


# ============================================================================
# Sales explosion
# ============================================================================


def iter_sales_usage(
    sess: Session,
    start: Optional[datetime],
    end: Optional[datetime],
    store_id: Optional[str] = None,
    start_inclusive: bool = True,
) -> Iterator[Tuple[PosSalesLine, datetime, Dict[str, ItemUsage]]]:
    """
    Explode every sales line in a window into per-item usage.

    Lines whose menu item has no recipe are skipped. Each recipe is exploded
    once per call at one yield and scaled per line.

    Args:
        sess: Open session
        start: Window start (None for unbounded)
        end: Window end, inclusive (None for unbounded)
        store_id: Optional store filter
        start_inclusive: Whether a sale exactly at start is included

    Yields:
        (sales line, sale time, {item_id: ItemUsage}) in sale-time order
    """
    query = (
        sess.query(PosSalesLine, PosSale.occurred_at)
        .join(PosSale, PosSale.id == PosSalesLine.sale_id)
        .join(MenuItem, MenuItem.id == PosSalesLine.menu_item_id)
        .filter(MenuItem.recipe_id.isnot(None))
    )
    if start is not None:
        query = query.filter(
            PosSale.occurred_at >= start if start_inclusive else PosSale.occurred_at > start
        )
    if end is not None:
        query = query.filter(PosSale.occurred_at <= end)
    if store_id is not None:
        query = query.filter(PosSale.store_id == store_id)

    per_yield: Dict[str, Dict[str, ItemUsage]] = {}
    for line, occurred_at in query.order_by(PosSale.occurred_at, PosSalesLine.created_at).all():
        menu_item = line.menu_item
        recipe_id = menu_item.recipe_id
        if recipe_id not in per_yield:
            per_yield[recipe_id] = explode_recipe(recipe_id, ONE, session=sess)
        multiplier = Decimal(line.qty_sold) * Decimal(menu_item.serving_qty or ONE)
        usage = {
            item_id: entry.scaled(multiplier) for item_id, entry in per_yield[recipe_id].items()
        }
        yield line, occurred_at, usage


def _theoretical_usage(
    sess: Session, start: datetime, end: datetime, store_id: Optional[str]
) -> Dict[str, Decimal]:
    totals: Dict[str, Decimal] = {}
    for _line, _occurred_at, usage in iter_sales_usage(sess, start, end, store_id):
        for item_id, entry in usage.items():
            totals[item_id] = totals.get(item_id, ZERO) + entry.purchased_qty
    return totals


# ============================================================================
# Counts
# ============================================================================


def _location_brackets(
    sess: Session, start: datetime, end: datetime, store_id: Optional[str]
) -> Dict[Tuple[str, str], Tuple[Tuple[datetime, Decimal], Tuple[datetime, Decimal]]]:
    """
    Opening and closing count of each (item, location) in the window.

    A pair counted fewer than two times in the window is left out.
    """
    query = (
        sess.query(
            InventoryCountLine.inventory_item_id,
            InventoryCountLine.location_id,
            InventoryCountLine.derived_base_units,
            InventoryCount.counted_at,
        )
        .join(InventoryCount, InventoryCount.id == InventoryCountLine.count_id)
        .filter(InventoryCount.counted_at >= start, InventoryCount.counted_at <= end)
    )
    if store_id is not None:
        query = query.filter(InventoryCount.store_id == store_id)
    rows = query.order_by(
        InventoryCount.counted_at, InventoryCount.created_at, InventoryCountLine.created_at
    ).all()

    seen: Dict[Tuple[str, str], list] = {}
    for item_id, location_id, base_qty, counted_at in rows:
        key = (item_id, location_id)
        entry = (counted_at, Decimal(base_qty))
        if key in seen:
            seen[key][1] = entry
        else:
            seen[key] = [entry, None]
    return {key: (opening, closing) for key, (opening, closing) in seen.items() if closing is not None}


def _location_movements(
    sess: Session, item_ids: List[str], start: datetime, end: datetime
) -> Dict[Tuple[str, str], List[Tuple[datetime, Decimal]]]:
    """Signed receipts and transfers per (item, location) in [start, end]."""
    movements: Dict[Tuple[str, str], List[Tuple[datetime, Decimal]]] = {}

    def _add(item_id, location_id, occurred_at, qty):
        movements.setdefault((item_id, location_id), []).append((occurred_at, qty))

    receipts = (
        sess.query(
            ReceiptLine.inventory_item_id,
            ReceiptLine.location_id,
            ReceiptLine.derived_base_units,
            Receipt.received_at,
        )
        .join(Receipt, Receipt.id == ReceiptLine.receipt_id)
        .filter(
            ReceiptLine.inventory_item_id.in_(item_ids),
            Receipt.received_at >= start,
            Receipt.received_at <= end,
        )
    )
    for item_id, location_id, base_qty, received_at in receipts.all():
        _add(item_id, location_id, received_at, Decimal(base_qty))

    transfers = sess.query(
        TransferLog.inventory_item_id,
        TransferLog.from_location_id,
        TransferLog.to_location_id,
        TransferLog.derived_base_units,
        TransferLog.transferred_at,
    ).filter(
        TransferLog.inventory_item_id.in_(item_ids),
        TransferLog.transferred_at >= start,
        TransferLog.transferred_at <= end,
    )
    for item_id, from_id, to_id, base_qty, moved_at in transfers.all():
        _add(item_id, from_id, moved_at, -Decimal(base_qty))
        _add(item_id, to_id, moved_at, Decimal(base_qty))

    return movements


def _actual_usage(
    sess: Session, start: datetime, end: datetime, store_id: Optional[str]
) -> Dict[str, Decimal]:
    brackets = _location_brackets(sess, start, end, store_id)
    if not brackets:
        return {}
    item_ids = sorted({item_id for item_id, _ in brackets})
    movements = _location_movements(sess, item_ids, start, end)

    actual: Dict[str, Decimal] = {}
    for key, ((opened_at, opening), (closed_at, closing)) in brackets.items():
        moved = sum(
            (qty for occurred_at, qty in movements.get(key, []) if opened_at < occurred_at <= closed_at),
            ZERO,
        )
        item_id = key[0]
        actual[item_id] = actual.get(item_id, ZERO) + opening + moved - closing
    return actual


# ============================================================================
# Public operations
# ============================================================================


def theoretical_usage(
    start: datetime, end: datetime, store_id: Optional[str] = None, session: Optional[Session] = None
) -> Dict[str, Decimal]:
    """
    Recipe-driven consumption implied by sales in [start, end].

    Returns:
        Dict mapping inventory_item_id -> purchased base units

    Raises:
        CyclicRecipeError: If a sold recipe's tree contains a cycle
    """

    def _impl(sess: Session) -> Dict[str, Decimal]:
        return _theoretical_usage(sess, start, end, store_id)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to compute theoretical usage", e)


def actual_usage(
    start: datetime, end: datetime, store_id: Optional[str] = None, session: Optional[Session] = None
) -> Dict[str, Decimal]:
    """
    Consumption implied by counts: starting_on_hand + receipts - ending_on_hand.

    Each item is bracketed per storage location: the earliest and latest
    count line of the item at that location in [start, end] give its
    starting and ending quantity, and receipts and transfers at that
    location strictly after the first and up to the last of those counts
    are added or removed. Locations are then summed. Without a store_id
    every store is included, each location bracketed on its own counts.
    A location counted fewer than two times in the window contributes
    nothing; with no such location the result is empty, not an error.

    Returns:
        Dict mapping inventory_item_id -> base units consumed
    """

    def _impl(sess: Session) -> Dict[str, Decimal]:
        return _actual_usage(sess, start, end, store_id)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to compute actual usage", e)


def _build_variance(
    item: InventoryItem, actual: Decimal, theoretical: Decimal
) -> UsageVariance:
    difference = actual - theoretical
    last_cost = Decimal(item.last_cost or ZERO)
    percent = safe_divide(difference, theoretical) * HUNDRED if theoretical > ZERO else ZERO
    return UsageVariance(
        inventory_item_id=item.id,
        inventory_item_name=item.name,
        actual_usage=actual,
        theoretical_usage=theoretical,
        variance=difference,
        variance_cost=difference * last_cost,
        variance_percent=percent,
    )


def variance(
    inventory_item_id: str,
    start: datetime,
    end: datetime,
    store_id: Optional[str] = None,
    session: Optional[Session] = None,
) -> UsageVariance:
    """
    Actual minus theoretical usage of one item over a period.

    Example:
        >>> # counted 100 oz, received 40 oz, counted 60 oz; recipes say 70 oz
        >>> result = variance(item.id, day1, day5, store_id="store-1")
        >>> result.actual_usage == 80 and result.theoretical_usage == 70
        True
        >>> result.variance == 10
        True

    Raises:
        InventoryItemNotFound: If the item does not exist
    """

    def _impl(sess: Session) -> UsageVariance:
        item = sess.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        actual = _actual_usage(sess, start, end, store_id).get(inventory_item_id, ZERO)
        theoretical = _theoretical_usage(sess, start, end, store_id).get(inventory_item_id, ZERO)
        return _build_variance(item, actual, theoretical)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to compute variance for item {inventory_item_id}", e)


def variance_report(
    start: datetime, end: datetime, store_id: Optional[str] = None, session: Optional[Session] = None
) -> List[UsageVariance]:
    """
    Variance for every item with non-zero actual or theoretical usage.

    Returns:
        UsageVariance rows ordered by absolute variance cost, largest first
    """

    def _impl(sess: Session) -> List[UsageVariance]:
        actual = _actual_usage(sess, start, end, store_id)
        theoretical = _theoretical_usage(sess, start, end, store_id)
        item_ids = {
            item_id
            for item_id in set(actual) | set(theoretical)
            if actual.get(item_id, ZERO) != ZERO or theoretical.get(item_id, ZERO) != ZERO
        }
        if not item_ids:
            return []

        items = sess.query(InventoryItem).filter(InventoryItem.id.in_(sorted(item_ids))).all()
        rows = [
            _build_variance(item, actual.get(item.id, ZERO), theoretical.get(item.id, ZERO))
            for item in items
        ]
        rows.sort(key=lambda row: (-abs(row.variance_cost), row.inventory_item_name or ""))

        log_operation(
            logger,
            operation="variance_report",
            outcome="success",
            store_id=store_id,
            items=len(rows),
        )
        return rows

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to build variance report", e)


def theoretical_usage_detail(
    inventory_item_id: str,
    start: datetime,
    end: datetime,
    store_id: Optional[str] = None,
    session: Optional[Session] = None,
) -> List[TheoreticalContribution]:
    """
    Break an item's theoretical usage down by the menu items that drove it.

    Returns:
        One TheoreticalContribution per menu item, largest theoretical_qty first
    """

    def _impl(sess: Session) -> List[TheoreticalContribution]:
        if sess.get(InventoryItem, inventory_item_id) is None:
            raise InventoryItemNotFound(inventory_item_id)

        rows: Dict[str, TheoreticalContribution] = {}
        for line, _occurred_at, usage in iter_sales_usage(sess, start, end, store_id):
            entry = usage.get(inventory_item_id)
            if entry is None:
                continue
            menu_item = line.menu_item
            row = rows.get(menu_item.id)
            if row is None:
                row = TheoreticalContribution(menu_item_id=menu_item.id, menu_item_name=menu_item.name)
                rows[menu_item.id] = row
            row.qty_sold += Decimal(line.qty_sold)
            row.theoretical_qty += entry.purchased_qty
            row.cost += entry.cost

        return sorted(rows.values(), key=lambda row: (-row.theoretical_qty, row.menu_item_name))

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to build usage detail for item {inventory_item_id}", e)
