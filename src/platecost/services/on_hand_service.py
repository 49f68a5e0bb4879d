"""
On-Hand Service - estimated on-hand since the last count.

    estimated = last_count_qty + received_qty - waste_qty
                - theoretical_usage_qty - transferred_out_qty + transferred_in_qty

The baseline is built per storage location: each location of the store
contributes the quantity of its own most recent count of the item (up to
as_of, when given), and receipts, waste and transfers at a location count
only when they happen strictly after that location's count. A location
that never counted the item starts from zero, so all of its activity
counts. Sales are not tied to a location; theoretical usage counts from
the most recent of the location counts (last_counted_at), when the
baseline is complete.

A transfer between two locations of the same store appears only when it
falls on one side of a baseline: when both sides count, it nets to zero
and is left out.

Without any count of the item at the store there is no baseline: the
estimate reports has_baseline=False and estimated_on_hand=None instead of
assuming a starting quantity of zero.
"""

from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from ..models import (
    InventoryCount,
    InventoryCountLine,
    InventoryItem,
    Receipt,
    ReceiptLine,
    StorageLocation,
    TransferLog,
    WasteLog,
)
from ..utils.decimal_utils import ZERO
from .database import session_scope
from .dto import OnHandActivity, OnHandEstimate
from .exceptions import DatabaseError, InventoryItemNotFound, ServiceError
from .logging_utils import get_service_logger, log_operation
from .usage_service import iter_sales_usage

logger = get_service_logger(__name__)

# location_id -> (count_id, counted_at, base units counted)
Baselines = Dict[str, Tuple[str, datetime, Decimal]]


def _location_baselines(
    sess: Session, inventory_item_id: str, store_id: str, as_of: Optional[datetime]
) -> Baselines:
    """Latest count line of the item at each location of the store."""
    query = (
        sess.query(
            InventoryCountLine.location_id,
            InventoryCountLine.derived_base_units,
            InventoryCount.id,
            InventoryCount.counted_at,
        )
        .join(InventoryCount, InventoryCount.id == InventoryCountLine.count_id)
        .filter(
            InventoryCount.store_id == store_id,
            InventoryCountLine.inventory_item_id == inventory_item_id,
        )
    )
    if as_of is not None:
        query = query.filter(InventoryCount.counted_at <= as_of)
    rows = query.order_by(
        InventoryCount.counted_at, InventoryCount.created_at, InventoryCountLine.created_at
    ).all()

    baselines: Baselines = {}
    for location_id, base_qty, count_id, counted_at in rows:
        baselines[location_id] = (count_id, counted_at, Decimal(base_qty))
    return baselines


def _after_baseline(baselines: Baselines, location_id: str, occurred_at: datetime) -> bool:
    baseline = baselines.get(location_id)
    return baseline is None or occurred_at > baseline[1]


def _receipt_activity(sess, inventory_item_id, store_id, baselines, as_of) -> List[OnHandActivity]:
    query = (
        sess.query(
            ReceiptLine.id,
            ReceiptLine.location_id,
            ReceiptLine.derived_base_units,
            Receipt.received_at,
            Receipt.reference,
        )
        .join(Receipt, Receipt.id == ReceiptLine.receipt_id)
        .filter(
            ReceiptLine.inventory_item_id == inventory_item_id,
            Receipt.store_id == store_id,
        )
    )
    if as_of is not None:
        query = query.filter(Receipt.received_at <= as_of)
    return [
        OnHandActivity(
            activity_type="receipt",
            occurred_at=received_at,
            qty=Decimal(base_qty),
            reference_id=line_id,
            location_id=location_id,
            detail=reference,
        )
        for line_id, location_id, base_qty, received_at, reference in query.all()
        if _after_baseline(baselines, location_id, received_at)
    ]


def _waste_activity(sess, inventory_item_id, store_id, baselines, as_of) -> List[OnHandActivity]:
    query = (
        sess.query(
            WasteLog.id,
            WasteLog.location_id,
            WasteLog.derived_base_units,
            WasteLog.wasted_at,
            WasteLog.reason_code,
        )
        .join(StorageLocation, StorageLocation.id == WasteLog.location_id)
        .filter(
            WasteLog.inventory_item_id == inventory_item_id,
            StorageLocation.store_id == store_id,
        )
    )
    if as_of is not None:
        query = query.filter(WasteLog.wasted_at <= as_of)
    return [
        OnHandActivity(
            activity_type="waste",
            occurred_at=wasted_at,
            qty=Decimal(base_qty),
            reference_id=waste_id,
            location_id=location_id,
            detail=reason_code,
        )
        for waste_id, location_id, base_qty, wasted_at, reason_code in query.all()
        if _after_baseline(baselines, location_id, wasted_at)
    ]


def _transfer_activity(sess, inventory_item_id, store_id, baselines, as_of) -> List[OnHandActivity]:
    source = aliased(StorageLocation)
    destination = aliased(StorageLocation)
    query = (
        sess.query(
            TransferLog.id,
            TransferLog.from_location_id,
            TransferLog.to_location_id,
            TransferLog.derived_base_units,
            TransferLog.transferred_at,
            TransferLog.reason,
            source.store_id,
            destination.store_id,
        )
        .join(source, source.id == TransferLog.from_location_id)
        .join(destination, destination.id == TransferLog.to_location_id)
        .filter(
            TransferLog.inventory_item_id == inventory_item_id,
            (source.store_id == store_id) | (destination.store_id == store_id),
        )
    )
    if as_of is not None:
        query = query.filter(TransferLog.transferred_at <= as_of)

    activity = []
    for transfer_id, from_id, to_id, base_qty, moved_at, reason, from_store, to_store in query.all():
        leaves = from_store == store_id and _after_baseline(baselines, from_id, moved_at)
        arrives = to_store == store_id and _after_baseline(baselines, to_id, moved_at)
        if leaves == arrives:
            continue
        if leaves:
            activity_type, location_id = "transfer_out", from_id
        else:
            activity_type, location_id = "transfer_in", to_id
        activity.append(
            OnHandActivity(
                activity_type=activity_type,
                occurred_at=moved_at,
                qty=Decimal(base_qty),
                reference_id=transfer_id,
                location_id=location_id,
                detail=reason,
            )
        )
    return activity


def _usage_activity(sess, inventory_item_id, store_id, since, as_of) -> List[OnHandActivity]:
    activity = []
    for line, occurred_at, usage in iter_sales_usage(
        sess, since, as_of, store_id, start_inclusive=False
    ):
        entry = usage.get(inventory_item_id)
        if entry is None:
            continue
        activity.append(
            OnHandActivity(
                activity_type="usage",
                occurred_at=occurred_at,
                qty=entry.purchased_qty,
                reference_id=line.id,
                detail=line.menu_item.name,
            )
        )
    return activity


def estimate(
    inventory_item_id: str,
    store_id: str,
    as_of: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> OnHandEstimate:
    """
    Estimate an item's on-hand at a store from its last counts and later activity.

    Args:
        inventory_item_id: Item to estimate
        store_id: Store whose locations are aggregated
        as_of: Optional cut-off; counts and activity after it are ignored

    Returns:
        OnHandEstimate with per-kind totals and one activity row per event.
        last_count_id and last_counted_at describe the most recent of the
        location counts; last_count_qty sums every location's baseline.

    Raises:
        InventoryItemNotFound: If the item does not exist
        CyclicRecipeError: If a sold recipe's tree contains a cycle
    """

    def _impl(sess: Session) -> OnHandEstimate:
        if sess.get(InventoryItem, inventory_item_id) is None:
            raise InventoryItemNotFound(inventory_item_id)

        baselines = _location_baselines(sess, inventory_item_id, store_id, as_of)
        if not baselines:
            log_operation(
                logger,
                operation="estimate_on_hand",
                outcome="no_baseline",
                inventory_item_id=inventory_item_id,
                store_id=store_id,
            )
            return OnHandEstimate(
                inventory_item_id=inventory_item_id, store_id=store_id, has_baseline=False
            )

        last_count_id, since, _ = max(baselines.values(), key=lambda baseline: baseline[1])
        counted_qty = sum((base_qty for _, _, base_qty in baselines.values()), ZERO)

        activity = (
            _receipt_activity(sess, inventory_item_id, store_id, baselines, as_of)
            + _waste_activity(sess, inventory_item_id, store_id, baselines, as_of)
            + _transfer_activity(sess, inventory_item_id, store_id, baselines, as_of)
            + _usage_activity(sess, inventory_item_id, store_id, since, as_of)
        )
        activity.sort(key=lambda row: row.occurred_at)

        totals = {kind: ZERO for kind in ("receipt", "waste", "transfer_out", "transfer_in", "usage")}
        for row in activity:
            totals[row.activity_type] += row.qty

        estimated = (
            counted_qty
            + totals["receipt"]
            - totals["waste"]
            - totals["usage"]
            - totals["transfer_out"]
            + totals["transfer_in"]
        )
        return OnHandEstimate(
            inventory_item_id=inventory_item_id,
            store_id=store_id,
            has_baseline=True,
            last_count_id=last_count_id,
            last_counted_at=since,
            last_count_qty=counted_qty,
            received_qty=totals["receipt"],
            waste_qty=totals["waste"],
            theoretical_usage_qty=totals["usage"],
            transferred_out_qty=totals["transfer_out"],
            transferred_in_qty=totals["transfer_in"],
            estimated_on_hand=estimated,
            activity=activity,
        )

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to estimate on-hand for item {inventory_item_id}", e)
