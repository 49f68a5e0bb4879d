"""
Ledger Service - stock-affecting events and on-hand state.

Four event kinds change the on-hand quantity of an (item, location) pair:

- Count:    SETS on-hand to the counted quantity (the reconciliation checkpoint)
- Receipt:  ADDS to on-hand and moves the item's last cost
- Transfer: moves stock between two locations (debit and credit together)
- Waste:    SUBTRACTS from on-hand and records the value lost

Every quantity is converted to base units on write; the derived base-unit
value is stored on the event so later reads never reconvert.

Concurrency:
    on-hand updates are read-modify-write. Each operation holds the
    per-key locks from key_locks.ledger_locks for its whole transaction
    (commit included when the operation owns its session). A transfer holds
    both keys, acquired in sorted order.

    When a caller passes its own session, the lock is released when the
    operation returns; the caller's commit then happens outside it.

Transactions:
    Multi-row operations (transfer, receipt cost update, count-session
    delete) run in one session transaction. Any exception rolls all of it
    back.
"""

import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import (
    InventoryCount,
    InventoryCountLine,
    InventoryItem,
    InventoryLevel,
    Receipt,
    ReceiptLine,
    StorageLocation,
    TransferLog,
    WasteLog,
)
from ..utils.constants import MAX_NOTES_LENGTH, PRICE_SOURCE_RECEIPT, WASTE_REASON_CODES
from ..utils.datetime_utils import utc_now
from ..utils.decimal_utils import ZERO, to_decimal
from .database import session_scope
from .exceptions import (
    CountLineNotFound,
    DatabaseError,
    InsufficientInventory,
    InventoryCountNotFound,
    InventoryItemNotFound,
    ReceiptNotFound,
    ServiceError,
    StorageLocationNotFound,
    ValidationError,
)
from .inventory_item_service import update_item_cost
from .key_locks import ledger_key, ledger_locks
from .logging_utils import get_service_logger, log_operation
from .unit_service import _load_unit, to_base

logger = get_service_logger(__name__)


# ============================================================================
# Helpers
# ============================================================================


def _load_item(sess: Session, inventory_item_id: str) -> InventoryItem:
    item = sess.get(InventoryItem, inventory_item_id) if inventory_item_id is not None else None
    if item is None:
        raise InventoryItemNotFound(inventory_item_id)
    return item


def _load_location(sess: Session, location_id: str) -> StorageLocation:
    location = sess.get(StorageLocation, location_id) if location_id is not None else None
    if location is None:
        raise StorageLocationNotFound(location_id)
    return location


def _load_count(sess: Session, count_id: str) -> InventoryCount:
    count = sess.get(InventoryCount, count_id) if count_id is not None else None
    if count is None:
        raise InventoryCountNotFound(count_id)
    return count


def _event_qty(qty, allow_zero: bool = False) -> Decimal:
    """Coerce an event quantity, rejecting non-positive values (zero allowed for counts)."""
    try:
        value = to_decimal(qty)
    except ValueError:
        raise ValidationError(["Quantity must be a number"])
    if value < ZERO or (value == ZERO and not allow_zero):
        bound = "0 or greater" if allow_zero else "greater than 0"
        raise ValidationError([f"Quantity must be {bound}"])
    return value


def _get_level(sess: Session, inventory_item_id: str, location_id: str) -> InventoryLevel:
    """The on-hand row for a key, created at zero on first use."""
    level = (
        sess.query(InventoryLevel)
        .filter(
            InventoryLevel.inventory_item_id == inventory_item_id,
            InventoryLevel.location_id == location_id,
        )
        .first()
    )
    if level is None:
        level = InventoryLevel(
            inventory_item_id=inventory_item_id, location_id=location_id, on_hand_base_units=ZERO
        )
        sess.add(level)
        sess.flush()
    return level


def _on_hand(level: InventoryLevel) -> Decimal:
    if level.on_hand_base_units is None:
        return ZERO
    return Decimal(level.on_hand_base_units)


def _debit(
    sess: Session, operation: str, inventory_item_id: str, location_id: str, base_qty: Decimal
) -> InventoryLevel:
    """Subtract from on-hand, refusing to go below zero."""
    level = _get_level(sess, inventory_item_id, location_id)
    available = _on_hand(level)
    if available < base_qty:
        log_operation(
            logger,
            operation=operation,
            outcome="insufficient_inventory",
            level=logging.WARNING,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            required=str(base_qty),
            available=str(available),
        )
        raise InsufficientInventory(inventory_item_id, location_id, base_qty, available)
    level.on_hand_base_units = available - base_qty
    return level


def _run_locked(keys: List[tuple], session: Optional[Session], impl):
    """Run impl(sess) holding the ledger locks for keys across the whole transaction."""
    with ledger_locks.hold(*keys):
        if session is not None:
            return impl(session)
        with session_scope() as sess:
            return impl(sess)


# ============================================================================
# Counts
# ============================================================================


def start_count_session(
    store_id: str,
    counted_at: Optional[datetime] = None,
    note: Optional[str] = None,
    session: Optional[Session] = None,
) -> InventoryCount:
    """
    Open a count session for a store.

    Args:
        store_id: Store being counted
        counted_at: Checkpoint time of the count (defaults to now)
        note: Optional free text

    Returns:
        The new InventoryCount
    """
    if not store_id:
        raise ValidationError(["store_id is required"])
    if note is not None and len(note) > MAX_NOTES_LENGTH:
        raise ValidationError([f"Note must be at most {MAX_NOTES_LENGTH} characters"])

    def _impl(sess: Session) -> InventoryCount:
        count = InventoryCount(store_id=store_id, counted_at=counted_at or utc_now(), note=note)
        sess.add(count)
        sess.flush()
        log_operation(
            logger,
            operation="start_count_session",
            outcome="success",
            count_id=count.id,
            store_id=store_id,
        )
        return count

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to start count session for store {store_id}", e)


def apply_count(
    inventory_item_id: str,
    location_id: str,
    qty,
    unit_id: str,
    count_id: Optional[str] = None,
    counted_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> InventoryCountLine:
    """
    Record a physical count and SET on-hand to it.

    The item's current last_cost is snapshotted onto the line so the count
    can be valued later at the cost in force when it was taken. Counting
    the same item and location again in the same session replaces the
    earlier line's quantity.

    Args:
        inventory_item_id: Item counted
        location_id: Where it was counted
        qty: Counted quantity in unit_id (0 or more)
        unit_id: Unit of qty
        count_id: Count session to add the line to; a new session for the
            location's store is opened when omitted
        counted_at: Checkpoint time used when a new session is opened

    Returns:
        The InventoryCountLine

    Raises:
        InventoryItemNotFound, StorageLocationNotFound, UnitNotFound,
        InventoryCountNotFound
        ValidationError: If qty is negative or the session belongs to another store
    """
    count_qty = _event_qty(qty, allow_zero=True)

    def _impl(sess: Session) -> InventoryCountLine:
        item = _load_item(sess, inventory_item_id)
        location = _load_location(sess, location_id)
        base_qty = to_base(count_qty, _load_unit(sess, unit_id))

        if count_id is not None:
            count = _load_count(sess, count_id)
            if count.store_id != location.store_id:
                raise ValidationError(
                    [f"Count {count_id} belongs to store {count.store_id}, not {location.store_id}"]
                )
        else:
            count = InventoryCount(store_id=location.store_id, counted_at=counted_at or utc_now())
            sess.add(count)
            sess.flush()

        line = (
            sess.query(InventoryCountLine)
            .filter(
                InventoryCountLine.count_id == count.id,
                InventoryCountLine.inventory_item_id == inventory_item_id,
                InventoryCountLine.location_id == location_id,
            )
            .first()
        )
        if line is None:
            line = InventoryCountLine(
                count_id=count.id,
                inventory_item_id=inventory_item_id,
                location_id=location_id,
                unit_cost_snapshot=Decimal(item.last_cost or ZERO),
            )
            sess.add(line)
        line.qty = count_qty
        line.unit_id = unit_id
        line.derived_base_units = base_qty

        level = _get_level(sess, inventory_item_id, location_id)
        level.on_hand_base_units = base_qty
        sess.flush()

        log_operation(
            logger,
            operation="apply_count",
            outcome="success",
            count_id=count.id,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            base_qty=str(base_qty),
        )
        return line

    try:
        return _run_locked([ledger_key(inventory_item_id, location_id)], session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to apply count for item {inventory_item_id}", e)


def correct_count_line(
    line_id: str, new_qty, unit_id: Optional[str] = None, session: Optional[Session] = None
) -> InventoryCountLine:
    """
    Correct the quantity of a count line after the fact.

    The old contribution is reversed and the new one applied:
    on_hand = on_hand - old_derived + new_derived. Events recorded since the
    count therefore keep their effect. unit_cost_snapshot is not touched.

    Args:
        line_id: Count line to correct
        new_qty: Corrected quantity (0 or more)
        unit_id: Optional new unit for new_qty (defaults to the line's unit)

    Raises:
        CountLineNotFound, UnitNotFound, ValidationError
    """
    corrected_qty = _event_qty(new_qty, allow_zero=True)

    def _key_for_line() -> tuple:
        def _read(sess: Session) -> tuple:
            line = sess.get(InventoryCountLine, line_id)
            if line is None:
                raise CountLineNotFound(line_id)
            return ledger_key(line.inventory_item_id, line.location_id)

        if session is not None:
            return _read(session)
        with session_scope() as sess:
            return _read(sess)

    def _impl(sess: Session) -> InventoryCountLine:
        line = sess.get(InventoryCountLine, line_id)
        if line is None:
            raise CountLineNotFound(line_id)
        unit = _load_unit(sess, unit_id or line.unit_id)
        old_derived = Decimal(line.derived_base_units)
        new_derived = to_base(corrected_qty, unit)

        level = _get_level(sess, line.inventory_item_id, line.location_id)
        level.on_hand_base_units = _on_hand(level) - old_derived + new_derived

        line.qty = corrected_qty
        line.unit_id = unit.id
        line.derived_base_units = new_derived
        sess.flush()

        log_operation(
            logger,
            operation="correct_count_line",
            outcome="success",
            line_id=line_id,
            old_base_qty=str(old_derived),
            new_base_qty=str(new_derived),
        )
        return line

    try:
        return _run_locked([_key_for_line()], session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to correct count line {line_id}", e)


def delete_count_session(count_id: str, session: Optional[Session] = None) -> int:
    """
    Delete a count session, reversing every line's effect on on-hand.

    Each line's derived base units are subtracted from the current on-hand
    of its key; lines and session are then deleted. All in one transaction.

    Returns:
        Number of lines reversed

    Raises:
        InventoryCountNotFound: If the session does not exist
    """

    def _keys_for_count() -> List[tuple]:
        def _read(sess: Session) -> List[tuple]:
            count = _load_count(sess, count_id)
            return [ledger_key(line.inventory_item_id, line.location_id) for line in count.lines]

        if session is not None:
            return _read(session)
        with session_scope() as sess:
            return _read(sess)

    def _impl(sess: Session) -> int:
        count = _load_count(sess, count_id)
        lines = list(count.lines)
        for line in lines:
            level = _get_level(sess, line.inventory_item_id, line.location_id)
            level.on_hand_base_units = _on_hand(level) - Decimal(line.derived_base_units)
        sess.delete(count)
        sess.flush()

        log_operation(
            logger,
            operation="delete_count_session",
            outcome="success",
            count_id=count_id,
            lines=len(lines),
        )
        return len(lines)

    try:
        return _run_locked(_keys_for_count(), session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to delete count session {count_id}", e)


def get_count_session(count_id: str, session: Optional[Session] = None) -> InventoryCount:
    """Get a count session with its lines loaded.

    Raises:
        InventoryCountNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> InventoryCount:
        count = _load_count(sess, count_id)
        _ = count.lines
        return count

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get count session {count_id}", e)


def count_value(count_id: str, session: Optional[Session] = None) -> Dict[str, Any]:
    """
    Value a count session at the costs snapshotted when it was taken.

    Returns:
        Dict with keys:
            - "count_id", "store_id", "counted_at"
            - "lines" (list of dicts): line_id, inventory_item_id, location_id,
              derived_base_units, unit_cost_snapshot, value
            - "total_value" (Decimal)
    """

    def _impl(sess: Session) -> Dict[str, Any]:
        count = _load_count(sess, count_id)
        lines = []
        total = ZERO
        for line in count.lines:
            base_qty = Decimal(line.derived_base_units)
            unit_cost = Decimal(line.unit_cost_snapshot)
            value = base_qty * unit_cost
            total += value
            lines.append(
                {
                    "line_id": line.id,
                    "inventory_item_id": line.inventory_item_id,
                    "location_id": line.location_id,
                    "derived_base_units": base_qty,
                    "unit_cost_snapshot": unit_cost,
                    "value": value,
                }
            )
        return {
            "count_id": count.id,
            "store_id": count.store_id,
            "counted_at": count.counted_at,
            "lines": lines,
            "total_value": total,
        }

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to value count {count_id}", e)


# ============================================================================
# Receipts
# ============================================================================


def start_receipt(
    store_id: str,
    received_at: Optional[datetime] = None,
    reference: Optional[str] = None,
    session: Optional[Session] = None,
) -> Receipt:
    """Open a receipt (delivery) for a store."""
    if not store_id:
        raise ValidationError(["store_id is required"])

    def _impl(sess: Session) -> Receipt:
        receipt = Receipt(store_id=store_id, received_at=received_at or utc_now(), reference=reference)
        sess.add(receipt)
        sess.flush()
        return receipt

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to start receipt for store {store_id}", e)


def apply_receipt(
    inventory_item_id: str,
    location_id: str,
    qty,
    unit_id: str,
    price_each,
    receipt_id: Optional[str] = None,
    received_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> ReceiptLine:
    """
    Receive stock: ADD to on-hand and move the item's last cost.

    The new last cost is price_each / derived_base_units (moving last cost,
    not a weighted average). The change is appended to the item's price
    history and every dependent recipe cost is recomputed, all in the same
    transaction as the on-hand update.

    Args:
        inventory_item_id: Item received
        location_id: Where it was put away
        qty: Quantity received in unit_id (> 0)
        unit_id: Unit of qty
        price_each: Price paid for the received quantity
        receipt_id: Receipt to add the line to; a new receipt for the
            location's store is opened when omitted
        received_at: Receipt time used when a new receipt is opened

    Returns:
        The created ReceiptLine

    Raises:
        InventoryItemNotFound, StorageLocationNotFound, UnitNotFound,
        ReceiptNotFound
        ValidationError: If qty is not positive, the price is negative, or the
            receipt belongs to another store
    """
    received_qty = _event_qty(qty)
    try:
        price = to_decimal(price_each)
    except ValueError:
        raise ValidationError(["price_each must be a number"])
    if price < ZERO:
        raise ValidationError(["price_each cannot be negative"])

    def _impl(sess: Session) -> ReceiptLine:
        _load_item(sess, inventory_item_id)
        location = _load_location(sess, location_id)
        base_qty = to_base(received_qty, _load_unit(sess, unit_id))

        if receipt_id is not None:
            receipt = sess.get(Receipt, receipt_id)
            if receipt is None:
                raise ReceiptNotFound(receipt_id)
            if receipt.store_id != location.store_id:
                raise ValidationError(
                    [f"Receipt {receipt_id} belongs to store {receipt.store_id}, not {location.store_id}"]
                )
        else:
            receipt = Receipt(store_id=location.store_id, received_at=received_at or utc_now())
            sess.add(receipt)
            sess.flush()

        line = ReceiptLine(
            receipt_id=receipt.id,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            qty=received_qty,
            unit_id=unit_id,
            derived_base_units=base_qty,
            price_each=price,
        )
        sess.add(line)

        level = _get_level(sess, inventory_item_id, location_id)
        level.on_hand_base_units = _on_hand(level) + base_qty
        sess.flush()

        new_cost = price / base_qty
        update_item_cost(
            inventory_item_id,
            new_cost,
            source=PRICE_SOURCE_RECEIPT,
            note=f"Receipt {receipt.id}",
            session=sess,
        )

        log_operation(
            logger,
            operation="apply_receipt",
            outcome="success",
            receipt_id=receipt.id,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            base_qty=str(base_qty),
            last_cost=str(new_cost),
        )
        return line

    try:
        return _run_locked([ledger_key(inventory_item_id, location_id)], session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to apply receipt for item {inventory_item_id}", e)


# ============================================================================
# Transfers and waste
# ============================================================================


def apply_transfer(
    inventory_item_id: str,
    from_location_id: str,
    to_location_id: str,
    qty,
    unit_id: str,
    reason: Optional[str] = None,
    transferred_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> TransferLog:
    """
    Move stock between two locations.

    The debit and the credit happen in one transaction under both keys'
    locks; neither side is observable without the other. Total on-hand
    across the two locations is unchanged.

    Raises:
        InventoryItemNotFound, StorageLocationNotFound, UnitNotFound
        ValidationError: If the locations are the same or qty is not positive
        InsufficientInventory: If the source holds less than qty
    """
    if from_location_id == to_location_id:
        raise ValidationError(["Transfer source and destination must differ"])
    transfer_qty = _event_qty(qty)

    def _impl(sess: Session) -> TransferLog:
        _load_item(sess, inventory_item_id)
        _load_location(sess, from_location_id)
        _load_location(sess, to_location_id)
        base_qty = to_base(transfer_qty, _load_unit(sess, unit_id))

        _debit(sess, "apply_transfer", inventory_item_id, from_location_id, base_qty)
        destination = _get_level(sess, inventory_item_id, to_location_id)
        destination.on_hand_base_units = _on_hand(destination) + base_qty

        transfer = TransferLog(
            inventory_item_id=inventory_item_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            qty=transfer_qty,
            unit_id=unit_id,
            derived_base_units=base_qty,
            transferred_at=transferred_at or utc_now(),
            reason=reason,
        )
        sess.add(transfer)
        sess.flush()

        log_operation(
            logger,
            operation="apply_transfer",
            outcome="success",
            transfer_id=transfer.id,
            inventory_item_id=inventory_item_id,
            from_location_id=from_location_id,
            to_location_id=to_location_id,
            base_qty=str(base_qty),
        )
        return transfer

    keys = [
        ledger_key(inventory_item_id, from_location_id),
        ledger_key(inventory_item_id, to_location_id),
    ]
    try:
        return _run_locked(keys, session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to transfer item {inventory_item_id}", e)


def apply_waste(
    inventory_item_id: str,
    location_id: str,
    qty,
    unit_id: str,
    reason_code: str,
    notes: Optional[str] = None,
    wasted_at: Optional[datetime] = None,
    session: Optional[Session] = None,
) -> WasteLog:
    """
    Record waste: SUBTRACT from on-hand and value the loss at last cost.

    Args:
        reason_code: One of WASTE_REASON_CODES

    Returns:
        The created WasteLog (total_value = derived_base_units * last_cost)

    Raises:
        InventoryItemNotFound, StorageLocationNotFound, UnitNotFound
        ValidationError: If qty is not positive or the reason code is unknown
        InsufficientInventory: If on-hand is below qty
    """
    waste_qty = _event_qty(qty)
    if reason_code not in WASTE_REASON_CODES:
        raise ValidationError([f"Unknown waste reason code '{reason_code}'"])
    if notes is not None and len(notes) > MAX_NOTES_LENGTH:
        raise ValidationError([f"Notes must be at most {MAX_NOTES_LENGTH} characters"])

    def _impl(sess: Session) -> WasteLog:
        item = _load_item(sess, inventory_item_id)
        _load_location(sess, location_id)
        base_qty = to_base(waste_qty, _load_unit(sess, unit_id))

        _debit(sess, "apply_waste", inventory_item_id, location_id, base_qty)

        waste = WasteLog(
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            qty=waste_qty,
            unit_id=unit_id,
            derived_base_units=base_qty,
            reason_code=reason_code,
            total_value=base_qty * Decimal(item.last_cost or ZERO),
            notes=notes,
            wasted_at=wasted_at or utc_now(),
        )
        sess.add(waste)
        sess.flush()

        log_operation(
            logger,
            operation="apply_waste",
            outcome="success",
            waste_id=waste.id,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            base_qty=str(base_qty),
            reason_code=reason_code,
        )
        return waste

    try:
        return _run_locked([ledger_key(inventory_item_id, location_id)], session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to record waste for item {inventory_item_id}", e)


# ============================================================================
# On-hand queries and replay
# ============================================================================


def get_on_hand(inventory_item_id: str, location_id: str, session: Optional[Session] = None) -> Decimal:
    """Current on-hand in base units for a key (0 when nothing was ever recorded)."""

    def _impl(sess: Session) -> Decimal:
        value = (
            sess.query(InventoryLevel.on_hand_base_units)
            .filter(
                InventoryLevel.inventory_item_id == inventory_item_id,
                InventoryLevel.location_id == location_id,
            )
            .scalar()
        )
        return Decimal(value) if value is not None else ZERO

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get on-hand for item {inventory_item_id}", e)


def get_store_on_hand(inventory_item_id: str, store_id: str, session: Optional[Session] = None) -> Decimal:
    """Current on-hand in base units summed over every location of a store."""

    def _impl(sess: Session) -> Decimal:
        rows = (
            sess.query(InventoryLevel.on_hand_base_units)
            .join(StorageLocation, StorageLocation.id == InventoryLevel.location_id)
            .filter(
                InventoryLevel.inventory_item_id == inventory_item_id,
                StorageLocation.store_id == store_id,
            )
            .all()
        )
        return sum((Decimal(value) for (value,) in rows if value is not None), ZERO)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get store on-hand for item {inventory_item_id}", e)


def _replay(sess: Session, inventory_item_id: str, location_id: str) -> Tuple[Decimal, int]:
    """On-hand implied by the event history of a key, and the number of events replayed."""
    baseline = (
        sess.query(InventoryCountLine, InventoryCount.counted_at)
        .join(InventoryCount, InventoryCount.id == InventoryCountLine.count_id)
        .filter(
            InventoryCountLine.inventory_item_id == inventory_item_id,
            InventoryCountLine.location_id == location_id,
        )
        .order_by(InventoryCount.counted_at.desc(), InventoryCountLine.created_at.desc())
        .first()
    )

    total = ZERO
    replayed = 0
    since = None
    if baseline is not None:
        line, since = baseline
        total = Decimal(line.derived_base_units)
        replayed += 1

    receipts = (
        sess.query(ReceiptLine.derived_base_units)
        .join(Receipt, Receipt.id == ReceiptLine.receipt_id)
        .filter(
            ReceiptLine.inventory_item_id == inventory_item_id,
            ReceiptLine.location_id == location_id,
        )
    )
    transfers_in = sess.query(TransferLog.derived_base_units).filter(
        TransferLog.inventory_item_id == inventory_item_id,
        TransferLog.to_location_id == location_id,
    )
    transfers_out = sess.query(TransferLog.derived_base_units).filter(
        TransferLog.inventory_item_id == inventory_item_id,
        TransferLog.from_location_id == location_id,
    )
    waste = sess.query(WasteLog.derived_base_units).filter(
        WasteLog.inventory_item_id == inventory_item_id,
        WasteLog.location_id == location_id,
    )
    if since is not None:
        receipts = receipts.filter(Receipt.received_at > since)
        transfers_in = transfers_in.filter(TransferLog.transferred_at > since)
        transfers_out = transfers_out.filter(TransferLog.transferred_at > since)
        waste = waste.filter(WasteLog.wasted_at > since)

    for query, sign in ((receipts, 1), (transfers_in, 1), (transfers_out, -1), (waste, -1)):
        for (base_qty,) in query.all():
            total += Decimal(base_qty) * sign
            replayed += 1

    return total, replayed


def rebuild_on_hand(inventory_item_id: str, location_id: str, session: Optional[Session] = None) -> Decimal:
    """
    Recompute a key's on-hand from its event history and store it.

    Replay starts from the most recent count line for the key (or from zero
    when the key was never counted) and applies every later receipt,
    transfer and waste event.

    Returns:
        The replayed on-hand in base units
    """

    def _impl(sess: Session) -> Decimal:
        total, replayed = _replay(sess, inventory_item_id, location_id)
        level = _get_level(sess, inventory_item_id, location_id)
        previous = _on_hand(level)
        level.on_hand_base_units = total
        sess.flush()

        log_operation(
            logger,
            operation="rebuild_on_hand",
            outcome="success" if previous == total else "corrected",
            level=logging.INFO if previous == total else logging.WARNING,
            inventory_item_id=inventory_item_id,
            location_id=location_id,
            previous=str(previous),
            rebuilt=str(total),
            events=replayed,
        )
        return total

    try:
        return _run_locked([ledger_key(inventory_item_id, location_id)], session, _impl)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to rebuild on-hand for item {inventory_item_id}", e)
