"""
Location Service - storage locations within a store.

A store owns many storage locations (walk-in, dry storage, bar, ...).
Ledger state is kept per (item, location); store-level views aggregate
every location whose store_id matches.
"""

from typing import List, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..models import InventoryItem, StorageLocation
from .database import session_scope
from .exceptions import (
    DatabaseError,
    InventoryItemNotFound,
    ServiceError,
    StorageLocationNotFound,
    ValidationError,
)
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)

MAX_LOCATION_NAME_LENGTH = 100


def _load_location(sess: Session, location_id: str) -> StorageLocation:
    location = sess.get(StorageLocation, location_id) if location_id is not None else None
    if location is None:
        raise StorageLocationNotFound(location_id)
    return location


def create_storage_location(
    name: str, store_id: str, session: Optional[Session] = None
) -> StorageLocation:
    """
    Create a storage location for a store.

    Raises:
        ValidationError: If name or store_id is missing, or the store already
            has a location with this name
    """
    errors = []
    if not name or not name.strip():
        errors.append("Location name is required")
    elif len(name) > MAX_LOCATION_NAME_LENGTH:
        errors.append(f"Location name must be at most {MAX_LOCATION_NAME_LENGTH} characters")
    if not store_id:
        errors.append("store_id is required")
    if errors:
        raise ValidationError(errors)

    def _impl(sess: Session) -> StorageLocation:
        location = StorageLocation(name=name.strip(), store_id=store_id)
        sess.add(location)
        sess.flush()
        log_operation(
            logger,
            operation="create_storage_location",
            outcome="success",
            location_id=location.id,
            store_id=store_id,
        )
        return location

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except IntegrityError as e:
        raise ValidationError([f"Store {store_id} already has a location named '{name}'"]) from e
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create storage location '{name}'", e)


def get_storage_location(location_id: str, session: Optional[Session] = None) -> StorageLocation:
    """Get a storage location by ID.

    Raises:
        StorageLocationNotFound: If the ID does not resolve
    """

    def _impl(sess: Session) -> StorageLocation:
        return _load_location(sess, location_id)

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to get storage location {location_id}", e)


def list_store_locations(
    store_id: str, include_inactive: bool = False, session: Optional[Session] = None
) -> List[StorageLocation]:
    """List a store's storage locations ordered by name."""

    def _impl(sess: Session) -> List[StorageLocation]:
        query = sess.query(StorageLocation).filter(StorageLocation.store_id == store_id)
        if not include_inactive:
            query = query.filter(StorageLocation.is_active.is_(True))
        return query.order_by(StorageLocation.name).all()

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to list locations for store {store_id}", e)


def store_location_ids(store_id: str, session: Optional[Session] = None) -> List[str]:
    """IDs of every location of a store, active or not.

    Ledger history is kept for deactivated locations, so store-level
    aggregation includes them.
    """

    def _impl(sess: Session) -> List[str]:
        rows = sess.query(StorageLocation.id).filter(StorageLocation.store_id == store_id).all()
        return [location_id for (location_id,) in rows]

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to list location ids for store {store_id}", e)


def deactivate_storage_location(location_id: str, session: Optional[Session] = None) -> StorageLocation:
    """Hide a location from listings; its ledger history is kept."""

    def _impl(sess: Session) -> StorageLocation:
        location = _load_location(sess, location_id)
        location.is_active = False
        sess.flush()
        return location

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to deactivate storage location {location_id}", e)


def assign_item_to_location(
    inventory_item_id: str, location_id: str, session: Optional[Session] = None
) -> InventoryItem:
    """
    Record that an item is stocked at a location.

    Idempotent: assigning an existing pairing is a no-op.

    Raises:
        InventoryItemNotFound, StorageLocationNotFound
    """

    def _impl(sess: Session) -> InventoryItem:
        item = sess.get(InventoryItem, inventory_item_id)
        if item is None:
            raise InventoryItemNotFound(inventory_item_id)
        location = _load_location(sess, location_id)
        if location not in item.storage_locations:
            item.storage_locations.append(location)
            sess.flush()
        return item

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to assign item {inventory_item_id} to {location_id}", e)
