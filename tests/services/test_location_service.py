"""
Tests for the Location Service.

Tests cover:
- create_storage_location() validation and per-store name uniqueness
- list_store_locations() ordering and inactive filtering
- store_location_ids() keeping deactivated locations
- assign_item_to_location() idempotency
"""

import pytest

from platecost.models import InventoryItem
from platecost.services.database import session_scope
from platecost.services.exceptions import (
    InventoryItemNotFound,
    StorageLocationNotFound,
    ValidationError,
)
from platecost.services.location_service import (
    assign_item_to_location,
    create_storage_location,
    deactivate_storage_location,
    get_storage_location,
    list_store_locations,
    store_location_ids,
)


class TestCreateStorageLocation:
    """Tests for create_storage_location()."""

    def test_create_strips_name(self, test_db):
        location = create_storage_location("  Bar  ", "store-1")
        assert location.name == "Bar"
        assert location.store_id == "store-1"
        assert location.is_active is True

    def test_missing_fields_rejected(self, test_db):
        with pytest.raises(ValidationError) as exc_info:
            create_storage_location("", "")
        assert len(exc_info.value.errors) == 2

    def test_name_too_long_rejected(self, test_db):
        with pytest.raises(ValidationError):
            create_storage_location("x" * 101, "store-1")

    def test_duplicate_name_in_same_store_rejected(self, store_locations):
        with pytest.raises(ValidationError):
            create_storage_location("Walk-in Cooler", "store-1")

    def test_same_name_in_other_store_allowed(self, store_locations):
        assert store_locations["other_store"].name == store_locations["walk_in"].name


class TestQueries:
    """Tests for lookups and listings."""

    def test_get_unknown_location(self, test_db):
        with pytest.raises(StorageLocationNotFound):
            get_storage_location("missing")

    def test_list_ordered_by_name(self, store_locations):
        names = [loc.name for loc in list_store_locations("store-1")]
        assert names == ["Dry Storage", "Walk-in Cooler"]

    def test_deactivated_hidden_from_listing(self, store_locations):
        deactivate_storage_location(store_locations["dry"].id)

        assert [loc.name for loc in list_store_locations("store-1")] == ["Walk-in Cooler"]
        assert len(list_store_locations("store-1", include_inactive=True)) == 2

    def test_location_ids_include_deactivated(self, store_locations):
        deactivate_storage_location(store_locations["dry"].id)

        ids = store_location_ids("store-1")
        assert set(ids) == {store_locations["walk_in"].id, store_locations["dry"].id}

    def test_location_ids_for_unknown_store(self, test_db):
        assert store_location_ids("nowhere") == []


class TestAssignItemToLocation:
    """Tests for assign_item_to_location()."""

    def test_assign_is_idempotent(self, tomatoes, store_locations):
        walk_in_id = store_locations["walk_in"].id
        assign_item_to_location(tomatoes.id, walk_in_id)
        assign_item_to_location(tomatoes.id, walk_in_id)

        with session_scope() as session:
            item = session.get(InventoryItem, tomatoes.id)
            assert [loc.id for loc in item.storage_locations] == [walk_in_id]

    def test_unknown_item(self, store_locations):
        with pytest.raises(InventoryItemNotFound):
            assign_item_to_location("missing", store_locations["walk_in"].id)

    def test_unknown_location(self, tomatoes):
        with pytest.raises(StorageLocationNotFound):
            assign_item_to_location(tomatoes.id, "missing")
