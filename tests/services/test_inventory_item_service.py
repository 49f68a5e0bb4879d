"""
Tests for the Inventory Item Service and Location Service.

Tests cover:
- Item creation, validation and storage-location assignment
- Cost updates appending price history
- Storage locations per store
"""

from decimal import Decimal

import pytest

from platecost.services.exceptions import (
    InventoryItemNotFound,
    StorageLocationNotFound,
    UnitNotFound,
    ValidationError,
)
from platecost.services.inventory_item_service import (
    create_inventory_item,
    get_inventory_item,
    get_price_history,
    list_inventory_items,
    update_inventory_item,
    update_item_cost,
)
from platecost.services.location_service import (
    assign_item_to_location,
    create_storage_location,
    deactivate_storage_location,
    get_storage_location,
    list_store_locations,
    store_location_ids,
)


class TestCreateInventoryItem:
    """Tests for create_inventory_item()."""

    def test_defaults(self, units):
        """New items default to full yield and zero cost."""
        item = create_inventory_item("Flour", units["oz"].id)
        assert item.yield_percent == Decimal("100")
        assert item.last_cost == Decimal("0")
        assert get_price_history(item.id) == []

    def test_initial_cost_recorded(self, units):
        """A non-zero starting cost starts the price history."""
        item = create_inventory_item("Butter", units["oz"].id, last_cost="0.30")
        history = get_price_history(item.id)
        assert len(history) == 1
        assert history[0].price_per_unit == Decimal("0.3")

    def test_yield_out_of_range(self, units):
        """Yield must be between 0 and 100."""
        with pytest.raises(ValidationError):
            create_inventory_item("Odd", units["oz"].id, yield_percent=120)

    def test_negative_cost(self, units):
        """Costs cannot be negative."""
        with pytest.raises(ValidationError):
            create_inventory_item("Odd", units["oz"].id, last_cost=-1)

    def test_unknown_unit(self, test_db):
        """The counting unit must exist."""
        with pytest.raises(UnitNotFound):
            create_inventory_item("Odd", "no-unit")

    def test_unknown_location(self, units):
        """Storage locations must exist."""
        with pytest.raises(StorageLocationNotFound):
            create_inventory_item("Odd", units["oz"].id, storage_location_ids=["nowhere"])

    def test_get_missing(self, test_db):
        """Unknown IDs raise InventoryItemNotFound."""
        with pytest.raises(InventoryItemNotFound):
            get_inventory_item("missing")


class TestUpdateInventoryItem:
    """Tests for update_inventory_item() / update_item_cost()."""

    def test_cost_change_appends_history(self, tomatoes):
        """Every cost change adds one history row with its source."""
        update_item_cost(tomatoes.id, "0.30", source="receipt", note="Delivery 42")
        history = get_price_history(tomatoes.id)
        assert [h.price_per_unit for h in history] == [Decimal("0.25"), Decimal("0.3")]
        assert history[-1].source == "receipt"
        assert history[-1].note == "Delivery 42"

    def test_unchanged_cost_adds_no_history(self, tomatoes):
        """Re-saving the same cost is not a price change."""
        update_item_cost(tomatoes.id, "0.25")
        assert len(get_price_history(tomatoes.id)) == 1

    def test_update_other_fields(self, tomatoes):
        """Par and reorder levels are editable."""
        item = update_inventory_item(tomatoes.id, {"par_level": 50, "reorder_level": 20})
        assert item.par_level == Decimal("50")
        assert item.reorder_level == Decimal("20")

    def test_unknown_field_rejected(self, tomatoes):
        """Only declared fields may be updated."""
        with pytest.raises(ValidationError):
            update_inventory_item(tomatoes.id, {"id": "new-id"})

    def test_unknown_price_source_rejected(self, tomatoes):
        """Price sources are receipt or manual."""
        with pytest.raises(ValidationError):
            update_item_cost(tomatoes.id, "1", source="guess")

    def test_list_by_name(self, tomatoes, cheese):
        """Name search is a case-insensitive substring match."""
        assert [item.name for item in list_inventory_items(name_search="mozz")] == ["Mozzarella"]


class TestStorageLocations:
    """Tests for the Location Service."""

    def test_locations_per_store(self, store_locations):
        """Listing is scoped to one store and ordered by name."""
        names = [location.name for location in list_store_locations("store-1")]
        assert names == ["Dry Storage", "Walk-in Cooler"]
        assert len(store_location_ids("store-2")) == 1

    def test_duplicate_name_in_store_rejected(self, store_locations):
        """A store cannot have two locations with the same name."""
        with pytest.raises(ValidationError):
            create_storage_location("Dry Storage", "store-1")

    def test_same_name_in_other_store_allowed(self, store_locations):
        """Names are unique per store only."""
        location = create_storage_location("Dry Storage", "store-2")
        assert location.store_id == "store-2"

    def test_deactivated_hidden_from_listing(self, store_locations):
        """Inactive locations are listed only on request but keep their ID."""
        deactivate_storage_location(store_locations["dry"].id)
        assert [loc.name for loc in list_store_locations("store-1")] == ["Walk-in Cooler"]
        assert len(list_store_locations("store-1", include_inactive=True)) == 2
        assert store_locations["dry"].id in store_location_ids("store-1")

    def test_missing_location(self, test_db):
        """Unknown IDs raise StorageLocationNotFound."""
        with pytest.raises(StorageLocationNotFound):
            get_storage_location("nowhere")

    def test_assign_item(self, tomatoes, store_locations):
        """Assigned items are listed for the location; assignment is idempotent."""
        walk_in = store_locations["walk_in"]
        assign_item_to_location(tomatoes.id, walk_in.id)
        assign_item_to_location(tomatoes.id, walk_in.id)
        assert [item.id for item in list_inventory_items(location_id=walk_in.id)] == [tomatoes.id]
