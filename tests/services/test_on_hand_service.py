"""
Tests for the On-Hand Service.

estimated = last_count + received - waste - theoretical usage
            - transferred out + transferred in
"""

from datetime import datetime
from decimal import Decimal

import pytest

from platecost.services.exceptions import InventoryItemNotFound
from platecost.services.ledger_service import apply_count, apply_receipt, apply_transfer, apply_waste
from platecost.services.menu_service import create_menu_item, record_sale
from platecost.services.on_hand_service import estimate
from platecost.services.recipe_service import create_recipe
from platecost.utils.constants import COMPONENT_TYPE_INVENTORY_ITEM


@pytest.fixture
def activity(tomatoes, units, store_locations):
    """Count, receive, waste, transfer and sell tomatoes between Mar 1 and Mar 4."""
    oz = units["oz"].id
    walk_in = store_locations["walk_in"].id
    dry = store_locations["dry"].id
    other = store_locations["other_store"].id

    recipe = create_recipe(
        "Salsa",
        1,
        units["ea"].id,
        components=[
            {
                "component_type": COMPONENT_TYPE_INVENTORY_ITEM,
                "component_id": tomatoes.id,
                "qty": 7,
                "unit_id": oz,
            }
        ],
    )
    create_menu_item("Salsa Cup", "100", recipe_id=recipe.id)

    apply_count(tomatoes.id, walk_in, 20, oz, counted_at=datetime(2024, 3, 1, 8, 0))
    apply_count(tomatoes.id, other, 0, oz, counted_at=datetime(2024, 3, 1, 8, 0))
    apply_receipt(tomatoes.id, walk_in, 10, oz, "2.50", received_at=datetime(2024, 3, 2, 9, 0))
    apply_waste(tomatoes.id, walk_in, 2, oz, "SPOILED", wasted_at=datetime(2024, 3, 2, 10, 0))
    apply_transfer(tomatoes.id, walk_in, other, 3, oz, transferred_at=datetime(2024, 3, 3, 9, 0))
    apply_transfer(tomatoes.id, walk_in, dry, 1, oz, transferred_at=datetime(2024, 3, 3, 10, 0))
    record_sale("store-1", [{"plu_sku": "100", "qty_sold": 1}], occurred_at=datetime(2024, 3, 4, 12, 0))
    return tomatoes


class TestEstimate:
    """Tests for estimate()."""

    def test_estimate_formula(self, activity):
        """20 + 10 - 2 - 7 - 3 = 18 oz."""
        result = estimate(activity.id, "store-1")
        assert result.has_baseline is True
        assert result.last_count_qty == Decimal("20")
        assert result.received_qty == Decimal("10")
        assert result.waste_qty == Decimal("2")
        assert result.theoretical_usage_qty == Decimal("7")
        assert result.transferred_out_qty == Decimal("3")
        assert result.transferred_in_qty == Decimal("0")
        assert result.estimated_on_hand == Decimal("18")

    def test_activity_rows_in_time_order(self, activity):
        """Each event is listed once; transfers inside the store are not."""
        result = estimate(activity.id, "store-1")
        assert [row.activity_type for row in result.activity] == [
            "receipt",
            "waste",
            "transfer_out",
            "usage",
        ]
        assert result.activity[-1].detail == "Salsa Cup"

    def test_transfer_in_counts_at_destination(self, activity):
        """The receiving store gains what the sending store lost."""
        result = estimate(activity.id, "store-2")
        assert result.transferred_in_qty == Decimal("3")
        assert result.estimated_on_hand == Decimal("3")

    def test_as_of_cut_off(self, activity):
        """Activity after as_of is ignored."""
        result = estimate(activity.id, "store-1", as_of=datetime(2024, 3, 2, 23, 59))
        assert result.estimated_on_hand == Decimal("28")

    def test_later_count_resets_baseline(self, activity, units, store_locations):
        """Walk-in activity before its new count drops out; dry storage was never counted."""
        apply_count(
            activity.id,
            store_locations["walk_in"].id,
            15,
            units["oz"].id,
            counted_at=datetime(2024, 3, 6, 8, 0),
        )
        result = estimate(activity.id, "store-1")
        assert result.last_counted_at == datetime(2024, 3, 6, 8, 0)
        assert result.last_count_qty == Decimal("15")
        assert result.estimated_on_hand == Decimal("16")
        assert [row.activity_type for row in result.activity] == ["transfer_in"]
        assert result.activity[0].location_id == store_locations["dry"].id

    def test_no_baseline(self, tomatoes, units, store_locations):
        """Without a count there is no estimate, not an assumed zero."""
        apply_receipt(tomatoes.id, store_locations["walk_in"].id, 10, units["oz"].id, "2.50")
        result = estimate(tomatoes.id, "store-1")
        assert result.has_baseline is False
        assert result.estimated_on_hand is None

    def test_missing_item(self, test_db):
        """Unknown items raise InventoryItemNotFound."""
        with pytest.raises(InventoryItemNotFound):
            estimate("missing", "store-1")


class TestLocationBaselines:
    """Each location of a store is measured from its own latest count."""

    def test_locations_counted_separately_are_summed(self, tomatoes, units, store_locations):
        """30 oz in the walk-in plus 20 oz in dry storage, counted one at a time."""
        oz = units["oz"].id
        apply_count(tomatoes.id, store_locations["walk_in"].id, 30, oz, counted_at=datetime(2024, 3, 1, 8, 0))
        apply_count(tomatoes.id, store_locations["dry"].id, 20, oz, counted_at=datetime(2024, 3, 1, 9, 0))

        result = estimate(tomatoes.id, "store-1")
        assert result.last_count_qty == Decimal("50")
        assert result.estimated_on_hand == Decimal("50")
        assert result.last_counted_at == datetime(2024, 3, 1, 9, 0)

    def test_activity_measured_from_each_locations_count(self, tomatoes, units, store_locations):
        """A receipt already covered by a later count of its location is not added again."""
        oz = units["oz"].id
        walk_in = store_locations["walk_in"].id
        dry = store_locations["dry"].id
        apply_count(tomatoes.id, walk_in, 30, oz, counted_at=datetime(2024, 3, 1, 8, 0))
        apply_receipt(tomatoes.id, dry, 5, oz, "1.25", received_at=datetime(2024, 3, 2, 9, 0))
        apply_receipt(tomatoes.id, walk_in, 10, oz, "2.50", received_at=datetime(2024, 3, 2, 10, 0))
        apply_count(tomatoes.id, dry, 20, oz, counted_at=datetime(2024, 3, 3, 8, 0))

        result = estimate(tomatoes.id, "store-1")
        assert result.received_qty == Decimal("10")
        assert result.estimated_on_hand == Decimal("60")

    def test_internal_transfer_across_count_times(self, tomatoes, units, store_locations):
        """Stock moved to dry storage before its count leaves the walk-in's side only."""
        oz = units["oz"].id
        walk_in = store_locations["walk_in"].id
        dry = store_locations["dry"].id
        apply_count(tomatoes.id, walk_in, 30, oz, counted_at=datetime(2024, 3, 1, 8, 0))
        apply_transfer(tomatoes.id, walk_in, dry, 5, oz, transferred_at=datetime(2024, 3, 2, 9, 0))
        apply_count(tomatoes.id, dry, 5, oz, counted_at=datetime(2024, 3, 3, 8, 0))

        result = estimate(tomatoes.id, "store-1")
        assert result.transferred_out_qty == Decimal("5")
        assert result.transferred_in_qty == Decimal("0")
        assert result.estimated_on_hand == Decimal("30")
