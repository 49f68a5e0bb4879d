"""
Tests for the Ledger Service.

Tests cover:
- Counts SET on-hand and snapshot the unit cost
- Receipts ADD to on-hand and move last cost (with price history and
  recipe cost refresh)
- Transfers conserve total on-hand and reject bad input atomically
- Waste subtracts, values the loss and refuses to go negative
- Count-line correction and count-session deletion
- Replay rebuild of on-hand
- Serialization of concurrent writers to one key
"""

import threading
from datetime import datetime
from decimal import Decimal

import pytest

from platecost.services.exceptions import (
    CountLineNotFound,
    InsufficientInventory,
    InventoryCountNotFound,
    ReceiptNotFound,
    ValidationError,
)
from platecost.services.inventory_item_service import get_inventory_item, get_price_history
from platecost.services.ledger_service import (
    apply_count,
    apply_receipt,
    apply_transfer,
    apply_waste,
    correct_count_line,
    count_value,
    delete_count_session,
    get_count_session,
    get_on_hand,
    get_store_on_hand,
    rebuild_on_hand,
    start_count_session,
    start_receipt,
)
from platecost.services.recipe_service import create_recipe, get_recipe
from platecost.utils.constants import COMPONENT_TYPE_INVENTORY_ITEM


@pytest.fixture
def walk_in(store_locations):
    return store_locations["walk_in"].id


@pytest.fixture
def dry(store_locations):
    return store_locations["dry"].id


@pytest.fixture
def stocked(tomatoes, units, walk_in):
    """10 oz of tomatoes counted in the walk-in."""
    apply_count(tomatoes.id, walk_in, 10, units["oz"].id)
    return tomatoes


class TestApplyCount:
    """Tests for apply_count()."""

    def test_count_sets_on_hand(self, tomatoes, units, walk_in):
        """A count replaces the running total rather than adding to it."""
        apply_receipt(tomatoes.id, walk_in, 10, units["oz"].id, "2.50")
        apply_count(tomatoes.id, walk_in, 4, units["oz"].id)
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("4")

    def test_count_converts_units(self, tomatoes, units, walk_in):
        """A count of 2 lb is stored as 32 oz."""
        line = apply_count(tomatoes.id, walk_in, 2, units["lb"].id)
        assert line.derived_base_units == Decimal("32")
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("32")

    def test_count_snapshots_cost(self, tomatoes, units, walk_in):
        """The line keeps the cost in force when the count was taken."""
        line = apply_count(tomatoes.id, walk_in, 4, units["oz"].id)
        apply_receipt(tomatoes.id, walk_in, 10, units["oz"].id, "5.00")
        assert line.unit_cost_snapshot == Decimal("0.25")
        assert count_value(line.count_id)["total_value"] == Decimal("1")

    def test_zero_count_allowed(self, stocked, units, walk_in):
        """Counting zero empties the location."""
        apply_count(stocked.id, walk_in, 0, units["oz"].id)
        assert get_on_hand(stocked.id, walk_in) == Decimal("0")

    def test_negative_count_rejected(self, tomatoes, units, walk_in):
        """Counts cannot be negative."""
        with pytest.raises(ValidationError):
            apply_count(tomatoes.id, walk_in, -1, units["oz"].id)

    def test_lines_share_a_session(self, tomatoes, cheese, units, walk_in, dry):
        """Several lines can be recorded under one count session."""
        count = start_count_session("store-1", note="Month end")
        apply_count(tomatoes.id, walk_in, 3, units["oz"].id, count_id=count.id)
        apply_count(cheese.id, dry, 5, units["oz"].id, count_id=count.id)
        assert len(get_count_session(count.id).lines) == 2

    def test_recount_in_same_session_replaces_line(self, tomatoes, units, walk_in):
        """Counting the same key twice in a session keeps one line."""
        count = start_count_session("store-1")
        apply_count(tomatoes.id, walk_in, 3, units["oz"].id, count_id=count.id)
        apply_count(tomatoes.id, walk_in, 5, units["oz"].id, count_id=count.id)
        assert len(get_count_session(count.id).lines) == 1
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("5")

    def test_session_from_other_store_rejected(self, tomatoes, units, walk_in):
        """A line must be counted at a location of the session's store."""
        count = start_count_session("store-2")
        with pytest.raises(ValidationError):
            apply_count(tomatoes.id, walk_in, 3, units["oz"].id, count_id=count.id)

    def test_unknown_session(self, tomatoes, units, walk_in):
        """An unknown count ID raises InventoryCountNotFound."""
        with pytest.raises(InventoryCountNotFound):
            apply_count(tomatoes.id, walk_in, 3, units["oz"].id, count_id="missing")


class TestApplyReceipt:
    """Tests for apply_receipt()."""

    def test_receipt_adds_on_hand(self, stocked, units, walk_in):
        """Receipts add to the running total."""
        apply_receipt(stocked.id, walk_in, 1, units["lb"].id, "4.00")
        assert get_on_hand(stocked.id, walk_in) == Decimal("26")

    def test_receipt_sets_last_cost(self, tomatoes, units, walk_in):
        """last_cost = price_each / derived base units (2 lb for $12.80 is $0.40/oz)."""
        apply_receipt(tomatoes.id, walk_in, 2, units["lb"].id, "12.80")
        assert get_inventory_item(tomatoes.id).last_cost == Decimal("0.4")
        history = get_price_history(tomatoes.id)
        assert history[-1].source == "receipt"
        assert history[-1].price_per_unit == Decimal("0.4")

    def test_receipt_refreshes_recipe_costs(self, tomatoes, units, walk_in):
        """Dependent recipe costs follow the new last cost."""
        recipe = create_recipe(
            "Salsa",
            1,
            units["ea"].id,
            components=[
                {
                    "component_type": COMPONENT_TYPE_INVENTORY_ITEM,
                    "component_id": tomatoes.id,
                    "qty": 10,
                    "unit_id": units["oz"].id,
                }
            ],
        )
        assert get_recipe(recipe.id).computed_cost == Decimal("2.5")
        apply_receipt(tomatoes.id, walk_in, 10, units["oz"].id, "5.00")
        assert get_recipe(recipe.id).computed_cost == Decimal("5")

    def test_lines_share_a_receipt(self, tomatoes, cheese, units, walk_in):
        """Several lines can be received under one receipt."""
        receipt = start_receipt("store-1", reference="INV-1001")
        first = apply_receipt(tomatoes.id, walk_in, 1, units["oz"].id, "0.25", receipt_id=receipt.id)
        second = apply_receipt(cheese.id, walk_in, 1, units["oz"].id, "0.50", receipt_id=receipt.id)
        assert first.receipt_id == second.receipt_id == receipt.id

    def test_unknown_receipt(self, tomatoes, units, walk_in):
        """An unknown receipt ID raises ReceiptNotFound and records nothing."""
        with pytest.raises(ReceiptNotFound):
            apply_receipt(tomatoes.id, walk_in, 1, units["oz"].id, "0.25", receipt_id="missing")
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("0")

    def test_non_positive_qty_rejected(self, tomatoes, units, walk_in):
        """Receipt quantities must be positive."""
        with pytest.raises(ValidationError):
            apply_receipt(tomatoes.id, walk_in, 0, units["oz"].id, "1.00")

    def test_negative_price_rejected(self, tomatoes, units, walk_in):
        """Prices cannot be negative."""
        with pytest.raises(ValidationError):
            apply_receipt(tomatoes.id, walk_in, 1, units["oz"].id, "-1.00")


class TestApplyTransfer:
    """Tests for apply_transfer()."""

    def test_transfer_conserves_total(self, stocked, units, walk_in, dry):
        """Moving 4 oz leaves the two-location total unchanged."""
        apply_transfer(stocked.id, walk_in, dry, 4, units["oz"].id, reason="Prep")
        assert get_on_hand(stocked.id, walk_in) == Decimal("6")
        assert get_on_hand(stocked.id, dry) == Decimal("4")
        assert get_store_on_hand(stocked.id, "store-1") == Decimal("10")

    def test_same_location_rejected(self, stocked, units, walk_in):
        """Source and destination must differ."""
        with pytest.raises(ValidationError):
            apply_transfer(stocked.id, walk_in, walk_in, 1, units["oz"].id)

    def test_insufficient_leaves_both_sides_untouched(self, stocked, units, walk_in, dry):
        """A failed transfer changes nothing."""
        with pytest.raises(InsufficientInventory) as exc_info:
            apply_transfer(stocked.id, walk_in, dry, 11, units["oz"].id)
        assert exc_info.value.available == Decimal("10")
        assert exc_info.value.required == Decimal("11")
        assert get_on_hand(stocked.id, walk_in) == Decimal("10")
        assert get_on_hand(stocked.id, dry) == Decimal("0")

    def test_cross_store_transfer(self, stocked, units, walk_in, store_locations):
        """Stock can move to another store's location."""
        other = store_locations["other_store"].id
        apply_transfer(stocked.id, walk_in, other, 3, units["oz"].id)
        assert get_store_on_hand(stocked.id, "store-1") == Decimal("7")
        assert get_store_on_hand(stocked.id, "store-2") == Decimal("3")


class TestApplyWaste:
    """Tests for apply_waste()."""

    def test_waste_subtracts_and_values(self, stocked, units, walk_in):
        """3 oz of $0.25 tomatoes is $0.75 of waste."""
        waste = apply_waste(stocked.id, walk_in, 3, units["oz"].id, "SPOILED", notes="Moldy")
        assert get_on_hand(stocked.id, walk_in) == Decimal("7")
        assert waste.total_value == Decimal("0.75")

    def test_insufficient_rejected(self, stocked, units, walk_in):
        """Waste cannot exceed on-hand."""
        with pytest.raises(InsufficientInventory):
            apply_waste(stocked.id, walk_in, 1, units["lb"].id, "DROPPED")
        assert get_on_hand(stocked.id, walk_in) == Decimal("10")

    def test_unknown_reason_rejected(self, stocked, units, walk_in):
        """Reason codes come from the fixed list."""
        with pytest.raises(ValidationError):
            apply_waste(stocked.id, walk_in, 1, units["oz"].id, "EATEN")

    def test_never_counted_location_has_nothing(self, tomatoes, units, dry):
        """A key with no history holds zero."""
        with pytest.raises(InsufficientInventory):
            apply_waste(tomatoes.id, dry, 1, units["oz"].id, "SPOILED")


class TestCorrections:
    """Tests for correct_count_line() and delete_count_session()."""

    def test_correct_reverses_then_applies(self, tomatoes, units, walk_in):
        """on_hand = on_hand - old + new, keeping later activity."""
        line = apply_count(tomatoes.id, walk_in, 10, units["oz"].id)
        apply_waste(tomatoes.id, walk_in, 2, units["oz"].id, "SPOILED")
        corrected = correct_count_line(line.id, 12)
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("10")
        assert corrected.qty == Decimal("12")
        assert corrected.derived_base_units == Decimal("12")
        assert corrected.unit_cost_snapshot == Decimal("0.25")

    def test_correct_with_new_unit(self, tomatoes, units, walk_in):
        """A correction may be entered in another unit."""
        line = apply_count(tomatoes.id, walk_in, 10, units["oz"].id)
        correct_count_line(line.id, 1, unit_id=units["lb"].id)
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("16")

    def test_correct_missing_line(self, test_db):
        """Unknown lines raise CountLineNotFound."""
        with pytest.raises(CountLineNotFound):
            correct_count_line("missing", 1)

    def test_delete_session_reverses_lines(self, tomatoes, cheese, units, walk_in, dry):
        """Deleting a session subtracts each line's contribution."""
        apply_receipt(tomatoes.id, walk_in, 5, units["oz"].id, "1.25")
        count = start_count_session("store-1")
        apply_count(tomatoes.id, walk_in, 8, units["oz"].id, count_id=count.id)
        apply_count(cheese.id, dry, 6, units["oz"].id, count_id=count.id)
        apply_receipt(tomatoes.id, walk_in, 2, units["oz"].id, "0.50")

        assert delete_count_session(count.id) == 2
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("2")
        assert get_on_hand(cheese.id, dry) == Decimal("0")
        with pytest.raises(InventoryCountNotFound):
            get_count_session(count.id)

    def test_delete_missing_session(self, test_db):
        """Unknown sessions raise InventoryCountNotFound."""
        with pytest.raises(InventoryCountNotFound):
            delete_count_session("missing")


class TestRebuild:
    """Tests for rebuild_on_hand()."""

    def test_replay_from_latest_count(self, tomatoes, units, walk_in, dry, test_db):
        """Replay = latest count + later receipts and transfers in - waste and transfers out."""
        apply_receipt(tomatoes.id, walk_in, 50, units["oz"].id, "12.50", received_at=datetime(2024, 1, 1))
        apply_count(tomatoes.id, walk_in, 10, units["oz"].id, counted_at=datetime(2024, 1, 2))
        apply_receipt(tomatoes.id, walk_in, 5, units["oz"].id, "1.25", received_at=datetime(2024, 1, 3))
        apply_waste(tomatoes.id, walk_in, 2, units["oz"].id, "SPOILED", wasted_at=datetime(2024, 1, 4))
        apply_transfer(
            tomatoes.id, walk_in, dry, 1, units["oz"].id, transferred_at=datetime(2024, 1, 5)
        )
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("12")

        from platecost.models import InventoryLevel

        session = test_db()
        level = (
            session.query(InventoryLevel)
            .filter_by(inventory_item_id=tomatoes.id, location_id=walk_in)
            .one()
        )
        level.on_hand_base_units = Decimal("999")
        session.commit()

        assert rebuild_on_hand(tomatoes.id, walk_in) == Decimal("12")
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("12")
        assert rebuild_on_hand(tomatoes.id, dry) == Decimal("1")

    def test_replay_without_count_starts_at_zero(self, tomatoes, units, walk_in):
        """A never-counted key replays every event."""
        apply_receipt(tomatoes.id, walk_in, 5, units["oz"].id, "1.25")
        apply_waste(tomatoes.id, walk_in, 1, units["oz"].id, "SPOILED")
        assert rebuild_on_hand(tomatoes.id, walk_in) == Decimal("4")


class TestConcurrency:
    """Concurrent writers to one key are serialized."""

    def test_concurrent_waste_never_oversells(self, tomatoes, units, walk_in):
        """Ten 1 oz waste entries against 5 oz: exactly five succeed."""
        apply_receipt(tomatoes.id, walk_in, 5, units["oz"].id, "1.25")
        results = []
        results_lock = threading.Lock()

        def worker():
            try:
                apply_waste(tomatoes.id, walk_in, 1, units["oz"].id, "SPOILED")
                outcome = "ok"
            except InsufficientInventory:
                outcome = "short"
            with results_lock:
                results.append(outcome)

        threads = [threading.Thread(target=worker) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert results.count("ok") == 5
        assert results.count("short") == 5
        assert get_on_hand(tomatoes.id, walk_in) == Decimal("0")
