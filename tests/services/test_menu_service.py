"""
Tests for the Menu Service.

Tests cover:
- Menu item creation and PLU uniqueness
- Sale recording by PLU and by menu item ID
- Plate cost and food cost percentage
"""

from datetime import datetime
from decimal import Decimal

import pytest

from platecost.services.exceptions import MenuItemNotFound, RecipeNotFound, ValidationError
from platecost.services.menu_service import (
    create_menu_item,
    get_menu_item,
    get_menu_item_by_plu,
    get_menu_item_cost,
    list_menu_items,
    record_sale,
    update_menu_item,
)
from platecost.services.recipe_service import create_recipe
from platecost.utils.constants import COMPONENT_TYPE_INVENTORY_ITEM


@pytest.fixture
def salsa(tomatoes, units):
    """One cup of salsa: 7 oz of tomatoes ($1.75)."""
    return create_recipe(
        "Salsa",
        1,
        units["ea"].id,
        components=[
            {
                "component_type": COMPONENT_TYPE_INVENTORY_ITEM,
                "component_id": tomatoes.id,
                "qty": 7,
                "unit_id": units["oz"].id,
            }
        ],
    )


class TestCreateMenuItem:
    """Tests for create_menu_item()."""

    def test_create_with_recipe(self, salsa):
        """A menu item links to its recipe and defaults to one yield per sale."""
        menu_item = create_menu_item("Salsa Cup", "100", recipe_id=salsa.id, price="3.50")
        assert menu_item.recipe_id == salsa.id
        assert menu_item.serving_qty == Decimal("1")
        assert get_menu_item_by_plu("100").id == menu_item.id

    def test_create_without_recipe(self, test_db):
        """Items bought for resale need no recipe."""
        menu_item = create_menu_item("Bottled Water", "900")
        assert menu_item.recipe_id is None

    def test_duplicate_plu_rejected(self, test_db):
        """PLU/SKU codes are unique."""
        create_menu_item("Bottled Water", "900")
        with pytest.raises(ValidationError):
            create_menu_item("Sparkling Water", "900")

    def test_missing_recipe(self, test_db):
        """An unknown recipe raises RecipeNotFound."""
        with pytest.raises(RecipeNotFound):
            create_menu_item("Ghost Plate", "101", recipe_id="missing")

    @pytest.mark.parametrize("serving_qty", [0, -1, "abc"])
    def test_invalid_serving_qty(self, test_db, serving_qty):
        """serving_qty must be a positive number."""
        with pytest.raises(ValidationError):
            create_menu_item("Salsa Cup", "100", serving_qty=serving_qty)

    def test_unknown_plu_lookup(self, test_db):
        """Looking up an unused PLU gives None."""
        assert get_menu_item_by_plu("nope") is None

    def test_get_missing(self, test_db):
        """Unknown IDs raise MenuItemNotFound."""
        with pytest.raises(MenuItemNotFound):
            get_menu_item("missing")


class TestUpdateMenuItem:
    """Tests for update_menu_item() and list_menu_items()."""

    def test_update_price(self, test_db):
        """Updatable fields are written."""
        menu_item = create_menu_item("Bottled Water", "900", price="2.00")
        updated = update_menu_item(menu_item.id, {"price": "2.25"})
        assert updated.price == Decimal("2.25")

    def test_plu_collision_on_update(self, test_db):
        """Changing to a PLU used elsewhere is rejected."""
        create_menu_item("Bottled Water", "900")
        other = create_menu_item("Sparkling Water", "901")
        with pytest.raises(ValidationError):
            update_menu_item(other.id, {"plu_sku": "900"})

    def test_unknown_field_rejected(self, test_db):
        """Only whitelisted fields can be updated."""
        menu_item = create_menu_item("Bottled Water", "900")
        with pytest.raises(ValidationError):
            update_menu_item(menu_item.id, {"id": "other"})

    def test_inactive_hidden_from_list(self, test_db):
        """Deactivated items are listed only on request."""
        menu_item = create_menu_item("Bottled Water", "900")
        create_menu_item("Sparkling Water", "901")
        update_menu_item(menu_item.id, {"is_active": False})
        assert [m.name for m in list_menu_items()] == ["Sparkling Water"]
        assert len(list_menu_items(include_inactive=True)) == 2


class TestRecordSale:
    """Tests for record_sale()."""

    def test_sale_by_plu_and_id(self, salsa):
        """Lines may reference a menu item by PLU or by ID."""
        cup = create_menu_item("Salsa Cup", "100", recipe_id=salsa.id)
        water = create_menu_item("Bottled Water", "900")
        sale = record_sale(
            "store-1",
            [{"plu_sku": "100", "qty_sold": 3}, {"menu_item_id": water.id, "qty_sold": 1}],
            occurred_at=datetime(2024, 3, 2, 12, 0),
        )
        assert len(sale.lines) == 2
        assert {line.menu_item_id for line in sale.lines} == {cup.id, water.id}

    def test_unknown_plu(self, test_db):
        """A PLU nobody carries is rejected."""
        with pytest.raises(ValidationError):
            record_sale("store-1", [{"plu_sku": "404", "qty_sold": 1}])

    def test_non_positive_qty(self, test_db):
        """qty_sold must be positive."""
        create_menu_item("Bottled Water", "900")
        with pytest.raises(ValidationError):
            record_sale("store-1", [{"plu_sku": "900", "qty_sold": 0}])

    def test_empty_sale(self, test_db):
        """A sale needs at least one line."""
        with pytest.raises(ValidationError):
            record_sale("store-1", [])

    def test_missing_store(self, test_db):
        """A sale needs a store."""
        with pytest.raises(ValidationError):
            record_sale("", [{"plu_sku": "900", "qty_sold": 1}])


class TestMenuItemCost:
    """Tests for get_menu_item_cost()."""

    def test_plate_cost_and_food_cost_percent(self, salsa):
        """Two cups of $1.75 salsa sold for $7.00 is a 50% food cost."""
        menu_item = create_menu_item(
            "Double Salsa", "102", recipe_id=salsa.id, serving_qty=2, price="7.00"
        )
        result = get_menu_item_cost(menu_item.id)
        assert result["plate_cost"] == Decimal("3.5")
        assert result["price"] == Decimal("7")
        assert result["food_cost_percent"] == Decimal("50")

    def test_no_price(self, salsa):
        """Without a price the percentage is None."""
        menu_item = create_menu_item("Salsa Cup", "100", recipe_id=salsa.id)
        result = get_menu_item_cost(menu_item.id)
        assert result["plate_cost"] == Decimal("1.75")
        assert result["food_cost_percent"] is None

    def test_no_recipe(self, test_db):
        """Items without a recipe cost nothing to plate."""
        menu_item = create_menu_item("Bottled Water", "900", price="2.00")
        result = get_menu_item_cost(menu_item.id)
        assert result["plate_cost"] == Decimal("0")
        assert result["food_cost_percent"] == Decimal("0")
