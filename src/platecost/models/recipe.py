"""
Recipe models.

This module contains:
- Recipe: A preparation with a yield, waste allowance and cached cost
- RecipeComponent: Polymorphic line linking a recipe to an inventory item or a sub-recipe
- RecipeCostSnapshot: Daily snapshot of a recipe's resolved cost
"""

from decimal import Decimal

from sqlalchemy import (
    Column,
    String,
    Numeric,
    Integer,
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    CheckConstraint,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from .base import BaseModel
from platecost.utils.constants import DEFAULT_WASTE_PERCENT, COMPONENT_TYPE_RECIPE


class Recipe(BaseModel):
    """
    Recipe model.

    A recipe yields ``yield_qty`` of ``yield_unit_id``; its cost is spread
    over that yield.

    Attributes:
        name: Recipe name
        yield_qty: Quantity produced by one batch
        yield_unit_id: Unit of the yield
        waste_percent: Loss multiplier applied to the summed component cost (>= 0)
        can_be_ingredient: Whether other recipes may use this one as a component
        computed_cost: Cached cost per full yield (derived; see costing_service)
        cost_computed_at: When computed_cost was last refreshed
        is_active: Inactive recipes are hidden from normal views
    """

    __tablename__ = "recipes"

    name = Column(String(200), nullable=False, index=True)
    yield_qty = Column(Numeric(18, 6), nullable=False)
    yield_unit_id = Column(
        String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False
    )
    waste_percent = Column(Numeric(7, 3), nullable=True, default=DEFAULT_WASTE_PERCENT)
    can_be_ingredient = Column(Boolean, nullable=False, default=False)
    computed_cost = Column(Numeric(18, 8), nullable=False, default=Decimal("0"))
    cost_computed_at = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    yield_unit = relationship("Unit", lazy="joined")
    components = relationship(
        "RecipeComponent",
        back_populates="recipe",
        cascade="all, delete-orphan",
        order_by="RecipeComponent.sort_order",
    )

    __table_args__ = (
        CheckConstraint("yield_qty >= 0", name="ck_recipe_yield_non_negative"),
        CheckConstraint(
            "waste_percent IS NULL OR waste_percent >= 0", name="ck_recipe_waste_non_negative"
        ),
    )

    def __repr__(self) -> str:
        """String representation of recipe."""
        return f"Recipe(id='{self.id}', name='{self.name}', computed_cost={self.computed_cost})"


class RecipeComponent(BaseModel):
    """
    One line of a recipe.

    ``component_type`` selects what ``component_id`` refers to: an
    inventory item or another recipe. The resulting recipe graph must be
    acyclic.

    Attributes:
        recipe_id: Parent recipe
        component_type: "inventory_item" or "recipe"
        component_id: ID of the inventory item or sub-recipe
        qty: Quantity used, in unit_id
        unit_id: Unit of qty
        sort_order: Display/evaluation order within the recipe
        yield_override: Optional yield percent replacing the item's own for this line
    """

    __tablename__ = "recipe_components"

    recipe_id = Column(String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False)
    component_type = Column(String(20), nullable=False)
    component_id = Column(String(36), nullable=False)
    qty = Column(Numeric(18, 6), nullable=False)
    unit_id = Column(String(36), ForeignKey("units.id", ondelete="RESTRICT"), nullable=False)
    sort_order = Column(Integer, nullable=False, default=0)
    yield_override = Column(Numeric(7, 3), nullable=True)

    recipe = relationship("Recipe", back_populates="components")
    unit = relationship("Unit", lazy="joined")

    __table_args__ = (
        Index("idx_recipe_component_recipe", "recipe_id"),
        Index("idx_recipe_component_target", "component_type", "component_id"),
        CheckConstraint(
            "component_type IN ('inventory_item', 'recipe')",
            name="ck_recipe_component_type_valid",
        ),
        CheckConstraint("qty >= 0", name="ck_recipe_component_qty_non_negative"),
    )

    @property
    def is_sub_recipe(self) -> bool:
        """True when this line refers to another recipe."""
        return self.component_type == COMPONENT_TYPE_RECIPE

    def __repr__(self) -> str:
        """String representation of recipe component."""
        return (
            f"RecipeComponent(recipe_id='{self.recipe_id}', "
            f"{self.component_type}='{self.component_id}', qty={self.qty})"
        )


class RecipeCostSnapshot(BaseModel):
    """
    Point-in-time record of a recipe's resolved cost (one per recipe per day).

    Attributes:
        recipe_id: Recipe the snapshot belongs to
        effective_date: Day the cost applies to
        computed_cost: Cost per full yield on that day
        yield_qty: Yield quantity at snapshot time
        yield_unit_id: Yield unit at snapshot time
        cost_per_yield_unit: computed_cost / yield_qty (0 when yield is 0)
    """

    __tablename__ = "recipe_cost_snapshots"

    recipe_id = Column(String(36), ForeignKey("recipes.id", ondelete="CASCADE"), nullable=False)
    effective_date = Column(Date, nullable=False)
    computed_cost = Column(Numeric(18, 8), nullable=False)
    yield_qty = Column(Numeric(18, 6), nullable=False)
    yield_unit_id = Column(String(36), nullable=False)
    cost_per_yield_unit = Column(Numeric(18, 8), nullable=False)

    __table_args__ = (
        UniqueConstraint("recipe_id", "effective_date", name="uq_recipe_snapshot_day"),
        Index("idx_recipe_snapshot_recipe_date", "recipe_id", "effective_date"),
    )
