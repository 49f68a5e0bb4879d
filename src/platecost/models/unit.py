"""
Unit reference model for Plate Cost.

Units are reference data: seeded at setup, rarely mutated and never deleted
while referenced. Every unit of a kind converts through that kind's base
unit (the unit whose to_base_ratio is 1).
"""

from sqlalchemy import Column, String, Numeric, Index, CheckConstraint

from .base import BaseModel


class Unit(BaseModel):
    """
    Reference table for measurement units.

    Attributes:
        name: Human-readable name (e.g., "pound")
        abbreviation: Short code (e.g., "lb"), unique
        kind: "mass", "volume" or "count"
        to_base_ratio: Multiplicative factor from 1 of this unit to 1 base unit
        system: "us" or "metric"
    """

    __tablename__ = "units"

    name = Column(String(50), nullable=False)
    abbreviation = Column(String(20), unique=True, nullable=False, index=True)
    kind = Column(String(20), nullable=False)
    to_base_ratio = Column(Numeric(18, 8), nullable=False)
    system = Column(String(10), nullable=False, default="us")

    __table_args__ = (
        Index("idx_unit_kind", "kind"),
        CheckConstraint("to_base_ratio > 0", name="ck_unit_ratio_positive"),
    )

    def __repr__(self) -> str:
        """Return string representation of Unit."""
        return f"Unit(abbreviation='{self.abbreviation}', kind='{self.kind}')"
