"""Unit Service - the unit registry and base-unit conversions.

Every unit carries a fixed ratio to the base unit of its kind, so any
quantity can be expressed in base units and back:

    base_qty = qty * unit.to_base_ratio
    qty      = base_qty / unit.to_base_ratio

Conversion does not check kind compatibility: callers are responsible for
converting only between units of the same kind (``units_compatible`` is
available for that check).

All functions accept an optional session parameter to support being called
from other service functions that need to maintain transactional atomicity.

Example Usage:
    >>> from platecost.services.unit_service import seed_units, get_unit_by_abbreviation
    >>> from platecost.services.unit_service import convert_to_base
    >>> seed_units()
    15
    >>> lb = get_unit_by_abbreviation("lb")
    >>> convert_to_base(2, lb.id)
    Decimal('32.00000000')
"""

from decimal import Decimal
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.unit import Unit
from ..utils.constants import DEFAULT_UNITS, UNIT_KINDS, UNIT_SYSTEMS
from ..utils.decimal_utils import ONE, ZERO, to_decimal
from .database import session_scope
from .exceptions import DatabaseError, ServiceError, UnitNotFound, ValidationError
from .logging_utils import get_service_logger, log_operation

logger = get_service_logger(__name__)


# ============================================================================
# Pure conversions (unit already loaded)
# ============================================================================


def to_base(qty, unit: Unit) -> Decimal:
    """Convert qty expressed in unit to base units."""
    return to_decimal(qty) * Decimal(unit.to_base_ratio)


def from_base(base_qty, unit: Unit) -> Decimal:
    """Convert a base-unit quantity to unit."""
    return to_decimal(base_qty) / Decimal(unit.to_base_ratio)


def _load_unit(sess: Session, unit_id: str) -> Unit:
    unit = sess.get(Unit, unit_id) if unit_id is not None else None
    if unit is None:
        raise UnitNotFound(unit_id)
    return unit


# ============================================================================
# Registry queries
# ============================================================================


def get_unit(unit_id: str, session: Optional[Session] = None) -> Unit:
    """Get a unit by ID.

    Args:
        unit_id: Unit ID
        session: Optional database session. If None, creates a new session.

    Returns:
        Unit instance

    Raises:
        UnitNotFound: If unit_id does not resolve
    """

    def _impl(sess: Session) -> Unit:
        return _load_unit(sess, unit_id)

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_unit_by_abbreviation(abbreviation: str, session: Optional[Session] = None) -> Unit:
    """Get a unit by its abbreviation (e.g., "lb").

    Raises:
        UnitNotFound: If no unit has that abbreviation
    """

    def _impl(sess: Session) -> Unit:
        unit = sess.query(Unit).filter(Unit.abbreviation == abbreviation).first()
        if unit is None:
            raise UnitNotFound(abbreviation)
        return unit

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def list_units(kind: Optional[str] = None, session: Optional[Session] = None) -> List[Unit]:
    """List units, optionally restricted to one kind, ordered by kind then ratio."""

    def _impl(sess: Session) -> List[Unit]:
        query = sess.query(Unit)
        if kind is not None:
            query = query.filter(Unit.kind == kind)
        return query.order_by(Unit.kind, Unit.to_base_ratio).all()

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def get_base_unit(kind: str, session: Optional[Session] = None) -> Unit:
    """Get the base unit (ratio 1) of a kind.

    Raises:
        ValidationError: If kind is unknown
        UnitNotFound: If the kind has no base unit registered
    """
    if kind not in UNIT_KINDS:
        raise ValidationError([f"Unknown unit kind '{kind}'"])

    def _impl(sess: Session) -> Unit:
        unit = (
            sess.query(Unit)
            .filter(Unit.kind == kind, Unit.to_base_ratio == ONE)
            .order_by(Unit.created_at)
            .first()
        )
        if unit is None:
            raise UnitNotFound(f"base:{kind}")
        return unit

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def units_compatible(unit_id_a: str, unit_id_b: str, session: Optional[Session] = None) -> bool:
    """True if both units share a kind (and therefore a base unit).

    Raises:
        UnitNotFound: If either ID does not resolve
    """

    def _impl(sess: Session) -> bool:
        return _load_unit(sess, unit_id_a).kind == _load_unit(sess, unit_id_b).kind

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# ============================================================================
# Conversions
# ============================================================================


def convert_to_base(qty, unit_id: str, session: Optional[Session] = None) -> Decimal:
    """Convert a quantity in unit_id to base units.

    Args:
        qty: Quantity (int, float, str or Decimal)
        unit_id: Unit the quantity is expressed in
        session: Optional database session

    Returns:
        qty * unit.to_base_ratio

    Raises:
        UnitNotFound: If unit_id does not resolve
    """

    def _impl(sess: Session) -> Decimal:
        return to_base(qty, _load_unit(sess, unit_id))

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


def convert_from_base(base_qty, unit_id: str, session: Optional[Session] = None) -> Decimal:
    """Convert a base-unit quantity to unit_id.

    Returns:
        base_qty / unit.to_base_ratio

    Raises:
        UnitNotFound: If unit_id does not resolve
    """

    def _impl(sess: Session) -> Decimal:
        return from_base(base_qty, _load_unit(sess, unit_id))

    if session is not None:
        return _impl(session)
    with session_scope() as sess:
        return _impl(sess)


# ============================================================================
# Registry writes
# ============================================================================


def create_unit(
    name: str,
    abbreviation: str,
    kind: str,
    to_base_ratio,
    system: str = "us",
    session: Optional[Session] = None,
) -> Unit:
    """Register a unit.

    Args:
        name: Human-readable name
        abbreviation: Unique short code
        kind: "mass", "volume" or "count"
        to_base_ratio: Factor from 1 of this unit to 1 base unit (> 0)
        system: "us" or "metric"

    Raises:
        ValidationError: If kind/system is unknown, the ratio is not positive,
            or the abbreviation is taken
    """
    errors = []
    if not name or not name.strip():
        errors.append("Unit name is required")
    if not abbreviation or not abbreviation.strip():
        errors.append("Unit abbreviation is required")
    if kind not in UNIT_KINDS:
        errors.append(f"Unknown unit kind '{kind}'")
    if system not in UNIT_SYSTEMS:
        errors.append(f"Unknown unit system '{system}'")
    try:
        ratio = to_decimal(to_base_ratio)
    except ValueError:
        ratio = ZERO
    if ratio <= ZERO:
        errors.append("to_base_ratio must be greater than 0")
    if errors:
        raise ValidationError(errors)

    def _impl(sess: Session) -> Unit:
        existing = sess.query(Unit).filter(Unit.abbreviation == abbreviation).first()
        if existing is not None:
            raise ValidationError([f"Unit '{abbreviation}' already exists"])
        unit = Unit(
            name=name.strip(),
            abbreviation=abbreviation.strip(),
            kind=kind,
            to_base_ratio=ratio,
            system=system,
        )
        sess.add(unit)
        sess.flush()
        return unit

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except ServiceError:
        raise
    except SQLAlchemyError as e:
        raise DatabaseError(f"Failed to create unit '{abbreviation}'", e)


def seed_units(session: Optional[Session] = None) -> int:
    """Insert any missing units from the default table.

    Idempotent: units whose abbreviation already exists are left alone.

    Returns:
        Number of units created
    """

    def _impl(sess: Session) -> int:
        existing = {abbr for (abbr,) in sess.query(Unit.abbreviation).all()}
        created = 0
        for name, abbreviation, kind, ratio, system in DEFAULT_UNITS:
            if abbreviation in existing:
                continue
            sess.add(
                Unit(
                    name=name,
                    abbreviation=abbreviation,
                    kind=kind,
                    to_base_ratio=Decimal(ratio),
                    system=system,
                )
            )
            created += 1
        sess.flush()
        log_operation(logger, operation="seed_units", outcome="success", created=created)
        return created

    try:
        if session is not None:
            return _impl(session)
        with session_scope() as sess:
            return _impl(sess)
    except SQLAlchemyError as e:
        raise DatabaseError("Failed to seed units", e)
