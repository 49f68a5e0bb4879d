"""Pytest configuration and fixtures for Plate Cost tests."""

import pytest
from sqlalchemy.orm import sessionmaker, scoped_session

from platecost.models.base import Base
from platecost.services.database import create_database_engine


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database (one shared connection)
    2. Creates all tables
    3. Swaps the global session factory for one bound to it
    4. Drops all tables after the test completes
    """
    engine = create_database_engine("sqlite:///:memory:", echo=False)
    Base.metadata.create_all(engine)

    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import platecost.services.database as db_module

    original_get_session_factory = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    yield Session

    Session.remove()
    Base.metadata.drop_all(engine)
    engine.dispose()
    db_module.get_session_factory = original_get_session_factory


@pytest.fixture
def units(test_db):
    """Seed the default unit table and return units keyed by abbreviation."""
    from platecost.services.unit_service import list_units, seed_units

    seed_units()
    return {unit.abbreviation: unit for unit in list_units()}


@pytest.fixture
def store_locations(test_db):
    """Two locations in store-1 and one in store-2."""
    from platecost.services.location_service import create_storage_location

    return {
        "walk_in": create_storage_location("Walk-in Cooler", "store-1"),
        "dry": create_storage_location("Dry Storage", "store-1"),
        "other_store": create_storage_location("Walk-in Cooler", "store-2"),
    }


@pytest.fixture
def tomatoes(units):
    """Tomatoes counted in ounces at $0.25/oz, 100% yield."""
    from platecost.services.inventory_item_service import create_inventory_item

    return create_inventory_item("Tomatoes", units["oz"].id, last_cost="0.25")


@pytest.fixture
def cheese(units):
    """Mozzarella counted in ounces at $0.50/oz."""
    from platecost.services.inventory_item_service import create_inventory_item

    return create_inventory_item("Mozzarella", units["oz"].id, last_cost="0.50")
