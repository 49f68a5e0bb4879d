"""
Tests for database setup and session handling.
"""

import pytest
from sqlalchemy import inspect

from platecost.models import StorageLocation
from platecost.services.database import create_database_engine, init_database, session_scope
from platecost.services.location_service import list_store_locations


class TestInitDatabase:
    """Tests for init_database()."""

    def test_creates_tables_in_file_database(self, tmp_path):
        engine = create_database_engine(f"sqlite:///{tmp_path / 'platecost.db'}", echo=False)
        try:
            init_database(engine)
            init_database(engine)

            tables = inspect(engine).get_table_names()
            for table in ("units", "inventory_items", "recipes", "inventory_counts", "receipts"):
                assert table in tables
        finally:
            engine.dispose()


class TestSessionScope:
    """Tests for session_scope()."""

    def test_commits_on_success(self, test_db):
        with session_scope() as session:
            session.add(StorageLocation(name="Bar", store_id="store-1"))

        assert [loc.name for loc in list_store_locations("store-1")] == ["Bar"]

    def test_rolls_back_on_error(self, test_db):
        with pytest.raises(RuntimeError):
            with session_scope() as session:
                session.add(StorageLocation(name="Bar", store_id="store-1"))
                session.flush()
                raise RuntimeError("boom")

        assert list_store_locations("store-1") == []
