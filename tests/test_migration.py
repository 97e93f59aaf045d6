"""
Tests for the initial database migration
"""
import importlib.util
from pathlib import Path

from alembic.migration import MigrationContext
from alembic.operations import Operations
from sqlalchemy import create_engine, inspect

from accessmap.crowdsource.lifecycle import ReportLifecycleEngine
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import Base

MIGRATION_PATH = (
    Path(__file__).parent.parent
    / "accessmap" / "database" / "migrations" / "versions" / "001_initial.py"
)


def _load_migration():
    spec = importlib.util.spec_from_file_location("migration_001_initial", MIGRATION_PATH)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _run(engine, step):
    with engine.begin() as connection:
        context = MigrationContext.configure(connection)
        with Operations.context(context):
            step()


class TestInitialMigration:
    """Test suite for the initial schema migration."""

    def setup_method(self):
        """Setup test fixtures."""
        self.migration = _load_migration()

    def test_upgrade_matches_models(self, tmp_path):
        """Test the migration creates every mapped table and index."""
        engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
        _run(engine, self.migration.upgrade)

        inspector = inspect(engine)
        assert set(inspector.get_table_names()) == set(Base.metadata.tables)

        for table in Base.metadata.sorted_tables:
            columns = {c["name"] for c in inspector.get_columns(table.name)}
            assert columns == {c.name for c in table.columns}, table.name

        report_indexes = {i["name"] for i in inspector.get_indexes("reports")}
        assert {"idx_report_type_lat", "idx_report_lat_lon", "idx_report_expires_at"} <= report_indexes
        engine.dispose()

    def test_migrated_schema_is_usable(self, tmp_path):
        """Test the lifecycle engine runs against the migrated schema."""
        url = f"sqlite:///{tmp_path / 'migrated.db'}"
        engine = create_engine(url)
        _run(engine, self.migration.upgrade)
        engine.dispose()

        db = DatabaseConnection(database_url=url)
        lifecycle = ReportLifecycleEngine(db)
        report_id = lifecycle.submit("ramp", -46.6559, -23.5614, "alice", photo_url="/u/1.jpg").report.id
        lifecycle.confirm(report_id, "bob")
        lifecycle.report_photo(report_id, 0, "carol")

        report = lifecycle.get(report_id)
        assert report.confirmation_count == 2
        assert report.photos[0].report_count == 1
        db.close()

    def test_downgrade(self, tmp_path):
        """Test downgrade removes every table."""
        engine = create_engine(f"sqlite:///{tmp_path / 'migrated.db'}")
        _run(engine, self.migration.upgrade)
        _run(engine, self.migration.downgrade)

        assert inspect(engine).get_table_names() == []
        engine.dispose()
