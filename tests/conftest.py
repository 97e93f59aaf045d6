"""
Pytest configuration and fixtures
"""
import pytest
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from accessmap.core.geo_utils import destination_point
from accessmap.crowdsource.lifecycle import ReportLifecycleEngine
from accessmap.crowdsource.points import PointsLedger
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import Report, ReportStatus, new_report_id


class FakeClock:
    """Manually advanced clock returning naive UTC datetimes."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    """Clock frozen at a fixed instant."""
    return FakeClock(datetime(2026, 1, 15, 12, 0, 0))


@pytest.fixture
def db(tmp_path):
    """Temporary SQLite report store."""
    connection = DatabaseConnection(
        database_url=f"sqlite:///{tmp_path / 'accessmap.db'}",
        echo=False,
    )
    connection.create_tables()
    yield connection
    connection.close()


@pytest.fixture
def engine(db, clock):
    """Lifecycle engine over the temporary store."""
    return ReportLifecycleEngine(db, clock=clock)


@pytest.fixture
def ledger(db):
    """Points ledger over the temporary store."""
    return PointsLedger(db)


@pytest.fixture
def client(db, clock):
    """API test client wired to the temporary store (lifespan not run)."""
    from fastapi.testclient import TestClient
    from accessmap.api.main import app, build_services

    app.state.services = build_services(db, clock=clock)
    yield TestClient(app)
    app.state.services = None


@pytest.fixture
def sao_paulo():
    """Avenida Paulista, Sao Paulo (latitude, longitude)."""
    return (-23.5614, -46.6559)


@pytest.fixture
def offset():
    """Move a (latitude, longitude) pair by meters along a bearing."""
    def _offset(origin, meters: float, bearing: float = 90.0):
        return destination_point(origin[0], origin[1], meters / 1000.0, bearing)
    return _offset


@pytest.fixture
def make_report(db, clock):
    """Insert a report row directly, bypassing the lifecycle engine."""
    def _make_report(
        latitude: float,
        longitude: float,
        feature_type: str = "ramp",
        status: ReportStatus = ReportStatus.PENDING,
        is_permanent: bool = False,
        expires_at: Optional[datetime] = None,
        created_at: Optional[datetime] = None,
        updated_at: Optional[datetime] = None,
    ) -> str:
        created = created_at or clock()
        report = Report(
            id=new_report_id(),
            type=feature_type,
            latitude=latitude,
            longitude=longitude,
            creator_id="seed-user",
            status=status,
            is_permanent=is_permanent,
            expires_at=expires_at,
            created_at=created,
            updated_at=updated_at or created,
        )
        with db.get_session() as session:
            session.add(report)
        return report.id
    return _make_report


@pytest.fixture
def assert_invariants():
    """Check the permanence/status/expiry relationship of a report."""
    def _assert_invariants(report: Report):
        if report.status == ReportStatus.REMOVED:
            assert report.expires_at is None
            return
        assert report.is_permanent == (report.status == ReportStatus.PERMANENT)
        assert report.is_permanent == (report.expires_at is None)
    return _assert_invariants
