"""
Tests for concurrent report mutations
"""
import threading
from typing import Callable, List

import pytest

from accessmap.core.exceptions import AccessMapError, AlreadyConfirmed
from accessmap.core.geo_utils import Point
from accessmap.crowdsource.lifecycle import ReportLifecycleEngine
from accessmap.crowdsource.locks import KeyedLock
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import ReportStatus, SubmitCell


def _run_concurrently(workers: List[Callable[[], object]]) -> List[object]:
    """Start all workers at once and collect their results or errors."""
    barrier = threading.Barrier(len(workers))
    results: List[object] = [None] * len(workers)

    def run(i, work):
        barrier.wait()
        try:
            results[i] = work()
        except AccessMapError as e:
            results[i] = e

    threads = [threading.Thread(target=run, args=(i, w)) for i, w in enumerate(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)
    return results


class TestConcurrentMutations:
    """Test suite for parallel writers."""

    @pytest.fixture
    def live_engine(self, db):
        """Engine on the wall clock, as in production."""
        return ReportLifecycleEngine(db)

    @pytest.fixture
    def report_id(self, live_engine, sao_paulo):
        return live_engine.submit("ramp", sao_paulo[1], sao_paulo[0], "creator").report.id

    def test_same_actor_confirms_once(self, live_engine, report_id):
        """Test parallel confirmations by one actor succeed exactly once."""
        results = _run_concurrently([
            lambda: live_engine.confirm(report_id, "bob") for _ in range(8)
        ])

        errors = [r for r in results if isinstance(r, Exception)]
        successes = [r for r in results if not isinstance(r, Exception)]

        assert len(successes) == 1
        assert len(errors) == 7
        assert all(isinstance(e, AlreadyConfirmed) for e in errors)
        assert live_engine.get(report_id).confirmation_count == 2

    def test_distinct_actors_all_counted(self, live_engine, report_id, assert_invariants):
        """Test no confirmation is lost under contention."""
        results = _run_concurrently([
            (lambda i=i: live_engine.confirm(report_id, f"user-{i}")) for i in range(12)
        ])

        assert not any(isinstance(r, Exception) for r in results)

        report = live_engine.get(report_id)
        assert report.confirmation_count == 13
        assert report.status == ReportStatus.PERMANENT
        assert_invariants(report)

    def test_parallel_submissions_merge(self, live_engine, sao_paulo, offset):
        """Test simultaneous sightings of one feature produce one report."""
        points = [offset(sao_paulo, 2.0 * i, 45.0 * i) for i in range(6)]
        results = _run_concurrently([
            (lambda i=i, p=p: live_engine.submit("elevator", p[1], p[0], f"user-{i}"))
            for i, p in enumerate(points)
        ])

        assert not any(isinstance(r, Exception) for r in results)
        assert sum(1 for r in results if r.created) == 1
        assert len({r.report.id for r in results}) == 1

        [report] = live_engine.find_nearby(sao_paulo[1], sao_paulo[0])
        assert report.confirmation_count == 6

    def test_parallel_removals(self, live_engine, report_id):
        """Test concurrent removal reports reach the threshold exactly."""
        results = _run_concurrently([
            (lambda i=i: live_engine.report_removal(report_id, f"remover-{i}")) for i in range(10)
        ])

        assert not any(isinstance(r, Exception) for r in results)

        report = live_engine.get(report_id)
        assert report.removal_report_count == 10
        assert report.status == ReportStatus.REMOVED


class TestSharedStore:
    """Test suite for engines that share a store but not a lock registry."""

    @pytest.fixture
    def engines(self, db):
        """Two engines on one SQLite file, as two server workers would be."""
        other = DatabaseConnection(database_url=db.database_url)
        yield ReportLifecycleEngine(db), ReportLifecycleEngine(other)
        other.close()

    def test_submission_claims_cells(self, engines, sao_paulo):
        """Test a submission writes one claim row per surrounding cell."""
        engine, _ = engines
        point = Point(latitude=sao_paulo[0], longitude=sao_paulo[1])
        keys = engine.geo_index.cell_lock_keys("ramp", point)

        engine.submit("ramp", sao_paulo[1], sao_paulo[0], "alice")
        engine.submit("ramp", sao_paulo[1], sao_paulo[0], "bob")

        with engine.db.get_session() as session:
            claimed = {(c.feature_type, c.band, c.col) for c in session.query(SubmitCell).all()}
        assert claimed == set(keys)

    def test_simultaneous_submissions_merge(self, engines, sao_paulo, offset):
        """Test engines with separate locks still produce one report per feature."""
        first, second = engines
        assert first.locks is not second.locks

        for trial in range(10):
            lat, lon = offset(sao_paulo, 500.0 * trial, 0.0)
            results = _run_concurrently([
                lambda: first.submit("ramp", lon, lat, f"alice-{trial}"),
                lambda: second.submit("ramp", lon, lat, f"bob-{trial}"),
            ])

            assert not any(isinstance(r, Exception) for r in results)
            assert sum(1 for r in results if r.created) == 1
            assert len({r.report.id for r in results}) == 1

            [report] = first.find_nearby(lon, lat, 20.0)
            assert report.confirmation_count == 2


class TestKeyedLock:
    """Test suite for KeyedLock."""

    def test_entries_released(self):
        """Test idle keys are dropped from the registry."""
        locks = KeyedLock()
        with locks.hold("a", "b", "a"):
            assert len(locks) == 2
        assert len(locks) == 0

    def test_mutual_exclusion(self):
        """Test holders of one key never overlap."""
        locks = KeyedLock()
        inside = []
        overlaps = []

        def work():
            for _ in range(50):
                with locks.hold(("report", "r1")):
                    inside.append(1)
                    if len(inside) > 1:
                        overlaps.append(True)
                    inside.pop()

        threads = [threading.Thread(target=work) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert overlaps == []
        assert len(locks) == 0

    def test_overlapping_key_sets(self):
        """Test callers locking overlapping key sets do not deadlock."""
        locks = KeyedLock()
        done = []

        def work(keys):
            for _ in range(100):
                with locks.hold(*keys):
                    pass
            done.append(keys)

        threads = [
            threading.Thread(target=work, args=(("x", "y"),)),
            threading.Thread(target=work, args=(("y", "x"),)),
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert len(done) == 2

    def test_released_on_error(self):
        """Test locks are released when the block raises."""
        locks = KeyedLock()
        with pytest.raises(ValueError):
            with locks.hold("a"):
                raise ValueError("boom")
        assert len(locks) == 0
