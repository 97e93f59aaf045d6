"""
Report lifecycle engine for crowdsourced accessibility features
Creation, confirmation, removal and status/expiry derivation of reports
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Hashable, List, Optional, TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from accessmap.core.config import settings
from accessmap.core.constants import (
    EXTENSION_HOURS_PER_CONFIRMATION,
    FEATURE_TYPES,
    INITIAL_EXPIRY_HOURS,
    MAX_EXTENSION_HOURS,
    PERMANENT_CONFIRMATION_THRESHOLD,
    REMOVAL_THRESHOLD,
)
from accessmap.core.exceptions import (
    AlreadyConfirmed,
    AlreadyRemoved,
    AlreadyReported,
    InvalidInput,
    NotFound,
    Removed,
    StorageUnavailable,
)
from accessmap.core.geo_utils import Point, is_valid_coordinate
from accessmap.crowdsource.geo_index import GeoIndex, LockKey
from accessmap.crowdsource.locks import KeyedLock
from accessmap.crowdsource.photo_moderation import PhotoModerationLedger, PhotoReportResult
from accessmap.crowdsource.points import PointGrant, PointKind, points_for
from accessmap.database.connection import DatabaseConnection
from accessmap.database.models import (
    Confirmation,
    RemovalReport,
    Report,
    ReportStatus,
    SubmitCell,
    new_report_id,
    utcnow,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class LifecycleResult:
    """Outcome of a lifecycle operation and the points it earned."""
    report: Report
    created: bool = False
    grants: List[PointGrant] = field(default_factory=list)

    def points_for(self, actor_id: str) -> int:
        """Points this operation credits to one actor."""
        return points_for(self.grants, actor_id)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "report": self.report.to_dict(),
            "created": self.created,
            "grants": [g.to_dict() for g in self.grants],
        }


class ReportLifecycleEngine:
    """
    Authoritative state machine for accessibility reports.

    Every mutation of a report goes through this class. Mutations of one
    report are serialized with a per-report lock and guarded by the
    report's version column. Submissions are serialized per location cell,
    in process and through claim rows in the store, so that
    near-simultaneous reports of the same feature merge.

    Point grants are returned to the caller, never applied here.
    """

    PERMANENT_THRESHOLD = PERMANENT_CONFIRMATION_THRESHOLD
    REMOVAL_THRESHOLD = REMOVAL_THRESHOLD
    INITIAL_EXPIRY = timedelta(hours=INITIAL_EXPIRY_HOURS)

    def __init__(
        self,
        db: DatabaseConnection,
        geo_index: Optional[GeoIndex] = None,
        moderation: Optional[PhotoModerationLedger] = None,
        locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
        retry_attempts: Optional[int] = None
    ):
        """
        Initialize lifecycle engine.

        Args:
            db: Report store
            geo_index: Proximity lookup (default radii from settings)
            moderation: Photo moderation ledger
            locks: Lock registry shared by every writer in the process
            clock: Source of "now" (naive UTC)
            retry_attempts: Attempts per operation on concurrent-update conflicts
        """
        self.db = db
        self.geo_index = geo_index or GeoIndex(
            merge_radius_m=settings.duplicate_merge_radius_m,
            default_radius_m=settings.nearby_default_radius_m,
        )
        self.moderation = moderation or PhotoModerationLedger()
        self.locks = locks or KeyedLock()
        self.clock = clock
        self.retry_attempts = max(1, retry_attempts or settings.mutation_retry_attempts)

        logger.info("ReportLifecycleEngine initialized")

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def submit(
        self,
        feature_type: str,
        longitude: float,
        latitude: float,
        actor_id: str,
        photo_url: Optional[str] = None
    ) -> LifecycleResult:
        """
        Submit a feature sighting.

        Creates a new report, or reinforces the nearest report of the same
        type within the merge radius.

        Args:
            feature_type: One of FEATURE_TYPES
            longitude: WGS84 longitude
            latitude: WGS84 latitude
            actor_id: User id or anonymous device id
            photo_url: Optional reference to an already stored photo

        Returns:
            LifecycleResult with created=True for a new report

        Raises:
            InvalidInput: unknown type, bad coordinates or empty identity
        """
        self._validate_feature_type(feature_type)
        if not is_valid_coordinate(latitude, longitude):
            raise InvalidInput(
                f"Invalid coordinates: longitude={longitude}, latitude={latitude}"
            )
        self._validate_actor(actor_id)
        self._validate_photo(photo_url)

        point = Point(latitude=float(latitude), longitude=float(longitude))
        cell_keys = self.geo_index.cell_lock_keys(feature_type, point)

        def operation(session: Session) -> LifecycleResult:
            now = self.clock()
            self._claim_cells(session, cell_keys, now)

            duplicate = self.geo_index.find_duplicate(session, feature_type, point)
            if duplicate is None:
                return self._create(session, feature_type, point, actor_id, photo_url, now)
            return self._merge(duplicate, actor_id, photo_url, now)

        with self.locks.hold(*[("cell",) + key for key in cell_keys]):
            result = self._transaction(operation, f"{feature_type} submission")

        if result.created:
            logger.info(
                f"New report created: {result.report.id} ({feature_type}) "
                f"at ({point.longitude}, {point.latitude}) by {actor_id}"
            )
        return result

    def confirm(
        self,
        report_id: str,
        actor_id: str,
        photo_url: Optional[str] = None
    ) -> LifecycleResult:
        """
        Confirm that a reported feature exists.

        Args:
            report_id: Report to confirm
            actor_id: Confirming user id or device id
            photo_url: Optional photo to attach

        Returns:
            LifecycleResult for the updated report

        Raises:
            NotFound: unknown report
            Removed: report has been removed
            AlreadyConfirmed: actor already confirmed this report
        """
        self._validate_actor(actor_id)
        self._validate_photo(photo_url)

        def operation(session: Session, report: Report, now: datetime) -> LifecycleResult:
            if report.status == ReportStatus.REMOVED:
                raise Removed("This report has been removed")
            if report.has_confirmed(actor_id):
                raise AlreadyConfirmed("You have already confirmed this report")

            grants = self._add_confirmation(report, actor_id, now)
            if photo_url:
                grants += self._add_photo(report, actor_id, photo_url, now)

            self._recompute_status(report, now)
            self._touch(report, now)
            return LifecycleResult(report=report, created=False, grants=grants)

        return self._mutate_report(report_id, operation)

    def add_photo(
        self,
        report_id: str,
        actor_id: str,
        photo_url: str
    ) -> LifecycleResult:
        """
        Attach a photo to an existing report without confirming it.

        The report's creator is credited for the new evidence when the
        photo comes from someone else.

        Raises:
            InvalidInput: empty photo reference
            NotFound: unknown report
            Removed: report has been removed
        """
        self._validate_actor(actor_id)
        if photo_url is None:
            raise InvalidInput("Photo is required")
        self._validate_photo(photo_url)

        def operation(session: Session, report: Report, now: datetime) -> LifecycleResult:
            if report.status == ReportStatus.REMOVED:
                raise Removed("This report has been removed")

            grants = self._add_photo(report, actor_id, photo_url, now)
            if report.creator_id != actor_id:
                grants.append(PointGrant.of(report.creator_id, PointKind.CONFIRMATION_RECEIVED))

            self._touch(report, now)
            return LifecycleResult(report=report, created=False, grants=grants)

        return self._mutate_report(report_id, operation)

    def report_removal(self, report_id: str, actor_id: str) -> LifecycleResult:
        """
        Report that a feature is gone.

        Reaching the removal threshold forces the report into the terminal
        removed state, whatever its confirmations.

        Raises:
            NotFound: unknown report
            AlreadyRemoved: report is already removed
            AlreadyReported: actor already reported this removal
        """
        self._validate_actor(actor_id)

        def operation(session: Session, report: Report, now: datetime) -> LifecycleResult:
            if report.status == ReportStatus.REMOVED:
                raise AlreadyRemoved("This report has already been removed")
            if report.has_reported_removal(actor_id):
                raise AlreadyReported("You have already reported this as removed")

            report.removal_reports.append(RemovalReport(user_id=actor_id, created_at=now))
            if report.removal_report_count >= self.REMOVAL_THRESHOLD:
                self._mark_removed(report)

            self._touch(report, now)
            return LifecycleResult(report=report, created=False, grants=[])

        return self._mutate_report(report_id, operation)

    def report_photo(
        self,
        report_id: str,
        photo_index: int,
        reporter_id: str,
        reason: Optional[str] = None
    ) -> PhotoReportResult:
        """
        Flag one of a report's photos as inappropriate or incorrect.

        Raises:
            NotFound: unknown report or photo index
            AlreadyReported: reporter already flagged this photo
        """
        self._validate_actor(reporter_id)

        def operation(session: Session, report: Report, now: datetime) -> PhotoReportResult:
            result = self.moderation.report_photo(report, photo_index, reporter_id, reason, now)
            self._touch(report, now)
            return result

        return self._mutate_report(report_id, operation)

    def get(self, report_id: str) -> Report:
        """
        Get a report by id.

        Raises:
            NotFound: unknown report
        """
        def operation(session: Session) -> Report:
            report = session.get(Report, report_id)
            if report is None:
                raise NotFound("Report not found")
            return report

        return self._transaction(operation, f"report {report_id}")

    def find_nearby(
        self,
        longitude: float,
        latitude: float,
        radius_m: Optional[float] = None
    ) -> List[Report]:
        """
        Non-removed reports around a point, nearest first.

        Raises:
            InvalidInput: bad coordinates or radius
        """
        if not is_valid_coordinate(latitude, longitude):
            raise InvalidInput(
                f"Invalid coordinates: longitude={longitude}, latitude={latitude}"
            )
        if radius_m is not None and not radius_m > 0:
            raise InvalidInput("Radius must be a positive number of meters")

        point = Point(latitude=float(latitude), longitude=float(longitude))
        return self._transaction(
            lambda session: self.geo_index.find_nearby(session, point, radius_m),
            "nearby lookup",
        )

    # ------------------------------------------------------------------
    # Status derivation
    # ------------------------------------------------------------------

    def _recompute_status(self, report: Report, now: datetime) -> None:
        """
        Derive status, permanence and expiry after a confirmation change.

        The confirmed branch only fires on the pending -> confirmed
        transition; later confirmations leave the expiry alone until the
        report becomes permanent.
        """
        confirmations = report.confirmation_count

        if report.removal_report_count >= self.REMOVAL_THRESHOLD:
            self._mark_removed(report)
        elif confirmations >= self.PERMANENT_THRESHOLD and not report.is_permanent:
            report.is_permanent = True
            report.status = ReportStatus.PERMANENT
            report.expires_at = None
            logger.info(f"Report {report.id} is now permanent ({confirmations} confirmations)")
        elif confirmations >= 1 and report.status == ReportStatus.PENDING:
            extension_hours = min(
                confirmations * EXTENSION_HOURS_PER_CONFIRMATION, MAX_EXTENSION_HOURS
            )
            report.status = ReportStatus.CONFIRMED
            report.expires_at = now + timedelta(hours=extension_hours)
            logger.info(
                f"Report {report.id} confirmed, expires in {extension_hours}h "
                f"({confirmations} confirmations)"
            )

    @staticmethod
    def _touch(report: Report, now: datetime) -> None:
        """Stamp a mutation; always issues an UPDATE so the version advances."""
        report.updated_at = now
        flag_modified(report, "updated_at")

    def _mark_removed(self, report: Report) -> None:
        if report.status == ReportStatus.REMOVED:
            return
        report.status = ReportStatus.REMOVED
        report.expires_at = None
        logger.info(
            f"Report {report.id} removed after {report.removal_report_count} removal reports"
        )

    # ------------------------------------------------------------------
    # Mutation helpers
    # ------------------------------------------------------------------

    def _create(
        self,
        session: Session,
        feature_type: str,
        point: Point,
        actor_id: str,
        photo_url: Optional[str],
        now: datetime
    ) -> LifecycleResult:
        report = Report(
            id=new_report_id(),
            type=feature_type,
            latitude=point.latitude,
            longitude=point.longitude,
            creator_id=actor_id,
            status=ReportStatus.PENDING,
            is_permanent=False,
            expires_at=now + self.INITIAL_EXPIRY,
            created_at=now,
            updated_at=now,
            photos=[],
            confirmations=[],
            removal_reports=[],
        )
        # The creator counts as the first confirmation
        report.confirmations.append(Confirmation(user_id=actor_id, created_at=now))

        grants = [PointGrant.of(actor_id, PointKind.REPORT_CREATED)]
        if photo_url:
            grants += self._add_photo(report, actor_id, photo_url, now)

        session.add(report)
        return LifecycleResult(report=report, created=True, grants=grants)

    def _merge(
        self,
        report: Report,
        actor_id: str,
        photo_url: Optional[str],
        now: datetime
    ) -> LifecycleResult:
        """Reinforce an existing report with a new sighting."""
        grants: List[PointGrant] = []
        confirmed = False
        if not report.has_confirmed(actor_id):
            grants += self._add_confirmation(report, actor_id, now)
            confirmed = True

        if photo_url:
            grants += self._add_photo(report, actor_id, photo_url, now)

        if confirmed:
            self._recompute_status(report, now)
        if grants:
            self._touch(report, now)

        logger.info(
            f"Submission by {actor_id} merged into report {report.id} "
            f"({report.confirmation_count} confirmations)"
        )
        return LifecycleResult(report=report, created=False, grants=grants)

    def _add_confirmation(self, report: Report, actor_id: str, now: datetime) -> List[PointGrant]:
        report.confirmations.append(Confirmation(user_id=actor_id, created_at=now))

        grants = [PointGrant.of(actor_id, PointKind.CONFIRMATION_GIVEN)]
        if report.creator_id != actor_id:
            grants.append(PointGrant.of(report.creator_id, PointKind.CONFIRMATION_RECEIVED))
        return grants

    def _add_photo(
        self,
        report: Report,
        actor_id: str,
        photo_url: str,
        now: datetime
    ) -> List[PointGrant]:
        self.moderation.attach(report, photo_url, actor_id, now)
        return [PointGrant.of(actor_id, PointKind.PHOTO_ADDED)]

    def _claim_cells(self, session: Session, cell_keys: List[LockKey], now: datetime) -> None:
        """
        Write the claim rows of every cell around a submission.

        The rows stay locked by this transaction until it ends, so any
        other submission that could merge with this one waits here, in
        whatever process it runs. Keys arrive sorted, which keeps the
        row lock order the same for every writer.
        """
        for feature_type, band, col in cell_keys:
            claimed = (
                session.query(SubmitCell)
                .filter_by(feature_type=feature_type, band=band, col=col)
                .update({SubmitCell.claimed_at: now}, synchronize_session=False)
            )
            if not claimed:
                session.add(SubmitCell(feature_type=feature_type, band=band, col=col, claimed_at=now))
                session.flush()

    def _mutate_report(
        self,
        report_id: str,
        operation: Callable[[Session, Report, datetime], T]
    ) -> T:
        """Run a read-modify-write on one report while holding its lock."""
        if not isinstance(report_id, str) or not report_id:
            raise NotFound("Report not found")

        def load_and_apply(session: Session) -> T:
            report = session.get(Report, report_id)
            if report is None:
                raise NotFound("Report not found")
            return operation(session, report, self.clock())

        key: Hashable = ("report", report_id)
        with self.locks.hold(key):
            return self._transaction(load_and_apply, f"report {report_id}")

    def _transaction(self, operation: Callable[[Session], T], description: str) -> T:
        """
        Run an operation in its own transaction, retrying on write conflicts.

        Conflicts (stale version, unique-constraint races) re-run the whole
        operation against fresh state; other database failures surface as
        StorageUnavailable. Errors raised by the operation itself roll the
        transaction back and propagate unchanged.
        """
        for attempt in range(1, self.retry_attempts + 1):
            try:
                with self.db.get_session() as session:
                    result = operation(session)
                    session.flush()
                return result
            except (StaleDataError, IntegrityError) as e:
                if attempt >= self.retry_attempts:
                    logger.error(f"Giving up on {description} after {attempt} conflicting attempts")
                    raise StorageUnavailable(
                        "Report is being updated concurrently, try again"
                    ) from e
                logger.warning(
                    f"Concurrent update on {description}, retrying "
                    f"({attempt}/{self.retry_attempts}): {e.__class__.__name__}"
                )
            except SQLAlchemyError as e:
                logger.error(f"Storage error during {description}: {e}")
                raise StorageUnavailable("Report store is unavailable") from e

        raise StorageUnavailable("Report store is unavailable")

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_feature_type(feature_type: str) -> None:
        if feature_type not in FEATURE_TYPES:
            raise InvalidInput(f"Invalid feature type: {feature_type}")

    @staticmethod
    def _validate_actor(actor_id: str) -> None:
        if not isinstance(actor_id, str) or not actor_id.strip():
            raise InvalidInput("An actor identity is required")

    @staticmethod
    def _validate_photo(photo_url: Optional[str]) -> None:
        if photo_url is not None and (not isinstance(photo_url, str) or not photo_url.strip()):
            raise InvalidInput("Photo reference must be a non-empty string")
