"""
Community moderation of report photos
Abuse-report counting, hiding, and primary photo selection
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from accessmap.core.constants import DEFAULT_PHOTO_REPORT_REASON, PHOTO_HIDE_THRESHOLD
from accessmap.core.exceptions import AlreadyReported, InvalidInput, NotFound
from accessmap.database.models import Photo, PhotoFlag, Report

logger = logging.getLogger(__name__)


@dataclass
class PhotoReportResult:
    """Outcome of flagging a photo."""
    report_id: str
    photo_index: int
    report_count: int
    is_hidden: bool

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "report_id": self.report_id,
            "photo_index": self.photo_index,
            "report_count": self.report_count,
            "is_hidden": self.is_hidden,
        }


class PhotoModerationLedger:
    """
    Tracks abuse reports per photo and decides when a photo is hidden.

    Photos are never deleted here; hiding is one-way.
    """

    def __init__(self, hide_threshold: int = PHOTO_HIDE_THRESHOLD):
        self.hide_threshold = hide_threshold

    def attach(
        self,
        report: Report,
        url: str,
        reporter_id: str,
        now: datetime
    ) -> Photo:
        """
        Append a photo to a report.

        Args:
            report: Report receiving the photo
            url: Photo reference already stored by the upload pipeline
            reporter_id: Actor attaching the photo
            now: Attachment time

        Returns:
            The new Photo, last in the report's photo order
        """
        if not isinstance(url, str) or not url.strip():
            raise InvalidInput("Photo reference must be a non-empty string")

        photo = Photo(
            url=url.strip(),
            reporter_id=reporter_id,
            is_hidden=False,
            created_at=now,
            bad_photo_reports=[],
        )
        report.photos.append(photo)
        return photo

    def report_photo(
        self,
        report: Report,
        photo_index: int,
        reporter_id: str,
        reason: Optional[str],
        now: datetime
    ) -> PhotoReportResult:
        """
        Record an abuse report against one of a report's photos.

        Args:
            report: Report owning the photo
            photo_index: 0-based position in the report's photo order
            reporter_id: Actor filing the abuse report
            reason: Free-text reason (a generic reason when omitted)
            now: Time of the abuse report

        Returns:
            PhotoReportResult with the new count and visibility

        Raises:
            NotFound: photo_index is out of range
            AlreadyReported: reporter_id already flagged this photo
        """
        if isinstance(photo_index, bool) or not isinstance(photo_index, int):
            raise NotFound("Photo not found")
        if photo_index < 0 or photo_index >= len(report.photos):
            raise NotFound("Photo not found")

        photo = report.photos[photo_index]
        if photo.has_been_reported_by(reporter_id):
            raise AlreadyReported("You have already reported this photo")

        photo.bad_photo_reports.append(PhotoFlag(
            reporter_id=reporter_id,
            reason=(reason or "").strip() or DEFAULT_PHOTO_REPORT_REASON,
            created_at=now,
        ))

        if photo.report_count >= self.hide_threshold and not photo.is_hidden:
            photo.is_hidden = True
            logger.info(
                f"Photo {photo_index} of report {report.id} hidden "
                f"after {photo.report_count} abuse reports"
            )

        return PhotoReportResult(
            report_id=report.id,
            photo_index=photo_index,
            report_count=photo.report_count,
            is_hidden=photo.is_hidden,
        )

    @staticmethod
    def primary_photo(report: Report) -> Optional[Photo]:
        """
        Photo used as the report's thumbnail.

        First visible photo in insertion order; if every photo is hidden the
        first photo is used anyway, and None only when there are no photos.
        """
        if not report.photos:
            return None
        for photo in report.photos:
            if not photo.is_hidden:
                return photo
        return report.photos[0]

    @staticmethod
    def visible_photos(report: Report) -> List[Tuple[int, Photo]]:
        """Non-hidden photos paired with their index in the photo order."""
        return [(i, p) for i, p in enumerate(report.photos) if not p.is_hidden]
