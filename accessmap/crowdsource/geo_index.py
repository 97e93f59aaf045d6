"""
Geospatial lookup of accessibility reports
Proximity search used for duplicate merging and map queries
"""

import logging
import math
from typing import List, Optional, Tuple

from sqlalchemy.orm import Session

from accessmap.core.constants import (
    DUPLICATE_MERGE_RADIUS_M,
    DEFAULT_NEARBY_RADIUS_M,
    LOCK_CELL_DEGREES,
)
from accessmap.core.geo_utils import (
    METERS_PER_DEGREE,
    Point,
    bounding_box_around,
    haversine_meters,
)
from accessmap.database.models import Report, ReportStatus

logger = logging.getLogger(__name__)

LockKey = Tuple[str, int, int]


class GeoIndex:
    """
    Spatial lookup of existing reports over the report store.

    Candidates are narrowed with an indexed latitude/longitude window and
    then measured with the haversine formula, so results are exact
    great-circle distances. Removed reports are never returned.
    """

    # Widest longitude neighbourhood (in cells) before a band is locked whole
    MAX_LOCK_COLUMN_SPAN = 64

    def __init__(
        self,
        merge_radius_m: float = DUPLICATE_MERGE_RADIUS_M,
        default_radius_m: float = DEFAULT_NEARBY_RADIUS_M,
        cell_degrees: float = LOCK_CELL_DEGREES
    ):
        """
        Initialize geo index.

        Args:
            merge_radius_m: Distance under which same-type reports are merged
            default_radius_m: Radius for nearby queries without an explicit one
            cell_degrees: Size of the lock grid cells in degrees
        """
        self.merge_radius_m = merge_radius_m
        self.default_radius_m = default_radius_m
        self.cell_degrees = cell_degrees
        self._column_count = int(round(360.0 / cell_degrees))

    def _candidates(
        self,
        session: Session,
        point: Point,
        radius_m: float,
        feature_type: Optional[str] = None
    ) -> List[Tuple[Report, float]]:
        """
        Collect non-removed reports within a radius, nearest first.

        Ties on distance are broken by creation time, then id, so repeated
        queries over unchanged data always return the same order.
        """
        south, north, bbox = bounding_box_around(point, radius_m)

        query = session.query(Report).filter(
            Report.status != ReportStatus.REMOVED,
            Report.latitude >= south,
            Report.latitude <= north,
        )
        if bbox is not None:
            query = query.filter(
                Report.longitude >= bbox.west,
                Report.longitude <= bbox.east,
            )
        if feature_type is not None:
            query = query.filter(Report.type == feature_type)

        matches = []
        for report in query.all():
            distance = haversine_meters(point, Point(report.latitude, report.longitude))
            if distance <= radius_m:
                matches.append((report, distance))

        matches.sort(key=lambda m: (m[1], m[0].created_at, m[0].id))
        return matches

    def find_duplicate(
        self,
        session: Session,
        feature_type: str,
        point: Point
    ) -> Optional[Report]:
        """
        Find the report a new submission should merge into.

        Args:
            session: Database session
            feature_type: Feature type of the submission
            point: Submitted location

        Returns:
            Nearest non-removed report of the same type within the merge
            radius, or None
        """
        matches = self._candidates(session, point, self.merge_radius_m, feature_type)
        if not matches:
            return None

        report, distance = matches[0]
        logger.debug(f"Duplicate candidate {report.id} for {feature_type} at {distance:.1f} m")
        return report

    def find_nearby(
        self,
        session: Session,
        point: Point,
        radius_m: Optional[float] = None
    ) -> List[Report]:
        """
        Find all non-removed reports around a point.

        Args:
            session: Database session
            point: Center of the search
            radius_m: Search radius in meters (default_radius_m if omitted)

        Returns:
            Reports ordered by ascending distance, then creation time
        """
        return [r for r, _ in self.find_nearby_with_distance(session, point, radius_m)]

    def find_nearby_with_distance(
        self,
        session: Session,
        point: Point,
        radius_m: Optional[float] = None
    ) -> List[Tuple[Report, float]]:
        """Same as find_nearby, paired with each report's distance in meters."""
        radius = self.default_radius_m if radius_m is None else radius_m
        return self._candidates(session, point, radius)

    def _column_span(self, band: int) -> Optional[int]:
        """
        Longitude cells each side of a point that cover the merge radius
        for any point lying in `band` or its two neighbours.

        Returns None when the band is too close to a pole and must be
        locked as a whole.
        """
        low = (band - 1) * self.cell_degrees
        high = (band + 2) * self.cell_degrees
        poleward = min(90.0, max(abs(low), abs(high)))

        cos_lat = math.cos(math.radians(poleward))
        if cos_lat < 1e-6:
            return None

        # 1.5x margin over the flat-degree approximation
        radius_deg = (self.merge_radius_m * 1.5) / (METERS_PER_DEGREE * cos_lat)
        span = math.ceil(radius_deg / self.cell_degrees)
        if span > self.MAX_LOCK_COLUMN_SPAN:
            return None
        return span

    def cell_lock_keys(self, feature_type: str, point: Point) -> List[LockKey]:
        """
        Lock keys covering the merge radius around a point.

        Any two points of the same type closer than the merge radius share
        at least one key, so holding all keys serializes submissions that
        could merge into each other.

        Args:
            feature_type: Feature type of the submission
            point: Submitted location

        Returns:
            Sorted list of (type, band, column) keys; column -1 means the
            whole latitude band
        """
        band = math.floor(point.latitude / self.cell_degrees)
        column = math.floor(point.longitude / self.cell_degrees)

        keys = set()
        for b in (band - 1, band, band + 1):
            span = self._column_span(b)
            if span is None:
                keys.add((feature_type, b, -1))
                continue
            for c in range(column - span, column + span + 1):
                keys.add((feature_type, b, c % self._column_count))

        return sorted(keys)
