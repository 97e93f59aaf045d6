"""
AccessMap - Crowdsource Module
Report lifecycle, duplicate merging, photo moderation, points and cleanup.
"""

from accessmap.crowdsource.geo_index import GeoIndex
from accessmap.crowdsource.lifecycle import (
    ReportLifecycleEngine,
    LifecycleResult,
)
from accessmap.crowdsource.locks import KeyedLock
from accessmap.crowdsource.photo_moderation import (
    PhotoModerationLedger,
    PhotoReportResult,
)
from accessmap.crowdsource.points import (
    PointsLedger,
    PointGrant,
    PointKind,
    level_for_points,
    points_for,
)
from accessmap.crowdsource.reaper import (
    ExpiryReaper,
    ReaperScheduler,
    SweepResult,
)

__all__ = [
    # Geo index
    "GeoIndex",
    # Lifecycle
    "ReportLifecycleEngine",
    "LifecycleResult",
    "KeyedLock",
    # Photo moderation
    "PhotoModerationLedger",
    "PhotoReportResult",
    # Points
    "PointsLedger",
    "PointGrant",
    "PointKind",
    "level_for_points",
    "points_for",
    # Reaper
    "ExpiryReaper",
    "ReaperScheduler",
    "SweepResult",
]
