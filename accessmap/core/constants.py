"""
AccessMap - Constants and Reference Data
Static values used throughout the application.
"""

from typing import Dict, List, Tuple

# =============================================================================
# FEATURE TYPES
# =============================================================================

# Accessibility features a report can describe
FEATURE_TYPES: List[str] = [
    "elevator",
    "ramp",
    "accessible_table",
    "wheelchair_entrance",
    "accessible_parking",
    "accessible_restroom",
    "braille_signage",
    "audio_signals",
    "lowered_counter",
    "automatic_doors",
    "tactile_paving",
    "service_animal",
]

# =============================================================================
# GEOSPATIAL
# =============================================================================

# Same-type submissions closer than this are the same real-world feature
DUPLICATE_MERGE_RADIUS_M: float = 20.0

# Radius used by nearby queries when the caller gives none
DEFAULT_NEARBY_RADIUS_M: float = 1000.0

# Valid WGS84 ranges
LATITUDE_RANGE: Tuple[float, float] = (-90.0, 90.0)
LONGITUDE_RANGE: Tuple[float, float] = (-180.0, 180.0)

# Grid used for submit locks (degrees, ~55 m of latitude)
LOCK_CELL_DEGREES: float = 0.0005

# =============================================================================
# REPORT LIFECYCLE
# =============================================================================

# Confirmations needed before a report stops expiring
PERMANENT_CONFIRMATION_THRESHOLD: int = 10

# Independent removal reports that force a report into "removed"
REMOVAL_THRESHOLD: int = 10

# Lifetime of a brand new, unconfirmed report
INITIAL_EXPIRY_HOURS: int = 48

# Expiry extension granted per confirmation, and its cap
EXTENSION_HOURS_PER_CONFIRMATION: int = 24
MAX_EXTENSION_HOURS: int = 7 * 24

# How long removed reports are retained before deletion
REMOVED_RETENTION_DAYS: int = 7

# =============================================================================
# PHOTO MODERATION
# =============================================================================

# Abuse reports after which a photo is hidden
PHOTO_HIDE_THRESHOLD: int = 5

DEFAULT_PHOTO_REPORT_REASON: str = "Inappropriate or incorrect photo"

# =============================================================================
# POINTS AND LEVELS
# =============================================================================

# Points awarded per action
POINTS: Dict[str, int] = {
    "REPORT_CREATED": 1,
    "CONFIRMATION_GIVEN": 1,
    "CONFIRMATION_RECEIVED": 10,
    "PHOTO_ADDED": 2,
}

# Ascending (threshold, level name) table
LEVELS: List[Tuple[int, str]] = [
    (0, "Explorer"),
    (50, "Pathfinder"),
    (150, "Trailblazer"),
    (300, "Navigator"),
    (500, "Champion"),
    (1000, "Legend"),
]

# =============================================================================
# EXPIRY REAPER
# =============================================================================

REAPER_INTERVAL_MINUTES: int = 60
