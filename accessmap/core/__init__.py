"""
AccessMap - Core Utilities
Central configuration, constants, errors and geospatial helpers.
"""

from accessmap.core.config import settings
from accessmap.core.constants import (
    FEATURE_TYPES,
    DUPLICATE_MERGE_RADIUS_M,
    DEFAULT_NEARBY_RADIUS_M,
)
from accessmap.core.exceptions import (
    AccessMapError,
    InvalidInput,
    NotFound,
    AlreadyConfirmed,
    AlreadyReported,
    AlreadyRemoved,
    Removed,
    StorageUnavailable,
)
from accessmap.core.geo_utils import (
    Point,
    haversine_distance,
    haversine_meters,
    destination_point,
)

__all__ = [
    "settings",
    "FEATURE_TYPES",
    "DUPLICATE_MERGE_RADIUS_M",
    "DEFAULT_NEARBY_RADIUS_M",
    "AccessMapError",
    "InvalidInput",
    "NotFound",
    "AlreadyConfirmed",
    "AlreadyReported",
    "AlreadyRemoved",
    "Removed",
    "StorageUnavailable",
    "Point",
    "haversine_distance",
    "haversine_meters",
    "destination_point",
]
