"""
AccessMap - Geospatial Utilities
Common geospatial calculations on WGS84 coordinates.
"""

import math
from typing import Optional, Tuple
from dataclasses import dataclass

from accessmap.core.constants import LATITUDE_RANGE, LONGITUDE_RANGE

# Earth's radius in kilometers
EARTH_RADIUS_KM = 6371.0

# Meters per degree of latitude (and of longitude at the equator)
METERS_PER_DEGREE = 111320


@dataclass(frozen=True)
class Point:
    """Geographic point with latitude and longitude."""
    latitude: float
    longitude: float

    def is_valid(self) -> bool:
        """Check that both coordinates are finite and inside WGS84 ranges."""
        return is_valid_coordinate(self.latitude, self.longitude)


@dataclass
class BoundingBox:
    """Geographic bounding box."""
    west: float   # min longitude
    south: float  # min latitude
    east: float   # max longitude
    north: float  # max latitude


def is_valid_coordinate(latitude: float, longitude: float) -> bool:
    """
    Check whether a latitude/longitude pair is usable.

    Args:
        latitude: Latitude in decimal degrees
        longitude: Longitude in decimal degrees

    Returns:
        True if both values are finite numbers within WGS84 ranges
    """
    for value in (latitude, longitude):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return False
        if not math.isfinite(value):
            return False

    return (
        LATITUDE_RANGE[0] <= latitude <= LATITUDE_RANGE[1] and
        LONGITUDE_RANGE[0] <= longitude <= LONGITUDE_RANGE[1]
    )


def haversine_distance(
    lat1: float, lon1: float,
    lat2: float, lon2: float
) -> float:
    """
    Calculate the great-circle distance between two points on Earth.

    Args:
        lat1, lon1: First point coordinates in decimal degrees
        lat2, lon2: Second point coordinates in decimal degrees

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    delta_lat = math.radians(lat2 - lat1)
    delta_lon = math.radians(lon2 - lon1)

    # Haversine formula
    a = (
        math.sin(delta_lat / 2) ** 2 +
        math.cos(lat1_rad) * math.cos(lat2_rad) * math.sin(delta_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_meters(a: Point, b: Point) -> float:
    """Great-circle distance between two points in meters."""
    return haversine_distance(
        a.latitude, a.longitude, b.latitude, b.longitude
    ) * 1000.0


def destination_point(
    lat: float, lon: float,
    distance_km: float,
    bearing_degrees: float
) -> Tuple[float, float]:
    """
    Calculate destination point given start, distance, and bearing.

    Args:
        lat, lon: Start point coordinates in decimal degrees
        distance_km: Distance to travel in kilometers
        bearing_degrees: Bearing in degrees (0=North, 90=East)

    Returns:
        Tuple of (latitude, longitude) of destination point
    """
    lat_rad = math.radians(lat)
    lon_rad = math.radians(lon)
    bearing_rad = math.radians(bearing_degrees)
    angular_distance = distance_km / EARTH_RADIUS_KM

    dest_lat = math.asin(
        math.sin(lat_rad) * math.cos(angular_distance) +
        math.cos(lat_rad) * math.sin(angular_distance) * math.cos(bearing_rad)
    )

    dest_lon = lon_rad + math.atan2(
        math.sin(bearing_rad) * math.sin(angular_distance) * math.cos(lat_rad),
        math.cos(angular_distance) - math.sin(lat_rad) * math.sin(dest_lat)
    )

    # Normalize to [-180, 180)
    dest_lon_deg = (math.degrees(dest_lon) + 540) % 360 - 180

    return (math.degrees(dest_lat), dest_lon_deg)


def meters_to_degrees_lat(meters: float) -> float:
    """Convert meters to degrees of latitude."""
    return meters / METERS_PER_DEGREE


def meters_to_degrees_lon(meters: float, latitude: float) -> float:
    """Convert meters to degrees of longitude at a given latitude."""
    return meters / (METERS_PER_DEGREE * math.cos(math.radians(latitude)))


def bounding_box_around(
    center: Point,
    radius_m: float
) -> Tuple[float, float, Optional[BoundingBox]]:
    """
    Compute a search window that contains every point within a radius.

    The latitude band is always returned. A longitude window is only
    returned when it neither reaches a pole nor wraps the antimeridian;
    otherwise callers must scan the whole band.

    Args:
        center: Center of the search
        radius_m: Search radius in meters

    Returns:
        Tuple of (south, north, bbox or None)
    """
    # Small margin keeps haversine/flat-degree differences inside the window
    padded = radius_m * 1.01 + 1.0
    dlat = meters_to_degrees_lat(padded)
    south = center.latitude - dlat
    north = center.latitude + dlat

    if south <= LATITUDE_RANGE[0] or north >= LATITUDE_RANGE[1]:
        return (max(south, LATITUDE_RANGE[0]), min(north, LATITUDE_RANGE[1]), None)

    # Widest longitude span occurs at the poleward edge of the band
    poleward = max(abs(south), abs(north))
    dlon = meters_to_degrees_lon(padded, poleward)
    west = center.longitude - dlon
    east = center.longitude + dlon

    if dlon >= 180 or west < LONGITUDE_RANGE[0] or east > LONGITUDE_RANGE[1]:
        return (south, north, None)

    return (south, north, BoundingBox(west=west, south=south, east=east, north=north))
