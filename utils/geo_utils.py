# utils/geo_utils.py
import math
from typing import NamedTuple, Optional, Tuple

EARTH_RADIUS_M = 6371000


class Coordinates(NamedTuple):
    latitude: float
    longitude: float


class Location(NamedTuple):
    """A position fix as reported by a device; accuracy in meters when known."""
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class Geofence(NamedTuple):
    latitude: float
    longitude: float
    radius: float  # meters


def haversine_distance(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance in meters between two points given in decimal degrees.
    Inputs are expected to be valid degrees (-90..90 lat, -180..180 lon); they are not checked.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = math.sin(dphi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    # rounding can push a a hair past 1 for antipodal points
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def is_within_radius(point: Coordinates, fence: Geofence) -> Tuple[bool, float]:
    """
    Returns (inside, distance). A point exactly on the boundary counts as inside.
    """
    distance = haversine_distance(point.latitude, point.longitude, fence.latitude, fence.longitude)
    return distance <= fence.radius, distance


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{round(meters)}m"
    return f"{meters / 1000:.1f}km"


def accuracy_status(accuracy: float) -> Tuple[str, str]:
    """GPS accuracy banding shown next to the captured location."""
    if accuracy <= 20:
        return "good", "GPS signal is strong"
    if accuracy <= 50:
        return "fair", "GPS signal is moderate"
    return "poor", "GPS signal is weak - move to an open area"
