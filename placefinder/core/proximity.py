"""Distance calculations between locations."""
import math

EARTH_RADIUS_KM = 6378.14

# Locations closer than this are treated as possibly the same physical place
SAME_PLACE_KM = 10.0


def rough_distance_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """
    Great-circle distance using the spherical law of cosines.

    Args:
        lat1: Latitude of first point
        lon1: Longitude of first point
        lat2: Latitude of second point
        lon2: Longitude of second point

    Returns:
        Distance in kilometers
    """
    lat1_rad = math.radians(lat1)
    lat2_rad = math.radians(lat2)
    dlon = math.radians(lon1 - lon2)

    cos_delta = math.sin(lat1_rad) * math.sin(lat2_rad) + math.cos(lat1_rad) * math.cos(lat2_rad) * math.cos(dlon)
    # Rounding can push identical points just past 1
    cos_delta = max(-1.0, min(1.0, cos_delta))

    return math.acos(cos_delta) * EARTH_RADIUS_KM
