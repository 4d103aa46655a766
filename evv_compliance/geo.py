# geo.py
import math

EARTH_RADIUS_METERS = 6371000


def haversine_distance(lat1, lon1, lat2, lon2):
    """Great-circle distance in meters between two lat/lon points"""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (math.sin(delta_phi / 2) ** 2
         + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2)
    # Clamp float drift so sqrt(1 - a) stays real
    a = min(1.0, max(0.0, a))
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_METERS * c


def round_half_up(value):
    """Round to the nearest integer, halves going up (2.5 -> 3, -2.5 -> -2)"""
    return int(math.floor(value + 0.5))
