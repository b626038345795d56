# app/utils/geofence.py

from math import atan2, cos, radians, sin, sqrt

from models.location import Location

EARTH_RADIUS_M = 6371000


def haversine_dist(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    R = EARTH_RADIUS_M
    φ1, φ2 = radians(lat1), radians(lat2)
    Δφ = radians(lat2 - lat1)
    Δλ = radians(lng2 - lng1)

    a = sin(Δφ/2)**2 + cos(φ1) * cos(φ2) * sin(Δλ/2)**2
    c = 2 * atan2(sqrt(a), sqrt(1 - a))
    return R * c


def distance_between(a: Location, b: Location) -> float:
    """Great-circle distance in meters between two fixes."""
    return haversine_dist(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_radius(point: Location, center: Location, radius_m: float) -> bool:
    return distance_between(point, center) <= radius_m
