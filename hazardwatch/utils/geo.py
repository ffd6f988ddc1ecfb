"""Great-circle distance helpers."""

import math
from typing import Sequence

import numpy as np

EARTH_RADIUS_M = 6371.0 * 1000


def distance_meters(a, b) -> float:
    """
    Haversine distance between two locations in meters.

    Args:
        a: Object with ``lat`` and ``lng`` attributes (degrees)
        b: Object with ``lat`` and ``lng`` attributes (degrees)

    Returns:
        Straight-line ground distance in meters
    """
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lat = math.radians(b.lat - a.lat)
    d_lng = math.radians(b.lng - a.lng)

    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def distances_meters(origin, lats: Sequence[float], lngs: Sequence[float]) -> np.ndarray:
    """
    Vectorised haversine distance from one origin to many points.

    Args:
        origin: Object with ``lat`` and ``lng`` attributes (degrees)
        lats: Latitudes of the targets
        lngs: Longitudes of the targets

    Returns:
        float64 array of distances in meters, same order as the inputs
    """
    lat_arr = np.radians(np.asarray(lats, dtype=np.float64))
    lng_arr = np.radians(np.asarray(lngs, dtype=np.float64))
    if lat_arr.size == 0:
        return np.empty(0, dtype=np.float64)

    lat0 = math.radians(origin.lat)
    lng0 = math.radians(origin.lng)

    h = (
        np.sin((lat_arr - lat0) / 2) ** 2
        + math.cos(lat0) * np.cos(lat_arr) * np.sin((lng_arr - lng0) / 2) ** 2
    )
    h = np.clip(h, 0.0, 1.0)
    return EARTH_RADIUS_M * 2 * np.arctan2(np.sqrt(h), np.sqrt(1 - h))


def offset_location(lat: float, lng: float, north_m: float = 0.0, east_m: float = 0.0):
    """
    Shift a coordinate by a small number of meters.

    Used to build fixtures and sample data; accurate to well under a
    centimetre for offsets of a few hundred meters.

    Returns:
        (lat, lng) tuple in degrees
    """
    d_lat = north_m / EARTH_RADIUS_M
    d_lng = east_m / (EARTH_RADIUS_M * math.cos(math.radians(lat)))
    return lat + math.degrees(d_lat), lng + math.degrees(d_lng)
