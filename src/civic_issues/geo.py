"""Coordinate and radius validation plus the bounding-box approximation."""

import math
from dataclasses import dataclass
from typing import Any, Tuple

from .constants import (
    KM_PER_DEGREE,
    MAX_LATITUDE,
    MAX_LONGITUDE,
    MAX_RADIUS_KM,
    MIN_LATITUDE,
    MIN_LONGITUDE,
)
from .errors import InvalidCoordinate, InvalidRadius, field_error


@dataclass(frozen=True)
class BoundingBox:
    """Rectangular latitude/longitude range approximating a search circle."""

    min_latitude: float
    max_latitude: float
    min_longitude: float
    max_longitude: float

    def contains(self, latitude: float, longitude: float) -> bool:
        return (
            self.min_latitude <= latitude <= self.max_latitude
            and self.min_longitude <= longitude <= self.max_longitude
        )


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(number):
        return None
    return number


def validate_coordinates(latitude: Any, longitude: Any) -> Tuple[float, float]:
    """Return ``(latitude, longitude)`` as floats or raise ``InvalidCoordinate``."""
    lat = _to_float(latitude)
    lng = _to_float(longitude)
    errors = []
    if lat is None or not MIN_LATITUDE <= lat <= MAX_LATITUDE:
        errors.append(field_error("latitude", "Latitude must be a number between -90 and 90", latitude))
    if lng is None or not MIN_LONGITUDE <= lng <= MAX_LONGITUDE:
        errors.append(field_error("longitude", "Longitude must be a number between -180 and 180", longitude))
    if errors:
        raise InvalidCoordinate("Invalid coordinates provided", errors)
    return lat, lng


def validate_radius(radius_km: Any) -> float:
    """Return the radius in kilometres or raise ``InvalidRadius``.

    Accepted values lie in the half-open interval (0, 50].
    """
    radius = _to_float(radius_km)
    if radius is None or not 0 < radius <= MAX_RADIUS_KM:
        raise InvalidRadius(
            "Radius must be greater than 0 and at most 50 km",
            [field_error("radius", "Radius must be in (0, 50] km", radius_km)],
        )
    return radius


def bounding_box(latitude: float, longitude: float, radius_km: float) -> BoundingBox:
    """Approximate a circle of ``radius_km`` with a latitude/longitude box.

    One degree is taken as 111 km on both axes. Longitude degrees shrink with
    the cosine of latitude, so away from the equator the box is wider in real
    distance than it is tall, and near the poles the drift is large. The
    single range predicate can use the ``(latitude, longitude)`` index.
    """
    degree_radius = radius_km / KM_PER_DEGREE
    return BoundingBox(
        min_latitude=latitude - degree_radius,
        max_latitude=latitude + degree_radius,
        min_longitude=longitude - degree_radius,
        max_longitude=longitude + degree_radius,
    )
