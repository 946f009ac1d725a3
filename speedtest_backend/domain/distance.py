"""Great-circle distance between the server and a client location."""

import math
from dataclasses import dataclass
from typing import Optional

EARTH_MEAN_RADIUS_KM = 6371.0088
KM_PER_MILE = 1.609344
KM_PER_NAUTICAL_MILE = 1.852

_UNIT_ALIASES = {
    "km": "km",
    "k": "km",
    "mi": "mi",
    "m": "mi",
    "nm": "NM",
    "n": "NM",
}
_KM_PER_UNIT = {
    "km": 1.0,
    "mi": KM_PER_MILE,
    "NM": KM_PER_NAUTICAL_MILE,
}


@dataclass(frozen=True)
class Coordinate:
    """Latitude and longitude in decimal degrees."""

    lat: float
    lng: float


def parse_location(location: str) -> Optional[Coordinate]:
    """Parse ``"<lat>,<lng>"``; returns ``None`` for anything malformed."""
    parts = location.split(",")
    if len(parts) != 2:
        return None
    try:
        lat = float(parts[0])
        lng = float(parts[1])
    except ValueError:
        return None
    if not (math.isfinite(lat) and math.isfinite(lng)):
        return None
    return Coordinate(lat, lng)


def haversine_km(origin: Coordinate, target: Coordinate) -> float:
    """Haversine great-circle distance on the mean Earth radius."""
    phi1 = math.radians(origin.lat)
    phi2 = math.radians(target.lat)
    dphi = phi2 - phi1
    dlambda = math.radians(target.lng - origin.lng)
    a = (
        math.sin(dphi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    )
    return 2 * EARTH_MEAN_RADIUS_KM * math.asin(min(1.0, math.sqrt(a)))


def resolve_unit(token: Optional[str], default: str = "km") -> str:
    """Map a unit token to ``km``, ``mi`` or ``NM``; unknown tokens mean km."""
    if token:
        unit = _UNIT_ALIASES.get(token.strip().lower())
        if unit is not None:
            return unit
        return "km"
    return _UNIT_ALIASES.get(default.strip().lower(), "km")


def format_distance(distance_km: float, unit: str) -> str:
    return f"{distance_km / _KM_PER_UNIT[unit]:.2f} {unit}"


def estimate_distance(
    server: Coordinate,
    location: str,
    unit_token: Optional[str],
    default_unit: str = "km",
) -> Optional[str]:
    """Return the formatted server-to-client distance or ``None`` if unknown."""
    client = parse_location(location)
    if client is None:
        return None
    unit = resolve_unit(unit_token, default_unit)
    return format_distance(haversine_km(server, client), unit)
