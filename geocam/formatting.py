from __future__ import annotations
import math
from datetime import datetime
from typing import List, Optional

from .models import Address, GeoSnapshot

TIME_FORMAT = "%A, %d %B %Y %H:%M:%S"
MAPS_URL = "https://maps.google.com/?q={lat},{lng}"


def format_gps_accuracy(accuracy: Optional[float]) -> str:
    """Short accuracy figure: one decimal (comma) under 100 m, whole metres above."""
    if accuracy is None:
        return "-"
    if accuracy >= 100:
        # half-up, not banker's rounding
        return str(int(math.floor(accuracy + 0.5)))
    return f"{accuracy:.1f}".replace(".", ",")


def format_coordinates(lat: Optional[float], lng: Optional[float]) -> str:
    if lat is None or lng is None:
        return ""
    return f"Lat: {lat:.6f} | Long: {lng:.6f}"


def format_geo_string(geo: GeoSnapshot) -> str:
    if not geo.has_fix:
        return ""
    acc = format_gps_accuracy(geo.accuracy)
    return f"{format_coordinates(geo.lat, geo.lng)} (±{acc}m)"


def format_current_time(now: Optional[datetime] = None, fmt: str = TIME_FORMAT) -> str:
    # %A/%B follow the process LC_TIME locale
    return (now or datetime.now()).strftime(fmt)


def format_address_lines(address: Optional[Address]) -> List[str]:
    if address is None:
        return []
    lines = []
    for parts in ((address.village, address.district), (address.city, address.state)):
        text = ", ".join(p.strip() for p in parts if p and p.strip())
        if text:
            lines.append(text)
    return lines


def maps_url(lat: float, lng: float) -> str:
    return MAPS_URL.format(lat=f"{lat:.6f}", lng=f"{lng:.6f}")
