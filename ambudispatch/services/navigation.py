"""
Links and distances handed to operators: click-to-call, driving
directions and the nearest-hospital ordering.
"""

from __future__ import annotations

import math
from typing import Iterable, Optional

from ..schemas.hospital import HospitalOut, NearestHospitalOut

EARTH_RADIUS_KM = 6371.0
DIRECTIONS_URL = "https://www.google.com/maps/dir/?api=1&destination={lat},{lon}"


def tel_link(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    compact = "".join(phone.split())
    return f"tel:{compact}" if compact else None


def directions_link(latitude: float, longitude: float) -> str:
    return DIRECTIONS_URL.format(lat=latitude, lon=longitude)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    return EARTH_RADIUS_KM * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def nearest_hospitals(
    hospitals: Iterable[HospitalOut],
    latitude: float,
    longitude: float,
    limit: Optional[int] = None,
) -> list[NearestHospitalOut]:
    ranked = [
        NearestHospitalOut(
            **hospital.model_dump(),
            distance_km=round(haversine_km(latitude, longitude, hospital.latitude, hospital.longitude), 3),
            phone_link=tel_link(hospital.phone),
            directions_link=directions_link(hospital.latitude, hospital.longitude),
        )
        for hospital in hospitals
    ]
    ranked.sort(key=lambda h: (h.distance_km, h.name))
    if limit is not None and limit > 0:
        return ranked[:limit]
    return ranked
