"""Great-circle distance helpers."""

from __future__ import annotations

import math
from typing import Optional

from geosearch.domain.search.models import Origin

EARTH_RADIUS_M = 6_371_000.0


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
	"""Haversine distance in meters."""

	phi1 = math.radians(lat1)
	phi2 = math.radians(lat2)
	d_phi = math.radians(lat2 - lat1)
	d_lambda = math.radians(lon2 - lon1)
	a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
	return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_from(origin: Optional[Origin], lat: Optional[float], lon: Optional[float]) -> Optional[float]:
	"""Distance from the requester, or None when either side has no coordinates."""

	if origin is None or lat is None or lon is None:
		return None
	return distance_meters(origin.lat, origin.lon, lat, lon)
