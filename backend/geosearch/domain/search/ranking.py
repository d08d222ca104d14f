"""Ranking helpers for place and school autocomplete."""

from __future__ import annotations

import math
from typing import Iterable, Optional

from geosearch.domain.search import geo, models

POPULATION_UNIT = 500_000
DISTANCE_UNIT = 1_000_000

BASE_DISTANCE = 10_000.0
MAX_DISTANCE = 1_000_000.0
SIZE_CEILING = 50_000

TYPE_SCORES = {
	models.COLLEGE: 1.0,
	models.HIGH_SCHOOL: 0.8,
	models.GRADE: 0.6,
	models.OTHER: 0.4,
}


def clamp(value: float, *, lower: float = 0.0, upper: float = 1.0) -> float:
	return max(lower, min(upper, value))


def population_score(population: Optional[int]) -> float:
	return max(population or 0, 0) / POPULATION_UNIT


def place_distance_score(distance: float) -> float:
	return DISTANCE_UNIT / (distance + 1)


def place_score(population: Optional[int], distance: Optional[float]) -> float:
	"""Blend population and proximity; population alone when distance is unknown."""

	pop = population_score(population)
	if distance is None:
		return pop
	return (pop + place_distance_score(distance)) / 2


def school_distance_score(distance: Optional[float]) -> float:
	"""1 inside BASE_DISTANCE, log-interpolated down to 0 at MAX_DISTANCE."""

	if distance is None or distance < 0 or distance < BASE_DISTANCE:
		return 1.0
	span = math.log(MAX_DISTANCE) - math.log(BASE_DISTANCE)
	return clamp(1 - (math.log(distance) - math.log(BASE_DISTANCE)) / span)


def size_score(size_metric: Optional[int]) -> float:
	if size_metric is None or size_metric < 0:
		return 0.0
	return clamp(math.log10(size_metric + 1) / math.log10(SIZE_CEILING))


def type_score(school_type: Optional[str]) -> float:
	return TYPE_SCORES.get(school_type or models.OTHER, TYPE_SCORES[models.OTHER])


def school_score(
	school_type: Optional[str],
	size_metric: Optional[int],
	distance: Optional[float],
	*,
	has_origin: bool,
) -> float:
	"""Weighted blend of distance, size and type. The distance term is omitted without an origin."""

	base = 0.3 * size_score(size_metric) + 0.3 * type_score(school_type)
	if not has_origin:
		return clamp(base)
	return clamp(0.4 * school_distance_score(distance) + base)


def rank_places(
	candidates: Iterable[models.PlaceCandidate],
	*,
	origin: Optional[models.Origin] = None,
	max_distance: Optional[float] = None,
) -> list[models.PlaceCandidate]:
	"""Score, filter by ``max_distance`` and order by score desc then id asc."""

	ranked: list[models.PlaceCandidate] = []
	for candidate in candidates:
		candidate.distance = geo.distance_from(origin, candidate.lat, candidate.lon)
		if max_distance is not None and candidate.distance is not None and candidate.distance > max_distance:
			continue
		candidate.score = place_score(candidate.population, candidate.distance)
		ranked.append(candidate)
	ranked.sort(key=lambda item: (-item.score, item.id))
	return ranked


def rank_schools(
	candidates: Iterable[models.SchoolCandidate],
	*,
	origin: Optional[models.Origin] = None,
) -> list[models.SchoolCandidate]:
	ranked: list[models.SchoolCandidate] = []
	for candidate in candidates:
		candidate.distance = geo.distance_from(origin, candidate.lat, candidate.lon)
		candidate.score = school_score(
			candidate.type,
			candidate.size_metric,
			candidate.distance,
			has_origin=origin is not None,
		)
		ranked.append(candidate)
	ranked.sort(key=lambda item: (-item.score, item.id))
	return ranked
