"""Domain models for catalog entities and search candidates."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

PLACES = "places"
SCHOOLS = "schools"
INDEX_NAMES = (PLACES, SCHOOLS)

GRADE = "grade"
HIGH_SCHOOL = "hs"
COLLEGE = "college"
OTHER = "other"
SCHOOL_TYPES = (GRADE, HIGH_SCHOOL, COLLEGE, OTHER)


def school_type_from_flags(is_grade_school: bool, is_high_school: bool, is_college: bool) -> str:
	if is_college:
		return COLLEGE
	if is_high_school:
		return HIGH_SCHOOL
	if is_grade_school:
		return GRADE
	return OTHER


@dataclass(slots=True)
class Country:
	id: int
	code: str
	name: str
	updated: int = 0


@dataclass(slots=True)
class State:
	id: int
	name: str
	country_id: int
	short: Optional[str] = None
	updated: int = 0


@dataclass(slots=True)
class City:
	"""Canonical city row as read from the catalog."""

	id: int
	name: str
	country_id: int
	population: Optional[int] = None
	lat: float = 0.0
	lon: float = 0.0
	state_id: Optional[int] = None
	updated: int = 0
	deleted: Optional[int] = None

	def searchable(self) -> bool:
		"""Cities without a known population keep a record but no prefixes."""
		return bool(self.population) and bool(self.name)


@dataclass(slots=True)
class School:
	"""Canonical school row as read from the catalog."""

	id: int
	token: str
	name: str
	country_id: int
	city_id: Optional[int] = None
	state_id: Optional[int] = None
	lat: Optional[float] = None
	lon: Optional[float] = None
	size_metric: Optional[int] = None
	type: str = OTHER
	updated: int = 0
	deleted: Optional[int] = None

	def priority(self) -> int:
		"""Index weight: institution level plus a bonus for a resolved city."""
		base = {COLLEGE: 3, HIGH_SCHOOL: 2, GRADE: 1}.get(self.type, 0)
		return base + (1 if self.city_id else 0)


@dataclass(slots=True)
class Origin:
	lat: float
	lon: float


@dataclass(slots=True)
class PlaceCandidate:
	"""City materialized from the record cache during a query."""

	id: int
	name: str
	population: int
	lat: float
	lon: float
	country_id: Optional[int] = None
	state_id: Optional[int] = None
	distance: Optional[float] = None
	score: float = 0.0
	state: Optional[str] = None
	state_short: Optional[str] = None
	country: Optional[str] = None
	country_code: Optional[str] = None


@dataclass(slots=True)
class SchoolCandidate:
	"""School materialized from the country's bulk record hash."""

	id: int
	token: str
	name: str
	type: str = OTHER
	city_id: Optional[int] = None
	state_id: Optional[int] = None
	lat: Optional[float] = None
	lon: Optional[float] = None
	size_metric: Optional[int] = None
	distance: Optional[float] = None
	score: float = 0.0
	city: Optional[str] = None
	state: Optional[str] = None
