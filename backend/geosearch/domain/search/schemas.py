"""Pydantic schemas for the autocomplete and index maintenance APIs."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field

from geosearch.domain.search import models


class _OriginQuery(BaseModel):
	lat: Optional[float] = Field(default=None, ge=-90.0, le=90.0)
	lon: Optional[float] = Field(default=None, ge=-180.0, le=180.0)


class PlaceSearchQuery(_OriginQuery):
	q: str = Field(..., min_length=1, max_length=120, description="Raw user input, optionally 'city, state, country'")
	max_distance: Optional[float] = Field(default=None, gt=0, description="Hard distance filter in meters")
	limit: int = Field(default=10, ge=1, le=50)
	country: Optional[str] = Field(default=None, min_length=2, max_length=3, description="Country code scope")


class SchoolSearchQuery(_OriginQuery):
	country: int = Field(..., ge=1, description="Country id")
	q: str = Field(..., min_length=1, max_length=120)


class PlaceResult(BaseModel):
	id: int
	name: str
	population: int = Field(..., ge=0)
	lat: float
	lon: float
	distance: Optional[float] = None
	score: float = Field(..., ge=0.0)
	state: Optional[str] = None
	country: Optional[str] = None

	@classmethod
	def from_candidate(cls, candidate: models.PlaceCandidate) -> "PlaceResult":
		return cls(
			id=candidate.id,
			name=candidate.name,
			population=candidate.population,
			lat=candidate.lat,
			lon=candidate.lon,
			distance=candidate.distance,
			score=candidate.score,
			state=candidate.state,
			country=candidate.country,
		)


class PlaceSearchResponse(BaseModel):
	q: str
	items: list[PlaceResult]


class SchoolResult(BaseModel):
	id: int
	token: str
	name: str
	city: Optional[str] = None
	state: Optional[str] = None
	lat: Optional[float] = None
	lon: Optional[float] = None
	distance: Optional[float] = None
	relevance_score: float = Field(..., ge=0.0, le=1.0)

	@classmethod
	def from_candidate(cls, candidate: models.SchoolCandidate) -> "SchoolResult":
		return cls(
			id=candidate.id,
			token=candidate.token,
			name=candidate.name,
			city=candidate.city,
			state=candidate.state,
			lat=candidate.lat,
			lon=candidate.lon,
			distance=candidate.distance,
			relevance_score=candidate.score,
		)


class SchoolSearchResponse(BaseModel):
	q: str
	country_id: int
	groups: dict[str, list[SchoolResult]]


class IndexRunResult(BaseModel):
	index: str
	mode: str
	generation: int
	written: int = 0
	removed: int = 0
	skipped: int = 0
	flushes: int = 0
	watermark: Optional[int] = None
	dropped_keys: int = 0
	duration_ms: float = 0.0


class RebuildRequest(BaseModel):
	scope: Optional[str] = Field(default=None, pattern=r"^(places|schools)$")


class PatchRequest(BaseModel):
	since: Optional[int] = Field(default=None, ge=0, description="Override the stored watermark")
	scope: Optional[str] = Field(default=None, pattern=r"^(places|schools)$")


class IndexRunResponse(BaseModel):
	runs: list[IndexRunResult]
