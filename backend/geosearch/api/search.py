"""REST endpoints for place and school autocomplete."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from geosearch.domain.search import schemas
from geosearch.domain.search.service import SearchService

router = APIRouter(tags=["search"])

_service = SearchService()


@router.get("/search/places", response_model=schemas.PlaceSearchResponse, response_model_exclude_none=True)
async def search_places_endpoint(
	query: schemas.PlaceSearchQuery = Depends(),
) -> schemas.PlaceSearchResponse:
	return await _service.search_places(
		query.q,
		lat=query.lat,
		lon=query.lon,
		max_distance=query.max_distance,
		limit=query.limit,
		country=query.country,
	)


@router.get("/search/schools", response_model=schemas.SchoolSearchResponse, response_model_exclude_none=True)
async def search_schools_endpoint(
	query: schemas.SchoolSearchQuery = Depends(),
) -> schemas.SchoolSearchResponse:
	return await _service.search_schools(query.country, query.q, lat=query.lat, lon=query.lon)
