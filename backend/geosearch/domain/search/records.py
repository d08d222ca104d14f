"""Serialization of cached records.

Cities are stored as flat Redis hashes; bulk per-country groupings hold JSON
blobs keyed by member id. Decoders raise MalformedRecordError so callers can
drop a single bad candidate.
"""

from __future__ import annotations

import json
from typing import Mapping, Optional

from geosearch.domain.search import models
from geosearch.domain.search.exceptions import MalformedRecordError


def _blank(value: object) -> str:
	return "" if value is None else str(value)


def _opt_int(value: object) -> Optional[int]:
	if value in (None, ""):
		return None
	return int(value)  # type: ignore[arg-type]


def _opt_float(value: object) -> Optional[float]:
	if value in (None, ""):
		return None
	return float(value)  # type: ignore[arg-type]


def encode_city(city: models.City) -> dict[str, str]:
	return {
		"id": str(city.id),
		"name": city.name,
		"population": str(int(city.population or 0)),
		"lat": repr(float(city.lat)),
		"lon": repr(float(city.lon)),
		"country_id": str(city.country_id),
		"state_id": _blank(city.state_id),
	}


def decode_city(member: str, data: Mapping[str, str]) -> models.PlaceCandidate:
	try:
		return models.PlaceCandidate(
			id=int(data["id"]),
			name=data["name"],
			population=int(data.get("population") or 0),
			lat=float(data["lat"]),
			lon=float(data["lon"]),
			country_id=_opt_int(data.get("country_id")),
			state_id=_opt_int(data.get("state_id")),
		)
	except (KeyError, TypeError, ValueError) as exc:
		raise MalformedRecordError(member) from exc


def encode_city_summary(city: models.City) -> str:
	return json.dumps(
		{
			"id": city.id,
			"name": city.name,
			"state_id": city.state_id,
			"country_id": city.country_id,
			"population": int(city.population or 0),
			"ll": [round(float(city.lat), 4), round(float(city.lon), 4)],
		},
		separators=(",", ":"),
	)


def decode_city_name(member: str, raw: Optional[str]) -> Optional[str]:
	if raw is None:
		return None
	try:
		return str(json.loads(raw)["name"])
	except (KeyError, TypeError, ValueError) as exc:
		raise MalformedRecordError(member) from exc


def encode_school(school: models.School) -> str:
	return json.dumps(
		{
			"id": school.id,
			"token": school.token,
			"name": school.name,
			"city_id": school.city_id,
			"state_id": school.state_id,
			"lat": school.lat,
			"lon": school.lon,
			"size": school.size_metric,
			"type": school.type,
		},
		separators=(",", ":"),
	)


def decode_school(member: str, raw: str) -> models.SchoolCandidate:
	try:
		data = json.loads(raw)
		school_type = data.get("type") or models.OTHER
		return models.SchoolCandidate(
			id=int(data["id"]),
			token=str(data.get("token") or member),
			name=str(data["name"]),
			type=school_type if school_type in models.SCHOOL_TYPES else models.OTHER,
			city_id=_opt_int(data.get("city_id")),
			state_id=_opt_int(data.get("state_id")),
			lat=_opt_float(data.get("lat")),
			lon=_opt_float(data.get("lon")),
			size_metric=_opt_int(data.get("size")),
		)
	except (AttributeError, KeyError, TypeError, ValueError) as exc:
		raise MalformedRecordError(member) from exc


def encode_country(country: models.Country) -> dict[str, str]:
	return {"id": str(country.id), "code": country.code.lower(), "name": country.name}


def encode_state(state: models.State) -> dict[str, str]:
	return {
		"id": str(state.id),
		"name": state.name,
		"short": _blank(state.short),
		"country_id": str(state.country_id),
	}
