"""Error taxonomy for indexing and search."""

from __future__ import annotations


class SearchError(Exception):
	"""Base class for geosearch errors."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class DataQualityError(SearchError):
	"""An entity references a parent (country, state, city) the catalog does not know."""

	def __init__(self, entity_id: object, reason: str) -> None:
		super().__init__(reason, status_code=422)
		self.entity_id = entity_id
		self.reason = reason


class StoreUnavailableError(SearchError):
	"""The index store or the catalog cannot be reached."""

	def __init__(self, detail: str = "store_unavailable", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class MalformedRecordError(SearchError):
	"""A cached record could not be parsed."""

	def __init__(self, entity_id: object, detail: str = "malformed_record") -> None:
		super().__init__(detail, status_code=500)
		self.entity_id = entity_id


class NotFoundError(SearchError):
	"""The requested scope does not exist in the index."""

	def __init__(self, detail: str = "not_found") -> None:
		super().__init__(detail, status_code=404)


class QueryValidationError(SearchError):
	"""Raised when a search query fails validation."""

	def __init__(self, detail: str, *, status_code: int = 422) -> None:
		super().__init__(detail, status_code=status_code)
