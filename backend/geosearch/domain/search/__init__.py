"""Search domain exports."""

from .service import IndexService, SearchService

__all__ = [
	"IndexService",
	"SearchService",
]
