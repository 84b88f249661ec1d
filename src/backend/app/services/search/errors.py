"""
Search Errors

Exception taxonomy for the search engine. Every error carries a
machine-readable code and the HTTP status the API layer maps it to.
"""

from typing import Any, Dict, Optional


class SearchError(Exception):
    """Base class for all search engine errors."""

    code = "SEARCH_ERROR"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
        }


# ---------------- Client errors ----------------

class InvalidQuery(SearchError):
    """Query text is empty after trimming or longer than the allowed maximum."""

    code = "INVALID_QUERY"
    status_code = 400


class InvalidFilter(SearchError):
    """Filter values are inconsistent, out of range or reference unknown data."""

    code = "INVALID_FILTER"
    status_code = 400


# ---------------- Server errors ----------------

class SearchTimeout(SearchError):
    """Search pipeline exceeded its time budget."""

    code = "SEARCH_TIMEOUT"
    status_code = 504


class DependencyUnavailable(SearchError):
    """Index snapshot (or another hard dependency) is not reachable."""

    code = "DEPENDENCY_UNAVAILABLE"
    status_code = 503
