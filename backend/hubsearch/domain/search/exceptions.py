"""Custom exceptions for search operations."""

from __future__ import annotations


class SearchError(Exception):
	"""Base class for search errors."""

	def __init__(self, detail: str, *, status_code: int = 400) -> None:
		super().__init__(detail)
		self.detail = detail
		self.status_code = status_code


class QueryValidationError(SearchError):
	"""Raised when a search request fails validation."""

	def __init__(self, detail: str, *, status_code: int = 422) -> None:
		super().__init__(detail, status_code=status_code)


class UnsupportedContentTypeError(SearchError):
	"""Raised when an operation is requested against a content type it cannot serve."""

	def __init__(self, content_type: str) -> None:
		super().__init__(f"unsupported_content_type:{content_type}", status_code=400)
		self.content_type = content_type


class UnknownIndexError(SearchError):
	"""Raised when synchronization is requested for an index that does not exist."""

	def __init__(self, index: str) -> None:
		super().__init__(f"unknown_index:{index}", status_code=400)
		self.index = index


class SearchRateLimitError(SearchError):
	"""Raised when the caller exceeds the search rate limit."""

	def __init__(self) -> None:
		super().__init__("rate_limit", status_code=429)


class BackendError(SearchError):
	"""Raised when the search backend fails or rejects a request."""

	def __init__(self, detail: str = "backend_error", *, status_code: int = 503) -> None:
		super().__init__(detail, status_code=status_code)


class FallbackExhaustedError(SearchError):
	"""Raised when the relational fallback is unreachable as well."""

	def __init__(self, detail: str = "search_unavailable") -> None:
		super().__init__(detail, status_code=500)


class SearchLogNotFoundError(SearchError):
	"""Raised when a click references an unknown or already-clicked log entry."""

	def __init__(self, search_id: str) -> None:
		super().__init__("search_log_not_found", status_code=404)
		self.search_id = search_id
