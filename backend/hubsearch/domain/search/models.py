"""Domain models backing search requests, results and analytics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Mapping, Optional, Sequence

from hubsearch.domain.search.filters import SearchFilter


class ContentType(str, Enum):
	POSTS = "posts"
	COMMENTS = "comments"
	USERS = "users"
	COMMUNITIES = "communities"
	COURSES = "courses"

	@classmethod
	def parse(cls, value: str) -> "ContentType":
		return cls(str(value).strip().lower())


class SearchScope(str, Enum):
	"""Content-type selector on a request: one type or every type."""

	ALL = "all"
	POSTS = "posts"
	COMMENTS = "comments"
	USERS = "users"
	COMMUNITIES = "communities"
	COURSES = "courses"

	def content_types(self) -> tuple[ContentType, ...]:
		if self is SearchScope.ALL:
			return tuple(ContentType)
		return (ContentType(self.value),)

	def includes(self, content_type: ContentType) -> bool:
		return self is SearchScope.ALL or self.value == content_type.value


class SortOrder(str, Enum):
	ASC = "asc"
	DESC = "desc"


class SearchOperator(str, Enum):
	AND = "and"
	OR = "or"


@dataclass(slots=True, frozen=True)
class ProximitySearch:
	terms: tuple[str, ...]
	distance: int


@dataclass(slots=True, frozen=True)
class SearchRequest:
	"""A validated search request.

	Filters arrive already resolved into their tagged variants; `phrase_search`
	and `proximity` are alternative refinements and at most one is honoured.
	"""

	query: str = ""
	scope: SearchScope = SearchScope.ALL
	page: int = 1
	limit: int = 20
	sort_field: Optional[str] = None
	sort_order: SortOrder = SortOrder.DESC
	filters: tuple[SearchFilter, ...] = ()
	search_fields: tuple[str, ...] = ()
	operator: SearchOperator = SearchOperator.OR
	phrase_search: bool = False
	proximity: Optional[ProximitySearch] = None

	@property
	def offset(self) -> int:
		return (self.page - 1) * self.limit


@dataclass(slots=True)
class ResultHit:
	id: str
	source_index: Optional[ContentType]
	score: Optional[float]
	document: dict[str, Any]
	highlight: Optional[dict[str, list[str]]] = None


@dataclass(slots=True)
class SearchResult:
	hits: list[ResultHit] = field(default_factory=list)
	total: int = 0
	aggregations: dict[str, Any] = field(default_factory=dict)
	took_ms: int = 0
	backend: str = "elasticsearch"

	@classmethod
	def empty(cls, *, backend: str = "elasticsearch") -> "SearchResult":
		return cls(backend=backend)


@dataclass(slots=True, frozen=True)
class Suggestion:
	text: str
	count: int


@dataclass(slots=True)
class SearchLogEntry:
	id: str
	query: str
	page: int
	results_count: int
	took_ms: int
	created_at: datetime
	user_id: Optional[str] = None
	filters: Optional[dict[str, Any]] = None
	clicked_result_id: Optional[str] = None
	clicked_result_type: Optional[str] = None

	@property
	def clicked(self) -> bool:
		return self.clicked_result_id is not None


@dataclass(slots=True, frozen=True)
class QueryCount:
	query: str
	count: int


@dataclass(slots=True)
class AnalyticsSummary:
	total_searches: int = 0
	avg_results_per_search: float = 0.0
	avg_search_time: float = 0.0
	top_queries: list[QueryCount] = field(default_factory=list)
	click_through_rate: float = 0.0


@dataclass(slots=True, frozen=True)
class PopularTerm:
	term: str
	count: int
	avg_results: int


@dataclass(slots=True, frozen=True)
class NoResultSearch:
	query: str
	user_id: Optional[str]
	timestamp: datetime
	filters: Optional[dict[str, Any]]


@dataclass(slots=True)
class SearchPerformance:
	hourly: AnalyticsSummary
	daily: AnalyticsSummary
	weekly: AnalyticsSummary


@dataclass(slots=True, frozen=True)
class SyncReport:
	content_type: ContentType
	documents: int
	took_ms: int


Row = Mapping[str, Any]
Rows = Sequence[Row]
