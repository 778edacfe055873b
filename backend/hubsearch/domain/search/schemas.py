"""Pydantic schemas for the search HTTP surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Generic, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from hubsearch.domain.search import models

T = TypeVar("T")


class Envelope(BaseModel, Generic[T]):
	success: bool = True
	data: T


class SearchHit(BaseModel):
	id: str
	type: Optional[str] = None
	score: Optional[float] = None
	document: dict[str, Any] = Field(default_factory=dict)
	highlight: Optional[dict[str, list[str]]] = None

	@classmethod
	def from_domain(cls, hit: models.ResultHit) -> "SearchHit":
		return cls(
			id=hit.id,
			type=hit.source_index.value if hit.source_index else None,
			score=hit.score,
			document=hit.document,
			highlight=hit.highlight,
		)


class SearchData(BaseModel):
	hits: list[SearchHit]
	total: int = Field(..., ge=0)
	aggregations: dict[str, Any] = Field(default_factory=dict)
	page: int
	limit: int
	took: int = Field(..., ge=0)
	backend: str
	search_id: Optional[str] = Field(default=None, serialization_alias="searchId")

	@classmethod
	def from_result(
		cls,
		result: models.SearchResult,
		*,
		page: int,
		limit: int,
		search_id: Optional[str],
	) -> "SearchData":
		return cls(
			hits=[SearchHit.from_domain(hit) for hit in result.hits],
			total=result.total,
			aggregations=result.aggregations,
			page=page,
			limit=limit,
			took=result.took_ms,
			backend=result.backend,
			search_id=search_id,
		)


class SuggestionOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	text: str
	count: int


class SyncRequest(BaseModel):
	type: str = Field(default="all", description="'all' or a single content type")


class MessageResponse(BaseModel):
	success: bool = True
	message: str


class ClickRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	search_id: str = Field(..., min_length=1, alias="searchId")
	result_id: str = Field(..., min_length=1, alias="resultId")
	result_type: str = Field(..., min_length=1, alias="resultType")


class ClickResponse(BaseModel):
	success: bool


class QueryCountOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	query: str
	count: int


class AnalyticsSummaryOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	total_searches: int
	avg_results_per_search: float
	avg_search_time: float
	top_queries: list[QueryCountOut]
	click_through_rate: float


class PopularTermOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	term: str
	count: int
	avg_results: int


class NoResultSearchOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	query: str
	user_id: Optional[str] = None
	timestamp: datetime
	filters: Optional[dict[str, Any]] = None


class SearchPerformanceOut(BaseModel):
	model_config = ConfigDict(from_attributes=True)

	hourly: AnalyticsSummaryOut
	daily: AnalyticsSummaryOut
	weekly: AnalyticsSummaryOut


class SearchHealthOut(BaseModel):
	backend: str
	healthy: bool


__all__ = [
	"AnalyticsSummaryOut",
	"ClickRequest",
	"ClickResponse",
	"Envelope",
	"MessageResponse",
	"NoResultSearchOut",
	"PopularTermOut",
	"SearchData",
	"SearchHealthOut",
	"SearchHit",
	"SearchPerformanceOut",
	"SuggestionOut",
	"SyncRequest",
]
