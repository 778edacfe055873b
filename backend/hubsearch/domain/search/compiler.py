"""Query builders translating search requests into Elasticsearch query documents.

Everything in this module is pure: identical input yields an identical body.
Recency windows are expressed with backend date math (`now-7d/d`) so the
compiled document does not depend on the local clock.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Sequence

from hubsearch.domain.search import filters as search_filters
from hubsearch.domain.search import models
from hubsearch.settings import settings

DEFAULT_SEARCH_FIELDS = (
	"title^3",
	"name^3",
	"username^3",
	"first_name^2",
	"last_name^2",
	"description^2",
	"content",
	"tags",
)
PHRASE_FIELD = "content"
HIGHLIGHT_FIELDS = ("title", "content", "description")
SIMILARITY_FIELDS = ("title", "content", "description", "tags")
CREATED_AT = search_filters.CREATED_AT_FIELD
KEYWORD_SUFFIX = "keyword"
# text fields whose exact filters run against the keyword sub-field
KEYWORD_FILTER_FIELDS = frozenset({"tags"})

COMMUNITY_FACET_SIZE = 10
TAG_FACET_SIZE = 20

# Lucene regular-expression operators that must be escaped inside `include` patterns.
_LUCENE_REGEX_RESERVED = frozenset('.?+*|{}[]()"\\#@&<>~^$')
_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(slots=True, frozen=True)
class RecencyPolicy:
	recent_days: int = 7
	recent_boost: float = 2.0
	fresh_days: int = 30
	fresh_boost: float = 1.5

	@classmethod
	def from_settings(cls) -> "RecencyPolicy":
		return cls(
			recent_days=settings.search_recency_recent_days,
			recent_boost=settings.search_recency_recent_boost,
			fresh_days=settings.search_recency_fresh_days,
			fresh_boost=settings.search_recency_fresh_boost,
		)


@dataclass(slots=True, frozen=True)
class CompiledQuery:
	query: dict[str, Any]
	sort: list[dict[str, Any]]
	aggregations: dict[str, Any]
	highlight: dict[str, Any]

	def body(self, *, offset: int, size: int) -> dict[str, Any]:
		return {
			"from": offset,
			"size": size,
			"query": self.query,
			"sort": self.sort,
			"aggs": self.aggregations,
			"highlight": self.highlight,
			"track_total_hits": True,
		}


def matching_clause(request: models.SearchRequest) -> dict[str, Any]:
	"""Select the matching mode: phrase, then proximity, then weighted multi-field."""

	if not request.query and request.proximity is None:
		return {"match_all": {}}
	if request.phrase_search and request.query:
		return {"match_phrase": {PHRASE_FIELD: {"query": request.query, "slop": 0}}}
	if request.proximity is not None:
		return {
			"match_phrase": {
				PHRASE_FIELD: {
					"query": " ".join(request.proximity.terms),
					"slop": request.proximity.distance,
				}
			}
		}
	fields = list(request.search_fields) if request.search_fields else list(DEFAULT_SEARCH_FIELDS)
	return {
		"multi_match": {
			"query": request.query,
			"fields": fields,
			"type": "best_fields",
			"fuzziness": "AUTO",
			"operator": request.operator.value,
		}
	}


def recency_clauses(policy: RecencyPolicy) -> list[dict[str, Any]]:
	recent = f"now-{policy.recent_days}d/d"
	fresh = f"now-{policy.fresh_days}d/d"
	return [
		{"range": {CREATED_AT: {"gte": recent, "boost": policy.recent_boost}}},
		{"range": {CREATED_AT: {"gte": fresh, "lt": recent, "boost": policy.fresh_boost}}},
	]


def _day_bound(value: str) -> str:
	# A bare calendar day covers the whole day: gte rounds down, lte rounds up.
	if _DATE_ONLY.match(value):
		return f"{value}||/d"
	return value


def filter_clause(item: search_filters.SearchFilter) -> dict[str, Any]:
	if isinstance(item, search_filters.DateRangeFilter):
		bounds: dict[str, Any] = {}
		if item.start is not None:
			bounds["gte"] = _day_bound(item.start)
		if item.end is not None:
			bounds["lte"] = _day_bound(item.end)
		return {"range": {item.field: bounds}}
	if isinstance(item, search_filters.RangeFilter):
		bounds = {}
		if item.minimum is not None:
			bounds["gte"] = item.minimum
		if item.maximum is not None:
			bounds["lte"] = item.maximum
		return {"range": {item.field: bounds}}
	field = _exact_field(item.field)
	if isinstance(item, search_filters.MembershipFilter):
		return {"terms": {field: list(item.values)}}
	return {"term": {field: item.value}}


def _exact_field(field: str) -> str:
	if field in KEYWORD_FILTER_FIELDS:
		return f"{field}.{KEYWORD_SUFFIX}"
	return field


def sort_clause(request: models.SearchRequest) -> list[dict[str, Any]]:
	if request.sort_field:
		return [{request.sort_field: {"order": request.sort_order.value}}]
	return [
		{"_score": {"order": "desc"}},
		{CREATED_AT: {"order": "desc", "unmapped_type": "date"}},
	]


def facet_aggregations() -> dict[str, Any]:
	return {
		"types": {"terms": {"field": "_index"}},
		"communities": {"terms": {"field": "community_id", "size": COMMUNITY_FACET_SIZE}},
		"tags": {"terms": {"field": f"tags.{KEYWORD_SUFFIX}", "size": TAG_FACET_SIZE}},
		"date_histogram": {"date_histogram": {"field": CREATED_AT, "calendar_interval": "1d"}},
	}


def highlight_spec() -> dict[str, Any]:
	return {
		"fields": {name: {} for name in HIGHLIGHT_FIELDS},
		"fragment_size": 150,
		"number_of_fragments": 1,
	}


def compile_request(request: models.SearchRequest, *, recency: RecencyPolicy | None = None) -> CompiledQuery:
	policy = recency or RecencyPolicy()
	bool_query: dict[str, Any] = {
		"must": [matching_clause(request)],
		"filter": [filter_clause(item) for item in request.filters],
		"should": recency_clauses(policy),
	}
	return CompiledQuery(
		query={"bool": bool_query},
		sort=sort_clause(request),
		aggregations=facet_aggregations(),
		highlight=highlight_spec(),
	)


def prefix_pattern(prefix: str) -> str:
	"""Case-insensitive Lucene regex matching any term that starts with `prefix`."""

	parts: list[str] = []
	for char in prefix:
		if char.isalpha() and char.lower() != char.upper():
			parts.append(f"[{char.lower()}{char.upper()}]")
		elif char in _LUCENE_REGEX_RESERVED:
			parts.append(f"\\{char}")
		else:
			parts.append(char)
	return "".join(parts) + ".*"


def build_suggest_body(*, prefix: str, field: str, size: int) -> dict[str, Any]:
	return {
		"size": 0,
		"aggs": {
			"suggestions": {
				"terms": {
					"field": f"{field}.{KEYWORD_SUFFIX}",
					"size": size,
					"include": prefix_pattern(prefix),
					"order": {"_count": "desc"},
				}
			}
		},
	}


def build_similar_body(
	*,
	index: str,
	document_id: str,
	size: int,
	fields: Sequence[str] = SIMILARITY_FIELDS,
	min_term_freq: int = 1,
	max_query_terms: int = 12,
) -> dict[str, Any]:
	return {
		"size": size,
		"query": {
			"bool": {
				"must": [
					{
						"more_like_this": {
							"fields": list(fields),
							"like": [{"_index": index, "_id": document_id}],
							"min_term_freq": min_term_freq,
							"max_query_terms": max_query_terms,
							"min_doc_freq": 1,
							"include": False,
						}
					}
				],
				"must_not": [{"ids": {"values": [document_id]}}],
			}
		},
	}


__all__ = [
	"CompiledQuery",
	"RecencyPolicy",
	"build_similar_body",
	"build_suggest_body",
	"compile_request",
	"prefix_pattern",
]
