"""Validation helpers turning raw search inputs into domain requests."""

from __future__ import annotations

import json
import logging
import re
import time
from typing import Any, Mapping, Optional, Sequence

from hubsearch.domain.search import exceptions, filters as search_filters, models
from hubsearch.infra.redis import redis_client
from hubsearch.settings import settings

MAX_QUERY_LENGTH = 200
MAX_PROXIMITY_TERMS = 10
_FIELD_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.]*(\^\d+(\.\d+)?)?$")
_RATE_WINDOW_SECONDS = 60

_LOG = logging.getLogger(__name__)


def normalize_query(value: str | None) -> str:
	"""Collapse whitespace and trim surrounding spaces."""

	if not value:
		return ""
	return " ".join(value.strip().split())


def ensure_query_allowed(query: str) -> str:
	if len(query) > MAX_QUERY_LENGTH:
		raise exceptions.QueryValidationError("query_too_long")
	return query


def suggestion_allowed(prefix: str) -> bool:
	return len(prefix) >= settings.search_suggest_min_chars


def clamp_limit(limit: Optional[int], *, default: Optional[int] = None) -> int:
	value = limit or default or settings.search_default_limit
	if value < 1:
		raise exceptions.QueryValidationError("invalid_limit")
	return min(value, settings.search_max_limit)


def parse_scope(value: Optional[str]) -> models.SearchScope:
	try:
		return models.SearchScope(str(value or "all").strip().lower())
	except ValueError as exc:
		raise exceptions.UnsupportedContentTypeError(str(value)) from exc


def parse_filters(raw: Optional[str | Mapping[str, Any]]) -> tuple[search_filters.SearchFilter, ...]:
	if raw is None or raw == "":
		return ()
	if isinstance(raw, str):
		try:
			raw = json.loads(raw)
		except ValueError as exc:
			raise exceptions.QueryValidationError("invalid_filters") from exc
	if not isinstance(raw, Mapping):
		raise exceptions.QueryValidationError("invalid_filters")
	return search_filters.resolve_filters(raw)


def _checked_field(value: str) -> str:
	if not _FIELD_RE.match(value):
		raise exceptions.QueryValidationError(f"invalid_field:{value}")
	return value


def parse_search_fields(values: Optional[Sequence[str]]) -> tuple[str, ...]:
	fields: list[str] = []
	for raw in values or ():
		for part in str(raw).split(","):
			part = part.strip()
			if part:
				fields.append(_checked_field(part))
	return tuple(fields)


def parse_sort_field(value: Optional[str]) -> Optional[str]:
	if not value or not value.strip():
		return None
	field = _checked_field(value.strip())
	if "^" in field:
		raise exceptions.QueryValidationError(f"invalid_field:{value}")
	return search_filters.field_name(field)


def parse_proximity(terms: Optional[Sequence[str]], distance: Optional[int]) -> Optional[models.ProximitySearch]:
	cleaned = tuple(term for raw in terms or () for term in normalize_query(raw).split(" ") if term)
	if not cleaned:
		return None
	if len(cleaned) > MAX_PROXIMITY_TERMS:
		raise exceptions.QueryValidationError("too_many_proximity_terms")
	if distance is None or distance < 0:
		raise exceptions.QueryValidationError("invalid_proximity_distance")
	return models.ProximitySearch(terms=cleaned, distance=int(distance))


def build_search_request(
	*,
	query: Optional[str],
	content_type: Optional[str] = None,
	page: int = 1,
	limit: Optional[int] = None,
	sort_by: Optional[str] = None,
	sort_order: Optional[str] = None,
	filters: Optional[str | Mapping[str, Any]] = None,
	search_fields: Optional[Sequence[str]] = None,
	search_operator: Optional[str] = None,
	phrase_search: bool = False,
	proximity_terms: Optional[Sequence[str]] = None,
	proximity_distance: Optional[int] = None,
) -> models.SearchRequest:
	if page < 1:
		raise exceptions.QueryValidationError("invalid_page")
	try:
		order = models.SortOrder(str(sort_order or "desc").lower())
	except ValueError as exc:
		raise exceptions.QueryValidationError("invalid_sort_order") from exc
	try:
		operator = models.SearchOperator(str(search_operator or "or").lower())
	except ValueError as exc:
		raise exceptions.QueryValidationError("invalid_search_operator") from exc
	normalized = ensure_query_allowed(normalize_query(query))
	return models.SearchRequest(
		query=normalized,
		scope=parse_scope(content_type),
		page=page,
		limit=clamp_limit(limit),
		sort_field=parse_sort_field(sort_by),
		sort_order=order,
		filters=parse_filters(filters),
		search_fields=parse_search_fields(search_fields),
		operator=operator,
		phrase_search=bool(phrase_search) and bool(normalized),
		proximity=parse_proximity(proximity_terms, proximity_distance),
	)


async def _requests_in_window(kind: str, user_id: str) -> int:
	slot = int(time.time() // _RATE_WINDOW_SECONDS)
	key = f"search:rl:{kind}:{user_id}:{slot}"
	async with redis_client.pipeline(transaction=True) as pipe:
		pipe.incr(key)
		pipe.expire(key, _RATE_WINDOW_SECONDS)
		count, _ = await pipe.execute()
	return int(count)


async def enforce_rate_limit(user_id: str, *, kind: str = "search", limit: Optional[int] = None) -> None:
	"""Count the request against the caller's per-minute budget for `kind`."""

	budget = settings.search_rate_limit_per_minute if limit is None else limit
	if budget <= 0:
		raise exceptions.SearchRateLimitError()
	count = await _requests_in_window(kind, user_id)
	if count > budget:
		_LOG.warning("search.rate_limited", extra={"kind": kind, "user_id": user_id, "count": count})
		raise exceptions.SearchRateLimitError()


__all__ = [
	"build_search_request",
	"clamp_limit",
	"enforce_rate_limit",
	"normalize_query",
	"parse_scope",
	"suggestion_allowed",
]
