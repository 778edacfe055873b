"""Relational fallback used when the search backend is unavailable."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional

from hubsearch.domain.search import exceptions, filters as search_filters, models
from hubsearch.domain.search.ports import RecordStore

_LOG = logging.getLogger(__name__)
FALLBACK_BACKEND = "postgres"
COMMUNITY_FIELD = "community_id"


def _community_scope(request: models.SearchRequest) -> Optional[str]:
	for item in request.filters:
		if isinstance(item, search_filters.ExactFilter) and item.field == COMMUNITY_FIELD:
			return str(item.value)
	return None


def _to_hit(row: dict[str, Any], content_type: models.ContentType) -> models.ResultHit:
	document = dict(row)
	document.setdefault("type", content_type.value)
	return models.ResultHit(
		id=str(row.get("id")),
		source_index=content_type,
		score=None,
		document=document,
	)


class FallbackSearch:
	"""Substring search over posts and users straight from the record store.

	Results are unranked and carry no score; content types other than posts
	and users contribute nothing. Any store failure is fatal and surfaces as
	`FallbackExhaustedError`.
	"""

	def __init__(self, store: RecordStore) -> None:
		self._store = store

	async def search(self, request: models.SearchRequest) -> models.SearchResult:
		started = time.perf_counter()
		hits: list[models.ResultHit] = []
		total = 0
		try:
			if request.scope.includes(models.ContentType.POSTS):
				rows, count = await self._store.search_posts(
					request.query,
					community_id=_community_scope(request),
					offset=request.offset,
					limit=request.limit,
				)
				hits.extend(_to_hit(row, models.ContentType.POSTS) for row in rows)
				total += count
			if request.scope.includes(models.ContentType.USERS):
				rows, count = await self._store.search_users(
					request.query,
					offset=request.offset,
					limit=request.limit,
				)
				hits.extend(_to_hit(row, models.ContentType.USERS) for row in rows)
				total += count
		except Exception as exc:
			_LOG.error("search.fallback.failed", extra={"scope": request.scope.value}, exc_info=True)
			raise exceptions.FallbackExhaustedError() from exc
		return models.SearchResult(
			hits=hits,
			total=total,
			took_ms=int((time.perf_counter() - started) * 1000),
			backend=FALLBACK_BACKEND,
		)


__all__ = ["FALLBACK_BACKEND", "FallbackSearch"]
