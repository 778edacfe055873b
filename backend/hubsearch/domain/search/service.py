"""Service layer orchestrating search, suggestions, analytics and sync triggers."""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime
from typing import Optional

from hubsearch.domain.search import analytics, exceptions, filters as search_filters, guards, models, schemas
from hubsearch.domain.search.executor import IndexNaming, SearchExecutor
from hubsearch.domain.search.fallback import FallbackSearch
from hubsearch.domain.search.ports import QueryBackend, RecordStore, SearchLogStore
from hubsearch.domain.search.sync import IndexSynchronizer
from hubsearch.infra.auth import AuthenticatedUser
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)

SYNC_ALL = "all"
_SEARCH_KIND = "search"
_SUGGEST_KIND = "search:suggest"
_RELATED_KIND = "search:related"
_SUGGEST_ALL_TYPES = (
	models.ContentType.COMMUNITIES,
	models.ContentType.POSTS,
	models.ContentType.COURSES,
	models.ContentType.USERS,
)


def suggest_field(scope: models.SearchScope) -> str:
	return "username" if scope is models.SearchScope.USERS else "title"


class SearchService:
	"""Coordinate guards, the executor, analytics and index synchronization."""

	def __init__(
		self,
		*,
		backend: QueryBackend,
		records: RecordStore,
		search_logs: SearchLogStore,
		naming: Optional[IndexNaming] = None,
	) -> None:
		self.naming = naming or IndexNaming()
		self.backend = backend
		self.executor = SearchExecutor(backend, FallbackSearch(records), naming=self.naming)
		self.synchronizer = IndexSynchronizer(records, backend, naming=self.naming)
		self.analytics = analytics.SearchAnalyticsLogger(search_logs)
		self.reporter = analytics.SearchAnalyticsReporter(search_logs)
		self._sync_tasks: set[asyncio.Task] = set()

	async def search(self, auth_user: AuthenticatedUser, request: models.SearchRequest) -> schemas.SearchData:
		await guards.enforce_rate_limit(auth_user.id, kind=_SEARCH_KIND)
		started = time.perf_counter()
		result = await self.executor.search(request)
		took_ms = int((time.perf_counter() - started) * 1000)
		search_id = self.analytics.log_search(
			user_id=auth_user.id,
			query=request.query,
			filters={"type": request.scope.value, **search_filters.snapshot(request.filters)},
			page=request.page,
			results_count=result.total,
			took_ms=took_ms,
		)
		result.took_ms = took_ms
		return schemas.SearchData.from_result(result, page=request.page, limit=request.limit, search_id=search_id)

	async def suggest(
		self,
		auth_user: AuthenticatedUser,
		*,
		query: Optional[str],
		content_type: Optional[str] = None,
	) -> list[models.Suggestion]:
		prefix = guards.normalize_query(query)
		if not guards.suggestion_allowed(prefix):
			return []
		scope = guards.parse_scope(content_type)
		await guards.enforce_rate_limit(auth_user.id, kind=_SUGGEST_KIND)
		types = _SUGGEST_ALL_TYPES if scope is models.SearchScope.ALL else scope.content_types()
		return await self.executor.suggest(
			[self.naming.index_for(content_type) for content_type in types],
			prefix,
			suggest_field(scope),
			size=settings.search_suggest_size,
		)

	async def related(
		self,
		auth_user: AuthenticatedUser,
		*,
		content_type: str,
		document_id: str,
		limit: Optional[int] = None,
	) -> list[models.ResultHit]:
		await guards.enforce_rate_limit(auth_user.id, kind=_RELATED_KIND)
		size = guards.clamp_limit(limit, default=settings.search_similar_default_limit)
		result = await self.executor.find_similar(content_type, document_id, size)
		return result.hits

	async def record_click(self, *, search_id: str, result_id: str, result_type: str) -> bool:
		return await self.analytics.log_click(search_id, result_id=result_id, result_type=result_type)

	def trigger_sync(self, target: Optional[str]) -> asyncio.Task:
		"""Validate the target and start synchronization in the background."""

		target = (target or SYNC_ALL).strip().lower()
		if target != SYNC_ALL:
			try:
				models.ContentType.parse(target)
			except ValueError as exc:
				raise exceptions.UnknownIndexError(target) from exc
		task = asyncio.create_task(self.run_sync(target), name=f"search-sync-{target}")
		self._sync_tasks.add(task)
		task.add_done_callback(self._sync_tasks.discard)
		_LOG.info("search.sync.started", extra={"target": target})
		return task

	async def run_sync(self, target: str = SYNC_ALL) -> list[models.SyncReport]:
		try:
			if target == SYNC_ALL:
				return await self.synchronizer.sync_all()
			return [await self.synchronizer.sync_index(target)]
		except Exception:
			_LOG.error("search.sync.aborted", extra={"target": target}, exc_info=True)
			return []

	async def scheduled_sync(self) -> None:
		await self.run_sync(SYNC_ALL)

	async def wait_for_sync(self) -> None:
		if self._sync_tasks:
			await asyncio.gather(*list(self._sync_tasks), return_exceptions=True)

	async def get_search_analytics(self, start: datetime, end: datetime) -> models.AnalyticsSummary:
		await self.analytics.flush()
		return await self.reporter.get_search_analytics(start, end)

	async def get_popular_search_terms(self, limit: int = 20) -> list[models.PopularTerm]:
		await self.analytics.flush()
		return await self.reporter.get_popular_search_terms(limit)

	async def get_no_result_searches(self, limit: int = 50) -> list[models.NoResultSearch]:
		await self.analytics.flush()
		return await self.reporter.get_no_result_searches(limit)

	async def get_search_performance(self) -> models.SearchPerformance:
		await self.analytics.flush()
		return await self.reporter.get_search_performance()


def build_default_service() -> SearchService:
	"""Wire the service from settings.

	`SEARCH_BACKEND=memory` keeps documents, records and search logs in
	process; otherwise Elasticsearch and Postgres are used.
	"""

	if settings.search_backend == "memory":
		from hubsearch.domain.search.memory import MemoryRecordStore, MemorySearchLogStore
		from hubsearch.infra.memory_index import MemorySearchBackend

		return SearchService(
			backend=MemorySearchBackend(),
			records=MemoryRecordStore(),
			search_logs=MemorySearchLogStore(),
		)

	from hubsearch.domain.search.repo import PostgresRecordStore, PostgresSearchLogStore
	from hubsearch.infra.elasticsearch import get_backend

	return SearchService(
		backend=get_backend(),
		records=PostgresRecordStore(),
		search_logs=PostgresSearchLogStore(),
	)


__all__ = ["SearchService", "build_default_service", "suggest_field"]
