"""Search analytics: best-effort query logging, click tracking and reporting."""

from __future__ import annotations

import asyncio
import logging
import math
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import ulid

from hubsearch.domain.search import exceptions, models
from hubsearch.domain.search.ports import SearchLogStore
from hubsearch.obs import metrics as obs_metrics
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)

TOP_QUERY_COUNT = 10
POPULAR_TERMS_WINDOW = 1000
POPULAR_TERM_MIN_LENGTH = 3


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class SearchAnalyticsLogger:
	"""Queue search log entries and write them from a background worker.

	`log_search` never blocks and never raises: a full queue drops the entry
	and counts it in `hubsearch_search_analytics_dropped_total`.
	"""

	def __init__(
		self,
		store: SearchLogStore,
		*,
		queue_size: Optional[int] = None,
		clock: Callable[[], datetime] = _utcnow,
	) -> None:
		self._store = store
		self._queue: asyncio.Queue[models.SearchLogEntry] = asyncio.Queue(
			maxsize=queue_size or settings.search_analytics_queue_size
		)
		self._clock = clock
		self._running = False

	@property
	def pending(self) -> int:
		return self._queue.qsize()

	def log_search(
		self,
		*,
		query: str,
		page: int,
		results_count: int,
		took_ms: int,
		user_id: Optional[str] = None,
		filters: Optional[dict[str, Any]] = None,
	) -> str:
		entry = models.SearchLogEntry(
			id=ulid.new().str,
			query=query,
			page=page,
			results_count=results_count,
			took_ms=took_ms,
			created_at=self._clock(),
			user_id=user_id,
			filters=filters or None,
		)
		try:
			self._queue.put_nowait(entry)
		except asyncio.QueueFull:
			obs_metrics.ANALYTICS_DROPPED.inc()
			_LOG.warning("search.analytics.dropped", extra={"search_id": entry.id})
		obs_metrics.ANALYTICS_QUEUE_DEPTH.set(self._queue.qsize())
		return entry.id

	async def log_click(self, search_id: str, *, result_id: str, result_type: str) -> bool:
		"""Record the clicked result once; return False when the write fails."""

		await self.flush()
		try:
			updated = await self._store.mark_click(search_id, result_id=result_id, result_type=result_type)
		except Exception:
			obs_metrics.ANALYTICS_FAILURES.labels(op="click").inc()
			_LOG.exception("search.analytics.click_failed", extra={"search_id": search_id})
			return False
		if not updated:
			raise exceptions.SearchLogNotFoundError(search_id)
		return True

	async def _write(self, entry: models.SearchLogEntry) -> None:
		try:
			await self._store.insert(entry)
		except Exception:
			obs_metrics.ANALYTICS_FAILURES.labels(op="insert").inc()
			_LOG.exception("search.analytics.insert_failed", extra={"search_id": entry.id})

	async def run_forever(self) -> None:
		self._running = True
		while self._running:
			entry = await self._queue.get()
			try:
				await self._write(entry)
			finally:
				self._queue.task_done()
				obs_metrics.ANALYTICS_QUEUE_DEPTH.set(self._queue.qsize())

	def stop(self) -> None:
		self._running = False

	async def flush(self) -> None:
		"""Write every queued entry before returning."""

		if self._running:
			await self._queue.join()
			return
		while not self._queue.empty():
			entry = self._queue.get_nowait()
			try:
				await self._write(entry)
			finally:
				self._queue.task_done()
		obs_metrics.ANALYTICS_QUEUE_DEPTH.set(0)


def _round2(value: float) -> float:
	return round(value * 100) / 100


def summarize(entries: list[models.SearchLogEntry]) -> models.AnalyticsSummary:
	total = len(entries)
	if total == 0:
		return models.AnalyticsSummary()
	ordered = sorted(entries, key=lambda entry: entry.created_at, reverse=True)
	counts = Counter(entry.query for entry in ordered)
	clicked = sum(1 for entry in entries if entry.clicked)
	return models.AnalyticsSummary(
		total_searches=total,
		avg_results_per_search=_round2(sum(entry.results_count for entry in entries) / total),
		avg_search_time=_round2(sum(entry.took_ms for entry in entries) / total),
		top_queries=[models.QueryCount(query=query, count=count) for query, count in counts.most_common(TOP_QUERY_COUNT)],
		click_through_rate=_round2(clicked / total * 100),
	)


class SearchAnalyticsReporter:
	"""Aggregate search log entries into reporting views."""

	def __init__(self, store: SearchLogStore, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self._store = store
		self._clock = clock

	async def get_search_analytics(self, start: datetime, end: datetime) -> models.AnalyticsSummary:
		return summarize(await self._store.list_between(start, end))

	async def get_popular_search_terms(self, limit: int = 20) -> list[models.PopularTerm]:
		entries = await self._store.list_recent(limit=POPULAR_TERMS_WINDOW)
		counts: Counter[str] = Counter()
		results: Counter[str] = Counter()
		for entry in entries:
			for term in entry.query.lower().split():
				if len(term) < POPULAR_TERM_MIN_LENGTH:
					continue
				counts[term] += 1
				results[term] += entry.results_count
		return [
			models.PopularTerm(term=term, count=count, avg_results=math.floor(results[term] / count + 0.5))
			for term, count in counts.most_common(limit)
		]

	async def get_no_result_searches(self, limit: int = 50) -> list[models.NoResultSearch]:
		entries = await self._store.list_recent(limit=limit, no_results_only=True)
		return [
			models.NoResultSearch(
				query=entry.query,
				user_id=entry.user_id,
				timestamp=entry.created_at,
				filters=entry.filters,
			)
			for entry in entries
		]

	async def get_search_performance(self) -> models.SearchPerformance:
		now = self._clock()
		return models.SearchPerformance(
			hourly=await self.get_search_analytics(now - timedelta(hours=1), now),
			daily=await self.get_search_analytics(now - timedelta(days=1), now),
			weekly=await self.get_search_analytics(now - timedelta(days=7), now),
		)


__all__ = ["SearchAnalyticsLogger", "SearchAnalyticsReporter", "summarize"]
