"""Search executor: runs compiled queries, suggestions and similarity lookups."""

from __future__ import annotations

import logging
import time
from typing import Any, Optional, Sequence

from hubsearch.domain.search import compiler, exceptions, models
from hubsearch.domain.search.fallback import FallbackSearch
from hubsearch.domain.search.ports import QueryBackend
from hubsearch.obs import metrics as obs_metrics
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)
PRIMARY_BACKEND = "elasticsearch"


class IndexNaming:
	"""Map content types to index names and back."""

	def __init__(self, prefix: Optional[str] = None) -> None:
		self.prefix = settings.search_index_prefix if prefix is None else prefix

	def index_for(self, content_type: models.ContentType) -> str:
		return f"{self.prefix}{content_type.value}"

	def indices_for(self, scope: models.SearchScope) -> list[str]:
		return [self.index_for(content_type) for content_type in scope.content_types()]

	def content_type_of(self, index: Optional[str]) -> Optional[models.ContentType]:
		if not index:
			return None
		name = index[len(self.prefix):] if self.prefix and index.startswith(self.prefix) else index
		try:
			return models.ContentType(name)
		except ValueError:
			return None


def _total_of(hits_section: dict[str, Any]) -> int:
	total = hits_section.get("total", 0)
	if isinstance(total, dict):
		return int(total.get("value") or 0)
	return int(total or 0)


class SearchExecutor:
	"""Issue compiled queries against the backend, degrading to the fallback path."""

	def __init__(
		self,
		backend: QueryBackend,
		fallback: FallbackSearch,
		*,
		naming: Optional[IndexNaming] = None,
		recency: Optional[compiler.RecencyPolicy] = None,
	) -> None:
		self._backend = backend
		self._fallback = fallback
		self.naming = naming or IndexNaming()
		self._recency = recency

	@property
	def backend(self) -> QueryBackend:
		return self._backend

	async def search(self, request: models.SearchRequest) -> models.SearchResult:
		obs_metrics.inc_search_query("search")
		started = time.perf_counter()
		compiled = compiler.compile_request(request, recency=self._recency or compiler.RecencyPolicy.from_settings())
		body = compiled.body(offset=request.offset, size=request.limit)
		try:
			response = await self._backend.search(indices=self.naming.indices_for(request.scope), body=body)
			result = self._parse_result(response)
		except exceptions.BackendError as exc:
			result = await self._run_fallback(request, reason="backend_error", detail=exc.detail)
		except Exception:
			_LOG.exception("search.backend_exception")
			result = await self._run_fallback(request, reason="unexpected", detail="unexpected")
		obs_metrics.observe_search_latency("search", time.perf_counter() - started)
		return result

	async def _run_fallback(self, request: models.SearchRequest, *, reason: str, detail: str) -> models.SearchResult:
		_LOG.warning(
			"search.fallback",
			extra={"reason": reason, "detail": detail, "scope": request.scope.value},
		)
		obs_metrics.inc_search_fallback(reason)
		return await self._fallback.search(request)

	async def suggest(
		self,
		indices: Sequence[str],
		prefix: str,
		field: str,
		size: int = 10,
	) -> list[models.Suggestion]:
		"""Return the most common completions of `prefix`, best-effort."""

		prefix = (prefix or "").strip()
		if len(prefix) < settings.search_suggest_min_chars or not indices:
			return []
		obs_metrics.inc_search_query("suggest")
		started = time.perf_counter()
		body = compiler.build_suggest_body(prefix=prefix, field=field, size=size)
		try:
			response = await self._backend.search(indices=list(indices), body=body)
			buckets = (response.get("aggregations") or {}).get("suggestions", {}).get("buckets", [])
			suggestions = [
				models.Suggestion(text=str(bucket["key"]), count=int(bucket.get("doc_count", 0))) for bucket in buckets
			]
		except exceptions.BackendError as exc:
			_LOG.warning("search.suggest.backend_failure", extra={"detail": exc.detail})
			return []
		except (AttributeError, KeyError, TypeError, ValueError) as exc:
			_LOG.warning("search.suggest.backend_failure", extra={"detail": f"malformed_response:{type(exc).__name__}"})
			return []
		finally:
			obs_metrics.observe_search_latency("suggest", time.perf_counter() - started)
		suggestions.sort(key=lambda item: -item.count)
		return suggestions[:size]

	async def find_similar(
		self,
		content_type: models.ContentType | str,
		document_id: str,
		max_results: Optional[int] = None,
	) -> models.SearchResult:
		try:
			resolved = content_type if isinstance(content_type, models.ContentType) else models.ContentType.parse(content_type)
		except ValueError as exc:
			raise exceptions.UnsupportedContentTypeError(str(content_type)) from exc
		size = max_results or settings.search_similar_default_limit
		obs_metrics.inc_search_query("similar")
		started = time.perf_counter()
		index = self.naming.index_for(resolved)
		body = compiler.build_similar_body(
			index=index,
			document_id=str(document_id),
			size=size,
			min_term_freq=settings.search_similar_min_term_freq,
			max_query_terms=settings.search_similar_max_query_terms,
		)
		try:
			response = await self._backend.search(indices=[index], body=body)
			return self._parse_result(response)
		except exceptions.BackendError as exc:
			_LOG.warning("search.similar.backend_failure", extra={"detail": exc.detail, "index": index})
			return models.SearchResult.empty(backend=PRIMARY_BACKEND)
		finally:
			obs_metrics.observe_search_latency("similar", time.perf_counter() - started)

	def _parse_result(self, response: dict[str, Any]) -> models.SearchResult:
		hits_section = response.get("hits")
		if not isinstance(hits_section, dict):
			raise exceptions.BackendError("malformed_response")
		hits: list[models.ResultHit] = []
		for hit in hits_section.get("hits", []):
			source = dict(hit.get("_source") or {})
			hit_id = hit.get("_id") or source.get("id")
			if hit_id is None:
				continue
			score = hit.get("_score")
			hits.append(
				models.ResultHit(
					id=str(hit_id),
					source_index=self.naming.content_type_of(hit.get("_index")),
					score=float(score) if score is not None else None,
					document=source,
					highlight=hit.get("highlight"),
				)
			)
		return models.SearchResult(
			hits=hits,
			total=_total_of(hits_section),
			aggregations=dict(response.get("aggregations") or {}),
			took_ms=int(response.get("took") or 0),
			backend=PRIMARY_BACKEND,
		)


__all__ = ["IndexNaming", "PRIMARY_BACKEND", "SearchExecutor"]
