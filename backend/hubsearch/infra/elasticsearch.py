"""Elasticsearch-backed implementation of the search query backend."""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional, Sequence

from elasticsearch import AsyncElasticsearch
from elasticsearch.helpers import async_bulk

from hubsearch.domain.search import exceptions
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)


def _unwrap(response: Any) -> dict[str, Any]:
	body = getattr(response, "body", response)
	return dict(body or {})


class ElasticsearchBackend:
	"""Thin async wrapper translating client failures into `BackendError`."""

	def __init__(self, client: AsyncElasticsearch) -> None:
		self._client = client

	@property
	def client(self) -> AsyncElasticsearch:
		return self._client

	async def search(self, *, indices: Sequence[str], body: Mapping[str, Any]) -> dict[str, Any]:
		try:
			response = await self._client.search(
				index=",".join(indices),
				body=dict(body),
				ignore_unavailable=True,
				allow_no_indices=True,
			)
		except Exception as exc:
			raise exceptions.BackendError("search_unavailable") from exc
		return _unwrap(response)

	async def bulk_upsert(self, *, index: str, documents: Sequence[Mapping[str, Any]], refresh: bool = True) -> int:
		actions = [
			{"_op_type": "index", "_index": index, "_id": str(document["id"]), "_source": dict(document)}
			for document in documents
		]
		if not actions:
			return 0
		try:
			success, _ = await async_bulk(self._client, actions, refresh="true" if refresh else "false")
		except Exception as exc:
			_LOG.error("elasticsearch.bulk_failed", extra={"index": index, "count": len(actions)}, exc_info=True)
			raise exceptions.BackendError("bulk_index_failed") from exc
		_LOG.info("elasticsearch.bulk_completed", extra={"index": index, "count": success})
		return int(success)

	async def put_index_template(self, name: str, body: Mapping[str, Any]) -> None:
		try:
			await self._client.indices.put_index_template(name=name, body=dict(body))
		except Exception as exc:
			raise exceptions.BackendError("template_install_failed") from exc

	async def ping(self) -> bool:
		try:
			health = _unwrap(await self._client.cluster.health())
		except Exception:
			_LOG.warning("elasticsearch.health_failed", exc_info=True)
			return False
		return health.get("status") != "red"

	async def close(self) -> None:
		await self._client.close()


def build_client() -> AsyncElasticsearch:
	auth: dict[str, Any] = {}
	if settings.elasticsearch_api_key:
		auth["api_key"] = settings.elasticsearch_api_key
	elif settings.elasticsearch_username and settings.elasticsearch_password:
		auth["basic_auth"] = (settings.elasticsearch_username, settings.elasticsearch_password)
	return AsyncElasticsearch(
		hosts=[settings.elasticsearch_url],
		request_timeout=settings.elasticsearch_request_timeout,
		max_retries=settings.elasticsearch_max_retries,
		retry_on_timeout=True,
		**auth,
	)


_backend: Optional[ElasticsearchBackend] = None


def get_backend() -> ElasticsearchBackend:
	global _backend
	if _backend is None:
		_backend = ElasticsearchBackend(build_client())
	return _backend


async def close_backend() -> None:
	global _backend
	if _backend is not None:
		await _backend.close()
		_backend = None


__all__ = ["ElasticsearchBackend", "build_client", "close_backend", "get_backend"]
