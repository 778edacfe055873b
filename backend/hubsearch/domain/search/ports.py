"""Collaborator interfaces consumed by the search executor and synchronizer."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, Sequence

from hubsearch.domain.search import models


class QueryBackend(Protocol):
	"""An external search engine speaking the Elasticsearch query protocol.

	Implementations raise `exceptions.BackendError` for any transport, timeout
	or protocol failure.
	"""

	async def search(self, *, indices: Sequence[str], body: Mapping[str, Any]) -> dict[str, Any]:
		...

	async def bulk_upsert(self, *, index: str, documents: Sequence[Mapping[str, Any]], refresh: bool = True) -> int:
		...

	async def put_index_template(self, name: str, body: Mapping[str, Any]) -> None:
		...

	async def ping(self) -> bool:
		...


class RecordStore(Protocol):
	"""Read access to the relational system of record."""

	async def fetch_batch(self, content_type: models.ContentType, *, offset: int, limit: int) -> list[dict[str, Any]]:
		"""Return one page of non-deleted rows with their denormalization joins."""
		...

	async def search_posts(
		self,
		query: str,
		*,
		community_id: Optional[str],
		offset: int,
		limit: int,
	) -> tuple[list[dict[str, Any]], int]:
		...

	async def search_users(self, query: str, *, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
		...


class SearchLogStore(Protocol):
	"""Persistence for search log entries."""

	async def insert(self, entry: models.SearchLogEntry) -> None:
		...

	async def mark_click(self, search_id: str, *, result_id: str, result_type: str) -> bool:
		"""Record a click once; return False when the entry is unknown or already clicked."""
		...

	async def list_between(self, start: datetime, end: datetime) -> list[models.SearchLogEntry]:
		...

	async def list_recent(self, *, limit: int, no_results_only: bool = False) -> list[models.SearchLogEntry]:
		...
