"""In-memory record and search-log stores for tests and local development."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime, timezone
from typing import Any, Iterable, Mapping, Optional

from hubsearch.domain.search import models

_POST_FIELDS = ("title", "content")
_USER_FIELDS = ("username", "first_name", "last_name")
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _created(row: Mapping[str, Any]) -> datetime:
	value = row.get("created_at")
	if isinstance(value, datetime):
		return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
	return _EPOCH


def _contains(row: Mapping[str, Any], fields: Iterable[str], needle: str) -> bool:
	needle = needle.lower()
	return any(needle in str(row.get(field) or "").lower() for field in fields)


class MemoryRecordStore:
	"""Rows keyed by content type, shaped like the relational joins."""

	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.rows: dict[models.ContentType, dict[str, dict[str, Any]]] = {ct: {} for ct in models.ContentType}
		self.fail_with: Optional[BaseException] = None

	async def reset(self) -> None:
		async with self._lock:
			for bucket in self.rows.values():
				bucket.clear()
			self.fail_with = None

	async def seed(self, content_type: models.ContentType, rows: Iterable[Mapping[str, Any]]) -> None:
		async with self._lock:
			bucket = self.rows[content_type]
			for row in rows:
				bucket[str(row["id"])] = dict(row)

	def _check(self) -> None:
		if self.fail_with is not None:
			raise self.fail_with

	def _live(self, content_type: models.ContentType) -> list[dict[str, Any]]:
		return [
			copy.deepcopy(row)
			for _, row in sorted(self.rows[content_type].items())
			if row.get("deleted_at") is None
		]

	async def fetch_batch(self, content_type: models.ContentType, *, offset: int, limit: int) -> list[dict[str, Any]]:
		self._check()
		async with self._lock:
			return self._live(content_type)[offset : offset + limit]

	async def search_posts(
		self,
		query: str,
		*,
		community_id: Optional[str],
		offset: int,
		limit: int,
	) -> tuple[list[dict[str, Any]], int]:
		self._check()
		async with self._lock:
			matched = [
				row
				for row in self._live(models.ContentType.POSTS)
				if _contains(row, _POST_FIELDS, query)
				and (community_id is None or str(row.get("community_id")) == community_id)
			]
		matched.sort(key=_created, reverse=True)
		return matched[offset : offset + limit], len(matched)

	async def search_users(self, query: str, *, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
		self._check()
		async with self._lock:
			matched = [row for row in self._live(models.ContentType.USERS) if _contains(row, _USER_FIELDS, query)]
		matched.sort(key=lambda row: str(row.get("username") or ""))
		return matched[offset : offset + limit], len(matched)


class MemorySearchLogStore:
	def __init__(self) -> None:
		self._lock = asyncio.Lock()
		self.entries: dict[str, models.SearchLogEntry] = {}
		self.fail_with: Optional[BaseException] = None

	async def reset(self) -> None:
		async with self._lock:
			self.entries.clear()
			self.fail_with = None

	def _check(self) -> None:
		if self.fail_with is not None:
			raise self.fail_with

	async def insert(self, entry: models.SearchLogEntry) -> None:
		self._check()
		async with self._lock:
			self.entries[entry.id] = entry

	async def mark_click(self, search_id: str, *, result_id: str, result_type: str) -> bool:
		self._check()
		async with self._lock:
			entry = self.entries.get(search_id)
			if entry is None or entry.clicked:
				return False
			entry.clicked_result_id = result_id
			entry.clicked_result_type = result_type
			return True

	async def list_between(self, start: datetime, end: datetime) -> list[models.SearchLogEntry]:
		self._check()
		async with self._lock:
			matched = [entry for entry in self.entries.values() if start <= entry.created_at <= end]
		return sorted(matched, key=lambda entry: entry.created_at, reverse=True)

	async def list_recent(self, *, limit: int, no_results_only: bool = False) -> list[models.SearchLogEntry]:
		self._check()
		async with self._lock:
			entries = [
				entry
				for entry in self.entries.values()
				if not no_results_only or entry.results_count == 0
			]
		return sorted(entries, key=lambda entry: entry.created_at, reverse=True)[:limit]


__all__ = ["MemoryRecordStore", "MemorySearchLogStore"]
