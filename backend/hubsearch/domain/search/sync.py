"""Index synchronizer projecting relational rows into search documents."""

from __future__ import annotations

import logging
import time
from datetime import date, datetime
from typing import Any, Callable, Mapping, Optional

from hubsearch.domain.search import exceptions, models
from hubsearch.domain.search.executor import IndexNaming
from hubsearch.domain.search.ports import QueryBackend, RecordStore
from hubsearch.obs import metrics as obs_metrics
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)

SYNC_ORDER: tuple[models.ContentType, ...] = (
	models.ContentType.POSTS,
	models.ContentType.USERS,
	models.ContentType.COMMENTS,
	models.ContentType.COMMUNITIES,
	models.ContentType.COURSES,
)


def _value(value: Any) -> Any:
	if isinstance(value, (datetime, date)):
		return value.isoformat()
	if isinstance(value, (list, tuple)):
		return [_value(item) for item in value]
	if isinstance(value, (set, frozenset)):
		return sorted(_value(item) for item in value)
	return value


def _str_or_none(value: Any) -> Optional[str]:
	return None if value is None else str(value)


def _author(row: Mapping[str, Any]) -> Optional[dict[str, Any]]:
	if row.get("author_id") is None:
		return None
	return {
		"id": str(row["author_id"]),
		"username": row.get("author_username"),
		"first_name": row.get("author_first_name"),
		"last_name": row.get("author_last_name"),
	}


def _community(row: Mapping[str, Any]) -> Optional[dict[str, Any]]:
	if row.get("community_id") is None:
		return None
	return {
		"id": str(row["community_id"]),
		"name": row.get("community_name"),
		"slug": row.get("community_slug"),
	}


def _timestamps(row: Mapping[str, Any]) -> dict[str, Any]:
	return {"created_at": _value(row.get("created_at")), "updated_at": _value(row.get("updated_at"))}


def project_post(row: Mapping[str, Any]) -> dict[str, Any]:
	category = None
	if row.get("category_id") is not None:
		category = {"id": str(row["category_id"]), "name": row.get("category_name")}
	return {
		"id": str(row["id"]),
		"title": row.get("title"),
		"content": row.get("content"),
		"author_id": _str_or_none(row.get("author_id")),
		"author": _author(row),
		"community_id": _str_or_none(row.get("community_id")),
		"community": _community(row),
		"category_id": _str_or_none(row.get("category_id")),
		"category": category,
		"tags": _value(row.get("tags") or []),
		"comment_count": int(row.get("comment_count") or 0),
		"reaction_count": int(row.get("reaction_count") or 0),
		**_timestamps(row),
	}


def project_comment(row: Mapping[str, Any]) -> dict[str, Any]:
	post = None
	if row.get("post_id") is not None:
		post = {"id": str(row["post_id"]), "title": row.get("post_title")}
	return {
		"id": str(row["id"]),
		"content": row.get("content"),
		"author_id": _str_or_none(row.get("author_id")),
		"author": _author(row),
		"post_id": _str_or_none(row.get("post_id")),
		"post": post,
		"reaction_count": int(row.get("reaction_count") or 0),
		**_timestamps(row),
	}


def project_user(row: Mapping[str, Any]) -> dict[str, Any]:
	# Credentials and contact details never leave the record store.
	return {
		"id": str(row["id"]),
		"username": row.get("username"),
		"first_name": row.get("first_name"),
		"last_name": row.get("last_name"),
		"bio": row.get("bio"),
		"avatar_url": row.get("avatar_url"),
		**_timestamps(row),
	}


def project_community(row: Mapping[str, Any]) -> dict[str, Any]:
	return {
		"id": str(row["id"]),
		"name": row.get("name"),
		"slug": row.get("slug"),
		"description": row.get("description"),
		"is_public": bool(row.get("is_public")),
		"member_count": int(row.get("member_count") or 0),
		"post_count": int(row.get("post_count") or 0),
		**_timestamps(row),
	}


def project_course(row: Mapping[str, Any]) -> dict[str, Any]:
	return {
		"id": str(row["id"]),
		"title": row.get("title"),
		"description": row.get("description"),
		"community_id": _str_or_none(row.get("community_id")),
		"community": _community(row),
		"enrollment_count": int(row.get("enrollment_count") or 0),
		"is_published": bool(row.get("is_published")),
		**_timestamps(row),
	}


PROJECTIONS: dict[models.ContentType, Callable[[Mapping[str, Any]], dict[str, Any]]] = {
	models.ContentType.POSTS: project_post,
	models.ContentType.COMMENTS: project_comment,
	models.ContentType.USERS: project_user,
	models.ContentType.COMMUNITIES: project_community,
	models.ContentType.COURSES: project_course,
}


class IndexSynchronizer:
	"""Rebuild search documents from the system of record.

	Each content type is read page by page, projected, and written as one
	bulk upsert-by-id with refresh. Documents are full replacements, so the
	same rows always produce the same documents.
	"""

	def __init__(
		self,
		store: RecordStore,
		backend: QueryBackend,
		*,
		naming: Optional[IndexNaming] = None,
		page_size: Optional[int] = None,
	) -> None:
		self._store = store
		self._backend = backend
		self._naming = naming or IndexNaming()
		self._page_size = page_size or settings.search_sync_page_size

	async def sync_all(self) -> list[models.SyncReport]:
		reports: list[models.SyncReport] = []
		for content_type in SYNC_ORDER:
			reports.append(await self.sync_index(content_type))
		_LOG.info(
			"search.sync.all_completed",
			extra={"documents": sum(report.documents for report in reports)},
		)
		return reports

	async def sync_index(self, content_type: models.ContentType | str) -> models.SyncReport:
		try:
			resolved = content_type if isinstance(content_type, models.ContentType) else models.ContentType.parse(content_type)
		except ValueError as exc:
			raise exceptions.UnknownIndexError(str(content_type)) from exc

		started = time.perf_counter()
		try:
			documents = await self.build_documents(resolved)
			written = 0
			if documents:
				written = await self._backend.bulk_upsert(
					index=self._naming.index_for(resolved),
					documents=documents,
					refresh=True,
				)
		except Exception:
			duration = time.perf_counter() - started
			obs_metrics.record_sync_run(resolved.value, result="error", duration_seconds=duration)
			_LOG.error("search.sync.failed", extra={"content_type": resolved.value}, exc_info=True)
			raise
		duration = time.perf_counter() - started
		obs_metrics.record_sync_run(resolved.value, result="ok", documents=written, duration_seconds=duration)
		_LOG.info(
			"search.sync.completed",
			extra={"content_type": resolved.value, "documents": written, "took_ms": int(duration * 1000)},
		)
		return models.SyncReport(content_type=resolved, documents=written, took_ms=int(duration * 1000))

	async def build_documents(self, content_type: models.ContentType) -> list[dict[str, Any]]:
		project = PROJECTIONS[content_type]
		documents: list[dict[str, Any]] = []
		offset = 0
		while True:
			rows = await self._store.fetch_batch(content_type, offset=offset, limit=self._page_size)
			documents.extend(project(row) for row in rows)
			if len(rows) < self._page_size:
				break
			offset += self._page_size
		return documents


__all__ = ["IndexSynchronizer", "PROJECTIONS", "SYNC_ORDER"]
