"""Postgres-backed record store and search-log repository."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

import asyncpg

from hubsearch.domain.search import models
from hubsearch.infra import postgres

_AUTHOR_COLUMNS = """
	u.username AS author_username,
	u.first_name AS author_first_name,
	u.last_name AS author_last_name
"""

_BATCH_QUERIES: dict[models.ContentType, str] = {
	models.ContentType.POSTS: f"""
		SELECT
			p.id, p.title, p.content, p.author_id, p.community_id, p.category_id,
			p.created_at, p.updated_at,
			{_AUTHOR_COLUMNS},
			c.name AS community_name, c.slug AS community_slug,
			cat.name AS category_name,
			'{{}}'::text[] AS tags,
			(SELECT COUNT(*) FROM comments cm WHERE cm.post_id = p.id AND cm.deleted_at IS NULL) AS comment_count,
			(SELECT COUNT(*) FROM reactions r WHERE r.post_id = p.id) AS reaction_count
		FROM posts p
		LEFT JOIN users u ON u.id = p.author_id
		LEFT JOIN communities c ON c.id = p.community_id
		LEFT JOIN categories cat ON cat.id = p.category_id
		WHERE p.deleted_at IS NULL
		ORDER BY p.id
		OFFSET $1 LIMIT $2
	""",
	models.ContentType.COMMENTS: f"""
		SELECT
			cm.id, cm.content, cm.author_id, cm.post_id, cm.created_at, cm.updated_at,
			{_AUTHOR_COLUMNS},
			p.title AS post_title,
			(SELECT COUNT(*) FROM reactions r WHERE r.comment_id = cm.id) AS reaction_count
		FROM comments cm
		LEFT JOIN users u ON u.id = cm.author_id
		LEFT JOIN posts p ON p.id = cm.post_id
		WHERE cm.deleted_at IS NULL
		ORDER BY cm.id
		OFFSET $1 LIMIT $2
	""",
	models.ContentType.USERS: """
		SELECT id, username, first_name, last_name, bio, avatar_url, created_at, updated_at
		FROM users
		WHERE deleted_at IS NULL
		ORDER BY id
		OFFSET $1 LIMIT $2
	""",
	models.ContentType.COMMUNITIES: """
		SELECT
			c.id, c.name, c.slug, c.description, c.is_public, c.created_at, c.updated_at,
			(SELECT COUNT(*) FROM community_members m WHERE m.community_id = c.id) AS member_count,
			(SELECT COUNT(*) FROM posts p WHERE p.community_id = c.id AND p.deleted_at IS NULL) AS post_count
		FROM communities c
		ORDER BY c.id
		OFFSET $1 LIMIT $2
	""",
	models.ContentType.COURSES: """
		SELECT
			co.id, co.title, co.description, co.community_id, co.is_published,
			co.created_at, co.updated_at,
			c.name AS community_name, c.slug AS community_slug,
			(SELECT COUNT(*) FROM enrollments e WHERE e."courseId" = co.id) AS enrollment_count
		FROM courses co
		LEFT JOIN communities c ON c.id = co.community_id
		ORDER BY co.id
		OFFSET $1 LIMIT $2
	""",
}


def _escape_like(value: str) -> str:
	return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class PostgresRecordStore:
	"""Read-only access to the authoritative content tables."""

	async def fetch_batch(self, content_type: models.ContentType, *, offset: int, limit: int) -> list[dict[str, Any]]:
		async with postgres.connection() as conn:
			rows = await conn.fetch(_BATCH_QUERIES[content_type], offset, limit)
		return [dict(row) for row in rows]

	async def search_posts(
		self,
		query: str,
		*,
		community_id: Optional[str],
		offset: int,
		limit: int,
	) -> tuple[list[dict[str, Any]], int]:
		pattern = f"%{_escape_like(query)}%"
		conditions = ["p.deleted_at IS NULL", "(p.title ILIKE $1 OR p.content ILIKE $1)"]
		params: list[object] = [pattern]
		if community_id:
			params.append(community_id)
			conditions.append(f"p.community_id = ${len(params)}")
		where_clause = " AND ".join(conditions)
		select_sql = f"""
			SELECT
				p.id, p.title, p.content, p.author_id, p.community_id, p.created_at, p.updated_at,
				u.username AS author_username, u.avatar_url AS author_avatar_url,
				c.name AS community_name, c.slug AS community_slug
			FROM posts p
			LEFT JOIN users u ON u.id = p.author_id
			LEFT JOIN communities c ON c.id = p.community_id
			WHERE {where_clause}
			ORDER BY p.created_at DESC
			OFFSET ${len(params) + 1} LIMIT ${len(params) + 2}
		"""
		count_sql = f"SELECT COUNT(*) FROM posts p WHERE {where_clause}"
		async with postgres.connection() as conn:
			rows = await conn.fetch(select_sql, *params, offset, limit)
			total = await conn.fetchval(count_sql, *params)
		return [dict(row) for row in rows], int(total or 0)

	async def search_users(self, query: str, *, offset: int, limit: int) -> tuple[list[dict[str, Any]], int]:
		pattern = f"%{_escape_like(query)}%"
		where_clause = "deleted_at IS NULL AND (username ILIKE $1 OR first_name ILIKE $1 OR last_name ILIKE $1)"
		async with postgres.connection() as conn:
			rows = await conn.fetch(
				f"""
				SELECT id, username, first_name, last_name, avatar_url
				FROM users
				WHERE {where_clause}
				ORDER BY username
				OFFSET $2 LIMIT $3
				""",
				pattern,
				offset,
				limit,
			)
			total = await conn.fetchval(f"SELECT COUNT(*) FROM users WHERE {where_clause}", pattern)
		return [dict(row) for row in rows], int(total or 0)


def _entry_from_row(row: asyncpg.Record) -> models.SearchLogEntry:
	filters = row["filters"]
	if isinstance(filters, str):
		filters = json.loads(filters)
	return models.SearchLogEntry(
		id=row["id"],
		user_id=row["user_id"],
		query=row["query"],
		filters=filters,
		page=row["page"],
		results_count=row["results_count"],
		took_ms=row["took"],
		clicked_result_id=row["clicked_result_id"],
		clicked_result_type=row["clicked_result_type"],
		created_at=row["created_at"],
	)


class PostgresSearchLogStore:
	"""Persist search log entries in `search_queries`."""

	async def insert(self, entry: models.SearchLogEntry) -> None:
		async with postgres.connection() as conn:
			await conn.execute(
				"""
				INSERT INTO search_queries (id, user_id, query, filters, page, results_count, took, created_at)
				VALUES ($1, $2, $3, $4::jsonb, $5, $6, $7, $8)
				""",
				entry.id,
				entry.user_id,
				entry.query,
				json.dumps(entry.filters) if entry.filters is not None else None,
				entry.page,
				entry.results_count,
				entry.took_ms,
				entry.created_at,
			)

	async def mark_click(self, search_id: str, *, result_id: str, result_type: str) -> bool:
		async with postgres.connection() as conn:
			status = await conn.execute(
				"""
				UPDATE search_queries
				SET clicked_result_id = $2, clicked_result_type = $3
				WHERE id = $1 AND clicked_result_id IS NULL
				""",
				search_id,
				result_id,
				result_type,
			)
		return status.endswith(" 1")

	async def list_between(self, start: datetime, end: datetime) -> list[models.SearchLogEntry]:
		async with postgres.connection() as conn:
			rows = await conn.fetch(
				"""
				SELECT * FROM search_queries
				WHERE created_at >= $1 AND created_at <= $2
				ORDER BY created_at DESC
				""",
				start,
				end,
			)
		return [_entry_from_row(row) for row in rows]

	async def list_recent(self, *, limit: int, no_results_only: bool = False) -> list[models.SearchLogEntry]:
		where_clause = "WHERE results_count = 0" if no_results_only else ""
		async with postgres.connection() as conn:
			rows = await conn.fetch(
				f"SELECT * FROM search_queries {where_clause} ORDER BY created_at DESC LIMIT $1",
				limit,
			)
		return [_entry_from_row(row) for row in rows]


__all__ = ["PostgresRecordStore", "PostgresSearchLogStore"]
