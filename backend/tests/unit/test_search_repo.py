from contextlib import asynccontextmanager
from datetime import datetime, timezone

import pytest

from hubsearch.domain.search import models
from hubsearch.domain.search.repo import PostgresRecordStore, PostgresSearchLogStore
from hubsearch.infra import postgres


class _StubConnection:
	def __init__(self, *, rows=None, total=0, status="UPDATE 1"):
		self.rows = rows or []
		self.total = total
		self.status = status
		self.calls = []

	async def fetch(self, sql, *args):
		self.calls.append(("fetch", sql, args))
		return self.rows

	async def fetchval(self, sql, *args):
		self.calls.append(("fetchval", sql, args))
		return self.total

	async def execute(self, sql, *args):
		self.calls.append(("execute", sql, args))
		return self.status


class _StubPool:
	def __init__(self, conn):
		self.conn = conn

	@asynccontextmanager
	async def acquire(self):
		yield self.conn


@pytest.fixture
def use_connection():
	def _install(conn):
		postgres.set_pool(_StubPool(conn))
		return conn

	try:
		yield _install
	finally:
		postgres.set_pool(None)


@pytest.mark.asyncio
async def test_fetch_batch_pages_by_offset(use_connection):
	conn = use_connection(_StubConnection(rows=[{"id": "p-1", "title": "Hello"}]))

	rows = await PostgresRecordStore().fetch_batch(models.ContentType.POSTS, offset=500, limit=250)

	assert rows == [{"id": "p-1", "title": "Hello"}]
	(kind, sql, args), = conn.calls
	assert args == (500, 250)
	assert "FROM posts" in sql


@pytest.mark.asyncio
async def test_search_posts_escapes_pattern_and_scopes_community(use_connection):
	conn = use_connection(_StubConnection(rows=[], total=4))

	rows, total = await PostgresRecordStore().search_posts("50%_off", community_id="c-1", offset=20, limit=10)

	assert rows == []
	assert total == 4
	(_, select_sql, select_args), (_, count_sql, count_args) = conn.calls
	assert select_args == ("%50\\%\\_off%", "c-1", 20, 10)
	assert "p.community_id = $2" in select_sql
	assert "OFFSET $3 LIMIT $4" in select_sql
	assert count_args == ("%50\\%\\_off%", "c-1")


@pytest.mark.asyncio
async def test_search_users_matches_names(use_connection):
	conn = use_connection(_StubConnection(rows=[{"id": "u-1", "username": "ada"}], total=1))

	rows, total = await PostgresRecordStore().search_users("ad", offset=0, limit=5)

	assert total == 1
	assert rows[0]["username"] == "ada"
	assert conn.calls[0][2] == ("%ad%", 0, 5)


@pytest.mark.asyncio
async def test_mark_click_reports_whether_a_row_changed(use_connection):
	store = PostgresSearchLogStore()

	use_connection(_StubConnection(status="UPDATE 1"))
	assert await store.mark_click("s-1", result_id="p-1", result_type="posts") is True

	use_connection(_StubConnection(status="UPDATE 0"))
	assert await store.mark_click("s-1", result_id="p-1", result_type="posts") is False


@pytest.mark.asyncio
async def test_insert_serialises_filters(use_connection):
	conn = use_connection(_StubConnection())
	entry = models.SearchLogEntry(
		id="s-1",
		query="notes",
		page=1,
		results_count=3,
		took_ms=12,
		created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
		user_id="u-1",
		filters={"type": "posts"},
	)

	await PostgresSearchLogStore().insert(entry)

	(_, sql, args), = conn.calls
	assert "INSERT INTO search_queries" in sql
	assert args[3] == '{"type": "posts"}'
	assert args[6] == 12


@pytest.mark.asyncio
async def test_list_recent_decodes_rows(use_connection):
	created = datetime(2024, 1, 1, tzinfo=timezone.utc)
	row = {
		"id": "s-1",
		"user_id": None,
		"query": "lost",
		"filters": '{"type": "all"}',
		"page": 1,
		"results_count": 0,
		"took": 5,
		"clicked_result_id": None,
		"clicked_result_type": None,
		"created_at": created,
	}
	conn = use_connection(_StubConnection(rows=[row]))

	entries = await PostgresSearchLogStore().list_recent(limit=50, no_results_only=True)

	assert entries[0].filters == {"type": "all"}
	assert entries[0].took_ms == 5
	assert "results_count = 0" in conn.calls[0][1]
