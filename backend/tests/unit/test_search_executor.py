from datetime import datetime, timezone

import pytest

from hubsearch.domain.search import exceptions, filters, models
from hubsearch.domain.search.executor import IndexNaming, SearchExecutor
from hubsearch.domain.search.fallback import FallbackSearch
from hubsearch.domain.search.memory import MemoryRecordStore
from hubsearch.domain.search.sync import IndexSynchronizer
from hubsearch.infra.memory_index import MemorySearchBackend


class _RecordingBackend:
	def __init__(self, response=None, error=None):
		self.response = response if response is not None else {"hits": {"total": {"value": 0}, "hits": []}}
		self.error = error
		self.calls = []

	async def search(self, *, indices, body):
		self.calls.append((list(indices), body))
		if self.error is not None:
			raise self.error
		return self.response


def _post(post_id, title, created_at, **extra):
	row = {
		"id": post_id,
		"title": title,
		"content": extra.pop("content", ""),
		"author_id": "u-1",
		"author_username": "ada",
		"community_id": extra.pop("community_id", "c-1"),
		"community_name": "Engineering",
		"tags": extra.pop("tags", []),
		"created_at": created_at,
		"updated_at": created_at,
	}
	row.update(extra)
	return row


async def _indexed(records, backend, naming):
	await IndexSynchronizer(records, backend, naming=naming).sync_all()


@pytest.fixture
def naming():
	return IndexNaming(prefix="")


@pytest.fixture
def records():
	return MemoryRecordStore()


@pytest.fixture
def backend():
	return MemorySearchBackend()


@pytest.fixture
def executor(backend, records, naming):
	return SearchExecutor(backend, FallbackSearch(records), naming=naming)


@pytest.mark.asyncio
async def test_search_sends_paginated_body_to_scoped_indices(records, naming):
	recording = _RecordingBackend()
	executor = SearchExecutor(recording, FallbackSearch(records), naming=naming)

	await executor.search(models.SearchRequest(query="notes", scope=models.SearchScope.POSTS, page=3, limit=15))

	(indices, body), = recording.calls
	assert indices == ["posts"]
	assert body["from"] == 30
	assert body["size"] == 15


@pytest.mark.asyncio
async def test_all_scope_targets_every_index(records, naming):
	recording = _RecordingBackend()
	executor = SearchExecutor(recording, FallbackSearch(records), naming=naming)

	await executor.search(models.SearchRequest(query="notes"))

	assert recording.calls[0][0] == ["posts", "comments", "users", "communities", "courses"]


@pytest.mark.asyncio
async def test_launch_query_ranks_matching_posts(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("p-alpha", "Alpha Launch", days_ago(1), content="Our team ships today"),
			_post("p-beta", "Beta Launch Notes", days_ago(3), content="Details for testers"),
			_post("p-gamma", "Gamma Update", days_ago(2), content="Release summary for gamma"),
		],
	)
	await _indexed(records, backend, naming)

	result = await executor.search(models.SearchRequest(query="launch", scope=models.SearchScope.POSTS))

	assert result.backend == "elasticsearch"
	assert result.total == 2
	assert [hit.id for hit in result.hits] == ["p-alpha", "p-beta"]
	assert result.hits[0].score >= result.hits[1].score
	assert result.hits[0].source_index is models.ContentType.POSTS
	assert result.hits[0].highlight == {"title": ["Alpha <em>Launch</em>"]}


@pytest.mark.asyncio
async def test_equal_scores_prefer_newer_documents(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("post-1", "Study group", days_ago(20), content="weekly meetup"),
			_post("post-2", "Study group", days_ago(10), content="weekly meetup"),
		],
	)
	await _indexed(records, backend, naming)

	result = await executor.search(models.SearchRequest(query="study", scope=models.SearchScope.POSTS))

	assert result.hits[0].score == result.hits[1].score
	assert [hit.id for hit in result.hits] == ["post-2", "post-1"]


@pytest.mark.asyncio
async def test_recency_tiers_order_equally_relevant_documents(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("old", "Study group", days_ago(60), content="weekly meetup"),
			_post("fresh", "Study group", days_ago(20), content="weekly meetup"),
			_post("recent", "Study group", days_ago(3), content="weekly meetup"),
		],
	)
	await _indexed(records, backend, naming)

	result = await executor.search(models.SearchRequest(query="study", scope=models.SearchScope.POSTS))

	assert [hit.id for hit in result.hits] == ["recent", "fresh", "old"]
	recent, fresh, old = (hit.score for hit in result.hits)
	assert recent > fresh > old


@pytest.mark.asyncio
async def test_date_range_filter_is_inclusive_by_day(executor, backend, records, naming):
	utc = timezone.utc
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("before", "Report", datetime(2022, 12, 31, 23, 0, tzinfo=utc)),
			_post("first", "Report", datetime(2023, 1, 1, 0, 0, tzinfo=utc)),
			_post("middle", "Report", datetime(2023, 6, 15, 12, 0, tzinfo=utc)),
			_post("last", "Report", datetime(2023, 12, 31, 23, 59, 59, tzinfo=utc)),
			_post("after", "Report", datetime(2024, 1, 1, 0, 0, tzinfo=utc)),
		],
	)
	await _indexed(records, backend, naming)
	request = models.SearchRequest(
		scope=models.SearchScope.POSTS,
		filters=filters.resolve_filters({"dateRange": {"from": "2023-01-01", "to": "2023-12-31"}}),
	)

	result = await executor.search(request)

	assert {hit.id for hit in result.hits} == {"first", "middle", "last"}
	assert result.total == 3


@pytest.mark.asyncio
async def test_filters_restrict_matches(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("p-1", "Robotics meetup", days_ago(1), community_id="c-1", tags=["robots"], reaction_count=4),
			_post("p-2", "Robotics recap", days_ago(1), community_id="c-2", tags=["robots"], reaction_count=9),
			_post("p-3", "Robotics budget", days_ago(1), community_id="c-2", tags=["finance"], reaction_count=12),
		],
	)
	await _indexed(records, backend, naming)
	request = models.SearchRequest(
		query="robotics",
		scope=models.SearchScope.POSTS,
		filters=filters.resolve_filters(
			{"communityId": "c-2", "tags": ["robots"], "reactionCountRange": {"min": 5}}
		),
	)

	result = await executor.search(request)

	assert [hit.id for hit in result.hits] == ["p-2"]
	assert result.aggregations["communities"]["buckets"] == [{"key": "c-2", "doc_count": 1}]


@pytest.mark.asyncio
async def test_backend_failure_falls_back_to_posts_only(executor, backend, records, days_ago):
	await records.seed(models.ContentType.POSTS, [_post("p-1", "A test post", days_ago(1))])
	await records.seed(models.ContentType.USERS, [{"id": "u-9", "username": "tester"}])
	backend.fail_with = ConnectionError("cluster down")

	result = await executor.search(models.SearchRequest(query="test", scope=models.SearchScope.POSTS))

	assert result.backend == "postgres"
	assert [hit.id for hit in result.hits] == ["p-1"]
	assert all(hit.source_index is models.ContentType.POSTS for hit in result.hits)
	assert all(hit.score is None for hit in result.hits)


@pytest.mark.asyncio
async def test_unexpected_backend_errors_also_fall_back(records, naming, days_ago):
	await records.seed(models.ContentType.POSTS, [_post("p-1", "A test post", days_ago(1))])
	executor = SearchExecutor(_RecordingBackend(error=RuntimeError("boom")), FallbackSearch(records), naming=naming)

	result = await executor.search(models.SearchRequest(query="test", scope=models.SearchScope.POSTS))

	assert result.backend == "postgres"
	assert result.total == 1


@pytest.mark.asyncio
async def test_malformed_backend_response_falls_back(records, naming):
	executor = SearchExecutor(_RecordingBackend(response={"unexpected": True}), FallbackSearch(records), naming=naming)

	result = await executor.search(models.SearchRequest(query="anything", scope=models.SearchScope.USERS))

	assert result.backend == "postgres"
	assert result.hits == []


@pytest.mark.asyncio
async def test_fallback_for_all_scope_combines_posts_and_users(executor, backend, records, days_ago):
	await records.seed(models.ContentType.POSTS, [_post("p-1", "Chess club", days_ago(1))])
	await records.seed(models.ContentType.USERS, [{"id": "u-1", "username": "chessmaster"}])
	await records.seed(models.ContentType.COMMUNITIES, [{"id": "c-1", "name": "Chess"}])
	backend.fail_with = TimeoutError()

	result = await executor.search(models.SearchRequest(query="chess"))

	assert result.total == 2
	assert [(hit.source_index, hit.id) for hit in result.hits] == [
		(models.ContentType.POSTS, "p-1"),
		(models.ContentType.USERS, "u-1"),
	]
	assert result.hits[1].document["type"] == "users"


@pytest.mark.asyncio
async def test_fallback_store_failure_is_fatal(executor, backend, records):
	backend.fail_with = ConnectionError("cluster down")
	records.fail_with = ConnectionError("database down")

	with pytest.raises(exceptions.FallbackExhaustedError) as excinfo:
		await executor.search(models.SearchRequest(query="test", scope=models.SearchScope.POSTS))

	assert excinfo.value.status_code == 500


@pytest.mark.asyncio
async def test_suggest_short_prefix_skips_backend(executor, backend):
	suggestions = await executor.suggest(["posts"], "a", "title")

	assert suggestions == []
	assert backend.search_calls == 0


@pytest.mark.asyncio
async def test_suggest_returns_common_completions(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("1", "Python basics", days_ago(1)),
			_post("2", "Python basics", days_ago(2)),
			_post("3", "python tips", days_ago(2)),
			_post("4", "Rust basics", days_ago(2)),
		],
	)
	await _indexed(records, backend, naming)

	suggestions = await executor.suggest(["posts"], "Py", "title", size=5)

	assert suggestions == [
		models.Suggestion(text="Python basics", count=2),
		models.Suggestion(text="python tips", count=1),
	]


@pytest.mark.asyncio
async def test_suggest_is_empty_when_backend_fails(executor, backend):
	backend.fail_with = ConnectionError("down")

	assert await executor.suggest(["posts"], "python", "title") == []


@pytest.mark.asyncio
async def test_suggest_is_empty_when_buckets_are_malformed(records, naming):
	malformed = _RecordingBackend(response={"aggregations": {"suggestions": {"buckets": [{"doc_count": 3}]}}})
	executor = SearchExecutor(malformed, FallbackSearch(records), naming=naming)

	assert await executor.suggest(["posts"], "lau", "title") == []
	assert len(malformed.calls) == 1


@pytest.mark.asyncio
async def test_find_similar_excludes_the_source_document(executor, backend, records, naming, days_ago):
	await records.seed(
		models.ContentType.POSTS,
		[
			_post("p-1", "Machine learning study group", days_ago(1), content="neural networks and gradient descent"),
			_post("p-2", "Deep learning reading list", days_ago(1), content="neural networks papers"),
			_post("p-3", "Pottery workshop", days_ago(1), content="clay and glazes"),
		],
	)
	await _indexed(records, backend, naming)

	result = await executor.find_similar("posts", "p-1", 5)

	assert [hit.id for hit in result.hits] == ["p-2"]


@pytest.mark.asyncio
@pytest.mark.parametrize("content_type", ["all", "events"])
async def test_find_similar_rejects_unknown_content_types(executor, content_type):
	with pytest.raises(exceptions.UnsupportedContentTypeError):
		await executor.find_similar(content_type, "p-1")


@pytest.mark.asyncio
async def test_find_similar_is_empty_when_backend_fails(executor, backend):
	backend.fail_with = ConnectionError("down")

	result = await executor.find_similar(models.ContentType.POSTS, "p-1")

	assert result.hits == []
	assert result.total == 0


def test_index_naming_round_trips_with_prefix():
	naming = IndexNaming(prefix="hub-")

	assert naming.index_for(models.ContentType.COURSES) == "hub-courses"
	assert naming.content_type_of("hub-courses") is models.ContentType.COURSES
	assert naming.content_type_of("other") is None
	assert naming.content_type_of(None) is None
