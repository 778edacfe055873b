from datetime import datetime, timezone

import pytest

from hubsearch.domain.search import exceptions
from hubsearch.infra.memory_index import MemorySearchBackend, resolve_date_bound, tokenize

NOW = datetime(2024, 3, 15, 10, 30, tzinfo=timezone.utc)


def test_tokenize_lowercases_and_flattens():
	assert tokenize("Hello, World!") == ["hello", "world"]
	assert tokenize(["Python", "async io"]) == ["python", "async", "io"]
	assert tokenize(None) == []


def test_resolve_date_bound_handles_now_math():
	assert resolve_date_bound("now-7d/d", now=NOW, round_up=False) == datetime(2024, 3, 8, tzinfo=timezone.utc)
	assert resolve_date_bound("now", now=NOW, round_up=False) == NOW


def test_resolve_date_bound_rounds_calendar_days():
	start = resolve_date_bound("2023-12-31||/d", now=NOW, round_up=False)
	end = resolve_date_bound("2023-12-31||/d", now=NOW, round_up=True)

	assert start == datetime(2023, 12, 31, tzinfo=timezone.utc)
	assert end == datetime(2023, 12, 31, 23, 59, 59, 999999, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_bulk_upsert_replaces_by_id():
	backend = MemorySearchBackend(clock=lambda: NOW)

	await backend.bulk_upsert(index="posts", documents=[{"id": 1, "title": "First"}])
	await backend.bulk_upsert(index="posts", documents=[{"id": "1", "title": "Replaced"}, {"id": 2, "title": "Second"}])

	documents = backend.documents("posts")
	assert set(documents) == {"1", "2"}
	assert documents["1"]["title"] == "Replaced"


@pytest.mark.asyncio
async def test_search_scores_highlights_and_aggregates():
	backend = MemorySearchBackend(clock=lambda: NOW)
	await backend.bulk_upsert(
		index="posts",
		documents=[
			{"id": "a", "title": "Launch party", "tags": ["events"], "created_at": "2024-03-14T09:00:00+00:00"},
			{"id": "b", "title": "Quiet evening", "tags": ["events", "social"], "created_at": "2024-03-10T09:00:00+00:00"},
		],
	)
	body = {
		"from": 0,
		"size": 10,
		"query": {"multi_match": {"query": "launch", "fields": ["title^3"]}},
		"highlight": {"fields": {"title": {}}, "fragment_size": 150},
		"aggs": {"tags": {"terms": {"field": "tags.keyword", "size": 20}}},
	}

	response = await backend.search(indices=["posts"], body=body)

	hits = response["hits"]["hits"]
	assert response["hits"]["total"]["value"] == 1
	assert hits[0]["_id"] == "a"
	assert hits[0]["_score"] > 0
	assert hits[0]["highlight"] == {"title": ["<em>Launch</em> party"]}
	assert response["aggregations"]["tags"]["buckets"] == [{"key": "events", "doc_count": 1}]


@pytest.mark.asyncio
async def test_match_phrase_respects_slop():
	backend = MemorySearchBackend(clock=lambda: NOW)
	await backend.bulk_upsert(
		index="posts",
		documents=[
			{"id": "near", "content": "final review of the exam"},
			{"id": "far", "content": "final thoughts on a long semester before the exam"},
		],
	)

	async def _ids(slop):
		body = {"query": {"match_phrase": {"content": {"query": "final exam", "slop": slop}}}}
		response = await backend.search(indices=["posts"], body=body)
		return {hit["_id"] for hit in response["hits"]["hits"]}

	assert await _ids(0) == set()
	assert await _ids(3) == {"near"}
	assert await _ids(10) == {"near", "far"}


@pytest.mark.asyncio
async def test_sort_places_missing_values_last():
	backend = MemorySearchBackend(clock=lambda: NOW)
	await backend.bulk_upsert(
		index="communities",
		documents=[{"id": "1", "member_count": 5}, {"id": "2"}, {"id": "3", "member_count": 40}],
	)

	response = await backend.search(
		indices=["communities"],
		body={"query": {"match_all": {}}, "sort": [{"member_count": {"order": "desc"}}]},
	)

	assert [hit["_id"] for hit in response["hits"]["hits"]] == ["3", "1", "2"]
	assert all(hit["_score"] is None for hit in response["hits"]["hits"])


@pytest.mark.asyncio
async def test_failure_injection_raises_backend_error():
	backend = MemorySearchBackend(clock=lambda: NOW)
	backend.fail_with = ConnectionError("down")

	assert await backend.ping() is False
	with pytest.raises(exceptions.BackendError):
		await backend.search(indices=["posts"], body={})
