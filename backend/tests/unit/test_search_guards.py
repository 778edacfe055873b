import pytest

from hubsearch.domain.search import exceptions, filters, guards, models
from hubsearch.settings import settings


def test_normalize_query_collapses_whitespace():
	assert guards.normalize_query("  data   science \n notes ") == "data science notes"
	assert guards.normalize_query(None) == ""


def test_query_length_is_capped():
	guards.ensure_query_allowed("x" * guards.MAX_QUERY_LENGTH)

	with pytest.raises(exceptions.QueryValidationError):
		guards.ensure_query_allowed("x" * (guards.MAX_QUERY_LENGTH + 1))


def test_clamp_limit_uses_default_and_cap():
	assert guards.clamp_limit(None) == settings.search_default_limit
	assert guards.clamp_limit(None, default=5) == 5
	assert guards.clamp_limit(10_000) == settings.search_max_limit

	with pytest.raises(exceptions.QueryValidationError):
		guards.clamp_limit(-1)


def test_parse_scope_rejects_unknown_types():
	assert guards.parse_scope(None) is models.SearchScope.ALL
	assert guards.parse_scope(" Users ") is models.SearchScope.USERS

	with pytest.raises(exceptions.UnsupportedContentTypeError):
		guards.parse_scope("events")


def test_parse_filters_accepts_json_text():
	resolved = guards.parse_filters('{"communityId": "c-1"}')

	assert resolved == (filters.ExactFilter(field="community_id", value="c-1"),)


@pytest.mark.parametrize("raw", ["{not json", "[1, 2]", '"text"'])
def test_parse_filters_rejects_non_objects(raw):
	with pytest.raises(exceptions.QueryValidationError):
		guards.parse_filters(raw)


def test_search_fields_are_split_and_checked():
	assert guards.parse_search_fields(["title^3,content", " tags "]) == ("title^3", "content", "tags")

	with pytest.raises(exceptions.QueryValidationError):
		guards.parse_search_fields(["title; drop"])


def test_sort_field_maps_to_document_field():
	assert guards.parse_sort_field("memberCount") == "member_count"
	assert guards.parse_sort_field("  ") is None

	with pytest.raises(exceptions.QueryValidationError):
		guards.parse_sort_field("title^2")


def test_proximity_requires_distance():
	assert guards.parse_proximity(None, None) is None
	assert guards.parse_proximity(["final  exam"], 2) == models.ProximitySearch(terms=("final", "exam"), distance=2)

	with pytest.raises(exceptions.QueryValidationError):
		guards.parse_proximity(["final", "exam"], None)
	with pytest.raises(exceptions.QueryValidationError):
		guards.parse_proximity(["final", "exam"], -1)


def test_build_search_request_assembles_all_parts():
	request = guards.build_search_request(
		query="  final exam ",
		content_type="posts",
		page=2,
		limit=10,
		sort_by="createdAt",
		sort_order="ASC",
		filters={"tags": ["math"]},
		search_fields=["title"],
		search_operator="AND",
		phrase_search=True,
	)

	assert request.query == "final exam"
	assert request.scope is models.SearchScope.POSTS
	assert request.offset == 10
	assert request.sort_field == "created_at"
	assert request.sort_order is models.SortOrder.ASC
	assert request.operator is models.SearchOperator.AND
	assert request.filters == (filters.MembershipFilter(field="tags", values=("math",)),)
	assert request.phrase_search is True


def test_phrase_search_needs_query_text():
	request = guards.build_search_request(query="   ", phrase_search=True)

	assert request.phrase_search is False


@pytest.mark.parametrize(
	"overrides",
	[{"page": 0}, {"sort_order": "sideways"}, {"search_operator": "xor"}],
)
def test_build_search_request_rejects_invalid_options(overrides):
	with pytest.raises(exceptions.QueryValidationError):
		guards.build_search_request(query="notes", **overrides)


@pytest.mark.asyncio
async def test_rate_limit_blocks_after_budget():
	await guards.enforce_rate_limit("u-1", kind="search:test", limit=2)
	await guards.enforce_rate_limit("u-1", kind="search:test", limit=2)

	with pytest.raises(exceptions.SearchRateLimitError):
		await guards.enforce_rate_limit("u-1", kind="search:test", limit=2)


@pytest.mark.asyncio
async def test_rate_limit_budgets_are_per_caller_and_kind():
	await guards.enforce_rate_limit("u-1", kind="suggest", limit=1)

	await guards.enforce_rate_limit("u-2", kind="suggest", limit=1)
	await guards.enforce_rate_limit("u-1", kind="related", limit=1)
	with pytest.raises(exceptions.SearchRateLimitError):
		await guards.enforce_rate_limit("u-1", kind="suggest", limit=1)


@pytest.mark.asyncio
async def test_zero_budget_blocks_without_counting():
	from hubsearch.infra.redis import redis_client

	with pytest.raises(exceptions.SearchRateLimitError):
		await guards.enforce_rate_limit("u-1", kind="search", limit=0)

	assert await redis_client.keys("search:rl:*") == []
