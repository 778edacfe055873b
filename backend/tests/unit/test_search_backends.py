import pytest

from hubsearch.domain.search import exceptions, models
from hubsearch.domain.search.bootstrap import SearchBootstrapper, template_for
from hubsearch.domain.search.executor import IndexNaming
from hubsearch.infra.elasticsearch import ElasticsearchBackend
from hubsearch.infra.memory_index import MemorySearchBackend


class _Response:
	def __init__(self, body):
		self.body = body


class _StubIndices:
	def __init__(self):
		self.templates = {}

	async def put_index_template(self, *, name, body):
		self.templates[name] = body


class _StubCluster:
	def __init__(self, status):
		self.status = status

	async def health(self):
		if self.status is None:
			raise ConnectionError("unreachable")
		return _Response({"status": self.status})


class _StubClient:
	def __init__(self, *, error=None, status="green"):
		self.error = error
		self.searches = []
		self.indices = _StubIndices()
		self.cluster = _StubCluster(status)

	async def search(self, **kwargs):
		self.searches.append(kwargs)
		if self.error is not None:
			raise self.error
		return _Response({"took": 3, "hits": {"total": {"value": 0}, "hits": []}})


def test_templates_target_prefixed_indices():
	naming = IndexNaming(prefix="hub-")

	template = template_for(models.ContentType.POSTS, naming)

	assert template["index_patterns"] == ["hub-posts"]
	properties = template["template"]["mappings"]["properties"]
	assert properties["title"]["fields"]["keyword"]["type"] == "keyword"
	assert properties["created_at"]["type"] == "date"


@pytest.mark.asyncio
async def test_bootstrapper_installs_one_template_per_type():
	backend = MemorySearchBackend()

	installed = await SearchBootstrapper(backend, naming=IndexNaming(prefix="")).install_all()

	assert installed == [f"{content_type.value}-template" for content_type in models.ContentType]
	assert set(backend.templates()) == set(installed)


@pytest.mark.asyncio
async def test_elasticsearch_search_joins_indices():
	client = _StubClient()
	backend = ElasticsearchBackend(client)

	response = await backend.search(indices=["posts", "users"], body={"size": 1})

	assert response["took"] == 3
	(call,) = client.searches
	assert call["index"] == "posts,users"
	assert call["body"] == {"size": 1}
	assert call["ignore_unavailable"] is True


@pytest.mark.asyncio
async def test_elasticsearch_errors_become_backend_errors():
	backend = ElasticsearchBackend(_StubClient(error=TimeoutError("slow")))

	with pytest.raises(exceptions.BackendError):
		await backend.search(indices=["posts"], body={})


@pytest.mark.asyncio
async def test_elasticsearch_template_install_and_ping():
	client = _StubClient(status="yellow")
	backend = ElasticsearchBackend(client)

	await backend.put_index_template("posts-template", {"index_patterns": ["posts"]})

	assert client.indices.templates == {"posts-template": {"index_patterns": ["posts"]}}
	assert await backend.ping() is True
	assert await ElasticsearchBackend(_StubClient(status="red")).ping() is False
	assert await ElasticsearchBackend(_StubClient(status=None)).ping() is False
