import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from hubsearch.api import search as search_api
from hubsearch.domain.search.executor import IndexNaming
from hubsearch.domain.search.memory import MemoryRecordStore, MemorySearchLogStore
from hubsearch.domain.search.service import SearchService
from hubsearch.infra import postgres
from hubsearch.infra.memory_index import MemorySearchBackend
from hubsearch.main import app
from hubsearch.settings import settings


@pytest_asyncio.fixture(autouse=True)
async def fake_redis():
	from hubsearch.infra.redis import redis_client, set_redis_client

	original = redis_client.client
	client = FakeRedis(decode_responses=True)
	set_redis_client(client)
	try:
		yield client
	finally:
		set_redis_client(original)
		await client.flushall()


@pytest.fixture(autouse=True)
def patch_postgres(monkeypatch):
	async def _noop():
		return None

	monkeypatch.setattr(postgres, "init_pool", _noop)
	monkeypatch.setattr(postgres, "close_pool", _noop)


@pytest.fixture(autouse=True)
def force_test_settings():
	"""Ensure a consistent test environment.

	API tests authenticate via X-User-Id/X-User-Roles headers, which are only
	accepted in dev mode.
	"""
	original_env = settings.environment
	original_backend = settings.search_backend
	settings.environment = "dev"
	settings.search_backend = "memory"
	try:
		yield
	finally:
		settings.environment = original_env
		settings.search_backend = original_backend


@dataclass
class SearchStack:
	backend: MemorySearchBackend
	records: MemoryRecordStore
	logs: MemorySearchLogStore
	service: SearchService


@pytest.fixture
def search_stack():
	backend = MemorySearchBackend()
	records = MemoryRecordStore()
	logs = MemorySearchLogStore()
	service = SearchService(backend=backend, records=records, search_logs=logs, naming=IndexNaming(prefix=""))
	search_api.set_service(service)
	try:
		yield SearchStack(backend=backend, records=records, logs=logs, service=service)
	finally:
		search_api.set_service(None)


@pytest.fixture
def days_ago():
	now = datetime.now(timezone.utc)

	def _at(days: float) -> datetime:
		return now - timedelta(days=days)

	return _at


@pytest_asyncio.fixture
async def api_client(search_stack):
	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://testserver") as client:
		yield client


@pytest.fixture
def user_headers():
	return {"X-User-Id": "user-1"}


@pytest.fixture
def admin_headers():
	return {"X-User-Id": "admin-1", "X-User-Roles": "admin"}
