"""FastAPI application entrypoint."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from hubsearch.api import ops, search
from hubsearch.api.errors import install_error_handlers
from hubsearch.domain.search.bootstrap import SearchBootstrapper
from hubsearch.domain.search.exceptions import BackendError
from hubsearch.infra import postgres
from hubsearch.infra.redis import close_redis
from hubsearch.infra.scheduler import SyncScheduler
from hubsearch.obs import logging as obs_logging
from hubsearch.obs import middleware as obs_middleware
from hubsearch.settings import settings

_LOG = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
	if settings.search_backend != "memory":
		await postgres.init_pool()
	service = search.get_service()
	try:
		await SearchBootstrapper(service.backend, naming=service.naming).install_all()
	except BackendError:
		_LOG.warning("search.bootstrap.skipped", exc_info=True)
	analytics_task = asyncio.create_task(service.analytics.run_forever(), name="search-analytics-writer")
	scheduler: SyncScheduler | None = None
	if settings.search_sync_schedule_enabled:
		scheduler = SyncScheduler()
		scheduler.start()
		scheduler.schedule_every("search-sync-all", service.scheduled_sync, hours=settings.search_sync_interval_hours)
	app.state.search_scheduler = scheduler
	try:
		yield
	finally:
		if scheduler is not None:
			scheduler.shutdown()
		service.analytics.stop()
		analytics_task.cancel()
		await asyncio.gather(analytics_task, return_exceptions=True)
		await service.analytics.flush()
		await service.wait_for_sync()
		await close_redis()
		if settings.search_backend != "memory":
			from hubsearch.infra.elasticsearch import close_backend

			await close_backend()
			await postgres.close_pool()


app = FastAPI(title="Hub Search", lifespan=lifespan)
install_error_handlers(app)
if settings.obs_enabled:
	obs_logging.configure_logging()
	obs_middleware.install(app)

app.include_router(search.router, tags=["search"])
app.include_router(ops.router, tags=["ops"])
