"""Operations endpoints providing health checks and metrics."""

from __future__ import annotations

from fastapi import APIRouter, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from hubsearch.api.search import get_service
from hubsearch.domain.search import schemas
from hubsearch.obs import health

router = APIRouter(prefix="", tags=["ops"])


@router.get("/health/live")
async def health_live() -> dict[str, str]:
	return await health.liveness()


@router.get("/health/ready")
async def health_ready() -> Response:
	status_code, payload = await health.readiness(get_service().backend.ping)
	return JSONResponse(content=payload, status_code=status_code)


@router.get("/health/search", response_model=schemas.SearchHealthOut)
async def health_search(response: Response) -> schemas.SearchHealthOut:
	service = get_service()
	state = await health.search_backend_status(service.backend.ping)
	healthy = bool(state.get("ok"))
	if not healthy:
		response.status_code = 503
	return schemas.SearchHealthOut(backend=type(service.backend).__name__, healthy=healthy)


@router.get("/metrics")
async def prometheus_metrics() -> Response:
	return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
