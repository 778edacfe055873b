"""REST endpoints for content search, suggestions, related content and analytics."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Response

from hubsearch.domain.search import exceptions, guards, schemas
from hubsearch.domain.search.service import SearchService, build_default_service
from hubsearch.infra.auth import AuthenticatedUser, get_admin_user, get_current_user

router = APIRouter(tags=["search"])

_service: Optional[SearchService] = None
DEFAULT_ANALYTICS_WINDOW = timedelta(days=7)


def get_service() -> SearchService:
	global _service
	if _service is None:
		_service = build_default_service()
	return _service


def set_service(service: Optional[SearchService]) -> None:
	global _service
	_service = service


def _aware(value: Optional[datetime]) -> Optional[datetime]:
	if value is not None and value.tzinfo is None:
		return value.replace(tzinfo=timezone.utc)
	return value


def _as_http_error(exc: Exception) -> HTTPException:
	if isinstance(exc, exceptions.SearchError):
		return HTTPException(status_code=exc.status_code, detail=exc.detail)
	return HTTPException(status_code=400, detail=str(exc))


@router.get("/search", response_model=schemas.Envelope[schemas.SearchData])
async def search_endpoint(
	query: Optional[str] = Query(default=None, max_length=guards.MAX_QUERY_LENGTH * 2),
	content_type: Optional[str] = Query(default="all", alias="type"),
	page: int = Query(default=1, ge=1),
	limit: Optional[int] = Query(default=None, ge=1),
	sort_by: Optional[str] = Query(default=None, alias="sortBy"),
	sort_order: Optional[str] = Query(default=None, alias="sortOrder"),
	filters: Optional[str] = Query(default=None, description="JSON-encoded filter mapping"),
	search_fields: Optional[list[str]] = Query(default=None, alias="searchFields"),
	search_operator: Optional[str] = Query(default=None, alias="searchOperator"),
	phrase_search: bool = Query(default=False, alias="phraseSearch"),
	proximity_terms: Optional[list[str]] = Query(default=None, alias="proximityTerms"),
	proximity_distance: Optional[int] = Query(default=None, alias="proximityDistance"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.Envelope[schemas.SearchData]:
	try:
		request = guards.build_search_request(
			query=query,
			content_type=content_type,
			page=page,
			limit=limit,
			sort_by=sort_by,
			sort_order=sort_order,
			filters=filters,
			search_fields=search_fields,
			search_operator=search_operator,
			phrase_search=phrase_search,
			proximity_terms=proximity_terms,
			proximity_distance=proximity_distance,
		)
		data = await get_service().search(auth_user, request)
	except exceptions.SearchError as exc:
		raise _as_http_error(exc) from exc
	return schemas.Envelope[schemas.SearchData](data=data)


@router.get("/search/suggest", response_model=schemas.Envelope[list[schemas.SuggestionOut]])
async def suggest_endpoint(
	query: Optional[str] = Query(default=None),
	content_type: Optional[str] = Query(default="all", alias="type"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.Envelope[list[schemas.SuggestionOut]]:
	try:
		suggestions = await get_service().suggest(auth_user, query=query, content_type=content_type)
	except exceptions.SearchError as exc:
		raise _as_http_error(exc) from exc
	return schemas.Envelope[list[schemas.SuggestionOut]](
		data=[schemas.SuggestionOut.model_validate(item) for item in suggestions]
	)


@router.get("/search/related/{content_type}/{document_id}", response_model=schemas.Envelope[list[schemas.SearchHit]])
async def related_endpoint(
	content_type: str = Path(...),
	document_id: str = Path(..., min_length=1),
	limit: Optional[int] = Query(default=None, ge=1),
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.Envelope[list[schemas.SearchHit]]:
	try:
		hits = await get_service().related(auth_user, content_type=content_type, document_id=document_id, limit=limit)
	except exceptions.SearchError as exc:
		raise _as_http_error(exc) from exc
	return schemas.Envelope[list[schemas.SearchHit]](data=[schemas.SearchHit.from_domain(hit) for hit in hits])


@router.post("/search/admin/sync", response_model=schemas.MessageResponse)
async def sync_endpoint(
	payload: schemas.SyncRequest,
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.MessageResponse:
	try:
		get_service().trigger_sync(payload.type)
	except exceptions.SearchError as exc:
		raise _as_http_error(exc) from exc
	return schemas.MessageResponse(message="Sync started")


@router.post("/search/analytics/click", response_model=schemas.ClickResponse)
async def click_endpoint(
	payload: schemas.ClickRequest,
	response: Response,
	auth_user: AuthenticatedUser = Depends(get_current_user),
) -> schemas.ClickResponse:
	try:
		recorded = await get_service().record_click(
			search_id=payload.search_id,
			result_id=payload.result_id,
			result_type=payload.result_type,
		)
	except exceptions.SearchError as exc:
		raise _as_http_error(exc) from exc
	if not recorded:
		response.status_code = 503
	return schemas.ClickResponse(success=recorded)


@router.get("/search/admin/analytics", response_model=schemas.Envelope[schemas.AnalyticsSummaryOut])
async def analytics_summary_endpoint(
	start: Optional[datetime] = Query(default=None, alias="startDate"),
	end: Optional[datetime] = Query(default=None, alias="endDate"),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.Envelope[schemas.AnalyticsSummaryOut]:
	end = _aware(end) or datetime.now(timezone.utc)
	start = _aware(start) or end - DEFAULT_ANALYTICS_WINDOW
	if start > end:
		raise HTTPException(status_code=422, detail="invalid_date_range")
	summary = await get_service().get_search_analytics(start, end)
	return schemas.Envelope[schemas.AnalyticsSummaryOut](data=schemas.AnalyticsSummaryOut.model_validate(summary))


@router.get("/search/admin/analytics/popular", response_model=schemas.Envelope[list[schemas.PopularTermOut]])
async def popular_terms_endpoint(
	limit: int = Query(default=20, ge=1, le=100),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.Envelope[list[schemas.PopularTermOut]]:
	terms = await get_service().get_popular_search_terms(limit)
	return schemas.Envelope[list[schemas.PopularTermOut]](
		data=[schemas.PopularTermOut.model_validate(term) for term in terms]
	)


@router.get("/search/admin/analytics/no-results", response_model=schemas.Envelope[list[schemas.NoResultSearchOut]])
async def no_result_searches_endpoint(
	limit: int = Query(default=50, ge=1, le=500),
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.Envelope[list[schemas.NoResultSearchOut]]:
	entries = await get_service().get_no_result_searches(limit)
	return schemas.Envelope[list[schemas.NoResultSearchOut]](
		data=[schemas.NoResultSearchOut.model_validate(entry) for entry in entries]
	)


@router.get("/search/admin/analytics/performance", response_model=schemas.Envelope[schemas.SearchPerformanceOut])
async def performance_endpoint(
	admin: AuthenticatedUser = Depends(get_admin_user),
) -> schemas.Envelope[schemas.SearchPerformanceOut]:
	performance = await get_service().get_search_performance()
	return schemas.Envelope[schemas.SearchPerformanceOut](
		data=schemas.SearchPerformanceOut.model_validate(performance)
	)

