from typing import Optional
from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.responses import JSONResponse

from app.config.settings import settings
from app.core.exceptions.exceptions import (
    RecordNotFoundError,
    UpstreamError,
    UpstreamTimeoutError,
)
from app.schemas.treasury import (
    AppraisalResponse,
    CondoListResponse,
    CondoListResult,
    ErrorResponse,
    TreasuryQuery,
    TreasuryResponse,
    UnitOptionsResponse,
    clamp_int,
)
from app.services.appraisal_service import AppraisalService
from app.services.query_service import TreasuryQueryService
from app.utils.log import app_logger

router = APIRouter(prefix="/api/treasury", tags=["Treasury"])

NO_STORE = "no-store"


def get_query_service(request: Request) -> TreasuryQueryService:
    return request.app.state.query_service


def get_appraisal_service(request: Request) -> AppraisalService:
    return request.app.state.appraisal_service


def error_response(exc: Exception, **context) -> JSONResponse:
    """Map an exception to the `{success: false, ...}` envelope and a status code."""
    if isinstance(exc, UpstreamTimeoutError):
        code, message = status.HTTP_504_GATEWAY_TIMEOUT, "Upstream request timed out"
    elif isinstance(exc, UpstreamError):
        code, message = status.HTTP_500_INTERNAL_SERVER_ERROR, "Failed to fetch data"
    elif isinstance(exc, RecordNotFoundError):
        code, message = status.HTTP_404_NOT_FOUND, "Not found"
    else:
        code, message = status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal server error"

    if code >= 500:
        log_fields = dict(context, status_code=code, exc_type=type(exc).__name__, error=str(exc))
        if isinstance(exc, UpstreamError):
            log_fields.update(offset=exc.offset, attempts=exc.attempts)
        app_logger.error("api.treasury.error", **log_fields)

    details = None if settings.is_production else str(exc)
    body = ErrorResponse(error=message, details=details)
    return JSONResponse(
        status_code=code,
        content=body.model_dump(exclude_none=True),
        headers={"Cache-Control": NO_STORE},
    )


@router.get(
    "",
    response_model=TreasuryResponse,
    response_model_by_alias=True,
    summary="Search appraisal records",
    responses={
        500: {"model": ErrorResponse, "description": "Upstream failure"},
        504: {"model": ErrorResponse, "description": "Upstream timed out"},
    },
)
async def search_records(
    response: Response,
    search: Optional[str] = None,
    page: Optional[str] = None,
    limit: Optional[str] = None,
    service: TreasuryQueryService = Depends(get_query_service),
):
    """Return one page of appraisal records, optionally filtered by condo name.

    `page` and `limit` are taken as strings so malformed values fall back to
    defaults instead of failing validation; `limit` is capped at MAX_LIMIT.
    """
    query = TreasuryQuery.from_params(search, page, limit, settings.DEFAULT_LIMIT, settings.MAX_LIMIT)
    if (page is not None and page.strip() != str(query.page)) or \
            (limit is not None and limit.strip() != str(query.limit)):
        app_logger.debug("api.treasury.query_clamped", raw_page=page, raw_limit=limit,
                         page=query.page, limit=query.limit)

    try:
        result = await service.execute(query)
    except Exception as e:
        return error_response(e, search=query.search, page=query.page, limit=query.limit)

    if query.search:
        response.headers["Cache-Control"] = NO_STORE
    else:
        response.headers["Cache-Control"] = f"public, max-age={settings.LISTING_MAX_AGE}, s-maxage={settings.LISTING_MAX_AGE}"

    return TreasuryResponse(result=result)


@router.get("/condos", response_model=CondoListResponse, summary="List condominium names")
async def list_condos(
    response: Response,
    search: Optional[str] = None,
    limit: Optional[str] = None,
    service: AppraisalService = Depends(get_appraisal_service),
):
    term = (search or "").strip()
    bounded = clamp_int("limit", limit, min(settings.DEFAULT_LIMIT, settings.MAX_LIMIT), settings.MAX_LIMIT)
    try:
        condos, total = await service.list_condos(term, bounded)
    except Exception as e:
        return error_response(e, search=term)

    response.headers["Cache-Control"] = NO_STORE
    return CondoListResponse(result=CondoListResult(condos=condos, total=total))


@router.get(
    "/condos/{condo}/units",
    response_model=UnitOptionsResponse,
    response_model_by_alias=True,
    summary="Floor and use-category options for a condominium",
)
async def unit_options(
    condo: str,
    response: Response,
    service: AppraisalService = Depends(get_appraisal_service),
):
    try:
        units = await service.unit_options(condo)
    except Exception as e:
        return error_response(e, condo=condo)

    response.headers["Cache-Control"] = NO_STORE
    return UnitOptionsResponse(condo=condo, units=units)


@router.get(
    "/appraisal",
    response_model=AppraisalResponse,
    response_model_by_alias=True,
    summary="Appraised value per square metre",
)
async def appraisal(
    condo: str,
    level: str,
    use_type: str,
    response: Response,
    service: AppraisalService = Depends(get_appraisal_service),
):
    try:
        value = await service.appraised_value(condo, level, use_type)
    except Exception as e:
        return error_response(e, condo=condo, level=level, use_type=use_type)

    response.headers["Cache-Control"] = NO_STORE
    return AppraisalResponse(condo=condo, level=level, use_type=use_type, value_per_sqm=value)
