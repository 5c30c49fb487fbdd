from __future__ import annotations

from fastapi import APIRouter, Depends

from service_pipeline.jobs.refresh import RefreshService

from lookup_service.dependencies import get_refresh_service
from lookup_service.errors import HANDLED_PIPELINE_ERRORS, api_error_for
from lookup_service.response import success_response
from lookup_service.schemas import RefreshRequest

router = APIRouter(prefix="/internal/services", tags=["internal"])


@router.post("/refresh")
async def refresh_services(
    body: RefreshRequest,
    refresh_service: RefreshService = Depends(get_refresh_service),
) -> dict:
    try:
        result = await refresh_service.refresh_provider(body.provider, body.country, bbox=body.bbox)
    except HANDLED_PIPELINE_ERRORS as exc:
        raise api_error_for(exc) from exc
    return success_response(
        {"success": result.success, "count": result.count},
        meta={"provider": result.provider, "country": result.country},
    )
