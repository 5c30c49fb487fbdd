from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from service_pipeline.core.aggregator import ServiceAggregator
from service_pipeline.core.models import GeoPoint, ServiceRecord, ServiceSource
from service_pipeline.jobs.store import ServiceRepository

from lookup_service.cache import SearchCache
from lookup_service.dependencies import get_aggregator, get_owner, get_repository, get_search_cache
from lookup_service.errors import HANDLED_PIPELINE_ERRORS, ApiError, api_error_for
from lookup_service.response import success_response
from lookup_service.schemas import SearchRequest, ServiceCreateRequest, ServiceUpdateRequest

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/services", tags=["services"])


@router.post("/search")
async def search_services(
    body: SearchRequest,
    aggregator: ServiceAggregator = Depends(get_aggregator),
    cache: SearchCache = Depends(get_search_cache),
) -> dict:
    country = body.country.strip()
    if not country:
        raise ApiError("VALIDATION_ERROR", "country is required", 422)
    location = GeoPoint(lat=body.location.lat, lng=body.location.lng) if body.location else None
    cached = await cache.lookup(body.type, country, location)
    if cached is not None:
        return success_response(cached.data, meta={"count": cached.count, "cache": "hit"})

    result = await aggregator.aggregate(body.type, country, location=location)
    payload = result.to_dict()
    if result.error:
        logger.warning("service_search_failed", extra={"type": body.type.value, "country": country})
        return {"success": False, "data": payload, "meta": {"count": 0}}

    await cache.remember(body.type, country, location, payload, result.count)
    return success_response(payload, meta={"count": result.count, "cache": "miss"})


@router.post("", status_code=201)
async def create_service(
    body: ServiceCreateRequest,
    owner: str = Depends(get_owner),
    repository: ServiceRepository = Depends(get_repository),
    cache: SearchCache = Depends(get_search_cache),
) -> dict:
    record = ServiceRecord(
        name=body.name,
        type=body.type,
        address=body.address,
        latitude=body.latitude,
        longitude=body.longitude,
        source=ServiceSource.MANUAL,
        phone=body.phone,
        email=body.email,
        website=body.website,
        hours=body.hours,
        languages=tuple(body.languages),
        description=body.description,
        country=body.country,
    )
    try:
        created = await repository.create_manual(record, owner)
    except HANDLED_PIPELINE_ERRORS as exc:
        raise api_error_for(exc) from exc
    await cache.invalidate()
    logger.info("manual_service_created", extra={"service_id": created.id, "owner": owner})
    return success_response(created.to_dict(), meta={})


@router.patch("/{service_id}")
async def update_service(
    service_id: str,
    body: ServiceUpdateRequest,
    owner: str = Depends(get_owner),
    repository: ServiceRepository = Depends(get_repository),
    cache: SearchCache = Depends(get_search_cache),
) -> dict:
    changes = body.model_dump(exclude_unset=True)
    if not changes:
        raise ApiError("VALIDATION_ERROR", "no fields to update", 422)
    try:
        updated = await repository.update_manual(service_id, changes, owner)
    except HANDLED_PIPELINE_ERRORS as exc:
        raise api_error_for(exc) from exc
    await cache.invalidate()
    return success_response(updated.to_dict(), meta={})


@router.delete("/{service_id}")
async def delete_service(
    service_id: str,
    owner: str = Depends(get_owner),
    repository: ServiceRepository = Depends(get_repository),
    cache: SearchCache = Depends(get_search_cache),
) -> dict:
    try:
        await repository.delete_manual(service_id, owner)
    except HANDLED_PIPELINE_ERRORS as exc:
        raise api_error_for(exc) from exc
    await cache.invalidate()
    logger.info("manual_service_deleted", extra={"service_id": service_id, "owner": owner})
    return success_response({"deleted": service_id}, meta={})
