from __future__ import annotations

from fastapi import Request

from service_pipeline.core.aggregator import ServiceAggregator
from service_pipeline.jobs.refresh import RefreshService
from service_pipeline.jobs.store import ServiceRepository

from lookup_service.cache import SearchCache
from lookup_service.container import LookupContainer
from lookup_service.errors import ApiError


def get_container(request: Request) -> LookupContainer:
    return request.app.state.container


def get_aggregator(request: Request) -> ServiceAggregator:
    return get_container(request).aggregator


def get_refresh_service(request: Request) -> RefreshService:
    return get_container(request).refresh_service


def get_repository(request: Request) -> ServiceRepository:
    return get_container(request).repository


def get_search_cache(request: Request) -> SearchCache:
    return get_container(request).cache


def get_owner(request: Request) -> str:
    owner = (request.headers.get("x-user-id") or "").strip()
    if not owner:
        raise ApiError("UNAUTHORIZED", "x-user-id header is required", 401)
    return owner
