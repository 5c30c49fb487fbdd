from __future__ import annotations

from contextlib import asynccontextmanager

from devkit.config import load_settings
from devkit.observability import configure_logging, configure_otel, configure_probe_access_log_filter
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from service_pipeline.core.exceptions import PersistenceError

from lookup_service.container import LookupContainer, build_container
from lookup_service.errors import ApiError
from lookup_service.response import error_response, success_response
from lookup_service.routers.refresh import router as refresh_router
from lookup_service.routers.services import router as services_router


def create_app(container: LookupContainer | None = None) -> FastAPI:
    if container is None:
        settings = load_settings("lookup-service")
        configure_logging(settings.LOG_LEVEL)
        container = build_container(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.container.cache.close()

    app = FastAPI(title="Lookup Service", version="0.1.0", lifespan=lifespan)
    configure_otel(service_name="lookup-service")
    configure_probe_access_log_filter()
    app.state.container = container
    app.include_router(services_router)
    app.include_router(refresh_router)

    @app.get("/healthz")
    async def healthz() -> dict:
        return success_response({"status": "ok"}, meta={})

    @app.get("/readyz")
    async def readyz() -> dict:
        try:
            ready = await app.state.container.repository.ping()
        except PersistenceError as exc:
            raise ApiError("NOT_READY", str(exc), 503) from exc
        if not ready:
            raise ApiError("NOT_READY", "service store is unavailable", 503)
        return success_response({"status": "ready"}, meta={})

    @app.get("/metrics")
    async def metrics() -> Response:
        state = app.state.container
        payload = state.exporter.render(state.metrics)
        return Response(content=payload, media_type="text/plain; version=0.0.4")

    @app.exception_handler(ApiError)
    async def handle_api_error(_: Request, exc: ApiError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=error_response(exc.code, exc.message))

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(err["msg"] for err in exc.errors())
        return JSONResponse(
            status_code=422,
            content=error_response("VALIDATION_ERROR", message),
        )

    return app
