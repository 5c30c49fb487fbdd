from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

_otel_configured = False
_probe_filter_configured = False
_logging_configured = False

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"
_TRACER_NAME = "devkit"
_RESERVED_RECORD_FIELDS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    """Appends ``extra={...}`` fields to the event name as sorted ``key=value`` pairs."""

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_RECORD_FIELDS and not key.startswith("_")
        }
        if not fields:
            return line
        return line + " " + " ".join(f"{key}={fields[key]}" for key in sorted(fields))


class _ProbeAccessLogFilter(logging.Filter):
    """Drops successful uvicorn access lines for health, readiness and metrics probes."""

    def __init__(self, ignored_paths: tuple[str, ...]) -> None:
        super().__init__()
        self._ignored_paths = {self._normalize_path(path) for path in ignored_paths}

    @staticmethod
    def _normalize_path(path: str) -> str:
        base = path.split("?", 1)[0]
        if base != "/" and base.endswith("/"):
            return base[:-1]
        return base

    def filter(self, record: logging.LogRecord) -> bool:
        # uvicorn access args: (client, method, path, http_version, status)
        args: Any = getattr(record, "args", ())
        if not isinstance(args, tuple) or len(args) < 5 or not isinstance(args[2], str):
            return True
        try:
            status = int(args[4])
        except (TypeError, ValueError):
            return True
        return not (status == 200 and self._normalize_path(args[2]) in self._ignored_paths)


def configure_logging(level: str = "INFO") -> None:
    global _logging_configured
    if _logging_configured:
        return
    handler = logging.StreamHandler()
    handler.setFormatter(ExtraFieldsFormatter(_LOG_FORMAT))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(level.upper())
    _logging_configured = True


def configure_otel(service_name: str) -> None:
    global _otel_configured
    if _otel_configured:
        return
    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))
    trace.set_tracer_provider(provider)
    _otel_configured = True


@contextmanager
def start_span(name: str, attributes: Mapping[str, Any] | None = None) -> Iterator[trace.Span]:
    tracer = trace.get_tracer(_TRACER_NAME)
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def configure_probe_access_log_filter(
    ignored_paths: tuple[str, ...] = ("/healthz", "/readyz", "/metrics"),
) -> None:
    global _probe_filter_configured
    if _probe_filter_configured:
        return
    logging.getLogger("uvicorn.access").addFilter(_ProbeAccessLogFilter(ignored_paths=ignored_paths))
    _probe_filter_configured = True
