from __future__ import annotations

import logging

from devkit.observability import ExtraFieldsFormatter, _ProbeAccessLogFilter, start_span


def _access_record(path: str, status: int) -> logging.LogRecord:
    return logging.LogRecord(
        name="uvicorn.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg='%s - "%s %s HTTP/%s" %d',
        args=("127.0.0.1:12345", "GET", path, "1.1", status),
        exc_info=None,
    )


def test_probe_access_log_filter_ignores_probe_200() -> None:
    probe_filter = _ProbeAccessLogFilter(ignored_paths=("/healthz", "/readyz", "/metrics"))
    assert probe_filter.filter(_access_record("/healthz", 200)) is False
    assert probe_filter.filter(_access_record("/metrics/", 200)) is False
    assert probe_filter.filter(_access_record("/readyz?full=true", 200)) is False


def test_probe_access_log_filter_keeps_search_traffic_and_failures() -> None:
    probe_filter = _ProbeAccessLogFilter(ignored_paths=("/healthz", "/readyz"))
    assert probe_filter.filter(_access_record("/healthz", 503)) is True
    assert probe_filter.filter(_access_record("/v1/services/search", 200)) is True


def test_probe_access_log_filter_passes_unrelated_records() -> None:
    probe_filter = _ProbeAccessLogFilter(ignored_paths=("/healthz",))
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "fetch_attempt", None, None)
    assert probe_filter.filter(record) is True


def test_extra_fields_formatter_appends_sorted_fields() -> None:
    formatter = ExtraFieldsFormatter("%(levelname)s %(message)s")
    record = logging.LogRecord("service_pipeline.core.fetch", logging.INFO, __file__, 1, "fetch_attempt", None, None)
    record.target = "https://overpass-api.de/api/interpreter"
    record.attempt = 2

    assert formatter.format(record) == "INFO fetch_attempt attempt=2 target=https://overpass-api.de/api/interpreter"


def test_extra_fields_formatter_leaves_plain_records_alone() -> None:
    formatter = ExtraFieldsFormatter("%(message)s")
    record = logging.LogRecord("app", logging.INFO, __file__, 1, "refresh_started", None, None)

    assert formatter.format(record) == "refresh_started"


def test_start_span_yields_span_and_skips_empty_attributes() -> None:
    with start_span("provider_fetch", {"fetch.target": "https://example.org/x", "fetch.status": None}) as span:
        span.set_attribute("fetch.attempts", 1)
