from __future__ import annotations

from collections import defaultdict


class InMemoryPipelineMetricsCollector:
    def __init__(self) -> None:
        self.external_api_error_count = 0
        self.provider_http_errors_total: dict[tuple[str, str], int] = defaultdict(int)
        self.aggregate_requests_total: dict[str, int] = defaultdict(int)
        self.aggregate_source_failures_total: dict[str, int] = defaultdict(int)
        self.refresh_run_total: dict[tuple[str, str], int] = defaultdict(int)
        self.refresh_records_total: dict[tuple[str, str], int] = defaultdict(int)
        self.refresh_duration_seconds: dict[str, float] = {}
        self.dropped_records_total: dict[str, int] = defaultdict(int)

    def increment_external_api_error(self) -> None:
        self.external_api_error_count += 1

    def increment_provider_http_error(self, code: int | str, provider: str) -> None:
        self.provider_http_errors_total[(provider, str(code))] += 1

    def increment_aggregate_request(self, outcome: str) -> None:
        self.aggregate_requests_total[outcome] += 1

    def increment_source_failure(self, source: str) -> None:
        self.aggregate_source_failures_total[source] += 1

    def increment_refresh_run(self, provider: str, status: str) -> None:
        self.refresh_run_total[(provider, status)] += 1

    def add_refresh_records(self, provider: str, result: str, count: int) -> None:
        if count <= 0:
            return
        self.refresh_records_total[(provider, result)] += count

    def observe_refresh_duration(self, provider: str, duration_seconds: float) -> None:
        self.refresh_duration_seconds[provider] = duration_seconds

    def add_dropped_records(self, source: str, count: int = 1) -> None:
        if count <= 0:
            return
        self.dropped_records_total[source] += count
