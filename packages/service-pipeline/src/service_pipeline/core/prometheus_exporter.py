from __future__ import annotations

from prometheus_client import CollectorRegistry, Gauge, generate_latest

from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector


class PipelinePrometheusExporter:
    def __init__(self) -> None:
        self._registry = CollectorRegistry()
        self._external_errors = Gauge(
            "lookup_external_api_errors_total",
            "Failed provider fetch attempts",
            registry=self._registry,
        )
        self._provider_http_errors_total = Gauge(
            "lookup_provider_http_errors_total",
            "Provider HTTP errors grouped by target and code",
            labelnames=("provider", "code"),
            registry=self._registry,
        )
        self._aggregate_requests_total = Gauge(
            "lookup_aggregate_requests_total",
            "Aggregated searches grouped by outcome",
            labelnames=("outcome",),
            registry=self._registry,
        )
        self._aggregate_source_failures_total = Gauge(
            "lookup_aggregate_source_failures_total",
            "Sources that failed or timed out during aggregation",
            labelnames=("source",),
            registry=self._registry,
        )
        self._refresh_run_total = Gauge(
            "lookup_refresh_run_total",
            "Refresh runs grouped by provider and status",
            labelnames=("provider", "status"),
            registry=self._registry,
        )
        self._refresh_records_total = Gauge(
            "lookup_refresh_records_total",
            "Refreshed record counts grouped by provider and result",
            labelnames=("provider", "result"),
            registry=self._registry,
        )
        self._refresh_duration_seconds = Gauge(
            "lookup_refresh_duration_seconds",
            "Latest refresh duration by provider",
            labelnames=("provider",),
            registry=self._registry,
        )
        self._dropped_records_total = Gauge(
            "lookup_dropped_records_total",
            "Provider items dropped for failing validation",
            labelnames=("source",),
            registry=self._registry,
        )

    def render(self, metrics: InMemoryPipelineMetricsCollector) -> str:
        self._external_errors.set(metrics.external_api_error_count)
        for (provider, code), count in metrics.provider_http_errors_total.items():
            self._provider_http_errors_total.labels(provider=provider, code=code).set(count)
        for outcome, count in metrics.aggregate_requests_total.items():
            self._aggregate_requests_total.labels(outcome=outcome).set(count)
        for source, count in metrics.aggregate_source_failures_total.items():
            self._aggregate_source_failures_total.labels(source=source).set(count)
        for (provider, status), count in metrics.refresh_run_total.items():
            self._refresh_run_total.labels(provider=provider, status=status).set(count)
        for (provider, result), count in metrics.refresh_records_total.items():
            self._refresh_records_total.labels(provider=provider, result=result).set(count)
        for provider, duration in metrics.refresh_duration_seconds.items():
            self._refresh_duration_seconds.labels(provider=provider).set(duration)
        for source, count in metrics.dropped_records_total.items():
            self._dropped_records_total.labels(source=source).set(count)
        return generate_latest(self._registry).decode("utf-8")
