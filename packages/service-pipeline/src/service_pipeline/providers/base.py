from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Hashable
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from service_pipeline.core.dedup import Deduplicator
from service_pipeline.core.exceptions import ProviderDataError, ValidationError
from service_pipeline.core.fetch import ResilientFetchClient
from service_pipeline.core.metrics import InMemoryPipelineMetricsCollector
from service_pipeline.core.models import ServiceQuery, ServiceRecord, ServiceSource, ServiceType, validate_service

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def parse_payload(model: type[ModelT], response: httpx.Response) -> ModelT:
    try:
        return model.model_validate(response.json())
    except ValueError as exc:
        raise ProviderDataError(f"unexpected {model.__name__} payload: {exc}") from exc


class BaseProviderAdapter(ABC):
    """Searches one external provider and normalizes its items into ``ServiceRecord``.

    Subclasses declare a category table and implement the per-token fetch and the
    raw-to-record mapping. ``search`` owns the shared flow: concurrent category
    calls, first-seen dedup in category order, detail enrichment, validation.
    """

    source: ServiceSource
    badge: str
    bucket: str
    category_table: dict[ServiceType, tuple[str, ...]]
    display_name = ""

    def __init__(
        self,
        fetch_client: ResilientFetchClient,
        metrics: InMemoryPipelineMetricsCollector | None = None,
    ) -> None:
        self._fetch_client = fetch_client
        self._metrics = metrics

    def tokens_for(self, service_type: ServiceType) -> tuple[str, ...]:
        return self.category_table.get(service_type) or self.category_table[ServiceType.OTHER]

    @abstractmethod
    async def fetch_category(self, token: str, query: ServiceQuery) -> list[Any]:
        raise NotImplementedError

    @abstractmethod
    def raw_key(self, item: Any) -> Hashable:
        raise NotImplementedError

    @abstractmethod
    def to_record(self, item: Any, query: ServiceQuery) -> ServiceRecord:
        raise NotImplementedError

    async def enrich(self, item: Any, query: ServiceQuery) -> Any:
        return item

    async def localize(self, query: ServiceQuery) -> ServiceQuery:
        """Hook for adapters that derive query fields from the provider before searching."""
        return query

    def describe(self, name: str) -> str:
        return f"Service data from {self.display_name or self.source.value}: {name}"

    async def search(self, query: ServiceQuery) -> list[ServiceRecord]:
        tokens = self.tokens_for(query.service_type)
        logger.info(
            "provider_search_started",
            extra={"provider": self.source.value, "service_type": query.service_type.value, "categories": len(tokens)},
        )
        results = await asyncio.gather(
            *(self.fetch_category(token, query) for token in tokens),
            return_exceptions=True,
        )

        deduplicator: Deduplicator[Any] = Deduplicator(self.raw_key)
        raw_items: list[Any] = []
        last_error: Exception | None = None
        failures = 0
        for token, result in zip(tokens, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures += 1
                last_error = result
                logger.warning(
                    "provider_category_failed",
                    extra={"provider": self.source.value, "category": token, "error": str(result)},
                )
                continue
            raw_items.extend(deduplicator.filter(result))

        if last_error is not None and failures == len(tokens):
            raise last_error

        enriched = await asyncio.gather(*(self._enrich_safely(item, query) for item in raw_items))
        records = [record for record in (self._build_record(item, query) for item in enriched) if record]
        logger.info(
            "provider_search_completed",
            extra={"provider": self.source.value, "record_count": len(records), "failed_categories": failures},
        )
        return records

    async def _enrich_safely(self, item: Any, query: ServiceQuery) -> Any:
        try:
            return await self.enrich(item, query)
        except Exception as exc:
            logger.warning(
                "provider_enrich_failed",
                extra={"provider": self.source.value, "item_key": str(self.raw_key(item)), "error": str(exc)},
            )
            return item

    def _build_record(self, item: Any, query: ServiceQuery) -> ServiceRecord | None:
        try:
            return validate_service(self.to_record(item, query))
        except ValidationError as exc:
            logger.warning(
                "provider_item_dropped",
                extra={"provider": self.source.value, "item_key": str(self.raw_key(item)), "reason": str(exc)},
            )
            if self._metrics:
                self._metrics.add_dropped_records(self.source.value)
            return None
