"""Lookup of source adapters by request class or by source type."""

from typing import Iterable

from pydantic import BaseModel

from content_ingestion.core.exceptions import ContentValidationError
from content_ingestion.models import ContentSourceType
from content_ingestion.services.sources.base import SourceAdapter


class SourceAdapterRegistry:
    """
    Usage:
    ------
    registry = SourceAdapterRegistry([FileSourceAdapter(files), ManualSourceAdapter()])
    adapter = registry.for_request(request)          # at request time
    adapter = registry.for_source_type(item.source_type)  # at run time
    """

    def __init__(self, adapters: Iterable[SourceAdapter] = ()):
        self._by_request: dict[type[BaseModel], SourceAdapter] = {}
        self._by_source_type: dict[ContentSourceType, SourceAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: SourceAdapter) -> None:
        self._by_request[adapter.request_type] = adapter
        self._by_source_type[ContentSourceType(adapter.source_type)] = adapter

    def for_request(self, request: BaseModel) -> SourceAdapter:
        adapter = self._by_request.get(type(request))
        if adapter is None:
            raise ContentValidationError(
                f"Unsupported ingestion request: {type(request).__name__}",
                code="UNSUPPORTED_SOURCE_TYPE",
            )
        return adapter

    def for_source_type(self, source_type: ContentSourceType) -> SourceAdapter:
        adapter = self._by_source_type.get(ContentSourceType(source_type))
        if adapter is None:
            raise ContentValidationError(
                f"Unsupported source type: {source_type}",
                code="UNSUPPORTED_SOURCE_TYPE",
            )
        return adapter

    @property
    def adapters(self) -> list[SourceAdapter]:
        return list(self._by_source_type.values())

    async def close(self) -> None:
        for adapter in self.adapters:
            await adapter.close()
