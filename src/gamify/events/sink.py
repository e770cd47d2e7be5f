"""Interface through which services emit derived events back into ingestion."""

from __future__ import annotations

from typing import Any, Protocol

from gamify.schemas import IngestResult


class EventSink(Protocol):
    async def ingest(
        self,
        user_id: int,
        event_type: str,
        entity_type: str | None = None,
        entity_id: int | None = None,
        metadata: dict[str, Any] | None = None,
        source: str = "system",
    ) -> IngestResult: ...
