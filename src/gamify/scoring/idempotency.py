"""Stable idempotency keys for ingested events."""

from __future__ import annotations

import hashlib
import json
from datetime import date
from typing import Any

# Legitimately repeated on different days; the local date joins the key.
DATE_SCOPED_EVENT_TYPES: frozenset[str] = frozenset({
    "login_success",
    "highfive_sent",
    "water_added",
    "steps_logged",
    "meal_photo_uploaded",
})


def build_idempotency_key(
    event_type: str,
    user_id: int,
    metadata: dict[str, Any] | None = None,
    entity_type: str | None = None,
    entity_id: int | None = None,
    local_date: date | None = None,
) -> str:
    """SHA-256 over canonical JSON of the logical action.

    Key order in metadata does not matter. ``local_date`` is only mixed in for
    date-scoped event types.
    """
    payload: dict[str, Any] = dict(metadata or {})
    payload["entity_id"] = entity_id
    payload["entity_type"] = entity_type
    if event_type in DATE_SCOPED_EVENT_TYPES and local_date is not None:
        payload["_date"] = local_date.isoformat()

    canonical = json.dumps(
        [event_type, int(user_id), payload],
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
