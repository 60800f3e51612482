"""Transactional outbox writer shared by the module repositories.

Domain events collected on an aggregate are written as ``OutboxEvent``
rows inside the caller's transaction, so an event exists if and only if
the change that produced it committed.
"""

from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict
from uuid import UUID

import structlog

from modules.core.models import OutboxEvent

logger = structlog.get_logger(__name__)


def flush_domain_events(entity: Any, topic: str) -> int:
    """Write the entity's pending domain events to the outbox and clear them."""
    events = entity.domain_events if hasattr(entity, "domain_events") else []
    for event in events:
        OutboxEvent.objects.create(
            event_type=event.event_name,
            aggregate_id=str(event.aggregate_id),
            payload=_serialize_event_payload(event),
            topic=topic,
        )
    if hasattr(entity, "clear_domain_events"):
        entity.clear_domain_events()

    if events:
        logger.info("outbox.events_recorded", topic=topic, event_count=len(events))
    return len(events)


def _serialize_event_payload(event: Any) -> Dict[str, Any]:
    data = asdict(event)
    normalized = _normalize_for_json(data)
    return json.loads(json.dumps(normalized))


def _normalize_for_json(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, list):
        return [_normalize_for_json(item) for item in value]
    if isinstance(value, dict):
        return {key: _normalize_for_json(val) for key, val in value.items()}
    return value
