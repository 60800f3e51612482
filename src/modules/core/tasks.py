"""Asynchronous tasks for the core module."""

import structlog
from celery import shared_task
from django.db import transaction

from modules.core.models import EventStatus, OutboxEvent

logger = structlog.get_logger(__name__)

OUTBOX_BATCH_SIZE = 100


@shared_task(name="core.publish_outbox_events")
def publish_outbox_events(batch_size: int = OUTBOX_BATCH_SIZE) -> int:
    """Drain ``PENDING`` outbox rows in commit order.

    Each row is emitted to the structured log sink (shipped to the event
    pipeline by the log collector) and marked published.  Rows are locked
    with ``SKIP LOCKED`` so concurrent workers never emit the same event.
    """
    published = 0
    with transaction.atomic():
        events = list(
            OutboxEvent.objects.select_for_update(skip_locked=True)
            .filter(status=EventStatus.PENDING)
            .order_by("created_at")[:batch_size]
        )
        for event in events:
            logger.info(
                "outbox.event_published",
                event_type=event.event_type,
                aggregate_id=event.aggregate_id,
                topic=event.topic,
                payload=event.payload,
            )
            event.mark_as_published()
            published += 1
    return published
