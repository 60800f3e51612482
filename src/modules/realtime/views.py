"""Server-Sent Events endpoint for live subscribers.

``GET /api/v1/events/stream/?topics=delivery_completed,inventory_updated``
holds the connection open and writes one ``event:``/``data:`` frame per
message.  A comment line is sent whenever no message arrives within
``REALTIME_HEARTBEAT_SECONDS`` so proxies keep the connection alive.
A stream ends after ``REALTIME_STREAM_MAX_SECONDS``; browsers reconnect
on their own, and a client that vanished without a clean disconnect is
dropped by then.  Closing the response unsubscribes.
"""

from __future__ import annotations

import json
import time
from typing import Iterator

import structlog
from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.http import StreamingHttpResponse
from rest_framework import status
from rest_framework.renderers import JSONRenderer
from rest_framework.request import Request
from rest_framework.views import APIView

from modules.core.views import domain_error_response
from modules.realtime.broadcaster import (
    EventBroadcaster,
    Message,
    Subscription,
    get_broadcaster,
)
from modules.realtime.exceptions import SubscriptionForbidden, UnknownTopic
from modules.realtime.renderers import EventStreamRenderer

logger = structlog.get_logger(__name__)


def format_sse(message: Message) -> str:
    data = json.dumps(message.payload, cls=DjangoJSONEncoder)
    return f"event: {message.topic}\ndata: {data}\n\n"


class EventStream:
    """Iterable response body bound to one subscription.

    ``close()`` is called by the WSGI server (through the response) when
    the client disconnects or the response finishes.
    """

    def __init__(
        self,
        broadcaster: EventBroadcaster,
        subscription: Subscription,
        heartbeat_seconds: float,
        max_seconds: float,
    ) -> None:
        self._broadcaster = broadcaster
        self._subscription = subscription
        self._heartbeat_seconds = heartbeat_seconds
        self._max_seconds = max_seconds

    def __iter__(self) -> Iterator[str]:
        deadline = time.monotonic() + self._max_seconds
        yield ": connected\n\n"
        while not self._subscription.closed and time.monotonic() < deadline:
            message = self._subscription.get(timeout=self._heartbeat_seconds)
            if message is None:
                yield ": keep-alive\n\n"
                continue
            yield format_sse(message)

    def close(self) -> None:
        self._broadcaster.unsubscribe(self._subscription)


class EventStreamView(APIView):
    renderer_classes = [JSONRenderer, EventStreamRenderer]

    def get(self, request: Request):
        raw_topics = request.query_params.get("topics", "")
        topics = [t.strip() for t in raw_topics.split(",") if t.strip()]

        broadcaster = get_broadcaster()
        try:
            subscription = broadcaster.subscribe(topics, request.user)
        except UnknownTopic as exc:
            return domain_error_response(exc, status.HTTP_400_BAD_REQUEST)
        except SubscriptionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)

        stream = EventStream(
            broadcaster,
            subscription,
            heartbeat_seconds=settings.REALTIME_HEARTBEAT_SECONDS,
            max_seconds=settings.REALTIME_STREAM_MAX_SECONDS,
        )
        response = StreamingHttpResponse(stream, content_type="text/event-stream")
        response["Cache-Control"] = "no-cache"
        response["X-Accel-Buffering"] = "no"
        logger.info(
            "realtime.stream_opened",
            subscription_id=str(subscription.id),
            actor_id=request.user.id,
        )
        return response
