"""Event Broadcaster: in-process fan-out of committed changes.

Delivery is at-most-once with no persistence and no replay.  Each
subscriber owns a bounded FIFO queue; ``publish`` enqueues with
``put_nowait`` and drops the message for any subscriber whose queue is
full, so a slow consumer never blocks the publisher or other consumers.

Payloads that carry a ``deliveryId`` and a ``version`` are sequenced per
topic and delivery: a message whose version is not newer than the last
one published for that delivery is dropped, so subscribers observe
strictly increasing versions even when commit callbacks from concurrent
requests run out of order.

The broadcaster instance is owned by the ``realtime`` app config (see
``modules.realtime.apps``); use ``get_broadcaster()`` to reach it.
"""

from __future__ import annotations

import queue
import threading
from collections import OrderedDict, defaultdict
from dataclasses import dataclass, field
from functools import partial
from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    Iterable,
    Iterator,
    List,
    Optional,
    Tuple,
    Union,
)
from uuid import UUID, uuid4

import structlog
from django.apps import apps
from django.db import transaction

from modules.realtime.exceptions import SubscriptionForbidden, UnknownTopic
from modules.realtime.topics import ALL_TOPICS, can_subscribe, is_visible

if TYPE_CHECKING:
    from modules.core.authentication import Actor

logger = structlog.get_logger(__name__)

DEFAULT_QUEUE_SIZE = 100
POLL_INTERVAL_SECONDS = 0.5
SEQUENCE_CACHE_SIZE = 10_000


@dataclass(frozen=True)
class Message:
    topic: str
    payload: Dict[str, Any]


@dataclass(eq=False)
class Subscription:
    """One live consumer of one or more topics.

    Iterating a subscription blocks until messages arrive and stops once
    it has been unsubscribed.
    """

    topics: frozenset
    actor: Actor
    queue_size: int = DEFAULT_QUEUE_SIZE
    id: UUID = field(default_factory=uuid4)
    closed: bool = False

    def __post_init__(self) -> None:
        self._queue: queue.Queue[Message] = queue.Queue(maxsize=self.queue_size)

    def offer(self, message: Message) -> bool:
        """Enqueue without blocking; ``False`` when the queue is full."""
        try:
            self._queue.put_nowait(message)
        except queue.Full:
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Optional[Message]:
        """Next message, or ``None`` if nothing arrived within *timeout*."""
        try:
            if timeout is not None and timeout <= 0:
                return self._queue.get_nowait()
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def pending(self) -> int:
        return self._queue.qsize()

    def __iter__(self) -> Iterator[Message]:
        while not self.closed:
            message = self.get(timeout=POLL_INTERVAL_SECONDS)
            if message is not None:
                yield message


class EventBroadcaster:
    """Topic registry plus non-blocking publish."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        if queue_size < 1:
            raise ValueError("Subscriber queue size must be at least 1.")
        self._queue_size = queue_size
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[Subscription]] = defaultdict(list)
        self._publish_lock = threading.Lock()
        self._last_versions: OrderedDict[Tuple[str, str], int] = OrderedDict()

    # ------------------------------------------------------------------
    # Subscriber lifecycle
    # ------------------------------------------------------------------

    def subscribe(
        self, topics: Union[str, Iterable[str]], actor: Actor
    ) -> Subscription:
        """Register *actor* on *topics*.

        Raises:
            UnknownTopic: a topic is not one of ``ALL_TOPICS``.
            SubscriptionForbidden: the actor's role may not see a topic.
        """
        wanted = frozenset([topics] if isinstance(topics, str) else topics)
        if not wanted:
            raise UnknownTopic("At least one topic is required.")
        unknown = sorted(wanted - ALL_TOPICS)
        if unknown:
            raise UnknownTopic(f"Unknown topic(s): {', '.join(unknown)}.")
        denied = sorted(t for t in wanted if not can_subscribe(t, actor))
        if denied:
            raise SubscriptionForbidden(
                f"Role '{actor.role}' may not subscribe to: {', '.join(denied)}."
            )

        subscription = Subscription(
            topics=wanted, actor=actor, queue_size=self._queue_size
        )
        with self._lock:
            for topic in wanted:
                self._subscribers[topic].append(subscription)

        logger.info(
            "realtime.subscribed",
            subscription_id=str(subscription.id),
            actor_id=actor.id,
            topics=sorted(wanted),
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Remove *subscription* from every topic.  Safe to call twice."""
        with self._lock:
            if subscription.closed:
                return
            subscription.closed = True
            for topic in subscription.topics:
                subscribers = self._subscribers.get(topic, [])
                if subscription in subscribers:
                    subscribers.remove(subscription)
                if not subscribers:
                    self._subscribers.pop(topic, None)

        logger.info("realtime.unsubscribed", subscription_id=str(subscription.id))

    def subscriber_count(self, topic: Optional[str] = None) -> int:
        with self._lock:
            if topic is not None:
                return len(self._subscribers.get(topic, []))
            return len({s.id for subs in self._subscribers.values() for s in subs})

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    def publish(self, topic: str, payload: Dict[str, Any]) -> int:
        """Fan *payload* out to visible subscribers of *topic*.

        Returns the number of subscribers that received it.  Never blocks
        and never raises into the caller.
        """
        try:
            return self._publish(topic, payload)
        except Exception:
            logger.exception("realtime.publish_failed", topic=topic)
            return 0

    def publish_on_commit(self, topic: str, payload: Dict[str, Any]) -> None:
        """Publish once the current transaction commits.

        Outside a transaction the callback runs immediately.  A failing
        callback is logged by Django and never affects the commit.
        """
        transaction.on_commit(partial(self.publish, topic, payload), robust=True)

    def _publish(self, topic: str, payload: Dict[str, Any]) -> int:
        # Sequencing and fan-out share one lock so two publishers for the
        # same delivery cannot interleave their enqueues.
        with self._publish_lock:
            if not self._advance_sequence(topic, payload):
                logger.info(
                    "realtime.stale_event_dropped",
                    topic=topic,
                    delivery_id=payload.get("deliveryId"),
                    version=payload.get("version"),
                )
                return 0
            return self._fan_out(topic, payload)

    def _advance_sequence(self, topic: str, payload: Dict[str, Any]) -> bool:
        """Record the payload's version; ``False`` if it is not newer."""
        delivery_id = payload.get("deliveryId")
        version = payload.get("version")
        if delivery_id is None or version is None:
            return True

        key = (topic, str(delivery_id))
        last = self._last_versions.get(key)
        if last is not None and version <= last:
            return False
        self._last_versions[key] = version
        self._last_versions.move_to_end(key)
        while len(self._last_versions) > SEQUENCE_CACHE_SIZE:
            self._last_versions.popitem(last=False)
        return True

    def _fan_out(self, topic: str, payload: Dict[str, Any]) -> int:
        with self._lock:
            subscribers = list(self._subscribers.get(topic, []))

        if not subscribers:
            logger.debug("realtime.no_subscribers", topic=topic)
            return 0

        message = Message(topic=topic, payload=payload)
        delivered = 0
        for subscription in subscribers:
            if not is_visible(topic, payload, subscription.actor):
                continue
            if subscription.offer(message):
                delivered += 1
            else:
                logger.warning(
                    "realtime.event_dropped",
                    topic=topic,
                    subscription_id=str(subscription.id),
                    reason="queue_full",
                )
        return delivered


def get_broadcaster() -> EventBroadcaster:
    """The process-wide broadcaster owned by the ``realtime`` app."""
    return apps.get_app_config("realtime").broadcaster
