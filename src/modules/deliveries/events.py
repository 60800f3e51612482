"""Domain events for the Deliveries bounded context.

Events are collected on the ``Delivery`` aggregate during a transition and
flushed into the transactional outbox by the repository, inside the same
database transaction as the compare-and-set.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class DeliveryStatusChanged(DomainEvent):
    """Raised on every committed status transition."""

    previous_status: str
    status: str
    version: int
    actor_id: str
    actor_role: str


@dataclass(frozen=True, kw_only=True)
class DeliveryCompleted(DomainEvent):
    """Raised when a delivery reaches ``delivered``."""

    farmer_id: str
    transporter_id: Optional[str]
