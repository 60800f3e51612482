"""Domain events for the Inventory bounded context."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from shared.domain.events import DomainEvent


@dataclass(frozen=True, kw_only=True)
class InventoryAdjusted(DomainEvent):
    """Raised when a delivered delivery's quantity is added to stock."""

    delivery_id: UUID
    owner_id: str
    item_name: str
    quantity: Decimal
    location: str
