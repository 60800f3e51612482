"""Delivery repository interface.

Extends ``IRepository[Delivery]`` with the operations the Transition
Authority needs: a version-gated compare-and-set, status history and
outbox flushing.  Location tracking adds a non-versioned position write
guarded on the delivery still being on the move.  The Service Layer
depends exclusively on this contract.
"""

from __future__ import annotations

from abc import abstractmethod
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

from modules.core.repositories.interfaces import IRepository, Queryable

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.deliveries.dtos import LocationReportDTO
    from modules.deliveries.models import (
        Delivery,
        DeliveryLocation,
        DeliveryStatusHistory,
    )


class IDeliveryRepository(IRepository["Delivery"]):
    """Repository contract for the Delivery aggregate root.

    Every status mutation goes through ``compare_and_set``; there is no
    generic ``update``.
    """

    @abstractmethod
    def create(self, data: Dict[str, Any]) -> Delivery:
        """Insert a new ``pending`` delivery at version 0."""

    @abstractmethod
    def get_by_id(self, id: str) -> Optional[Delivery]:
        """Retrieve a delivery (one row, one consistent snapshot)."""

    @abstractmethod
    def compare_and_set(
        self, id: UUID, expected_version: int, changes: Dict[str, Any]
    ) -> bool:
        """Apply *changes* and bump ``version`` iff it still equals
        *expected_version*.  Returns ``False`` when zero rows matched.
        """

    @abstractmethod
    def add_history(
        self,
        delivery_id: UUID,
        old_status: Optional[str],
        new_status: str,
        actor: Actor,
        version: int,
        notes: str = "",
    ) -> DeliveryStatusHistory:
        """Append a row to the delivery's audit trail."""

    @abstractmethod
    def record_events(self, entity: Delivery) -> int:
        """Flush the aggregate's pending domain events to the outbox."""

    # ------------------------------------------------------------------
    # Location tracking
    # ------------------------------------------------------------------

    @abstractmethod
    def record_location(
        self,
        delivery_id: UUID,
        transporter_id: str,
        report: LocationReportDTO,
        recorded_at: datetime,
    ) -> Optional[DeliveryLocation]:
        """Store a position report and make it the current location.

        Applies only while the delivery is still assigned to
        *transporter_id* and trackable; returns ``None`` otherwise.
        Never touches ``status`` or ``version``.
        """

    @abstractmethod
    def location_history(
        self, delivery_id: UUID, limit: int
    ) -> List[DeliveryLocation]:
        """Most recent position reports first."""

    @abstractmethod
    def active_locations(self, actor: Actor) -> Queryable[Delivery]:
        """Trackable deliveries with a known position, scoped to *actor*."""
