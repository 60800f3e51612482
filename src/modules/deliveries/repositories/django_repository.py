"""Django ORM implementation of the Delivery repository.

Concurrency control is optimistic: ``compare_and_set`` issues a single
``UPDATE ... WHERE id = %s AND version = %s`` and reports whether a row
matched.  No row locks are held between the read and the write.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID

import structlog
from django.core.exceptions import ValidationError
from django.db import transaction
from django.db.models import F, Q, QuerySet
from django.utils import timezone

from modules.core.authentication import Actor, Role
from modules.core.repositories.outbox import flush_domain_events
from modules.deliveries.constants import (
    LOCATION_HISTORY_LIMIT,
    TERMINAL_STATES,
    TRACKABLE_STATES,
    DeliveryStatus,
)
from modules.deliveries.models import (
    Delivery,
    DeliveryLocation,
    DeliveryStatusHistory,
)
from modules.deliveries.repositories.interfaces import IDeliveryRepository

if TYPE_CHECKING:
    from modules.deliveries.dtos import LocationReportDTO

logger = structlog.get_logger(__name__)

OUTBOX_TOPIC = "deliveries"


class DeliveryDjangoRepository(IDeliveryRepository):
    """Concrete Delivery repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    @transaction.atomic
    def create(self, data: Dict[str, Any]) -> Delivery:
        delivery = Delivery(status=DeliveryStatus.PENDING, version=0, **data)
        delivery.save()
        logger.info("delivery.persisted", delivery_id=str(delivery.id))
        return delivery

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get_by_id(self, id: str) -> Optional[Delivery]:
        """Returns ``None`` for non-existent or malformed IDs."""
        try:
            return (
                Delivery.objects.prefetch_related("status_history")
                .filter(id=id)
                .first()
            )
        except (ValueError, ValidationError):
            return None

    def visible_to(self, actor: Actor) -> QuerySet[Delivery]:
        """Listing scope per role.

        - farmer: own deliveries.
        - transporter: assigned to them and not terminal, plus unassigned
          ``pending`` deliveries open for pickup.
        - warehouse_manager / admin: everything.
        """
        queryset = Delivery.objects.all()
        if actor.role in (Role.WAREHOUSE_MANAGER, Role.ADMIN):
            return queryset
        if actor.role == Role.FARMER:
            return queryset.filter(farmer_id=actor.id)
        if actor.role == Role.TRANSPORTER:
            return queryset.filter(
                (Q(transporter_id=actor.id) & ~Q(status__in=TERMINAL_STATES))
                | Q(transporter_id__isnull=True, status=DeliveryStatus.PENDING)
            )
        return queryset.none()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def compare_and_set(
        self, id: UUID, expected_version: int, changes: Dict[str, Any]
    ) -> bool:
        updated = Delivery.objects.filter(id=id, version=expected_version).update(
            version=F("version") + 1,
            updated_at=timezone.now(),
            **changes,
        )
        log = logger.bind(delivery_id=str(id), expected_version=expected_version)
        if updated:
            log.info("delivery.cas_applied")
        else:
            log.info("delivery.cas_rejected")
        return bool(updated)

    def add_history(
        self,
        delivery_id: UUID,
        old_status: Optional[str],
        new_status: str,
        actor: Actor,
        version: int,
        notes: str = "",
    ) -> DeliveryStatusHistory:
        history = DeliveryStatusHistory.objects.create(
            delivery_id=delivery_id,
            old_status=old_status,
            new_status=new_status,
            actor_id=actor.id,
            actor_role=actor.role,
            version=version,
            notes=notes,
        )
        logger.info(
            "delivery.history_added",
            delivery_id=str(delivery_id),
            old_status=old_status,
            new_status=new_status,
            version=version,
        )
        return history

    def record_events(self, entity: Delivery) -> int:
        return flush_domain_events(entity, OUTBOX_TOPIC)

    # ------------------------------------------------------------------
    # Location tracking
    # ------------------------------------------------------------------

    @transaction.atomic
    def record_location(
        self,
        delivery_id: UUID,
        transporter_id: str,
        report: LocationReportDTO,
        recorded_at: datetime,
    ) -> Optional[DeliveryLocation]:
        log = logger.bind(
            delivery_id=str(delivery_id), transporter_id=transporter_id
        )
        # Guarded update: a transition that committed after the caller's
        # read leaves zero matching rows.
        updated = Delivery.objects.filter(
            id=delivery_id,
            transporter_id=transporter_id,
            status__in=TRACKABLE_STATES,
        ).update(
            current_latitude=report.latitude,
            current_longitude=report.longitude,
            location_updated_at=recorded_at,
        )
        if not updated:
            log.info("delivery.location_rejected")
            return None

        location = DeliveryLocation.objects.create(
            delivery_id=delivery_id,
            transporter_id=transporter_id,
            latitude=report.latitude,
            longitude=report.longitude,
            speed_kmh=report.speed_kmh,
            heading=report.heading,
            accuracy_m=report.accuracy_m,
            recorded_at=recorded_at,
        )
        stale = DeliveryLocation.objects.filter(delivery_id=delivery_id).values_list(
            "id", flat=True
        )[LOCATION_HISTORY_LIMIT:]
        pruned, _ = DeliveryLocation.objects.filter(id__in=list(stale)).delete()
        log.info("delivery.location_recorded", pruned=pruned)
        return location

    def location_history(
        self, delivery_id: UUID, limit: int
    ) -> List[DeliveryLocation]:
        return list(DeliveryLocation.objects.filter(delivery_id=delivery_id)[:limit])

    def active_locations(self, actor: Actor) -> QuerySet[Delivery]:
        """Role scoping for the live map.

        - farmer: own deliveries.
        - transporter: deliveries assigned to them.
        - warehouse_manager / admin: everything.
        """
        queryset = Delivery.objects.filter(
            status__in=TRACKABLE_STATES, current_latitude__isnull=False
        )
        if actor.role in (Role.WAREHOUSE_MANAGER, Role.ADMIN):
            return queryset
        if actor.role == Role.FARMER:
            return queryset.filter(farmer_id=actor.id)
        if actor.role == Role.TRANSPORTER:
            return queryset.filter(transporter_id=actor.id)
        return queryset.none()
