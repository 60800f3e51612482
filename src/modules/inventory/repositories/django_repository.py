"""Django ORM implementation of the Inventory repository.

``apply_adjustment`` runs under ``transaction.atomic``: inside the
delivery transition it becomes a savepoint, so a failed attempt rolls
back cleanly and can be retried without aborting the outer transaction.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional, Tuple
from uuid import UUID

import structlog
from django.db import transaction
from django.db.models import F, QuerySet
from django.utils import timezone

from modules.core.authentication import Actor, Role
from modules.core.repositories.outbox import flush_domain_events
from modules.inventory.events import InventoryAdjusted
from modules.inventory.models import InventoryAdjustment, InventoryRecord
from modules.inventory.repositories.interfaces import IInventoryRepository

logger = structlog.get_logger(__name__)

OUTBOX_TOPIC = "inventory"


class InventoryDjangoRepository(IInventoryRepository):
    """Concrete Inventory repository backed by Django ORM."""

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def visible_to(self, actor: Actor) -> QuerySet[InventoryRecord]:
        if actor.role in (Role.WAREHOUSE_MANAGER, Role.ADMIN):
            return InventoryRecord.objects.all()
        if actor.role == Role.FARMER:
            return InventoryRecord.objects.filter(owner_id=actor.id)
        return InventoryRecord.objects.none()

    def get_adjustment(self, delivery_id: UUID) -> Optional[InventoryAdjustment]:
        return (
            InventoryAdjustment.objects.select_related("inventory_record")
            .filter(delivery_id=delivery_id)
            .first()
        )

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    @transaction.atomic
    def apply_adjustment(
        self,
        *,
        delivery_id: UUID,
        owner_id: str,
        item_name: str,
        location: str,
        quantity: Decimal,
        unit: str,
        category: str,
    ) -> Tuple[InventoryAdjustment, bool]:
        log = logger.bind(delivery_id=str(delivery_id), owner_id=owner_id)

        existing = self.get_adjustment(delivery_id)
        if existing is not None:
            log.info("inventory.adjustment_already_applied")
            return existing, False

        record = (
            InventoryRecord.objects.select_for_update()
            .filter(owner_id=owner_id, item_name=item_name, location=location)
            .first()
        )
        if record is None:
            record = InventoryRecord.objects.create(
                owner_id=owner_id,
                item_name=item_name,
                location=location,
                unit=unit,
                category=category,
            )
            log.info("inventory.record_created", record_id=str(record.id))

        InventoryRecord.objects.filter(pk=record.pk).update(
            quantity=F("quantity") + quantity,
            updated_at=timezone.now(),
        )
        record.refresh_from_db()

        adjustment = InventoryAdjustment.objects.create(
            delivery_id=delivery_id,
            inventory_record=record,
            quantity=quantity,
        )

        record.add_domain_event(
            InventoryAdjusted(
                aggregate_id=record.id,
                delivery_id=delivery_id,
                owner_id=owner_id,
                item_name=item_name,
                quantity=quantity,
                location=location,
            )
        )
        flush_domain_events(record, OUTBOX_TOPIC)

        log.info(
            "inventory.adjusted",
            record_id=str(record.id),
            quantity=str(quantity),
            new_total=str(record.quantity),
        )
        return adjustment, True
