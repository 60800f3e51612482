"""Asynchronous inventory reconciliation.

The transition path adjusts inventory in the same transaction as the
``delivered`` commit.  These tasks repair the rare case where a delivered
delivery has no ledger row (for example rows written before the ledger
existed, or manual data fixes).  Both are idempotent.
"""

import structlog
from celery import shared_task
from django.db import DatabaseError, transaction

from modules.deliveries.constants import DeliveryStatus
from modules.deliveries.models import Delivery
from modules.inventory.repositories.django_repository import InventoryDjangoRepository
from modules.inventory.services import InventorySynchronizer

logger = structlog.get_logger(__name__)


@shared_task(
    name="inventory.sync_delivery_inventory",
    autoretry_for=(DatabaseError,),
    retry_backoff=True,
    max_retries=5,
)
def sync_delivery_inventory(delivery_id: str) -> dict:
    """Apply a delivered delivery's stock, keyed by the delivery id."""
    log = logger.bind(delivery_id=delivery_id)

    delivery = Delivery.objects.filter(id=delivery_id).first()
    if delivery is None:
        log.warning("inventory.reconcile_missing_delivery")
        return {"delivery_id": delivery_id, "applied": False, "reason": "not_found"}
    if delivery.status != DeliveryStatus.DELIVERED:
        log.info("inventory.reconcile_skipped", status=delivery.status)
        return {"delivery_id": delivery_id, "applied": False, "reason": "not_delivered"}

    synchronizer = InventorySynchronizer(InventoryDjangoRepository())
    with transaction.atomic():
        _, created = synchronizer.apply(delivery)

    log.info("inventory.reconciled", applied=created)
    return {"delivery_id": delivery_id, "applied": created, "reason": ""}


@shared_task(name="inventory.reconcile_delivered_inventory")
def reconcile_delivered_inventory() -> int:
    """Enqueue ``sync_delivery_inventory`` for every unledgered delivery."""
    pending_ids = list(
        Delivery.objects.filter(
            status=DeliveryStatus.DELIVERED,
            inventory_adjustment__isnull=True,
        ).values_list("id", flat=True)
    )
    for delivery_id in pending_ids:
        sync_delivery_inventory.delay(str(delivery_id))

    logger.info("inventory.reconcile_enqueued", count=len(pending_ids))
    return len(pending_ids)
