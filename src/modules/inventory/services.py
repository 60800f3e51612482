"""Inventory service layer.

``InventorySynchronizer`` turns a ``delivered`` delivery into a stock
increase for the delivery's farmer.  The delivery id is the idempotency
key: applying the same delivery again returns the original adjustment
and changes nothing.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Tuple

import structlog

from modules.core.authentication import Role
from modules.deliveries.constants import DeliveryStatus
from modules.inventory.constants import CATEGORY_KEYWORDS, ItemCategory
from modules.inventory.exceptions import InventoryAccessForbidden

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.core.repositories.interfaces import Queryable
    from modules.deliveries.models import Delivery
    from modules.inventory.models import InventoryAdjustment, InventoryRecord
    from modules.inventory.repositories.interfaces import IInventoryRepository

logger = structlog.get_logger(__name__)


def categorize_item(item_name: str) -> str:
    """Derive a coarse category from an item name by keyword match."""
    name = item_name.lower()
    for category, keywords in CATEGORY_KEYWORDS.items():
        if any(keyword in name for keyword in keywords):
            return category
    return ItemCategory.OTHER


class InventorySynchronizer:
    """Applies a delivered delivery's quantity to inventory, once."""

    def __init__(self, inventory_repository: IInventoryRepository) -> None:
        self._inventory_repo = inventory_repository

    def apply(self, delivery: Delivery) -> Tuple[InventoryAdjustment, bool]:
        """Add the delivery's quantity to its farmer's stock.

        Runs inside the caller's transaction.  Returns
        ``(adjustment, created)``.

        Raises:
            ValueError: the delivery is not ``delivered``.
            DatabaseError: the attempt failed and was rolled back to its
                savepoint; the caller may retry.
        """
        if delivery.status != DeliveryStatus.DELIVERED:
            raise ValueError(
                f"Delivery {delivery.id} is {delivery.status}, not delivered."
            )

        log = logger.bind(delivery_id=str(delivery.id))
        log.info("inventory.sync_started")

        adjustment, created = self._inventory_repo.apply_adjustment(
            delivery_id=delivery.id,
            owner_id=delivery.farmer_id,
            item_name=delivery.goods_description,
            location=delivery.inventory_location,
            quantity=delivery.quantity,
            unit=delivery.unit,
            category=categorize_item(delivery.goods_description),
        )

        log.info("inventory.sync_finished", applied=created)
        return adjustment, created


class InventoryService:
    """Read-side use cases for inventory records."""

    def __init__(self, inventory_repository: IInventoryRepository) -> None:
        self._inventory_repo = inventory_repository

    def list_records(self, actor: Actor) -> Queryable[InventoryRecord]:
        """Records visible to *actor*.

        Raises:
            InventoryAccessForbidden: transporters have no inventory view.
        """
        if actor.role == Role.TRANSPORTER:
            raise InventoryAccessForbidden(
                "Transporters cannot view inventory records."
            )
        return self._inventory_repo.visible_to(actor)
