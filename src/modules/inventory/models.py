"""InventoryRecord and InventoryAdjustment models.

Business rules implemented:
- One record per ``(owner_id, item_name, location)``.
- Quantities only grow through a delivery adjustment; the record is
  never written by API clients.
- ``InventoryAdjustment.delivery`` is unique: a delivery's stock is
  applied at most once, whatever the number of attempts.
"""

from __future__ import annotations

from decimal import Decimal

from django.db import models

from modules.core.models import BaseModel
from modules.deliveries.constants import DEFAULT_UNIT
from modules.inventory.constants import ItemCategory
from shared.domain.events import DomainEventMixin


class InventoryRecord(DomainEventMixin, BaseModel):
    """Stock of one item held for one farmer at one location."""

    owner_id: models.CharField = models.CharField(max_length=64, db_index=True)
    item_name: models.CharField = models.CharField(max_length=255)
    quantity: models.DecimalField = models.DecimalField(
        max_digits=14, decimal_places=3, default=Decimal("0")
    )
    unit: models.CharField = models.CharField(max_length=20, default=DEFAULT_UNIT)
    category: models.CharField = models.CharField(
        max_length=20,
        choices=ItemCategory.choices,
        default=ItemCategory.OTHER,
    )
    location: models.CharField = models.CharField(max_length=255)

    class Meta:
        db_table = "inventory_records"
        ordering = ["item_name", "location"]
        constraints = [
            models.UniqueConstraint(
                fields=["owner_id", "item_name", "location"],
                name="inventory_owner_item_location_unique",
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__gte=0),
                name="inventory_quantity_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.item_name} @ {self.location}: {self.quantity} {self.unit}"


class InventoryAdjustment(BaseModel):
    """Idempotency ledger: one row per delivery whose stock was applied."""

    delivery: models.OneToOneField = models.OneToOneField(
        "deliveries.Delivery",
        on_delete=models.PROTECT,
        related_name="inventory_adjustment",
    )
    inventory_record: models.ForeignKey = models.ForeignKey(
        InventoryRecord,
        on_delete=models.PROTECT,
        related_name="adjustments",
    )
    quantity: models.DecimalField = models.DecimalField(
        max_digits=12, decimal_places=3
    )

    class Meta:
        db_table = "inventory_adjustments"
        ordering = ["created_at"]

    def __str__(self) -> str:
        return f"+{self.quantity} from delivery {self.delivery_id}"
