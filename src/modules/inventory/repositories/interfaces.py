"""Inventory repository interface."""

from __future__ import annotations

from abc import abstractmethod
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, Tuple
from uuid import UUID

from modules.core.repositories.interfaces import IRepository

if TYPE_CHECKING:
    from modules.inventory.models import InventoryAdjustment, InventoryRecord


class IInventoryRepository(IRepository["InventoryRecord"]):
    """Repository contract for inventory records and the adjustment ledger."""

    @abstractmethod
    def get_adjustment(self, delivery_id: UUID) -> Optional[InventoryAdjustment]:
        """The ledger row for *delivery_id*, if its stock was applied."""

    @abstractmethod
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
        """Add *quantity* to the matching record exactly once per delivery.

        Returns ``(adjustment, created)``; ``created`` is ``False`` when the
        ledger already held a row for *delivery_id*.
        """
