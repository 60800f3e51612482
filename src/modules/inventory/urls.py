"""Inventory URL configuration."""

from __future__ import annotations

from rest_framework.routers import DefaultRouter

from modules.inventory.views import InventoryRecordViewSet

router = DefaultRouter(trailing_slash=True)
router.register("inventory", InventoryRecordViewSet, basename="inventory")

urlpatterns = router.urls
