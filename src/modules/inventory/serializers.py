"""Inventory DRF serializers (read-only)."""

from __future__ import annotations

from rest_framework import serializers

from modules.inventory.models import InventoryRecord


class InventoryRecordSerializer(serializers.ModelSerializer):
    class Meta:
        model = InventoryRecord
        fields = [
            "id",
            "owner_id",
            "item_name",
            "quantity",
            "unit",
            "category",
            "location",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields
