"""Delivery DRF serializers for API input/output.

Serializers validate HTTP payloads; business rules live in the Service
Layer, which receives Pydantic DTOs from ``dtos.py``.
"""

from __future__ import annotations

from decimal import Decimal

from rest_framework import serializers

from modules.deliveries.constants import DEFAULT_UNIT, DeliveryStatus, Urgency
from modules.deliveries.models import (
    Delivery,
    DeliveryLocation,
    DeliveryStatusHistory,
)

# ---------------------------------------------------------------------------
# Input Serializers
# ---------------------------------------------------------------------------


class CoordinatesSerializer(serializers.Serializer):
    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    address = serializers.CharField(
        required=False, default="", allow_blank=True, max_length=255
    )


class CreateDeliverySerializer(serializers.Serializer):
    """Validates the delivery creation payload."""

    goods_description = serializers.CharField(max_length=255)
    quantity = serializers.DecimalField(
        max_digits=12, decimal_places=3, min_value=Decimal("0.001")
    )
    unit = serializers.CharField(required=False, default=DEFAULT_UNIT, max_length=20)
    urgency = serializers.ChoiceField(
        choices=Urgency.choices, required=False, default=Urgency.NORMAL
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)
    warehouse_id = serializers.CharField(
        required=False, allow_null=True, default=None, max_length=64
    )
    pickup = CoordinatesSerializer(required=False, allow_null=True, default=None)
    dropoff = CoordinatesSerializer(required=False, allow_null=True, default=None)


class TransitionSerializer(serializers.Serializer):
    """Validates ``PUT /deliveries/{id}/status/``."""

    status = serializers.ChoiceField(choices=DeliveryStatus.choices)
    version = serializers.IntegerField(required=False, allow_null=True, min_value=0)
    transporter_id = serializers.CharField(
        required=False, allow_null=True, max_length=64
    )
    notes = serializers.CharField(required=False, default="", allow_blank=True)


class LocationReportSerializer(serializers.Serializer):
    """Validates ``PUT /deliveries/{id}/location/``."""

    latitude = serializers.FloatField(min_value=-90, max_value=90)
    longitude = serializers.FloatField(min_value=-180, max_value=180)
    speed_kmh = serializers.FloatField(required=False, allow_null=True, min_value=0)
    heading = serializers.FloatField(
        required=False, allow_null=True, min_value=0, max_value=359.999
    )
    accuracy_m = serializers.FloatField(required=False, allow_null=True, min_value=0)


# ---------------------------------------------------------------------------
# Output Serializers (Read)
# ---------------------------------------------------------------------------


class StatusHistorySerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryStatusHistory
        fields = [
            "id",
            "old_status",
            "new_status",
            "actor_id",
            "actor_role",
            "version",
            "notes",
            "created_at",
        ]
        read_only_fields = fields


_DELIVERY_FIELDS = [
    "id",
    "farmer_id",
    "transporter_id",
    "warehouse_id",
    "status",
    "goods_description",
    "quantity",
    "unit",
    "urgency",
    "notes",
    "pickup_latitude",
    "pickup_longitude",
    "pickup_address",
    "dropoff_latitude",
    "dropoff_longitude",
    "dropoff_address",
    "current_latitude",
    "current_longitude",
    "location_updated_at",
    "assigned_at",
    "in_transit_at",
    "delivered_at",
    "cancelled_at",
    "version",
    "created_at",
    "updated_at",
]


class DeliverySerializer(serializers.ModelSerializer):
    """Read serializer for a delivery with its status history."""

    status_history = StatusHistorySerializer(many=True, read_only=True)

    class Meta:
        model = Delivery
        fields = [*_DELIVERY_FIELDS, "status_history"]
        read_only_fields = fields


class DeliveryListSerializer(serializers.ModelSerializer):
    """Lightweight serializer for listings (no nested relations)."""

    class Meta:
        model = Delivery
        fields = _DELIVERY_FIELDS
        read_only_fields = fields


class DeliveryLocationSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryLocation
        fields = [
            "latitude",
            "longitude",
            "speed_kmh",
            "heading",
            "accuracy_m",
            "recorded_at",
        ]
        read_only_fields = fields


class ActiveLocationSerializer(serializers.ModelSerializer):
    """One marker on the live map."""

    current_location = serializers.SerializerMethodField()

    class Meta:
        model = Delivery
        fields = [
            "id",
            "status",
            "goods_description",
            "farmer_id",
            "transporter_id",
            "pickup_latitude",
            "pickup_longitude",
            "dropoff_latitude",
            "dropoff_longitude",
            "current_location",
        ]
        read_only_fields = fields

    def get_current_location(self, obj: Delivery) -> dict:
        return {
            "latitude": obj.current_latitude,
            "longitude": obj.current_longitude,
            "updated_at": obj.location_updated_at,
        }
