"""Delivery domain constants.

Defines status choices, the transition graph of the delivery state
machine and the timestamp column each transition stamps.
"""

from django.db import models


class DeliveryStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    ASSIGNED = "assigned", "Assigned"
    IN_TRANSIT = "in_transit", "In transit"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


class Urgency(models.TextChoices):
    LOW = "low", "Low"
    NORMAL = "normal", "Normal"
    HIGH = "high", "High"
    URGENT = "urgent", "Urgent"


VALID_TRANSITIONS: dict[str, set[str]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED},
    DeliveryStatus.ASSIGNED: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}

TERMINAL_STATES: set[str] = {DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED}

STATUS_TIMESTAMP_FIELDS: dict[str, str] = {
    DeliveryStatus.ASSIGNED: "assigned_at",
    DeliveryStatus.IN_TRANSIT: "in_transit_at",
    DeliveryStatus.DELIVERED: "delivered_at",
    DeliveryStatus.CANCELLED: "cancelled_at",
}

DEFAULT_UNIT = "units"
EARTH_RADIUS_KM = 6371.0

# Location reports are accepted only while goods are on the move.
TRACKABLE_STATES: set[str] = {DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT}
LOCATION_HISTORY_LIMIT = 100
