"""Delivery, DeliveryStatusHistory and DeliveryLocation models.

Business rules implemented:
- Status only moves along ``VALID_TRANSITIONS`` (enforced by the
  transition service, never by ``save()``).
- Every committed transition bumps ``version`` by exactly one; the
  version is the optimistic-concurrency token for compare-and-set.
- Each lifecycle timestamp is stamped once, by the transition that
  reaches the corresponding status.
- ``transporter_id`` is set before a delivery can be ``in_transit``.
- Pickup and dropoff coordinates live on the same row so a single read
  is a consistent snapshot of both endpoints.
- Coordinates are either unset or within range, enforced by check
  constraints as well as by the DTOs.
- Location reports never touch status or ``version``; they are a
  separate, non-versioned write (see ``DeliveryLocation``).
- Deliveries are never deleted; terminal rows are immutable.
"""

from __future__ import annotations

from decimal import Decimal

from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models

from modules.core.models import BaseModel
from modules.deliveries.constants import (
    DEFAULT_UNIT,
    VALID_TRANSITIONS,
    DeliveryStatus,
    Urgency,
)
from shared.domain.events import DomainEventMixin

_LATITUDE_VALIDATORS = [MinValueValidator(-90), MaxValueValidator(90)]
_LONGITUDE_VALIDATORS = [MinValueValidator(-180), MaxValueValidator(180)]


def _coordinate_in_range(field: str, bound: int, name: str) -> models.CheckConstraint:
    """``field`` is either unset or within ``[-bound, bound]``."""
    return models.CheckConstraint(
        condition=models.Q(**{f"{field}__isnull": True})
        | models.Q(**{f"{field}__gte": -bound, f"{field}__lte": bound}),
        name=name,
    )


class Delivery(DomainEventMixin, BaseModel):
    """Delivery aggregate root.

    Actor ids (``farmer_id``, ``transporter_id``, ``warehouse_id``) are
    opaque identifiers issued by the Identity Service; this module owns no
    user table and therefore stores them as plain strings.
    """

    farmer_id: models.CharField = models.CharField(max_length=64, db_index=True)
    transporter_id: models.CharField = models.CharField(  # noqa: DJ01
        max_length=64, null=True, blank=True, default=None, db_index=True
    )
    warehouse_id: models.CharField = models.CharField(  # noqa: DJ01
        max_length=64, null=True, blank=True, default=None
    )
    status: models.CharField = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
        default=DeliveryStatus.PENDING,
    )
    goods_description: models.CharField = models.CharField(max_length=255)
    quantity: models.DecimalField = models.DecimalField(
        max_digits=12,
        decimal_places=3,
        validators=[MinValueValidator(Decimal("0.001"))],
    )
    unit: models.CharField = models.CharField(max_length=20, default=DEFAULT_UNIT)
    urgency: models.CharField = models.CharField(
        max_length=10,
        choices=Urgency.choices,
        default=Urgency.NORMAL,
    )
    notes: models.TextField = models.TextField(blank=True, default="")

    pickup_latitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LATITUDE_VALIDATORS
    )
    pickup_longitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LONGITUDE_VALIDATORS
    )
    pickup_address: models.CharField = models.CharField(
        max_length=255, blank=True, default=""
    )
    dropoff_latitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LATITUDE_VALIDATORS
    )
    dropoff_longitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LONGITUDE_VALIDATORS
    )
    dropoff_address: models.CharField = models.CharField(
        max_length=255, blank=True, default=""
    )

    # Last position reported by the assigned transporter.
    current_latitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LATITUDE_VALIDATORS
    )
    current_longitude: models.FloatField = models.FloatField(
        null=True, blank=True, validators=_LONGITUDE_VALIDATORS
    )
    location_updated_at: models.DateTimeField = models.DateTimeField(
        null=True, blank=True
    )

    assigned_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    in_transit_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    delivered_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)
    cancelled_at: models.DateTimeField = models.DateTimeField(null=True, blank=True)

    version: models.PositiveIntegerField = models.PositiveIntegerField(default=0)

    class Meta:
        db_table = "deliveries"
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status"], name="deliveries_status_idx"),
            models.Index(fields=["-created_at"], name="deliveries_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(quantity__gt=0),
                name="deliveries_quantity_positive",
            ),
            models.CheckConstraint(
                condition=~models.Q(status=DeliveryStatus.IN_TRANSIT)
                | models.Q(transporter_id__isnull=False),
                name="deliveries_in_transit_has_transporter",
            ),
            _coordinate_in_range("pickup_latitude", 90, "deliveries_pickup_lat_range"),
            _coordinate_in_range(
                "pickup_longitude", 180, "deliveries_pickup_lng_range"
            ),
            _coordinate_in_range(
                "dropoff_latitude", 90, "deliveries_dropoff_lat_range"
            ),
            _coordinate_in_range(
                "dropoff_longitude", 180, "deliveries_dropoff_lng_range"
            ),
            _coordinate_in_range(
                "current_latitude", 90, "deliveries_current_lat_range"
            ),
            _coordinate_in_range(
                "current_longitude", 180, "deliveries_current_lng_range"
            ),
        ]

    # ------------------------------------------------------------------
    # State Machine helpers
    # ------------------------------------------------------------------

    def can_transition_to(self, new_status: str) -> bool:
        """Check whether transitioning to *new_status* is a graph edge."""
        allowed = VALID_TRANSITIONS.get(self.status, set())
        return new_status in allowed

    # ------------------------------------------------------------------
    # Coordinates
    # ------------------------------------------------------------------

    @property
    def has_pickup_coordinates(self) -> bool:
        return self.pickup_latitude is not None and self.pickup_longitude is not None

    @property
    def has_dropoff_coordinates(self) -> bool:
        return (
            self.dropoff_latitude is not None and self.dropoff_longitude is not None
        )

    @property
    def has_current_location(self) -> bool:
        return (
            self.current_latitude is not None and self.current_longitude is not None
        )

    @property
    def inventory_location(self) -> str:
        """Where delivered goods are held: warehouse, else dropoff address."""
        return self.warehouse_id or self.dropoff_address or "unassigned"

    # ------------------------------------------------------------------
    # Display
    # ------------------------------------------------------------------

    def __str__(self) -> str:
        return f"{self.goods_description} ({self.status}, v{self.version})"


class DeliveryStatusHistory(BaseModel):
    """Append-only audit trail for delivery status transitions.

    Written in the same transaction as the compare-and-set that produced
    ``version``.  Rows are immutable: never edited, never deleted.
    """

    delivery: models.ForeignKey = models.ForeignKey(
        "deliveries.Delivery",
        on_delete=models.PROTECT,
        related_name="status_history",
    )
    old_status: models.CharField = models.CharField(  # noqa: DJ01
        max_length=20,
        choices=DeliveryStatus.choices,
        null=True,
        blank=True,
    )
    new_status: models.CharField = models.CharField(
        max_length=20,
        choices=DeliveryStatus.choices,
    )
    actor_id: models.CharField = models.CharField(max_length=64)
    actor_role: models.CharField = models.CharField(max_length=32)
    version: models.PositiveIntegerField = models.PositiveIntegerField()
    notes: models.TextField = models.TextField(blank=True, default="")

    class Meta:
        db_table = "delivery_status_history"
        ordering = ["version"]
        constraints = [
            models.UniqueConstraint(
                fields=["delivery", "version"],
                name="dsh_delivery_version_unique",
            ),
        ]

    def __str__(self) -> str:
        return f"{self.delivery_id} : {self.old_status} -> {self.new_status}"


class DeliveryLocation(BaseModel):
    """One position report from the assigned transporter.

    Only the most recent ``LOCATION_HISTORY_LIMIT`` reports are kept per
    delivery; older rows are pruned by the repository on insert.
    """

    delivery: models.ForeignKey = models.ForeignKey(
        "deliveries.Delivery",
        on_delete=models.CASCADE,
        related_name="location_history",
    )
    transporter_id: models.CharField = models.CharField(max_length=64)
    latitude: models.FloatField = models.FloatField(validators=_LATITUDE_VALIDATORS)
    longitude: models.FloatField = models.FloatField(validators=_LONGITUDE_VALIDATORS)
    speed_kmh: models.FloatField = models.FloatField(null=True, blank=True)
    heading: models.FloatField = models.FloatField(null=True, blank=True)
    accuracy_m: models.FloatField = models.FloatField(null=True, blank=True)
    recorded_at: models.DateTimeField = models.DateTimeField()

    class Meta:
        db_table = "delivery_locations"
        ordering = ["-recorded_at", "-id"]
        indexes = [
            models.Index(
                fields=["delivery", "-recorded_at"],
                name="delivery_locations_recent_idx",
            ),
        ]
        constraints = [
            _coordinate_in_range("latitude", 90, "delivery_locations_lat_range"),
            _coordinate_in_range("longitude", 180, "delivery_locations_lng_range"),
        ]

    def __str__(self) -> str:
        return f"{self.delivery_id} @ ({self.latitude}, {self.longitude})"
