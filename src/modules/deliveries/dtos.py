"""Delivery DTOs for the Service Layer.

Framework-agnostic data transfer objects using Pydantic v2.  They carry
the pure validation step (status membership, coordinate ranges, id
shape) so it stays separate from persistence.  DTOs are immutable
(``frozen=True``).

- ``TransitionRequestDTO``: input for a status transition.
- ``CreateDeliveryDTO``: input for delivery creation.
- ``CoordinatesDTO``: one validated point.
- ``LocationReportDTO``: a transporter position report.
- ``RouteDescriptor``: output of the Route Resolver.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from modules.deliveries.constants import DEFAULT_UNIT, DeliveryStatus, Urgency

ACTOR_ID_MAX_LENGTH = 64


def _clean_actor_id(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    if not value:
        raise ValueError("Identifier must not be blank.")
    if len(value) > ACTOR_ID_MAX_LENGTH:
        raise ValueError(
            f"Identifier must be at most {ACTOR_ID_MAX_LENGTH} characters."
        )
    return value


# ---------------------------------------------------------------------------
# Input DTOs
# ---------------------------------------------------------------------------


class TransitionRequestDTO(BaseModel):
    """Immutable DTO for a status transition request.

    ``expected_version`` is optional: when omitted the service uses the
    version it just read.
    """

    model_config = ConfigDict(frozen=True)

    status: str
    expected_version: Optional[int] = Field(default=None, ge=0)
    transporter_id: Optional[str] = None
    notes: str = ""

    @field_validator("status")
    @classmethod
    def status_must_be_known(cls, v: str) -> str:
        if v not in DeliveryStatus.values:
            raise ValueError(f"Unknown status '{v}'.")
        return v

    @field_validator("transporter_id")
    @classmethod
    def transporter_id_shape(cls, v: Optional[str]) -> Optional[str]:
        return _clean_actor_id(v)


class CoordinatesDTO(BaseModel):
    """A validated geographic point."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    address: str = ""


class LocationReportDTO(BaseModel):
    """Immutable DTO for a transporter position report."""

    model_config = ConfigDict(frozen=True)

    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
    speed_kmh: Optional[float] = Field(default=None, ge=0)
    heading: Optional[float] = Field(default=None, ge=0, lt=360)
    accuracy_m: Optional[float] = Field(default=None, ge=0)


class CreateDeliveryDTO(BaseModel):
    """Immutable DTO for delivery creation requests."""

    model_config = ConfigDict(frozen=True)

    farmer_id: str
    goods_description: str = Field(min_length=1, max_length=255)
    quantity: Decimal = Field(gt=0, max_digits=12, decimal_places=3)
    unit: str = DEFAULT_UNIT
    urgency: str = Urgency.NORMAL
    notes: str = ""
    warehouse_id: Optional[str] = None
    pickup: Optional[CoordinatesDTO] = None
    dropoff: Optional[CoordinatesDTO] = None

    @field_validator("farmer_id", "warehouse_id")
    @classmethod
    def actor_id_shape(cls, v: Optional[str]) -> Optional[str]:
        return _clean_actor_id(v)

    @field_validator("urgency")
    @classmethod
    def urgency_must_be_known(cls, v: str) -> str:
        if v not in Urgency.values:
            raise ValueError(f"Unknown urgency '{v}'.")
        return v

    @model_validator(mode="after")
    def goods_description_not_blank(self):
        if not self.goods_description.strip():
            raise ValueError("Goods description must not be blank.")
        return self


# ---------------------------------------------------------------------------
# Output DTOs
# ---------------------------------------------------------------------------


class RouteDescriptor(BaseModel):
    """Immutable result of resolving a delivery's route."""

    model_config = ConfigDict(frozen=True)

    pickup: CoordinatesDTO
    dropoff: CoordinatesDTO
    distance_km: float
    eta_minutes: float
    average_speed_kmh: float
    current: Optional[CoordinatesDTO] = None
    remaining_distance_km: Optional[float] = None
    remaining_eta_minutes: Optional[float] = None

    def as_response(self) -> dict:
        """Shape used by ``GET /deliveries/{id}/route/``."""
        return {
            "pickup": {"coordinates": self._point(self.pickup)},
            "delivery": {"coordinates": self._point(self.dropoff)},
            "distanceKm": self.distance_km,
            "etaMinutes": self.eta_minutes,
            "averageSpeedKmh": self.average_speed_kmh,
            "currentLocation": (
                {
                    "coordinates": self._point(self.current),
                    "remainingDistanceKm": self.remaining_distance_km,
                    "remainingEtaMinutes": self.remaining_eta_minutes,
                }
                if self.current is not None
                else None
            ),
        }

    @staticmethod
    def _point(point: CoordinatesDTO) -> dict:
        return {
            "latitude": point.latitude,
            "longitude": point.longitude,
            "address": point.address,
        }
