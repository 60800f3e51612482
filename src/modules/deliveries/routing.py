"""Route Resolver.

Computes great-circle distance and an ETA estimate between a delivery's
pickup and dropoff points.  While the delivery is on the move and the
transporter has reported a position, the descriptor also carries that
position and the remaining distance and ETA to the dropoff.  The resolver
never mutates anything and is deterministic for a given row snapshot.
"""

from __future__ import annotations

import math
from typing import TYPE_CHECKING

from modules.deliveries.constants import EARTH_RADIUS_KM, TRACKABLE_STATES
from modules.deliveries.dtos import CoordinatesDTO, RouteDescriptor
from modules.deliveries.exceptions import MissingCoordinates

if TYPE_CHECKING:
    from modules.deliveries.models import Delivery


def haversine_km(origin: CoordinatesDTO, destination: CoordinatesDTO) -> float:
    """Great-circle distance in kilometres between two points."""
    lat1 = math.radians(origin.latitude)
    lat2 = math.radians(destination.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(destination.longitude - origin.longitude)

    a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(
        dlon / 2
    ) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_KM * c


class RouteResolver:
    def __init__(self, average_speed_kmh: float) -> None:
        if average_speed_kmh <= 0:
            raise ValueError("Average speed must be positive.")
        self._average_speed_kmh = average_speed_kmh

    def resolve(self, delivery: Delivery) -> RouteDescriptor:
        """Build a ``RouteDescriptor`` from one consistent delivery snapshot.

        Raises:
            MissingCoordinates: either endpoint has no coordinates.
        """
        missing = []
        if not delivery.has_pickup_coordinates:
            missing.append("pickup")
        if not delivery.has_dropoff_coordinates:
            missing.append("dropoff")
        if missing:
            raise MissingCoordinates(
                f"Delivery {delivery.id} has no {' or '.join(missing)} coordinates."
            )

        pickup = CoordinatesDTO(
            latitude=delivery.pickup_latitude,
            longitude=delivery.pickup_longitude,
            address=delivery.pickup_address,
        )
        dropoff = CoordinatesDTO(
            latitude=delivery.dropoff_latitude,
            longitude=delivery.dropoff_longitude,
            address=delivery.dropoff_address,
        )
        distance = haversine_km(pickup, dropoff)

        current = None
        remaining_km = remaining_eta = None
        if delivery.has_current_location and delivery.status in TRACKABLE_STATES:
            current = CoordinatesDTO(
                latitude=delivery.current_latitude,
                longitude=delivery.current_longitude,
            )
            remaining = haversine_km(current, dropoff)
            remaining_km = round(remaining, 3)
            remaining_eta = round(self._eta_minutes(remaining), 1)

        return RouteDescriptor(
            pickup=pickup,
            dropoff=dropoff,
            distance_km=round(distance, 3),
            eta_minutes=round(self._eta_minutes(distance), 1),
            average_speed_kmh=self._average_speed_kmh,
            current=current,
            remaining_distance_km=remaining_km,
            remaining_eta_minutes=remaining_eta,
        )

    def _eta_minutes(self, distance_km: float) -> float:
        return distance_km / self._average_speed_kmh * 60
