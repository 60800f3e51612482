"""In-memory collaborators for Transition Authority unit tests."""

from __future__ import annotations

import copy
import threading
from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace
from uuid import uuid4

import pytest
from django.db import DatabaseError

from modules.deliveries.constants import TRACKABLE_STATES, DeliveryStatus
from modules.deliveries.models import Delivery, DeliveryLocation
from modules.deliveries.permissions import can_track, can_view
from modules.deliveries.repositories.interfaces import IDeliveryRepository
from modules.deliveries.services import (
    DeliveryTrackingService,
    DeliveryTransitionService,
)


class InMemoryDeliveryRepository(IDeliveryRepository):
    """Stores unsaved ``Delivery`` instances; CAS is guarded by a lock."""

    def __init__(self, *deliveries: Delivery) -> None:
        self._lock = threading.Lock()
        self._rows = {str(d.id): d for d in deliveries}
        self.history: list[dict] = []
        self.events: list = []
        self.locations: list[DeliveryLocation] = []
        self.cas_calls = 0

    def create(self, data):
        delivery = Delivery(status=DeliveryStatus.PENDING, version=0, **data)
        self._rows[str(delivery.id)] = delivery
        return delivery

    def get_by_id(self, id):
        with self._lock:
            row = self._rows.get(str(id))
            return copy.copy(row) if row is not None else None

    def visible_to(self, actor):
        return [d for d in self._rows.values() if can_view(d, actor)]

    def compare_and_set(self, id, expected_version, changes):
        with self._lock:
            self.cas_calls += 1
            row = self._rows.get(str(id))
            if row is None or row.version != expected_version:
                return False
            updated = copy.copy(row)
            for field, value in changes.items():
                setattr(updated, field, value)
            updated.version = row.version + 1
            updated.updated_at = datetime.now(timezone.utc)
            self._rows[str(id)] = updated
            return True

    def add_history(
        self, delivery_id, old_status, new_status, actor, version, notes=""
    ):
        entry = {
            "delivery_id": delivery_id,
            "old_status": old_status,
            "new_status": new_status,
            "actor_id": actor.id,
            "version": version,
            "notes": notes,
        }
        with self._lock:
            self.history.append(entry)
        return entry

    def record_events(self, entity):
        events = entity.domain_events
        with self._lock:
            self.events.extend(events)
        entity.clear_domain_events()
        return len(events)

    def record_location(self, delivery_id, transporter_id, report, recorded_at):
        with self._lock:
            row = self._rows.get(str(delivery_id))
            if (
                row is None
                or row.transporter_id != transporter_id
                or row.status not in TRACKABLE_STATES
            ):
                return None
            updated = copy.copy(row)
            updated.current_latitude = report.latitude
            updated.current_longitude = report.longitude
            updated.location_updated_at = recorded_at
            self._rows[str(delivery_id)] = updated
            location = DeliveryLocation(
                delivery_id=row.id,
                transporter_id=transporter_id,
                latitude=report.latitude,
                longitude=report.longitude,
                speed_kmh=report.speed_kmh,
                heading=report.heading,
                accuracy_m=report.accuracy_m,
                recorded_at=recorded_at,
            )
            self.locations.insert(0, location)
            return location

    def location_history(self, delivery_id, limit):
        return [
            loc for loc in self.locations if str(loc.delivery_id) == str(delivery_id)
        ][:limit]

    def active_locations(self, actor):
        return [
            d
            for d in self._rows.values()
            if d.status in TRACKABLE_STATES
            and d.has_current_location
            and can_track(d, actor)
        ]


class RecordingSynchronizer:
    """Counts ``apply`` calls; optionally fails the first N attempts."""

    def __init__(self, failures: int = 0) -> None:
        self._lock = threading.Lock()
        self._failures = failures
        self.calls: list = []

    def apply(self, delivery):
        with self._lock:
            self.calls.append(delivery.id)
            if self._failures > 0:
                self._failures -= 1
                raise DatabaseError("simulated inventory failure")
        record = SimpleNamespace(
            owner_id=delivery.farmer_id,
            item_name=delivery.goods_description,
            location=delivery.inventory_location,
        )
        adjustment = SimpleNamespace(
            id=uuid4(),
            inventory_record=record,
            quantity=delivery.quantity,
            created_at=datetime.now(timezone.utc),
        )
        return adjustment, True


class RecordingBroadcaster:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.published: list[tuple[str, dict]] = []

    def publish_on_commit(self, topic, payload):
        with self._lock:
            self.published.append((topic, payload))

    def topics(self) -> list[str]:
        return [topic for topic, _ in self.published]


def build_delivery(**overrides) -> Delivery:
    data = {
        "farmer_id": "F1",
        "goods_description": "Basmati rice",
        "quantity": Decimal("100"),
        "status": DeliveryStatus.PENDING,
        "version": 0,
    }
    data.update(overrides)
    return Delivery(**data)


@pytest.fixture()
def make_fake_delivery():
    return build_delivery


@pytest.fixture()
def synchronizer():
    return RecordingSynchronizer()


@pytest.fixture()
def fake_broadcaster():
    return RecordingBroadcaster()


@pytest.fixture()
def build_service(synchronizer, fake_broadcaster):
    """Factory: ``build_service(*deliveries) -> (service, repository)``."""

    def _build(*deliveries, **kwargs):
        repository = InMemoryDeliveryRepository(*deliveries)
        service = DeliveryTransitionService(
            delivery_repository=repository,
            inventory_synchronizer=kwargs.pop("inventory_synchronizer", synchronizer),
            broadcaster=fake_broadcaster,
            **kwargs,
        )
        return service, repository

    return _build


@pytest.fixture()
def build_tracking(fake_broadcaster):
    """Factory: ``build_tracking(*deliveries) -> (service, repository)``."""

    def _build(*deliveries):
        repository = InMemoryDeliveryRepository(*deliveries)
        service = DeliveryTrackingService(
            delivery_repository=repository, broadcaster=fake_broadcaster
        )
        return service, repository

    return _build


@pytest.fixture()
def failing_synchronizer():
    """Factory: a synchronizer whose first *failures* attempts raise."""
    return RecordingSynchronizer
