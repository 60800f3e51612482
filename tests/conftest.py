from decimal import Decimal

import pytest
from django.apps import apps
from django.conf import settings
from rest_framework.test import APIClient

from modules.core.authentication import Actor, Role
from modules.deliveries.constants import DeliveryStatus
from modules.deliveries.models import Delivery
from modules.realtime.broadcaster import EventBroadcaster

FARMER_ID = "farmer-f1"
OTHER_FARMER_ID = "farmer-f2"
TRANSPORTER_ID = "transporter-t1"
OTHER_TRANSPORTER_ID = "transporter-t2"


@pytest.fixture(autouse=True)
def _use_db(db):
    """Automatically use the test database for all tests."""


@pytest.fixture()
def api_client():
    """DRF APIClient for testing API endpoints."""
    return APIClient()


@pytest.fixture()
def api_client_with_correlation(api_client):
    """APIClient pre-configured with a known correlation ID header."""
    cid = "test-correlation-id-fixture"
    api_client.defaults["HTTP_X_REQUEST_ID"] = cid
    return api_client, cid


# ---------------------------------------------------------------------------
# Actors
# ---------------------------------------------------------------------------


@pytest.fixture()
def farmer():
    return Actor(id=FARMER_ID, role=Role.FARMER)


@pytest.fixture()
def other_farmer():
    return Actor(id=OTHER_FARMER_ID, role=Role.FARMER)


@pytest.fixture()
def transporter():
    return Actor(id=TRANSPORTER_ID, role=Role.TRANSPORTER)


@pytest.fixture()
def other_transporter():
    return Actor(id=OTHER_TRANSPORTER_ID, role=Role.TRANSPORTER)


@pytest.fixture()
def warehouse_manager():
    return Actor(id="wm-1", role=Role.WAREHOUSE_MANAGER)


@pytest.fixture()
def admin():
    return Actor(id="admin-1", role=Role.ADMIN)


@pytest.fixture()
def client_for():
    """Factory returning an APIClient authenticated as the given actor."""

    def _client(actor):
        client = APIClient()
        client.force_authenticate(user=actor)
        return client

    return _client


# ---------------------------------------------------------------------------
# Deliveries
# ---------------------------------------------------------------------------


@pytest.fixture()
def make_delivery():
    """Insert a delivery row directly, bypassing the transition service."""

    def _make(**overrides):
        data = {
            "farmer_id": FARMER_ID,
            "goods_description": "Basmati rice",
            "quantity": Decimal("100.000"),
            "unit": "kg",
            "status": DeliveryStatus.PENDING,
            "version": 0,
            "pickup_latitude": -23.5505,
            "pickup_longitude": -46.6333,
            "pickup_address": "Farm road 1",
            "dropoff_latitude": -22.9068,
            "dropoff_longitude": -43.1729,
            "dropoff_address": "Central hub",
        }
        data.update(overrides)
        return Delivery.objects.create(**data)

    return _make


@pytest.fixture()
def broadcaster(monkeypatch):
    """A fresh broadcaster installed on the realtime app for one test."""
    instance = EventBroadcaster(queue_size=settings.REALTIME_SUBSCRIBER_QUEUE_SIZE)
    monkeypatch.setattr(apps.get_app_config("realtime"), "broadcaster", instance)
    return instance
