"""Integration tests for delivery list filters, ordering and pagination."""

from __future__ import annotations

from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from modules.deliveries.constants import DeliveryStatus, Urgency

pytestmark = pytest.mark.integration

DELIVERIES_URL = "/api/v1/deliveries/"


@pytest.fixture()
def admin_client(client_for, admin):
    return client_for(admin)


@pytest.fixture()
def delivery_batch(make_delivery):
    """120 pending deliveries from one farmer."""
    return [make_delivery(goods_description=f"Crate {i:03d}") for i in range(120)]


class TestPagination:
    def test_default_page_size(self, admin_client, delivery_batch):
        response = admin_client.get(DELIVERIES_URL)
        assert response.status_code == 200
        assert len(response.data["results"]) == 20
        assert response.data["next"] is not None
        assert response.data["previous"] is None

    def test_custom_page_size(self, admin_client, delivery_batch):
        response = admin_client.get(DELIVERIES_URL, {"page_size": 50})
        assert len(response.data["results"]) == 50

    def test_max_page_size(self, admin_client, delivery_batch):
        response = admin_client.get(DELIVERIES_URL, {"page_size": 1000})
        assert len(response.data["results"]) == 100
        assert response.data["next"] is not None

    def test_out_of_range_page_returns_404(self, admin_client, delivery_batch):
        response = admin_client.get(DELIVERIES_URL, {"page": 99})
        assert response.status_code == 404


class TestFilters:
    def test_filter_by_transporter(self, admin_client, make_delivery):
        make_delivery()
        mine = make_delivery(
            status=DeliveryStatus.ASSIGNED, transporter_id="transporter-t1", version=1
        )

        response = admin_client.get(DELIVERIES_URL, {"transporter": "transporter-t1"})

        assert [row["id"] for row in response.data["results"]] == [str(mine.id)]

    def test_filter_by_farmer_and_warehouse(self, admin_client, make_delivery):
        make_delivery(warehouse_id="wh-north")
        target = make_delivery(farmer_id="farmer-f2", warehouse_id="wh-north")
        make_delivery(farmer_id="farmer-f2", warehouse_id="wh-south")

        response = admin_client.get(
            DELIVERIES_URL, {"farmer": "farmer-f2", "warehouse": "wh-north"}
        )

        assert [row["id"] for row in response.data["results"]] == [str(target.id)]

    def test_filter_by_date_range(self, admin_client, make_delivery):
        with freeze_time(datetime(2025, 1, 10, 12, tzinfo=timezone.utc)):
            make_delivery()
        with freeze_time(datetime(2025, 2, 10, 12, tzinfo=timezone.utc)):
            february = make_delivery()

        response = admin_client.get(
            DELIVERIES_URL, {"start_date": "2025-02-01", "end_date": "2025-02-28"}
        )

        assert [row["id"] for row in response.data["results"]] == [str(february.id)]

    def test_filters_cannot_widen_visibility(self, client_for, farmer, make_delivery):
        make_delivery(farmer_id="farmer-f2")

        response = client_for(farmer).get(DELIVERIES_URL, {"farmer": "farmer-f2"})

        assert response.data["count"] == 0

    def test_combined_filters_pagination(self, admin_client, make_delivery):
        for _ in range(30):
            make_delivery(urgency=Urgency.HIGH)
        make_delivery(urgency=Urgency.LOW)

        response = admin_client.get(
            DELIVERIES_URL, {"urgency": "high", "page_size": 10, "page": 2}
        )

        assert response.data["count"] == 30
        assert len(response.data["results"]) == 10


class TestOrdering:
    def test_default_is_newest_first(self, admin_client, make_delivery):
        with freeze_time("2025-01-01 08:00:00"):
            older = make_delivery()
        with freeze_time("2025-01-02 08:00:00"):
            newer = make_delivery()

        response = admin_client.get(DELIVERIES_URL)

        ids = [row["id"] for row in response.data["results"]]
        assert ids == [str(newer.id), str(older.id)]

    def test_ordering_by_status(self, admin_client, make_delivery):
        make_delivery(status=DeliveryStatus.PENDING)
        make_delivery(status=DeliveryStatus.CANCELLED, version=1)

        response = admin_client.get(DELIVERIES_URL, {"ordering": "status"})

        statuses = [row["status"] for row in response.data["results"]]
        assert statuses == [DeliveryStatus.CANCELLED, DeliveryStatus.PENDING]
