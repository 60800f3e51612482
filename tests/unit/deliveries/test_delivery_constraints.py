"""Unit tests for database constraints on delivery rows."""

from __future__ import annotations

from decimal import Decimal

import pytest
from django.db import IntegrityError, transaction
from django.utils import timezone

from modules.deliveries.models import Delivery, DeliveryLocation

pytestmark = pytest.mark.unit


def _create(**overrides) -> Delivery:
    data = {
        "farmer_id": "farmer-f1",
        "goods_description": "Basmati rice",
        "quantity": Decimal("1.000"),
    }
    data.update(overrides)
    return Delivery.objects.create(**data)


class TestCoordinateConstraints:
    @pytest.mark.parametrize(
        "field, value",
        [
            ("pickup_latitude", 95.0),
            ("pickup_latitude", -90.5),
            ("pickup_longitude", 181.0),
            ("dropoff_latitude", -91.0),
            ("dropoff_longitude", -180.01),
            ("current_latitude", 90.1),
            ("current_longitude", 200.0),
        ],
    )
    def test_out_of_range_insert_is_rejected(self, field, value):
        with pytest.raises(IntegrityError), transaction.atomic():
            _create(**{field: value})
        assert Delivery.objects.count() == 0

    def test_out_of_range_update_is_rejected(self):
        delivery = _create(pickup_latitude=10.0, pickup_longitude=10.0)
        with pytest.raises(IntegrityError), transaction.atomic():
            Delivery.objects.filter(id=delivery.id).update(pickup_latitude=123.0)

        delivery.refresh_from_db()
        assert delivery.pickup_latitude == 10.0

    def test_bounds_and_nulls_are_accepted(self):
        delivery = _create(
            pickup_latitude=90.0,
            pickup_longitude=-180.0,
            dropoff_latitude=-90.0,
            dropoff_longitude=180.0,
        )
        assert delivery.current_latitude is None
        assert Delivery.objects.count() == 1

    @pytest.mark.parametrize(
        "latitude, longitude", [(91.0, 0.0), (0.0, -181.0)]
    )
    def test_location_report_out_of_range_is_rejected(self, latitude, longitude):
        delivery = _create()
        with pytest.raises(IntegrityError), transaction.atomic():
            DeliveryLocation.objects.create(
                delivery=delivery,
                transporter_id="transporter-t1",
                latitude=latitude,
                longitude=longitude,
                recorded_at=timezone.now(),
            )
        assert DeliveryLocation.objects.count() == 0
