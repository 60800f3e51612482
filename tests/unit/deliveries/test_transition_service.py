"""Unit tests for DeliveryTransitionService with in-memory collaborators.

Covers:
- Validation, lookup, version, graph and permission checks (in order).
- Timestamps, version bump, history and outbox events on commit.
- Inventory synchronization only on ``delivered``, with bounded retries.
- Post-commit broadcasts.
- Storage-error retries in ``transition_with_retry``.
- Same-version races: exactly one success.
"""

from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch
from uuid import uuid4

import pytest
from django.db import OperationalError

from modules.deliveries.constants import DeliveryStatus
from modules.deliveries.exceptions import (
    DeliveryNotFound,
    DeliveryUnavailable,
    DeliveryValidationError,
    InvalidTransition,
    TransitionForbidden,
    VersionConflict,
)
from modules.deliveries.services import DeliveryTransitionService
from modules.realtime.topics import (
    DELIVERY_COMPLETED,
    DELIVERY_STATUS_CHANGED,
    INVENTORY_UPDATED,
)

pytestmark = pytest.mark.unit


def _transition(service, *args, **kwargs):
    return DeliveryTransitionService.transition.__wrapped__(service, *args, **kwargs)


# ===========================================================================
# Rejections
# ===========================================================================


class TestRejections:
    def test_unknown_status_is_validation_error(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)
        with pytest.raises(DeliveryValidationError):
            _transition(service, delivery.id, "teleported", admin)

    def test_missing_delivery_is_not_found(self, build_service, admin):
        service, _ = build_service()
        with pytest.raises(DeliveryNotFound):
            _transition(service, uuid4(), DeliveryStatus.CANCELLED, admin)

    def test_stale_version_is_conflict(self, build_service, admin, make_fake_delivery):
        delivery = make_fake_delivery(version=3)
        service, repository = build_service(delivery)
        with pytest.raises(VersionConflict) as exc_info:
            _transition(
                service,
                delivery.id,
                DeliveryStatus.CANCELLED,
                admin,
                expected_version=2,
            )
        assert exc_info.value.retryable is True
        assert repository.cas_calls == 0

    def test_leaving_terminal_state_is_invalid(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.DELIVERED, transporter_id="T1"
        )
        service, _ = build_service(delivery)
        with pytest.raises(InvalidTransition):
            _transition(service, delivery.id, DeliveryStatus.CANCELLED, admin)

    def test_same_status_is_invalid(self, build_service, admin, make_fake_delivery):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)
        with pytest.raises(InvalidTransition):
            _transition(service, delivery.id, DeliveryStatus.PENDING, admin)

    def test_skipping_a_step_is_invalid(self, build_service, admin, make_fake_delivery):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)
        with pytest.raises(InvalidTransition):
            _transition(service, delivery.id, DeliveryStatus.DELIVERED, admin)

    def test_matrix_denial_is_forbidden(
        self, build_service, farmer, make_fake_delivery
    ):
        delivery = make_fake_delivery(farmer_id=farmer.id)
        service, repository = build_service(delivery)
        with pytest.raises(TransitionForbidden):
            _transition(
                service,
                delivery.id,
                DeliveryStatus.ASSIGNED,
                farmer,
                transporter_id="T1",
            )
        assert repository.cas_calls == 0

    def test_assignment_requires_transporter(
        self, build_service, warehouse_manager, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)
        with pytest.raises(DeliveryValidationError, match="transporter_id"):
            _transition(
                service, delivery.id, DeliveryStatus.ASSIGNED, warehouse_manager
            )

    def test_rejections_publish_nothing(
        self, build_service, farmer, fake_broadcaster, make_fake_delivery
    ):
        delivery = make_fake_delivery(farmer_id="someone-else")
        service, _ = build_service(delivery)
        with pytest.raises(TransitionForbidden):
            _transition(service, delivery.id, DeliveryStatus.CANCELLED, farmer)
        assert fake_broadcaster.published == []


# ===========================================================================
# Commits
# ===========================================================================


class TestCommit:
    def test_assignment_sets_transporter_timestamp_and_version(
        self, build_service, warehouse_manager, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)

        result = _transition(
            service,
            delivery.id,
            DeliveryStatus.ASSIGNED,
            warehouse_manager,
            transporter_id="T1",
        )

        assert result.status == DeliveryStatus.ASSIGNED
        assert result.transporter_id == "T1"
        assert result.assigned_at is not None
        assert result.version == 1

    def test_implicit_version_uses_current(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery(version=7)
        service, _ = build_service(delivery)
        result = _transition(service, delivery.id, DeliveryStatus.CANCELLED, admin)
        assert result.version == 8
        assert result.cancelled_at is not None

    def test_history_and_outbox_recorded(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, repository = build_service(delivery)

        _transition(
            service,
            delivery.id,
            DeliveryStatus.CANCELLED,
            admin,
            notes="Farmer withdrew",
        )

        assert repository.history == [
            {
                "delivery_id": delivery.id,
                "old_status": DeliveryStatus.PENDING,
                "new_status": DeliveryStatus.CANCELLED,
                "actor_id": admin.id,
                "version": 1,
                "notes": "Farmer withdrew",
            }
        ]
        assert [e.event_name for e in repository.events] == ["DeliveryStatusChanged"]

    def test_non_delivered_transition_skips_inventory(
        self, build_service, synchronizer, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)
        _transition(service, delivery.id, DeliveryStatus.CANCELLED, admin)
        assert synchronizer.calls == []

    def test_status_change_is_broadcast(
        self, build_service, fake_broadcaster, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery)

        _transition(service, delivery.id, DeliveryStatus.CANCELLED, admin)

        assert fake_broadcaster.topics() == [DELIVERY_STATUS_CHANGED]
        payload = fake_broadcaster.published[0][1]
        assert payload["deliveryId"] == str(delivery.id)
        assert payload["previousStatus"] == DeliveryStatus.PENDING
        assert payload["status"] == DeliveryStatus.CANCELLED
        assert payload["version"] == 1


class TestDelivered:
    def test_delivered_adjusts_inventory_once_and_broadcasts(
        self,
        build_service,
        synchronizer,
        fake_broadcaster,
        transporter,
        make_fake_delivery,
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.IN_TRANSIT, transporter_id=transporter.id, version=2
        )
        service, repository = build_service(delivery)

        result = _transition(
            service, delivery.id, DeliveryStatus.DELIVERED, transporter
        )

        assert result.version == 3
        assert result.delivered_at is not None
        assert synchronizer.calls == [delivery.id]
        assert fake_broadcaster.topics() == [
            DELIVERY_STATUS_CHANGED,
            DELIVERY_COMPLETED,
            INVENTORY_UPDATED,
        ]
        inventory_payload = fake_broadcaster.published[2][1]
        assert inventory_payload["type"] == "increase"
        assert inventory_payload["ownerId"] == delivery.farmer_id
        assert [e.event_name for e in repository.events] == [
            "DeliveryStatusChanged",
            "DeliveryCompleted",
        ]

    def test_inventory_retried_until_success(
        self, build_service, failing_synchronizer, transporter, make_fake_delivery
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.IN_TRANSIT, transporter_id=transporter.id, version=2
        )
        flaky = failing_synchronizer(failures=2)
        service, _ = build_service(
            delivery, inventory_synchronizer=flaky, inventory_max_attempts=3
        )

        result = _transition(
            service, delivery.id, DeliveryStatus.DELIVERED, transporter
        )

        assert result.status == DeliveryStatus.DELIVERED
        assert len(flaky.calls) == 3

    def test_inventory_exhaustion_is_unavailable(
        self,
        build_service,
        failing_synchronizer,
        fake_broadcaster,
        transporter,
        make_fake_delivery,
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.IN_TRANSIT, transporter_id=transporter.id, version=2
        )
        flaky = failing_synchronizer(failures=5)
        service, _ = build_service(
            delivery, inventory_synchronizer=flaky, inventory_max_attempts=3
        )

        with pytest.raises(DeliveryUnavailable) as exc_info:
            _transition(service, delivery.id, DeliveryStatus.DELIVERED, transporter)

        assert exc_info.value.retryable is True
        assert len(flaky.calls) == 3
        assert INVENTORY_UPDATED not in fake_broadcaster.topics()


# ===========================================================================
# transition_with_retry
# ===========================================================================


class TestTransitionWithRetry:
    def test_retries_storage_errors_then_succeeds(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery(version=4)
        service, _ = build_service(delivery, max_attempts=3)
        real_transition = DeliveryTransitionService.transition.__wrapped__
        attempts = []

        def flaky_transition(*args, **kwargs):
            attempts.append(kwargs["expected_version"])
            if len(attempts) < 3:
                raise OperationalError("connection reset")
            return real_transition(service, *args, **kwargs)

        with patch.object(service, "transition", side_effect=flaky_transition):
            result = service.transition_with_retry(
                delivery.id, DeliveryStatus.CANCELLED, admin
            )

        assert result.status == DeliveryStatus.CANCELLED
        assert attempts == [4, 4, 4]

    def test_exhaustion_is_unavailable(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery()
        service, _ = build_service(delivery, max_attempts=2)

        down = OperationalError("down")
        with patch.object(service, "transition", side_effect=down) as mock:
            with pytest.raises(DeliveryUnavailable):
                service.transition_with_retry(
                    delivery.id, DeliveryStatus.CANCELLED, admin
                )

        assert mock.call_count == 2

    def test_retry_after_committed_attempt_conflicts(
        self, build_service, admin, make_fake_delivery
    ):
        """An attempt that committed but reported an error is never re-applied."""
        delivery = make_fake_delivery(
            status=DeliveryStatus.ASSIGNED, transporter_id="T1"
        )
        service, repository = build_service(delivery, max_attempts=3)
        real_transition = DeliveryTransitionService.transition.__wrapped__
        calls = []

        def commit_then_fail(*args, **kwargs):
            calls.append(1)
            if len(calls) == 1:
                real_transition(service, *args, **kwargs)
                raise OperationalError("lost acknowledgement")
            return real_transition(service, *args, **kwargs)

        with patch.object(service, "transition", side_effect=commit_then_fail):
            with pytest.raises(VersionConflict):
                service.transition_with_retry(
                    delivery.id, DeliveryStatus.IN_TRANSIT, admin
                )

        assert repository.get_by_id(delivery.id).version == 1
        assert len(repository.history) == 1

    def test_domain_errors_are_not_retried(
        self, build_service, farmer, make_fake_delivery
    ):
        delivery = make_fake_delivery(farmer_id="someone-else")
        service, repository = build_service(delivery, max_attempts=3)
        with patch.object(
            service, "transition", wraps=service.transition
        ) as spy, pytest.raises(TransitionForbidden):
            service.transition_with_retry(
                delivery.id, DeliveryStatus.CANCELLED, farmer
            )
        assert spy.call_count == 1
        assert repository.cas_calls == 0


# ===========================================================================
# Races
# ===========================================================================


class TestSameVersionRace:
    NUM_WORKERS = 8

    def test_exactly_one_delivered_request_wins(
        self, build_service, synchronizer, transporter, make_fake_delivery
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.IN_TRANSIT, transporter_id=transporter.id, version=2
        )
        service, repository = build_service(delivery)
        barrier = threading.Barrier(self.NUM_WORKERS)

        def attempt(_):
            barrier.wait()
            try:
                result = _transition(
                    service,
                    delivery.id,
                    DeliveryStatus.DELIVERED,
                    transporter,
                    expected_version=2,
                )
            except VersionConflict:
                return "conflict"
            return result.version

        with ThreadPoolExecutor(max_workers=self.NUM_WORKERS) as pool:
            results = list(pool.map(attempt, range(self.NUM_WORKERS)))

        assert results.count(3) == 1
        assert results.count("conflict") == self.NUM_WORKERS - 1
        assert synchronizer.calls == [delivery.id]
        assert len(repository.history) == 1

    def test_racing_different_targets_yield_single_walk(
        self, build_service, admin, make_fake_delivery
    ):
        delivery = make_fake_delivery(
            status=DeliveryStatus.ASSIGNED, transporter_id="T1"
        )
        service, repository = build_service(delivery)
        barrier = threading.Barrier(2)

        def attempt(target):
            barrier.wait()
            try:
                result = _transition(
                    service, delivery.id, target, admin, expected_version=0
                )
                return result.status
            except VersionConflict:
                return "conflict"

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = list(
                pool.map(attempt, [DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED])
            )

        assert results.count("conflict") == 1
        stored = repository.get_by_id(delivery.id)
        assert stored.version == 1
        assert stored.status in results
