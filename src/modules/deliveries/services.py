"""Delivery service layer (Use Cases).

``DeliveryTransitionService`` is the Transition Authority: the only code
path that changes a delivery's status.  A transition is validated, then
committed with a single compare-and-set on ``version``; history, outbox
events and (for ``delivered``) the inventory adjustment are written in
the same transaction.  Live broadcasts are registered to run only after
the commit is durable.

``DeliveryService`` covers creation, reads and route resolution.

``DeliveryTrackingService`` records the assigned transporter's position
reports.  They are a separate write that never changes status or
``version``, so tracking cannot conflict with a transition.

Rules enforced:
- Status moves only along ``VALID_TRANSITIONS``; terminal states are final
  for every role.
- Authorization comes from ``PERMISSION_MATRIX`` alone.
- Two attempts on the same version: exactly one commits.
- Inventory is adjusted exactly once per delivered delivery.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional
from uuid import UUID

import structlog
from django.db import DatabaseError, InterfaceError, OperationalError, transaction
from django.utils import timezone
from pydantic import ValidationError as PydanticValidationError

from modules.core.authentication import Actor
from modules.deliveries.constants import (
    LOCATION_HISTORY_LIMIT,
    STATUS_TIMESTAMP_FIELDS,
    TRACKABLE_STATES,
    DeliveryStatus,
)
from modules.deliveries.dtos import LocationReportDTO, TransitionRequestDTO
from modules.deliveries.events import DeliveryCompleted, DeliveryStatusChanged
from modules.deliveries.exceptions import (
    DeliveryNotFound,
    DeliveryUnavailable,
    DeliveryValidationError,
    InvalidTransition,
    TrackingInactive,
    TransitionForbidden,
    VersionConflict,
)
from modules.deliveries.permissions import (
    can_create,
    can_report_location,
    can_track,
    can_view,
    is_transition_allowed,
)
from modules.realtime.topics import (
    DELIVERY_COMPLETED,
    DELIVERY_LOCATION_UPDATED,
    DELIVERY_STATUS_CHANGED,
    INVENTORY_UPDATED,
    delivery_completed_payload,
    delivery_location_updated_payload,
    delivery_status_changed_payload,
    inventory_updated_payload,
)

if TYPE_CHECKING:
    from modules.core.repositories.interfaces import Queryable
    from modules.deliveries.dtos import CreateDeliveryDTO, RouteDescriptor
    from modules.deliveries.models import Delivery, DeliveryLocation
    from modules.deliveries.repositories.interfaces import IDeliveryRepository
    from modules.deliveries.routing import RouteResolver
    from modules.inventory.models import InventoryAdjustment
    from modules.inventory.services import InventorySynchronizer
    from modules.realtime.broadcaster import EventBroadcaster

logger = structlog.get_logger(__name__)

DEFAULT_MAX_ATTEMPTS = 3
TRACKING_HISTORY_DEFAULT = 20


class DeliveryTransitionService:
    """Transition Authority.

    Receives its collaborators via constructor injection so tests can swap
    in in-memory fakes.
    """

    def __init__(
        self,
        delivery_repository: IDeliveryRepository,
        inventory_synchronizer: InventorySynchronizer,
        broadcaster: EventBroadcaster,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        inventory_max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    ) -> None:
        self._delivery_repo = delivery_repository
        self._synchronizer = inventory_synchronizer
        self._broadcaster = broadcaster
        self._max_attempts = max(1, max_attempts)
        self._inventory_max_attempts = max(1, inventory_max_attempts)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    @transaction.atomic
    def transition(
        self,
        delivery_id: UUID | str,
        requested_status: str,
        actor: Actor,
        expected_version: Optional[int] = None,
        transporter_id: Optional[str] = None,
        notes: str = "",
    ) -> Delivery:
        """Move a delivery to *requested_status* on behalf of *actor*.

        Steps:
        1. Validate the request shape.
        2. Load the delivery.
        3. Check ``expected_version`` (defaults to the version just read).
        4. Check the edge exists in the transition graph.
        5. Consult the Permission Matrix.
        6. ``pending -> assigned`` needs a transporter.
        7. Compare-and-set status, timestamp and version.
        8. Append history and outbox events.
        9. On ``delivered``, adjust inventory in the same transaction.
        10. Register post-commit broadcasts.

        Raises:
            DeliveryValidationError: malformed request.
            DeliveryNotFound: no such delivery.
            VersionConflict: the delivery changed since it was read.
            InvalidTransition: not an edge of the graph.
            TransitionForbidden: the actor may not take this edge.
            DeliveryUnavailable: inventory could not be adjusted.
        """
        # 1. Pure validation
        try:
            request = TransitionRequestDTO(
                status=requested_status,
                expected_version=expected_version,
                transporter_id=transporter_id,
                notes=notes or "",
            )
        except PydanticValidationError as exc:
            raise DeliveryValidationError(_first_error(exc)) from exc

        # 2. Load
        delivery = self._delivery_repo.get_by_id(str(delivery_id))
        if delivery is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found.")

        log = logger.bind(
            delivery_id=str(delivery.id),
            actor_id=actor.id,
            actor_role=actor.role,
            current_status=delivery.status,
            requested_status=request.status,
        )

        # 3. Version
        version = (
            delivery.version
            if request.expected_version is None
            else request.expected_version
        )
        if version != delivery.version:
            log.info(
                "delivery.version_conflict",
                expected_version=version,
                stored_version=delivery.version,
            )
            raise VersionConflict(
                f"Delivery {delivery.id} is at version {delivery.version}, "
                f"not {version}."
            )

        # 4. Graph
        if not delivery.can_transition_to(request.status):
            log.warning("delivery.invalid_transition")
            raise InvalidTransition(
                f"Cannot transition from {delivery.status} to {request.status}."
            )

        # 5. Permission Matrix
        if not is_transition_allowed(delivery, request.status, actor):
            log.warning("delivery.transition_forbidden")
            raise TransitionForbidden(
                f"Role '{actor.role}' may not move delivery from "
                f"{delivery.status} to {request.status}."
            )

        # 6. Assignment needs a transporter
        changes = {"status": request.status}
        if request.status == DeliveryStatus.ASSIGNED:
            assignee = request.transporter_id or delivery.transporter_id
            if not assignee:
                raise DeliveryValidationError(
                    "A transporter_id is required to assign a delivery."
                )
            changes["transporter_id"] = assignee
        timestamp_field = STATUS_TIMESTAMP_FIELDS.get(request.status)
        if timestamp_field:
            changes[timestamp_field] = timezone.now()

        # 7. Compare-and-set
        if not self._delivery_repo.compare_and_set(delivery.id, version, changes):
            log.info("delivery.version_conflict", expected_version=version)
            raise VersionConflict(
                f"Delivery {delivery.id} was modified concurrently."
            )

        previous_status = delivery.status
        committed = self._delivery_repo.get_by_id(str(delivery.id))
        if committed is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found.")

        # 8. History + outbox
        self._delivery_repo.add_history(
            delivery_id=committed.id,
            old_status=previous_status,
            new_status=committed.status,
            actor=actor,
            version=committed.version,
            notes=request.notes,
        )
        committed.add_domain_event(
            DeliveryStatusChanged(
                aggregate_id=committed.id,
                previous_status=previous_status,
                status=committed.status,
                version=committed.version,
                actor_id=actor.id,
                actor_role=actor.role,
            )
        )
        if committed.status == DeliveryStatus.DELIVERED:
            committed.add_domain_event(
                DeliveryCompleted(
                    aggregate_id=committed.id,
                    farmer_id=committed.farmer_id,
                    transporter_id=committed.transporter_id,
                )
            )
        self._delivery_repo.record_events(committed)

        # 9. Inventory
        adjustment = None
        if committed.status == DeliveryStatus.DELIVERED:
            adjustment = self._synchronize_inventory(committed)

        # 10. Broadcast after commit
        self._broadcaster.publish_on_commit(
            DELIVERY_STATUS_CHANGED,
            delivery_status_changed_payload(committed, previous_status),
        )
        if committed.status == DeliveryStatus.DELIVERED:
            self._broadcaster.publish_on_commit(
                DELIVERY_COMPLETED, delivery_completed_payload(committed)
            )
            if adjustment is not None:
                self._broadcaster.publish_on_commit(
                    INVENTORY_UPDATED, inventory_updated_payload(adjustment)
                )

        log.info(
            "delivery.transition_committed",
            new_status=committed.status,
            version=committed.version,
        )
        # Re-read so the returned snapshot carries the new history row.
        return self._delivery_repo.get_by_id(str(committed.id)) or committed

    def transition_with_retry(
        self,
        delivery_id: UUID | str,
        requested_status: str,
        actor: Actor,
        expected_version: Optional[int] = None,
        transporter_id: Optional[str] = None,
        notes: str = "",
    ) -> Delivery:
        """``transition`` with bounded retries on storage I/O errors.

        The version is pinned before the first attempt so a retry after an
        outcome that did commit fails as ``VersionConflict`` rather than
        applying twice.

        Raises:
            DeliveryUnavailable: every attempt hit a storage error.
        """
        if expected_version is None:
            current = self._delivery_repo.get_by_id(str(delivery_id))
            if current is None:
                raise DeliveryNotFound(f"Delivery {delivery_id} not found.")
            expected_version = current.version

        log = logger.bind(
            delivery_id=str(delivery_id), requested_status=requested_status
        )
        last_error: Optional[Exception] = None
        for attempt in range(1, self._max_attempts + 1):
            try:
                return self.transition(
                    delivery_id,
                    requested_status,
                    actor,
                    expected_version=expected_version,
                    transporter_id=transporter_id,
                    notes=notes,
                )
            except (OperationalError, InterfaceError) as exc:
                last_error = exc
                log.warning(
                    "delivery.transition_storage_error",
                    attempt=attempt,
                    max_attempts=self._max_attempts,
                    error=str(exc),
                )

        log.error("delivery.transition_unavailable", error=str(last_error))
        raise DeliveryUnavailable(
            "Delivery storage is unavailable; retry the request."
        ) from last_error

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _synchronize_inventory(
        self, delivery: Delivery
    ) -> Optional[InventoryAdjustment]:
        """Run the synchronizer, retrying failed savepoint attempts.

        Exhaustion raises ``DeliveryUnavailable``, which rolls back the
        whole transition.
        """
        log = logger.bind(delivery_id=str(delivery.id))
        last_error: Optional[Exception] = None
        for attempt in range(1, self._inventory_max_attempts + 1):
            try:
                adjustment, created = self._synchronizer.apply(delivery)
            except DatabaseError as exc:
                last_error = exc
                log.warning(
                    "inventory.sync_attempt_failed",
                    attempt=attempt,
                    max_attempts=self._inventory_max_attempts,
                    error=str(exc),
                )
                continue
            return adjustment if created else None

        log.error("inventory.sync_exhausted", error=str(last_error))
        raise DeliveryUnavailable(
            "Inventory could not be updated; the delivery was not completed."
        ) from last_error


class DeliveryService:
    """Creation, reads and route resolution."""

    def __init__(
        self,
        delivery_repository: IDeliveryRepository,
        route_resolver: RouteResolver,
    ) -> None:
        self._delivery_repo = delivery_repository
        self._route_resolver = route_resolver

    @transaction.atomic
    def create_delivery(self, dto: CreateDeliveryDTO, actor: Actor) -> Delivery:
        """Create a ``pending`` delivery at version 0 for the calling farmer.

        Raises:
            TransitionForbidden: only farmers create deliveries, for themselves.
        """
        if not can_create(actor) or dto.farmer_id != actor.id:
            raise TransitionForbidden("Only the owning farmer can create a delivery.")

        data = {
            "farmer_id": dto.farmer_id,
            "warehouse_id": dto.warehouse_id,
            "goods_description": dto.goods_description.strip(),
            "quantity": dto.quantity,
            "unit": dto.unit,
            "urgency": dto.urgency,
            "notes": dto.notes,
        }
        if dto.pickup is not None:
            data.update(
                pickup_latitude=dto.pickup.latitude,
                pickup_longitude=dto.pickup.longitude,
                pickup_address=dto.pickup.address,
            )
        if dto.dropoff is not None:
            data.update(
                dropoff_latitude=dto.dropoff.latitude,
                dropoff_longitude=dto.dropoff.longitude,
                dropoff_address=dto.dropoff.address,
            )

        delivery = self._delivery_repo.create(data)
        self._delivery_repo.add_history(
            delivery_id=delivery.id,
            old_status=None,
            new_status=delivery.status,
            actor=actor,
            version=delivery.version,
            notes="Delivery created",
        )
        logger.info("delivery.created", delivery_id=str(delivery.id), actor_id=actor.id)
        return self._delivery_repo.get_by_id(str(delivery.id)) or delivery

    def get_delivery(self, delivery_id: str, actor: Actor) -> Delivery:
        """Raises ``DeliveryNotFound`` or ``TransitionForbidden``."""
        delivery = self._delivery_repo.get_by_id(delivery_id)
        if delivery is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found.")
        if not can_view(delivery, actor):
            raise TransitionForbidden("You do not have access to this delivery.")
        return delivery

    def list_deliveries(self, actor: Actor) -> Queryable[Delivery]:
        return self._delivery_repo.visible_to(actor)

    def resolve_route(self, delivery_id: str, actor: Actor) -> RouteDescriptor:
        """Route data for one delivery; never mutates.

        Raises:
            DeliveryNotFound, TransitionForbidden, MissingCoordinates.
        """
        delivery = self.get_delivery(delivery_id, actor)
        return self._route_resolver.resolve(delivery)


class DeliveryTrackingService:
    """Live transporter positions for deliveries on the move."""

    def __init__(
        self,
        delivery_repository: IDeliveryRepository,
        broadcaster: EventBroadcaster,
    ) -> None:
        self._delivery_repo = delivery_repository
        self._broadcaster = broadcaster

    @transaction.atomic
    def report_location(
        self,
        delivery_id: UUID | str,
        actor: Actor,
        latitude: float,
        longitude: float,
        speed_kmh: Optional[float] = None,
        heading: Optional[float] = None,
        accuracy_m: Optional[float] = None,
    ) -> DeliveryLocation:
        """Record a position from the assigned transporter and broadcast it.

        Raises:
            DeliveryValidationError: coordinates out of range.
            DeliveryNotFound: no such delivery.
            TransitionForbidden: the actor is not the assigned transporter.
            TrackingInactive: the delivery is not assigned or in transit.
        """
        try:
            report = LocationReportDTO(
                latitude=latitude,
                longitude=longitude,
                speed_kmh=speed_kmh,
                heading=heading,
                accuracy_m=accuracy_m,
            )
        except PydanticValidationError as exc:
            raise DeliveryValidationError(_first_error(exc)) from exc

        delivery = self._delivery_repo.get_by_id(str(delivery_id))
        if delivery is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found.")

        log = logger.bind(delivery_id=str(delivery.id), actor_id=actor.id)
        if not can_report_location(delivery, actor):
            log.warning("delivery.location_forbidden")
            raise TransitionForbidden(
                "Only the assigned transporter can report this delivery's location."
            )
        if delivery.status not in TRACKABLE_STATES:
            raise TrackingInactive(
                f"Delivery {delivery.id} is {delivery.status}; "
                "location is tracked only while assigned or in transit."
            )

        location = self._delivery_repo.record_location(
            delivery.id, actor.id, report, timezone.now()
        )
        if location is None:
            raise TrackingInactive(
                f"Delivery {delivery.id} stopped being trackable; refresh and retry."
            )

        self._broadcaster.publish_on_commit(
            DELIVERY_LOCATION_UPDATED,
            delivery_location_updated_payload(delivery, location),
        )
        log.info(
            "delivery.location_reported",
            latitude=report.latitude,
            longitude=report.longitude,
        )
        return location

    def get_tracking(
        self,
        delivery_id: str,
        actor: Actor,
        limit: int = TRACKING_HISTORY_DEFAULT,
    ) -> tuple[Delivery, list[DeliveryLocation]]:
        """Current position and recent reports for one delivery.

        Raises ``DeliveryNotFound`` or ``TransitionForbidden``.
        """
        delivery = self._delivery_repo.get_by_id(delivery_id)
        if delivery is None:
            raise DeliveryNotFound(f"Delivery {delivery_id} not found.")
        if not can_track(delivery, actor):
            raise TransitionForbidden("You may not track this delivery.")
        limit = max(1, min(limit, LOCATION_HISTORY_LIMIT))
        return delivery, self._delivery_repo.location_history(delivery.id, limit)

    def active_locations(self, actor: Actor) -> Queryable[Delivery]:
        return self._delivery_repo.active_locations(actor)


def _first_error(exc: PydanticValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return str(exc)
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()))
    message = first.get("msg", "Invalid value.")
    return f"{location}: {message}" if location else message
