"""Delivery API views.

Exposes ``DeliveryService``, the Transition Authority and
``DeliveryTrackingService`` via a DRF ViewSet.  Domain exceptions are
caught explicitly and translated into ``{"code", "detail", "retryable"}``
responses; nothing else is swallowed.
"""

from __future__ import annotations

from django.conf import settings
from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.decorators import action
from rest_framework.filters import OrderingFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.throttling import BaseThrottle
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.core.views import domain_error_response
from modules.deliveries.dtos import CoordinatesDTO, CreateDeliveryDTO
from modules.deliveries.exceptions import (
    DeliveryNotFound,
    DeliveryUnavailable,
    DeliveryValidationError,
    InvalidTransition,
    MissingCoordinates,
    TrackingInactive,
    TransitionForbidden,
    VersionConflict,
)
from modules.deliveries.filters import DeliveryFilter
from modules.deliveries.models import Delivery
from modules.deliveries.repositories.django_repository import DeliveryDjangoRepository
from modules.deliveries.routing import RouteResolver
from modules.deliveries.serializers import (
    ActiveLocationSerializer,
    CreateDeliverySerializer,
    DeliveryListSerializer,
    DeliveryLocationSerializer,
    DeliverySerializer,
    LocationReportSerializer,
    TransitionSerializer,
)
from modules.deliveries.services import (
    TRACKING_HISTORY_DEFAULT,
    DeliveryService,
    DeliveryTrackingService,
    DeliveryTransitionService,
)
from modules.inventory.repositories.django_repository import InventoryDjangoRepository
from modules.inventory.services import InventorySynchronizer
from modules.realtime.broadcaster import get_broadcaster


class DeliveryViewSet(GenericViewSet):
    """ViewSet for Delivery operations.

    Does **not** extend ``ModelViewSet``: every ORM access goes through
    the service/repository layer, and status only changes through the
    ``status`` action.
    """

    queryset = Delivery.objects.all()
    filterset_class = DeliveryFilter
    ordering_fields = ["created_at", "updated_at", "urgency", "status"]
    ordering = ["-created_at", "-id"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        repository = DeliveryDjangoRepository()
        self._service = DeliveryService(
            delivery_repository=repository,
            route_resolver=RouteResolver(settings.DELIVERY_AVERAGE_SPEED_KMH),
        )
        self._transitions = DeliveryTransitionService(
            delivery_repository=repository,
            inventory_synchronizer=InventorySynchronizer(InventoryDjangoRepository()),
            broadcaster=get_broadcaster(),
            max_attempts=settings.DELIVERY_TRANSITION_MAX_ATTEMPTS,
            inventory_max_attempts=settings.INVENTORY_SYNC_MAX_ATTEMPTS,
        )
        self._tracking = DeliveryTrackingService(
            delivery_repository=repository, broadcaster=get_broadcaster()
        )

    def get_throttles(self) -> list[BaseThrottle]:
        """Per-action throttle scopes."""
        throttle_scope: str | None
        if self.action == "status_update":
            throttle_scope = "delivery_transition"
        elif self.action == "report_location":
            throttle_scope = "delivery_location"
        elif self.action in {"list", "retrieve"}:
            throttle_scope = "delivery_listing"
        else:
            throttle_scope = None
        self.throttle_scope = throttle_scope
        return super().get_throttles()

    def get_queryset(self):
        return self._service.list_deliveries(self.request.user)

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create(self, request: Request) -> Response:
        """POST /api/v1/deliveries/

        Farmers create deliveries for themselves; the record starts
        ``pending`` at version 0.
        """
        serializer = CreateDeliverySerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        pickup = data.get("pickup")
        dropoff = data.get("dropoff")
        dto = CreateDeliveryDTO(
            farmer_id=request.user.id,
            goods_description=data["goods_description"],
            quantity=data["quantity"],
            unit=data["unit"],
            urgency=data["urgency"],
            notes=data["notes"],
            warehouse_id=data.get("warehouse_id"),
            pickup=CoordinatesDTO(**pickup) if pickup else None,
            dropoff=CoordinatesDTO(**dropoff) if dropoff else None,
        )

        try:
            delivery = self._service.create_delivery(dto, request.user)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)

        out = DeliverySerializer(delivery)
        return Response(out.data, status=status.HTTP_201_CREATED)

    # ------------------------------------------------------------------
    # List / Retrieve
    # ------------------------------------------------------------------

    def list(self, request: Request) -> Response:
        """GET /api/v1/deliveries/

        Scoped to what the caller may see; filterable by ``status`` and
        ``urgency``; paginated.
        """
        queryset = self.filter_queryset(self.get_queryset())

        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = DeliveryListSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def retrieve(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/deliveries/{pk}/"""
        try:
            delivery = self._service.get_delivery(str(pk), request.user)
        except DeliveryNotFound as exc:
            return domain_error_response(exc, status.HTTP_404_NOT_FOUND)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)
        return Response(DeliverySerializer(delivery).data)

    # ------------------------------------------------------------------
    # Status transition
    # ------------------------------------------------------------------

    @action(detail=True, methods=["put"], url_path="status", url_name="status")
    def status_update(self, request: Request, pk: str | None = None) -> Response:
        """PUT /api/v1/deliveries/{pk}/status/

        Body: ``{status, version?, transporter_id?, notes?}``.
        """
        serializer = TransitionSerializer(data=request.data)
        if not serializer.is_valid():
            return domain_error_response(
                DeliveryValidationError(_flatten_errors(serializer.errors)),
                status.HTTP_400_BAD_REQUEST,
            )
        data = serializer.validated_data

        try:
            delivery = self._transitions.transition_with_retry(
                str(pk),
                data["status"],
                request.user,
                expected_version=data.get("version"),
                transporter_id=data.get("transporter_id"),
                notes=data.get("notes", ""),
            )
        except DeliveryNotFound as exc:
            return domain_error_response(exc, status.HTTP_404_NOT_FOUND)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)
        except (InvalidTransition, DeliveryValidationError) as exc:
            return domain_error_response(exc, status.HTTP_400_BAD_REQUEST)
        except VersionConflict as exc:
            return domain_error_response(exc, status.HTTP_409_CONFLICT)
        except DeliveryUnavailable as exc:
            return domain_error_response(exc, status.HTTP_503_SERVICE_UNAVAILABLE)

        return Response(DeliverySerializer(delivery).data)

    # ------------------------------------------------------------------
    # Route
    # ------------------------------------------------------------------

    @action(detail=True, methods=["get"])
    def route(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/deliveries/{pk}/route/"""
        try:
            route = self._service.resolve_route(str(pk), request.user)
        except DeliveryNotFound as exc:
            return domain_error_response(exc, status.HTTP_404_NOT_FOUND)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)
        except MissingCoordinates as exc:
            return Response(
                {"success": False, **exc.as_dict()},
                status=status.HTTP_422_UNPROCESSABLE_ENTITY,
            )

        return Response({"success": True, "route": route.as_response()})

    # ------------------------------------------------------------------
    # Location tracking
    # ------------------------------------------------------------------

    @action(detail=True, methods=["get"], url_path="location", url_name="location")
    def location(self, request: Request, pk: str | None = None) -> Response:
        """GET /api/v1/deliveries/{pk}/location/

        Current position plus the most recent reports (``?limit=``).
        """
        try:
            limit = int(request.query_params.get("limit", TRACKING_HISTORY_DEFAULT))
        except ValueError:
            limit = TRACKING_HISTORY_DEFAULT

        try:
            delivery, history = self._tracking.get_tracking(
                str(pk), request.user, limit=limit
            )
        except DeliveryNotFound as exc:
            return domain_error_response(exc, status.HTTP_404_NOT_FOUND)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)

        current = None
        if delivery.has_current_location:
            current = {
                "latitude": delivery.current_latitude,
                "longitude": delivery.current_longitude,
                "updated_at": delivery.location_updated_at,
            }
        return Response(
            {
                "delivery_id": str(delivery.id),
                "status": delivery.status,
                "transporter_id": delivery.transporter_id,
                "current_location": current,
                "location_history": DeliveryLocationSerializer(
                    history, many=True
                ).data,
            }
        )

    @location.mapping.put
    def report_location(self, request: Request, pk: str | None = None) -> Response:
        """PUT /api/v1/deliveries/{pk}/location/

        Body: ``{latitude, longitude, speed_kmh?, heading?, accuracy_m?}``.
        Only the assigned transporter, only while assigned or in transit.
        """
        serializer = LocationReportSerializer(data=request.data)
        if not serializer.is_valid():
            return domain_error_response(
                DeliveryValidationError(_flatten_errors(serializer.errors)),
                status.HTTP_400_BAD_REQUEST,
            )
        data = serializer.validated_data

        try:
            location = self._tracking.report_location(
                str(pk),
                request.user,
                latitude=data["latitude"],
                longitude=data["longitude"],
                speed_kmh=data.get("speed_kmh"),
                heading=data.get("heading"),
                accuracy_m=data.get("accuracy_m"),
            )
        except DeliveryNotFound as exc:
            return domain_error_response(exc, status.HTTP_404_NOT_FOUND)
        except TransitionForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)
        except (TrackingInactive, DeliveryValidationError) as exc:
            return domain_error_response(exc, status.HTTP_400_BAD_REQUEST)

        return Response(DeliveryLocationSerializer(location).data)

    @action(
        detail=False,
        methods=["get"],
        url_path="active-locations",
        url_name="active-locations",
    )
    def active_locations(self, request: Request) -> Response:
        """GET /api/v1/deliveries/active-locations/

        Deliveries on the move with a reported position, for the live map.
        """
        queryset = self._tracking.active_locations(request.user).order_by(
            "-location_updated_at", "-id"
        )
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = ActiveLocationSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)


def _flatten_errors(errors: dict) -> str:
    parts = []
    for field, messages in errors.items():
        if isinstance(messages, list):
            text = "; ".join(str(m) for m in messages)
        else:
            text = str(messages)
        parts.append(f"{field}: {text}")
    return " ".join(parts)
