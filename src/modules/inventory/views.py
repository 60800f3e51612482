"""Inventory API views (read surface only).

Records are written exclusively by the ``InventorySynchronizer`` when a
delivery is completed.
"""

from __future__ import annotations

from django_filters.rest_framework import DjangoFilterBackend
from rest_framework import status
from rest_framework.filters import OrderingFilter
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.viewsets import GenericViewSet

from modules.core.pagination import StandardResultsSetPagination
from modules.core.views import domain_error_response
from modules.inventory.exceptions import InventoryAccessForbidden
from modules.inventory.filters import InventoryRecordFilter
from modules.inventory.models import InventoryRecord
from modules.inventory.repositories.django_repository import InventoryDjangoRepository
from modules.inventory.serializers import InventoryRecordSerializer
from modules.inventory.services import InventoryService


class InventoryRecordViewSet(GenericViewSet):
    queryset = InventoryRecord.objects.all()
    filterset_class = InventoryRecordFilter
    ordering_fields = ["item_name", "quantity", "updated_at"]
    ordering = ["item_name", "location"]
    filter_backends = [DjangoFilterBackend, OrderingFilter]

    def __init__(self, **kwargs) -> None:
        super().__init__(**kwargs)
        self._service = InventoryService(InventoryDjangoRepository())

    def list(self, request: Request) -> Response:
        """GET /api/v1/inventory/"""
        try:
            queryset = self._service.list_records(request.user)
        except InventoryAccessForbidden as exc:
            return domain_error_response(exc, status.HTTP_403_FORBIDDEN)

        queryset = self.filter_queryset(queryset)
        paginator = StandardResultsSetPagination()
        page = paginator.paginate_queryset(queryset, request)
        serializer = InventoryRecordSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)
