from __future__ import annotations

import random
from decimal import Decimal

from django.conf import settings
from django.core.management.base import BaseCommand

from modules.core.authentication import Actor, Role
from modules.deliveries.constants import DeliveryStatus, Urgency
from modules.deliveries.dtos import CoordinatesDTO, CreateDeliveryDTO
from modules.deliveries.models import Delivery
from modules.deliveries.repositories.django_repository import DeliveryDjangoRepository
from modules.deliveries.routing import RouteResolver
from modules.deliveries.services import (
    DeliveryService,
    DeliveryTrackingService,
    DeliveryTransitionService,
)
from modules.inventory.repositories.django_repository import InventoryDjangoRepository
from modules.inventory.services import InventorySynchronizer
from modules.realtime.broadcaster import get_broadcaster

FARMERS = ["farmer-ana", "farmer-bruno", "farmer-carla"]
TRANSPORTERS = ["transporter-diego", "transporter-elisa"]
WAREHOUSES = ["warehouse-north", "warehouse-south"]
GOODS = [
    ("Basmati rice", "kg"),
    ("Red onions", "kg"),
    ("Alphonso mango", "crates"),
    ("Fresh milk", "litres"),
    ("Sunflower seeds", "bags"),
]

# Status each seeded delivery is driven to, and the walk that reaches it.
WALKS = {
    DeliveryStatus.PENDING: [],
    DeliveryStatus.ASSIGNED: [DeliveryStatus.ASSIGNED],
    DeliveryStatus.IN_TRANSIT: [DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT],
    DeliveryStatus.DELIVERED: [
        DeliveryStatus.ASSIGNED,
        DeliveryStatus.IN_TRANSIT,
        DeliveryStatus.DELIVERED,
    ],
    DeliveryStatus.CANCELLED: [DeliveryStatus.CANCELLED],
}


class Command(BaseCommand):
    help = "Seed database with sample deliveries in every status."

    def add_arguments(self, parser):
        parser.add_argument(
            "--per-status",
            type=int,
            default=2,
            help="Deliveries to create for each status.",
        )

    def handle(self, *args, **options):
        random.seed(42)
        self.stdout.write("Seeding development data...")

        repository = DeliveryDjangoRepository()
        deliveries = DeliveryService(
            delivery_repository=repository,
            route_resolver=RouteResolver(settings.DELIVERY_AVERAGE_SPEED_KMH),
        )
        transitions = DeliveryTransitionService(
            delivery_repository=repository,
            inventory_synchronizer=InventorySynchronizer(InventoryDjangoRepository()),
            broadcaster=get_broadcaster(),
        )
        tracking = DeliveryTrackingService(
            delivery_repository=repository, broadcaster=get_broadcaster()
        )
        admin = Actor(id="admin-seed", role=Role.ADMIN)

        created = 0
        for target, walk in WALKS.items():
            for _ in range(options["per_status"]):
                delivery = self._create(deliveries)
                for step in walk:
                    transitions.transition(
                        delivery.id,
                        step,
                        admin,
                        transporter_id=random.choice(TRANSPORTERS),
                        notes="Seeded",
                    )
                if target == DeliveryStatus.IN_TRANSIT:
                    self._report_midway(tracking, delivery.id)
                created += 1
            self.stdout.write(f"  {target}: {options['per_status']}")

        self.stdout.write(
            self.style.SUCCESS(
                f"Seed completed: deliveries={created}, "
                f"total_in_db={Delivery.objects.count()}"
            )
        )

    def _create(self, service: DeliveryService) -> Delivery:
        farmer = Actor(id=random.choice(FARMERS), role=Role.FARMER)
        goods, unit = random.choice(GOODS)
        pickup_lat = round(random.uniform(-23.7, -23.4), 6)
        pickup_lon = round(random.uniform(-46.8, -46.5), 6)
        dto = CreateDeliveryDTO(
            farmer_id=farmer.id,
            goods_description=goods,
            quantity=Decimal(random.randint(5, 500)),
            unit=unit,
            urgency=random.choice(Urgency.values),
            warehouse_id=random.choice(WAREHOUSES),
            pickup=CoordinatesDTO(
                latitude=pickup_lat,
                longitude=pickup_lon,
                address=f"Farm of {farmer.id}",
            ),
            dropoff=CoordinatesDTO(
                latitude=round(pickup_lat + random.uniform(0.05, 0.6), 6),
                longitude=round(pickup_lon + random.uniform(0.05, 0.6), 6),
                address="Central distribution hub",
            ),
        )
        return service.create_delivery(dto, farmer)

    def _report_midway(self, tracking: DeliveryTrackingService, delivery_id) -> None:
        delivery = Delivery.objects.get(id=delivery_id)
        transporter = Actor(id=delivery.transporter_id, role=Role.TRANSPORTER)
        tracking.report_location(
            delivery.id,
            transporter,
            latitude=(delivery.pickup_latitude + delivery.dropoff_latitude) / 2,
            longitude=(delivery.pickup_longitude + delivery.dropoff_longitude) / 2,
            speed_kmh=round(random.uniform(30, 70), 1),
        )
