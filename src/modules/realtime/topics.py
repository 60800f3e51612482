"""Live event topics, their payloads and who may see them.

Visibility is declarative: ``TOPIC_VISIBILITY[topic][role]`` is a
predicate over the payload.  A role absent from a topic may not
subscribe to it at all.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Callable, Dict

from django.utils import timezone

from modules.core.authentication import Role

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.deliveries.models import Delivery, DeliveryLocation
    from modules.inventory.models import InventoryAdjustment

DELIVERY_STATUS_CHANGED = "delivery_status_changed"
DELIVERY_COMPLETED = "delivery_completed"
INVENTORY_UPDATED = "inventory_updated"
DELIVERY_LOCATION_UPDATED = "delivery_location_updated"

Visibility = Callable[[Dict[str, Any], "Actor"], bool]


def _everything(payload: Dict[str, Any], actor: Actor) -> bool:
    return True


def _owned_by(key: str) -> Visibility:
    def predicate(payload: Dict[str, Any], actor: Actor) -> bool:
        return payload.get(key) == actor.id

    return predicate


TOPIC_VISIBILITY: Dict[str, Dict[str, Visibility]] = {
    DELIVERY_STATUS_CHANGED: {
        Role.FARMER: _owned_by("farmerId"),
        Role.TRANSPORTER: _everything,
        Role.WAREHOUSE_MANAGER: _everything,
        Role.ADMIN: _everything,
    },
    DELIVERY_COMPLETED: {
        Role.FARMER: _owned_by("farmerId"),
        Role.TRANSPORTER: _everything,
        Role.WAREHOUSE_MANAGER: _everything,
        Role.ADMIN: _everything,
    },
    INVENTORY_UPDATED: {
        Role.FARMER: _owned_by("ownerId"),
        Role.WAREHOUSE_MANAGER: _everything,
        Role.ADMIN: _everything,
    },
    DELIVERY_LOCATION_UPDATED: {
        Role.FARMER: _owned_by("farmerId"),
        Role.TRANSPORTER: _owned_by("transporterId"),
        Role.WAREHOUSE_MANAGER: _everything,
        Role.ADMIN: _everything,
    },
}

ALL_TOPICS = frozenset(TOPIC_VISIBILITY)


def can_subscribe(topic: str, actor: Actor) -> bool:
    return actor.role in TOPIC_VISIBILITY.get(topic, {})


def is_visible(topic: str, payload: Dict[str, Any], actor: Actor) -> bool:
    predicate = TOPIC_VISIBILITY.get(topic, {}).get(actor.role)
    return predicate is not None and predicate(payload, actor)


# ---------------------------------------------------------------------------
# Payload builders
# ---------------------------------------------------------------------------


def delivery_status_changed_payload(
    delivery: Delivery, previous_status: str
) -> Dict[str, Any]:
    return {
        "deliveryId": str(delivery.id),
        "farmerId": delivery.farmer_id,
        "transporterId": delivery.transporter_id,
        "previousStatus": previous_status,
        "status": delivery.status,
        "version": delivery.version,
        "timestamp": delivery.updated_at.isoformat(),
    }


def delivery_completed_payload(delivery: Delivery) -> Dict[str, Any]:
    completed_at = delivery.delivered_at or timezone.now()
    return {
        "deliveryId": str(delivery.id),
        "farmerId": delivery.farmer_id,
        "transporterId": delivery.transporter_id,
        "timestamp": completed_at.isoformat(),
    }


def inventory_updated_payload(adjustment: InventoryAdjustment) -> Dict[str, Any]:
    record = adjustment.inventory_record
    return {
        "type": "increase",
        "ownerId": record.owner_id,
        "itemName": record.item_name,
        "quantity": str(adjustment.quantity),
        "location": record.location,
        "timestamp": adjustment.created_at.isoformat(),
    }


def delivery_location_updated_payload(
    delivery: Delivery, location: DeliveryLocation
) -> Dict[str, Any]:
    return {
        "deliveryId": str(delivery.id),
        "farmerId": delivery.farmer_id,
        "transporterId": location.transporter_id,
        "latitude": location.latitude,
        "longitude": location.longitude,
        "speedKmh": location.speed_kmh,
        "heading": location.heading,
        "accuracyM": location.accuracy_m,
        "timestamp": location.recorded_at.isoformat(),
    }
