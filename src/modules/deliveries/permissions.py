"""Permission Matrix for delivery transitions and visibility.

Authorization is a single declarative table consulted uniformly: each
graph edge ``(from, to)`` maps roles to a condition on the delivery.  A
role missing from an edge is denied.  Terminal states have no outgoing
edges, so nothing leaves ``delivered`` or ``cancelled`` for any role.

Everything here is pure: no I/O, no Django ORM access.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Dict, Tuple

from modules.core.authentication import Role
from modules.deliveries.constants import TERMINAL_STATES, DeliveryStatus

if TYPE_CHECKING:
    from modules.core.authentication import Actor
    from modules.deliveries.models import Delivery

Condition = Callable[["Delivery", "Actor"], bool]


def always(delivery: Delivery, actor: Actor) -> bool:
    return True


def if_assigned_transporter(delivery: Delivery, actor: Actor) -> bool:
    return delivery.transporter_id is not None and delivery.transporter_id == actor.id


def if_owner(delivery: Delivery, actor: Actor) -> bool:
    return delivery.farmer_id == actor.id


PERMISSION_MATRIX: Dict[Tuple[str, str], Dict[str, Condition]] = {
    (DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED): {
        Role.WAREHOUSE_MANAGER: always,
        Role.ADMIN: always,
    },
    (DeliveryStatus.ASSIGNED, DeliveryStatus.IN_TRANSIT): {
        Role.TRANSPORTER: if_assigned_transporter,
        Role.ADMIN: always,
    },
    (DeliveryStatus.IN_TRANSIT, DeliveryStatus.DELIVERED): {
        Role.TRANSPORTER: if_assigned_transporter,
        Role.WAREHOUSE_MANAGER: always,
        Role.ADMIN: always,
    },
    (DeliveryStatus.PENDING, DeliveryStatus.CANCELLED): {
        Role.FARMER: if_owner,
        Role.ADMIN: always,
    },
    (DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED): {
        Role.FARMER: if_owner,
        Role.ADMIN: always,
    },
}


def is_transition_allowed(
    delivery: Delivery, requested_status: str, actor: Actor
) -> bool:
    """Return ``True`` if *actor* may move *delivery* to *requested_status*."""
    rules = PERMISSION_MATRIX.get((delivery.status, requested_status), {})
    condition = rules.get(actor.role)
    if condition is None:
        return False
    return condition(delivery, actor)


# ---------------------------------------------------------------------------
# Visibility (listing, detail and route share one scope)
# ---------------------------------------------------------------------------


def can_view(delivery: Delivery, actor: Actor) -> bool:
    """Return ``True`` if *actor* may read *delivery*."""
    if actor.role in (Role.WAREHOUSE_MANAGER, Role.ADMIN):
        return True
    if actor.role == Role.FARMER:
        return delivery.farmer_id == actor.id
    if actor.role == Role.TRANSPORTER:
        if delivery.transporter_id == actor.id:
            return delivery.status not in TERMINAL_STATES
        return (
            delivery.transporter_id is None
            and delivery.status == DeliveryStatus.PENDING
        )
    return False


def can_create(actor: Actor) -> bool:
    return actor.role == Role.FARMER


# ---------------------------------------------------------------------------
# Location tracking
# ---------------------------------------------------------------------------


def can_report_location(delivery: Delivery, actor: Actor) -> bool:
    """Only the assigned transporter reports positions."""
    return actor.role == Role.TRANSPORTER and if_assigned_transporter(delivery, actor)


def can_track(delivery: Delivery, actor: Actor) -> bool:
    """Owner, assigned transporter, warehouse managers and admins."""
    if actor.role in (Role.WAREHOUSE_MANAGER, Role.ADMIN):
        return True
    if actor.role == Role.FARMER:
        return if_owner(delivery, actor)
    if actor.role == Role.TRANSPORTER:
        return if_assigned_transporter(delivery, actor)
    return False
