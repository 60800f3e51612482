"""Delivery domain exceptions.

Raised by the Service Layer when a request cannot be honoured.  Every
exception carries a stable ``code`` and a ``retryable`` flag; the API
layer (Views) translates them into HTTP responses with the body
``{"code", "detail", "retryable"}``.
"""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class DeliveryNotFound(DomainError):
    """The requested delivery does not exist."""

    code = "not_found"


class TransitionForbidden(DomainError):
    """The actor's role does not permit this operation."""

    code = "forbidden"


class InvalidTransition(DomainError):
    """The requested status is not reachable from the current status."""

    code = "invalid_transition"


class MissingCoordinates(DomainError):
    """Pickup or dropoff coordinates are not set on the delivery."""

    code = "missing_coordinates"


class VersionConflict(DomainError):
    """The delivery changed since the caller read it."""

    code = "conflict"
    retryable = True


class DeliveryValidationError(DomainError):
    """The request is malformed."""

    code = "validation_error"


class DeliveryUnavailable(DomainError):
    """Storage or a required side effect is temporarily unavailable."""

    code = "unavailable"
    retryable = True


class TrackingInactive(DomainError):
    """Location reports are only accepted while a delivery is on the move."""

    code = "tracking_inactive"
