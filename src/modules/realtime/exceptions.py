"""Realtime subscription exceptions."""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class UnknownTopic(DomainError):
    """The requested topic does not exist."""

    code = "validation_error"


class SubscriptionForbidden(DomainError):
    """The actor's role may not subscribe to this topic."""

    code = "forbidden"
