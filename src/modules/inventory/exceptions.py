"""Inventory domain exceptions."""

from __future__ import annotations

from shared.domain.exceptions import DomainError


class InventoryAccessForbidden(DomainError):
    """The actor's role has no access to inventory records."""

    code = "forbidden"
