"""Generic repository interface (Dependency Inversion Principle).

Provides ``IRepository[T]``, the base abstract class that all
domain-specific repository interfaces extend.  Service-layer code
depends on this abstraction, never on Django ORM directly.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Generic, Protocol, TypeVar

from django.db import models

if TYPE_CHECKING:
    from modules.core.authentication import Actor

T = TypeVar("T")
T_co = TypeVar("T_co", covariant=True)


class Queryable(Protocol[T_co]):
    def filter(self, **kwargs: Any) -> models.QuerySet: ...


class IRepository(ABC, Generic[T]):
    """Base generic repository contract.

    Type parameter ``T`` represents the domain entity managed by the
    repository (e.g. ``Delivery``, ``InventoryRecord``).  Every read
    surface is scoped to an actor; there is no unscoped listing.
    """

    @abstractmethod
    def visible_to(self, actor: Actor) -> Queryable[T]:
        """Entities the actor is allowed to see."""
