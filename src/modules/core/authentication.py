"""Identity Service bearer-token authentication for Django REST Framework.

Tokens are issued by the external Identity Service; this backend only
turns a bearer credential into an ``Actor`` (opaque id + role).  The core
trusts the resulting identity verbatim and owns no user table.

Security decisions
------------------
* **Fail Closed**: any decode / validation error returns 401.
* ``algorithms`` is hard-coded to the configured value (default HS256).
  Never derived from the incoming token (prevents algorithm-confusion
  attacks).
* Issuer is validated when configured; a token without a known ``role``
  claim is rejected.
"""

from __future__ import annotations

from dataclasses import dataclass

import jwt as pyjwt
import structlog
from django.conf import settings
from jwt.exceptions import PyJWTError
from rest_framework.authentication import BaseAuthentication
from rest_framework.exceptions import AuthenticationFailed

logger = structlog.get_logger(__name__)


class Role:
    FARMER = "farmer"
    TRANSPORTER = "transporter"
    WAREHOUSE_MANAGER = "warehouse_manager"
    ADMIN = "admin"

    ALL = frozenset({FARMER, TRANSPORTER, WAREHOUSE_MANAGER, ADMIN})


@dataclass(frozen=True)
class Actor:
    """Authenticated identity + role supplied by the Identity Service.

    Behaves enough like a Django user for DRF (``is_authenticated``,
    ``pk``) so permission classes and throttles work unchanged.
    """

    id: str
    role: str

    is_authenticated = True
    is_active = True

    @property
    def pk(self) -> str:
        return self.id

    def __str__(self) -> str:
        return f"{self.role}:{self.id}"


class IdentityServiceAuthentication(BaseAuthentication):
    """DRF authentication class for Identity Service JWT Bearer tokens."""

    keyword = "Bearer"

    # ------------------------------------------------------------------
    # Public API (DRF contract)
    # ------------------------------------------------------------------

    def authenticate(self, request):
        """Return ``(Actor, token)`` or ``None`` (no credentials)."""
        header = request.META.get("HTTP_AUTHORIZATION", "")
        if not header:
            return None

        token = self._extract_token(header)
        payload = self._decode_token(token)
        actor = self._actor_from_claims(payload)
        logger.info("identity.authenticated", actor_id=actor.id, role=actor.role)
        return (actor, token)

    def authenticate_header(self, request):
        """Value for the ``WWW-Authenticate`` response header on 401."""
        return f'{self.keyword} realm="api"'

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _extract_token(header: str) -> str:
        parts = header.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise AuthenticationFailed("Invalid Authorization header format.")
        return parts[1]

    @staticmethod
    def _decode_token(token: str) -> dict:
        key = settings.IDENTITY_SERVICE_SIGNING_KEY
        if not key:
            raise AuthenticationFailed(
                "Identity Service is not configured (signing key missing)."
            )
        issuer = settings.IDENTITY_SERVICE_ISSUER or None
        try:
            payload = pyjwt.decode(
                token,
                key,
                algorithms=[settings.IDENTITY_SERVICE_ALGORITHM],
                issuer=issuer,
                options={"require": ["sub", "role", "exp"]},
            )
        except PyJWTError as exc:
            logger.warning("identity.token_rejected", error=str(exc))
            raise AuthenticationFailed(f"Token validation failed: {exc}") from exc
        return payload

    @staticmethod
    def _actor_from_claims(payload: dict) -> Actor:
        role = payload.get("role", "")
        if role not in Role.ALL:
            logger.warning("identity.unknown_role", role=role)
            raise AuthenticationFailed("Token carries no recognised role.")
        return Actor(id=str(payload["sub"]), role=role)
