"""E2E test fixtures for Playwright.

The pytest-playwright plugin automatically provides:
  - page: A new browser page for each test
  - context: A new browser context for each test
  - browser: A browser instance (session scope)

Override base_url with --base-url on the CLI:
    pytest -m e2e --base-url http://localhost:8000

Bearer tokens are minted locally with the Identity Service signing key,
read from the same environment variables the server uses.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Generator

import jwt
import pytest
from decouple import config
from playwright.sync_api import APIRequestContext, Playwright


@pytest.fixture(scope="session")
def base_url(request) -> str:
    """Provide base URL for Playwright tests.

    Uses --base-url CLI value if given, otherwise defaults to the
    Django dev server running inside the Docker container.
    """
    return request.config.getoption("base_url") or "http://localhost:8000"


@pytest.fixture(autouse=True)
def _use_db() -> None:
    """Override root conftest _use_db: e2e tests hit the server over HTTP
    and do not need the pytest-django ``db`` fixture (which conflicts
    with Playwright's async event-loop)."""


@pytest.fixture(scope="session")
def api_request_context(
    playwright: Playwright, base_url: str
) -> Generator[APIRequestContext, None, None]:
    """Playwright API context for direct HTTP calls."""
    context = playwright.request.new_context(base_url=base_url)
    yield context
    context.dispose()


@pytest.fixture(scope="session")
def token_for() -> Callable[[str, str], str]:
    """Factory: ``token_for(actor_id, role)`` returns a signed bearer token."""
    key = config("IDENTITY_SERVICE_SIGNING_KEY")
    algorithm = config("IDENTITY_SERVICE_ALGORITHM", default="HS256")
    issuer = config("IDENTITY_SERVICE_ISSUER", default="")

    def _mint(actor_id: str, role: str) -> str:
        claims = {
            "sub": actor_id,
            "role": role,
            "exp": datetime.now(timezone.utc) + timedelta(minutes=10),
        }
        if issuer:
            claims["iss"] = issuer
        return jwt.encode(claims, key, algorithm=algorithm)

    return _mint


@pytest.fixture(scope="session")
def auth_headers(token_for) -> Callable[[str, str], dict[str, str]]:
    def _headers(actor_id: str, role: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {token_for(actor_id, role)}",
            "Content-Type": "application/json",
        }

    return _headers
