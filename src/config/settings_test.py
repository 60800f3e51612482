"""Settings for the pytest suite.

Provides the values that production reads from the environment and swaps
network-backed services (Redis cache, Celery broker) for in-process ones.
"""

import os

os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("IDENTITY_SERVICE_SIGNING_KEY", "test-identity-signing-key")
os.environ.setdefault("IDENTITY_SERVICE_ISSUER", "https://identity.test/")

from config.settings import *  # noqa: E402,F401,F403
from config.settings import REST_FRAMEWORK  # noqa: E402

CACHES = {
    "default": {
        "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
        "LOCATION": "delivery-engine-tests",
    }
}

CELERY_TASK_ALWAYS_EAGER = True
CELERY_TASK_EAGER_PROPAGATES = True

REST_FRAMEWORK = {**REST_FRAMEWORK, "DEFAULT_THROTTLE_CLASSES": []}

REALTIME_HEARTBEAT_SECONDS = 0.05
REALTIME_STREAM_MAX_SECONDS = 0.3
