"""WSGI entrypoint.

The live event stream is served as a streaming response, so run it under a
threaded worker class (e.g. ``gunicorn --threads``) to keep one slow
subscriber from occupying a whole process.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

application = get_wsgi_application()
