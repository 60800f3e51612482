import json

from django.core.serializers.json import DjangoJSONEncoder
from rest_framework.renderers import BaseRenderer


class EventStreamRenderer(BaseRenderer):
    """Lets DRF content negotiation accept ``Accept: text/event-stream``.

    The stream body itself bypasses rendering; this only renders the JSON
    error bodies returned before a stream is opened.
    """

    media_type = "text/event-stream"
    format = "sse"
    charset = "utf-8"

    def render(self, data, accepted_media_type=None, renderer_context=None):
        if data is None:
            return b""
        return json.dumps(data, cls=DjangoJSONEncoder).encode(self.charset)
