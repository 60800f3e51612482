from django.apps import AppConfig
from django.conf import settings


class RealtimeConfig(AppConfig):
    name = "modules.realtime"
    label = "realtime"

    def ready(self) -> None:
        from modules.realtime.broadcaster import EventBroadcaster

        self.broadcaster = EventBroadcaster(
            queue_size=settings.REALTIME_SUBSCRIBER_QUEUE_SIZE
        )
