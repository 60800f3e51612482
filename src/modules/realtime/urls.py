"""Realtime URL configuration."""

from __future__ import annotations

from django.urls import path

from modules.realtime.views import EventStreamView

urlpatterns = [
    path("events/stream/", EventStreamView.as_view(), name="event_stream"),
]
