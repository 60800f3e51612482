from django.apps import AppConfig


class DeliveriesConfig(AppConfig):
    name = "modules.deliveries"
    label = "deliveries"
