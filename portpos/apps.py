from django.apps import AppConfig


class PortposConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "portpos"
    verbose_name = "PortPos payments"

    def ready(self):
        from .gateway import PortPosGateway, register
        register(PortPosGateway.name, PortPosGateway())
