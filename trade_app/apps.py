from django.apps import AppConfig


class TradeAppConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "trade_app"
    verbose_name = "Trades & Messaging"

    def ready(self):
        from . import signals  # noqa: F401
