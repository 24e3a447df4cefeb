from django.apps import AppConfig


class CommissionsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "commissions"
    verbose_name = "業務分潤"

    def ready(self):
        from . import checks  # noqa: F401
