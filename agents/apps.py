from django.apps import AppConfig


class AgentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "agents"
    verbose_name = "Enrichment agents"

    def ready(self):
        from config import checks  # noqa: F401  registers system checks
