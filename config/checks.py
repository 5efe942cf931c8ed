"""
Django system checks for required configuration.

Runs automatically on `manage.py runserver`, `check`, and management
commands such as `run_pipeline`.
"""
from django.conf import settings
from django.core.checks import Error, Warning, register


@register()
def check_required_settings(app_configs, **kwargs):
    errors = []

    # W001: AI key; without it only status/export actions work
    if not getattr(settings, "AI_API_KEY", ""):
        errors.append(Warning(
            "No AI API key configured.",
            hint="Set AI_API_KEY or OPENROUTER_API_KEY in .env",
            id="agents.W001",
        ))

    # W002: discovery is optional; pipelines fall back to AI-only or generation
    if not getattr(settings, "FIRECRAWL_API_KEY", ""):
        errors.append(Warning(
            "Firecrawl API key not configured.",
            hint="Set FIRECRAWL_API_KEY to enable web discovery.",
            id="agents.W002",
        ))

    # E001: DATABASE_URL required in production
    if not settings.DEBUG and not getattr(settings, "DATABASE_URL", ""):
        errors.append(Error(
            "DATABASE_URL not set in production.",
            hint="Set DATABASE_URL for the archive PostgreSQL connection.",
            id="agents.E001",
        ))

    # E002: Insecure SECRET_KEY in production
    if not settings.DEBUG and "insecure" in settings.SECRET_KEY:
        errors.append(Error(
            "SECRET_KEY contains 'insecure' and is not safe for production.",
            hint="Generate a secure SECRET_KEY.",
            id="agents.E002",
        ))

    return errors
