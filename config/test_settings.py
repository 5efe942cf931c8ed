"""
Test settings: no credentials, no external services.

Pipelines under test get an in-memory store and mocked providers; blanking
the keys here keeps an accidental real call from ever authenticating.
"""

from config.settings import *  # noqa: F401, F403

AI_API_KEY = ""
FIRECRAWL_API_KEY = ""
DATABASE_URL = ""
SLACK_WEBHOOK_URL = ""
ALERT_EMAIL = ""

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
