"""
Django settings for the techno archive enrichment agents.

The pipelines talk to the archive database directly through psycopg2
(DATABASE_URL); Django only provides the HTTP surface, management
commands and settings.
"""

import os
from pathlib import Path
from dotenv import load_dotenv

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env file
load_dotenv(BASE_DIR / ".env")

# Environment variables (with defaults for development)
SECRET_KEY = os.environ.get(
    "SECRET_KEY",
    "django-insecure-dev-key-change-in-production"
)

DEBUG = os.environ.get("DEBUG", "True").lower() == "true"

ALLOWED_HOSTS = os.environ.get("ALLOWED_HOSTS", "localhost,127.0.0.1").split(",")

# API Keys (loaded from environment)
AI_API_KEY = os.environ.get("AI_API_KEY", "") or os.environ.get("OPENROUTER_API_KEY", "")
AI_BASE_URL = os.environ.get("AI_BASE_URL", "https://openrouter.ai/api/v1")
FIRECRAWL_API_KEY = os.environ.get("FIRECRAWL_API_KEY", "") or os.environ.get("FIRECRAWL_API_KEY_1", "")
FIRECRAWL_BASE_URL = os.environ.get("FIRECRAWL_BASE_URL", "https://api.firecrawl.dev/v1")

# Archive database (read/written by the pipelines via psycopg2)
DATABASE_URL = os.environ.get("DATABASE_URL", "")

# Alerting
SLACK_WEBHOOK_URL = os.environ.get("SLACK_WEBHOOK_URL", "")
ALERT_EMAIL = os.environ.get("ALERT_EMAIL", "")

# Application definition
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django.contrib.auth",
    # Local apps
    "agents.apps.AgentsConfig",
]

MIDDLEWARE = [
    "config.middleware.CorrelationIdMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "django.middleware.common.CommonMiddleware",
]

ROOT_URLCONF = "config.urls"

WSGI_APPLICATION = "config.wsgi.application"

# Django's own database is unused by the pipelines.
DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": BASE_DIR / "db.sqlite3",
    }
}

# Internationalization
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Default primary key field type
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# Logging
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "filters": {
        "correlation_id": {"()": "config.logging_filters.CorrelationIdFilter"},
    },
    "formatters": {
        "standard": {
            "format": "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s: %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "standard",
            "filters": ["correlation_id"],
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "httpx": {"level": "WARNING"},
        "openai": {"level": "WARNING"},
    },
}

# Pipeline Configuration
# Model ids are OpenRouter slugs; any OpenAI-compatible gateway works via AI_BASE_URL.
PIPELINE_CONFIG = {
    "model_roles": {
        "extraction": os.environ.get("MODEL_EXTRACTION", "google/gemini-2.5-flash"),
        "validation": os.environ.get("MODEL_VALIDATION", "anthropic/claude-sonnet-4"),
        "consensus_a": os.environ.get("MODEL_CONSENSUS_A", "openai/gpt-5-mini"),
        "consensus_b": os.environ.get("MODEL_CONSENSUS_B", "anthropic/claude-sonnet-4"),
        "discovery": os.environ.get("MODEL_DISCOVERY", "google/gemini-2.5-flash-lite"),
        "drafting": os.environ.get("MODEL_DRAFTING", "openai/gpt-5"),
        "vision": os.environ.get("MODEL_VISION", "google/gemini-2.5-flash"),
        "image_generation": os.environ.get("MODEL_IMAGE", "black-forest-labs/flux-schnell"),
    },
    "temperature": 0.3,
    "max_tokens": 4000,
    "request_timeout": 60,
    # Minimum seconds between calls, per provider
    "rate_limits": {
        "discovery": 0.5,
        "ai": 0.3,
        "image_generation": 2.0,
        "consensus": 2.0,
    },
    "min_confidence": 60,
    "manager_min_confidence": 50,
    "collective_min_confidence": 50,
    "media_batch_size": 5,
    "queue_page_size": 500,
    "media_verify_images": True,
    "consensus_agreement_fields": {},
}

# Production Security Settings
if not DEBUG:
    SECURE_SSL_REDIRECT = True
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SECURE_HSTS_SECONDS = 31536000
    SECURE_HSTS_INCLUDE_SUBDOMAINS = True
