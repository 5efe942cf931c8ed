"""
Health check endpoints for monitoring.

/health/       - Liveness check (always returns 200)
/health/ready/ - Readiness check (verifies datastore and provider credentials)
"""
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from agents.enrichment.errors import PipelineError

logger = logging.getLogger(__name__)


@method_decorator(csrf_exempt, name='dispatch')
class HealthCheckView(View):
    """Liveness probe. Always returns 200 if Django is running."""

    def get(self, request):
        return JsonResponse({"status": "ok"})


@method_decorator(csrf_exempt, name='dispatch')
class ReadinessCheckView(View):
    """Readiness probe: datastore reachable and AI credential present."""

    def get(self, request):
        from agents.enrichment.datastore import get_store
        from agents.enrichment.provider_config import ProviderConfig

        checks = {}

        try:
            get_store().ping()
            checks["datastore"] = "ok"
        except PipelineError as e:
            logger.warning("Readiness: datastore check failed: %s", e)
            checks["datastore"] = f"error: {e}"

        config = ProviderConfig.from_settings()
        checks["api_keys"] = {
            "ai_key": config.has_ai,
            # optional: discovery degrades to AI-only
            "discovery_key": config.has_discovery,
        }

        all_ok = checks["datastore"] == "ok" and checks["api_keys"]["ai_key"]

        return JsonResponse(
            {"status": "ready" if all_ok else "degraded", "checks": checks},
            status=200 if all_ok else 503,
        )
