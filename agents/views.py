"""
HTTP entry point for the enrichment pipelines.

POST /agents/<pipeline>/  {"action": "...", "params": {...}}
"""
import json
import logging

from django.http import JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt

from agents.enrichment.errors import PipelineError
from agents.enrichment.pipelines import get_pipeline

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    402: "AI credits exhausted. Please add funds.",
    429: "Rate limit exceeded. Please wait and try again.",
}


def error_response(message: str, status: int) -> JsonResponse:
    return JsonResponse({"success": False, "error": message}, status=status)


@method_decorator(csrf_exempt, name='dispatch')
class PipelineActionView(View):
    """Run one pipeline action and return its JSON body."""

    def post(self, request, pipeline):
        try:
            payload = json.loads(request.body or b"{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            return error_response("Invalid JSON", 400)

        if not isinstance(payload, dict):
            return error_response("Request body must be a JSON object", 400)
        action = payload.get("action")
        if not action or not isinstance(action, str):
            return error_response("action is required", 400)
        params = payload.get("params") or {}
        if not isinstance(params, dict):
            return error_response("params must be a JSON object", 400)

        try:
            body = get_pipeline(pipeline).handle(action, params)
        except PipelineError as e:
            status = e.http_status
            if status >= 500:
                logger.error("%s %s failed: %s", pipeline, action, e)
            else:
                logger.info("%s %s rejected (%d): %s", pipeline, action, status, e)
            return error_response(STATUS_MESSAGES.get(status, str(e)), status)
        except Exception as e:
            logger.exception("%s %s crashed", pipeline, action)
            return error_response(str(e) or type(e).__name__, 500)

        return JsonResponse(body)
