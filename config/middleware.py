"""
Django middleware for request-level correlation ID tracking.
"""
import uuid

from config.logging_filters import correlation_scope


class CorrelationIdMiddleware:
    """Use the caller's X-Correlation-ID (or a fresh one) for the whole request."""

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        cid = request.headers.get("X-Correlation-ID") or uuid.uuid4().hex[:8]
        with correlation_scope(cid):
            response = self.get_response(request)
        response["X-Correlation-ID"] = cid
        return response
