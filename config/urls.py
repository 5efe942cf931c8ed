"""
URL configuration for the enrichment agents.

/health/, /health/ready/  - monitoring probes
/agents/<pipeline>/       - POST {action, params} to a pipeline
"""

from django.urls import path, include

from agents.views_health import HealthCheckView, ReadinessCheckView

urlpatterns = [
    # Health checks
    path('health/', HealthCheckView.as_view(), name='health'),
    path('health/ready/', ReadinessCheckView.as_view(), name='health-ready'),

    path("agents/", include("agents.urls")),
]
