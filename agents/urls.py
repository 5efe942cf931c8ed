from django.urls import path

from agents.views import PipelineActionView

app_name = "agents"

urlpatterns = [
    path("<slug:pipeline>/", PipelineActionView.as_view(), name="pipeline-action"),
]
