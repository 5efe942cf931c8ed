"""
Provider configuration resolved once per request.

Every AI caller and discovery source receives a ``ProviderConfig`` instead
of reading the environment at call time, so components can be built with
fake credentials in tests.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Mapping

from agents.enrichment.errors import ConfigurationError

DEFAULT_AI_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_DISCOVERY_BASE_URL = "https://api.firecrawl.dev/v1"

# role -> model id. Fast model for high-volume structuring, stronger model for
# validation/consensus, low-latency model for freshness and discovery scans.
DEFAULT_MODEL_ROLES: dict[str, str] = {
    "extraction": "google/gemini-2.5-flash",
    "validation": "anthropic/claude-sonnet-4",
    "consensus_a": "openai/gpt-5-mini",
    "consensus_b": "anthropic/claude-sonnet-4",
    "discovery": "google/gemini-2.5-flash-lite",
    "drafting": "openai/gpt-5",
    "vision": "google/gemini-2.5-flash",
    "image_generation": "black-forest-labs/flux-schnell",
}

DEFAULT_MODEL_FALLBACKS: dict[str, list[str]] = {
    "google/gemini-2.5-flash": ["openai/gpt-5-mini", "google/gemini-2.5-flash-lite"],
    "google/gemini-2.5-pro": ["openai/gpt-5", "google/gemini-2.5-flash"],
    "openai/gpt-5": ["google/gemini-2.5-pro", "openai/gpt-5-mini"],
    "openai/gpt-5-mini": ["google/gemini-2.5-flash", "openai/gpt-5-nano"],
}

# provider id -> minimum seconds between calls
DEFAULT_RATE_LIMITS: dict[str, float] = {
    "discovery": 0.5,
    "ai": 0.3,
    "image_generation": 2.0,
    "consensus": 2.0,
}


@dataclass(frozen=True)
class ProviderConfig:
    """Credentials, endpoints and model roles for the external providers."""

    ai_api_key: str = ""
    ai_base_url: str = DEFAULT_AI_BASE_URL
    discovery_api_key: str = ""
    discovery_base_url: str = DEFAULT_DISCOVERY_BASE_URL
    model_roles: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_MODEL_ROLES))
    model_fallbacks: Mapping[str, list[str]] = field(default_factory=lambda: dict(DEFAULT_MODEL_FALLBACKS))
    rate_limits: Mapping[str, float] = field(default_factory=lambda: dict(DEFAULT_RATE_LIMITS))
    temperature: float = 0.3
    max_tokens: int = 4000
    request_timeout: float = 60.0

    def __post_init__(self):
        # Freeze the mappings so a shared config cannot drift mid-request.
        object.__setattr__(self, "model_roles", MappingProxyType(dict(self.model_roles)))
        object.__setattr__(self, "model_fallbacks", MappingProxyType(dict(self.model_fallbacks)))
        object.__setattr__(self, "rate_limits", MappingProxyType(dict(self.rate_limits)))

    @property
    def has_ai(self) -> bool:
        return bool(self.ai_api_key)

    @property
    def has_discovery(self) -> bool:
        return bool(self.discovery_api_key)

    def model_for(self, role: str) -> str:
        """Return the model id configured for *role*."""
        try:
            return self.model_roles[role]
        except KeyError:
            raise ConfigurationError(f"No model configured for role '{role}'") from None

    def fallbacks_for(self, model_id: str) -> list[str]:
        return list(self.model_fallbacks.get(model_id, []))

    @classmethod
    def from_settings(cls, settings=None) -> "ProviderConfig":
        """Build a config from Django settings, falling back to the environment."""
        if settings is None:
            from django.conf import settings

        pipeline_config: dict = getattr(settings, "PIPELINE_CONFIG", {}) or {}

        def _setting(name: str, *env_names: str, default: str = "") -> str:
            value = getattr(settings, name, "") or ""
            for env_name in env_names:
                value = value or os.environ.get(env_name, "")
            return value or default

        roles = dict(DEFAULT_MODEL_ROLES)
        roles.update(pipeline_config.get("model_roles", {}))
        fallbacks = dict(DEFAULT_MODEL_FALLBACKS)
        fallbacks.update(pipeline_config.get("model_fallbacks", {}))
        rate_limits = dict(DEFAULT_RATE_LIMITS)
        rate_limits.update(pipeline_config.get("rate_limits", {}))

        return cls(
            ai_api_key=_setting("AI_API_KEY", "AI_API_KEY", "OPENROUTER_API_KEY"),
            ai_base_url=_setting("AI_BASE_URL", "AI_BASE_URL", default=DEFAULT_AI_BASE_URL),
            discovery_api_key=_setting("FIRECRAWL_API_KEY", "FIRECRAWL_API_KEY", "FIRECRAWL_API_KEY_1"),
            discovery_base_url=_setting(
                "FIRECRAWL_BASE_URL", "FIRECRAWL_BASE_URL", default=DEFAULT_DISCOVERY_BASE_URL,
            ),
            model_roles=roles,
            model_fallbacks=fallbacks,
            rate_limits=rate_limits,
            temperature=float(pipeline_config.get("temperature", 0.3)),
            max_tokens=int(pipeline_config.get("max_tokens", 4000)),
            request_timeout=float(pipeline_config.get("request_timeout", 60.0)),
        )

