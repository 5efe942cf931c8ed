"""
OpenAI-compatible AI gateway client.

All chat and image calls go through one gateway (OpenRouter by default) using
the ``openai`` SDK with a custom ``base_url``. The client never retries on
its own: a failed call raises and the orchestrator decides what happens to
the entity.
"""

import json
import logging
from typing import Optional

import openai

from agents.enrichment.circuit_breaker import CircuitBreaker, get_circuit_breaker
from agents.enrichment.errors import (
    CircuitOpenError,
    ConfigurationError,
    UpstreamError,
    UpstreamHttpError,
)
from agents.enrichment.json_extraction import extract_json
from agents.enrichment.provider_config import ProviderConfig

logger = logging.getLogger(__name__)

PROVIDER = "ai"


def _error_body(exc: openai.APIStatusError) -> str:
    body = getattr(exc, "body", None)
    if isinstance(body, (dict, list)):
        return json.dumps(body)
    if body:
        return str(body)
    response = getattr(exc, "response", None)
    return getattr(response, "text", "") or str(exc)


class AIClient:
    """Chat completion and image generation against the configured gateway."""

    def __init__(
        self,
        config: ProviderConfig,
        breaker: Optional[CircuitBreaker] = None,
        client=None,
    ):
        self.config = config
        self.breaker = breaker or get_circuit_breaker()
        self._client = client

    @property
    def available(self) -> bool:
        return self._client is not None or self.config.has_ai

    @property
    def client(self):
        if self._client is None:
            if not self.config.has_ai:
                raise ConfigurationError("AI_API_KEY not configured")
            self._client = openai.OpenAI(
                base_url=self.config.ai_base_url,
                api_key=self.config.ai_api_key,
                timeout=self.config.request_timeout,
                max_retries=0,
            )
        return self._client

    def invoke(
        self,
        system_prompt: str,
        user_prompt: str,
        model_id: str,
        image_url: Optional[str] = None,
    ) -> str:
        """Send one chat completion and return the raw assistant text.

        With *image_url* the user turn carries the image as a second content
        part, for vision-capable models.
        """
        self.breaker.check(model_id)

        user_content = user_prompt
        if image_url:
            user_content = [
                {"type": "text", "text": user_prompt},
                {"type": "image_url", "image_url": {"url": image_url}},
            ]

        try:
            response = self.client.chat.completions.create(
                model=model_id,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_content},
                ],
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIStatusError as e:
            self.breaker.record_failure(model_id)
            logger.error("AI call to %s failed with HTTP %s", model_id, e.status_code)
            raise UpstreamHttpError(PROVIDER, e.status_code, _error_body(e)) from e
        except openai.APIConnectionError as e:
            self.breaker.record_failure(model_id)
            logger.error("AI call to %s failed: %s", model_id, e)
            raise UpstreamError(PROVIDER, f"AI gateway unreachable: {e}") from e

        self.breaker.record_success(model_id)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    def invoke_role(
        self,
        role: str,
        system_prompt: str,
        user_prompt: str,
        image_url: Optional[str] = None,
    ) -> str:
        """Invoke the model configured for *role*, walking its fallback chain
        past any model whose circuit is open."""
        primary = self.config.model_for(role)
        chain = [primary] + [m for m in self.config.fallbacks_for(primary) if m != primary]

        last_open: Optional[CircuitOpenError] = None
        for model_id in chain:
            try:
                return self.invoke(system_prompt, user_prompt, model_id, image_url=image_url)
            except CircuitOpenError as e:
                logger.warning("Skipping %s for role %s: %s", model_id, role, e)
                last_open = e
        raise last_open

    def invoke_json(self, role: str, system_prompt: str, user_prompt: str, image_url: Optional[str] = None):
        """Invoke *role* and return ``(parsed_json_or_None, raw_text)``."""
        raw = self.invoke_role(role, system_prompt, user_prompt, image_url=image_url)
        return extract_json(raw), raw

    def generate_image(self, prompt: str, model_id: Optional[str] = None) -> Optional[str]:
        """Generate one 1024x1024 image and return its URL, or None."""
        model_id = model_id or self.config.model_for("image_generation")
        self.breaker.check(model_id)

        try:
            response = self.client.images.generate(
                model=model_id,
                prompt=prompt,
                n=1,
                size="1024x1024",
            )
        except openai.APIStatusError as e:
            self.breaker.record_failure(model_id)
            logger.error("Image generation with %s failed with HTTP %s", model_id, e.status_code)
            raise UpstreamHttpError(PROVIDER, e.status_code, _error_body(e)) from e
        except openai.APIConnectionError as e:
            self.breaker.record_failure(model_id)
            raise UpstreamError(PROVIDER, f"AI gateway unreachable: {e}") from e

        self.breaker.record_success(model_id)
        data = getattr(response, "data", None) or []
        if not data:
            return None
        return getattr(data[0], "url", None) or None
