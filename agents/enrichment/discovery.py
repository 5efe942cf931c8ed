"""
Web discovery via the Firecrawl search and scrape endpoints.

A missing API key soft-disables the source: ``search`` logs a warning and
returns an empty list, letting pipelines fall through to generation or
AI-only reasoning. Any non-2xx answer raises ``UpstreamHttpError`` so the
orchestrator can mark just that entity as failed.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from agents.enrichment.errors import UpstreamError, UpstreamHttpError
from agents.enrichment.provider_config import ProviderConfig
from agents.enrichment.records import CandidateDocument

logger = logging.getLogger(__name__)

PROVIDER = "discovery"


class FirecrawlSource:
    """Firecrawl-backed DiscoverySource."""

    def __init__(self, config: ProviderConfig):
        self.config = config
        self.api_key = config.discovery_api_key
        self.base_url = config.discovery_base_url.rstrip("/")
        self.available = bool(self.api_key)

    def _post(self, path: str, payload: dict) -> dict:
        try:
            resp = httpx.post(
                f"{self.base_url}/{path}",
                json=payload,
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                },
                timeout=self.config.request_timeout,
            )
        except httpx.HTTPError as exc:
            logger.error("Firecrawl %s request failed: %s", path, exc)
            raise UpstreamError(PROVIDER, f"Firecrawl {path} request failed: {exc}") from exc

        if resp.status_code >= 300:
            logger.error("Firecrawl %s returned HTTP %s", path, resp.status_code)
            raise UpstreamHttpError(PROVIDER, resp.status_code, resp.text)

        try:
            return resp.json()
        except ValueError as exc:
            raise UpstreamError(PROVIDER, f"Firecrawl {path} returned invalid JSON") from exc

    def search(self, query: str, limit: int = 5) -> list[CandidateDocument]:
        """Search the web and return markdown-scraped candidates."""
        if not self.available:
            logger.warning("Firecrawl API key not configured, skipping web discovery")
            return []

        data = self._post("search", {
            "query": query,
            "limit": limit,
            "scrapeOptions": {"formats": ["markdown"]},
        })

        results = []
        for item in (data.get("data") or [])[:limit]:
            url = item.get("url") or ""
            if not url:
                continue
            results.append(CandidateDocument(
                url=url,
                markdown=item.get("markdown") or item.get("description") or "",
                title=item.get("title") or "",
            ))

        logger.info("Firecrawl: %d results for '%s'", len(results), query[:60])
        return results

    def scrape(self, url: str) -> Optional[CandidateDocument]:
        """Fetch a single page as markdown. Returns None when disabled or empty."""
        if not self.available:
            logger.warning("Firecrawl API key not configured, skipping scrape of %s", url)
            return None

        data = self._post("scrape", {
            "url": url,
            "formats": ["markdown"],
            "onlyMainContent": True,
        })
        page = data.get("data") or {}
        markdown = page.get("markdown") or ""
        if not markdown:
            return None

        metadata = page.get("metadata") or {}
        return CandidateDocument(url=url, markdown=markdown, title=metadata.get("title") or "")
