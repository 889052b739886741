"""
Web search results (SerpAPI Google engine) as a knowledge source.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx

from ..errors import InvalidArgumentError, ProviderError, TransportError
from ..knowledge import KnowledgeCollection, KnowledgeItem
from .base import KnowledgeStore

logger = logging.getLogger("ragbot.stores.websearch")

SERPAPI_URL = "https://serpapi.com/search.json"


class WebSearchKnowledgeStore(KnowledgeStore):
    name = "websearch"

    def __init__(
        self,
        api_key: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
    ) -> None:
        super().__init__()
        if not api_key:
            raise InvalidArgumentError("SerpAPI key must not be empty")
        self.api_key = api_key
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    async def _start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)

    async def _stop(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _search(self, text: str, limit: int) -> KnowledgeCollection:
        params = {
            "engine": "google",
            "q": text,
            "hl": "en",
            "google_domain": "google.com",
            "num": limit,
            "api_key": self.api_key,
        }
        try:
            resp = await self._client.get(SERPAPI_URL, params=params)
            resp.raise_for_status()
            data: Dict[str, Any] = resp.json()
        except httpx.HTTPError as exc:
            raise TransportError(f"Web search failed: {exc}") from exc
        except ValueError as exc:
            raise ProviderError(f"Web search returned invalid JSON: {exc}") from exc

        results = KnowledgeCollection()
        for result in data.get("organic_results") or []:
            if len(results) >= limit:
                break
            link = result.get("link")
            content = f"{result.get('title') or ''}\n{result.get('snippet') or ''}".strip()
            if not link or not content:
                continue
            results.add(KnowledgeItem(content=content, origin=link), 1.0 / (len(results) + 1))
        logger.debug("Web search for %r returned %d result(s)", text, len(results))
        return results
