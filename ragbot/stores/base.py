"""
Knowledge store interface.

Concrete stores implement `_start`, `_stop` and `_search`; argument checks and
lifecycle enforcement live here so every backend behaves the same way.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import InvalidArgumentError, LifecycleError, NotSupportedError
from ..knowledge import KnowledgeCollection, KnowledgeItem

logger = logging.getLogger("ragbot.stores")

DEFAULT_MAX_RESULTS = 10


class KnowledgeStore(ABC):
    name = "knowledge"

    def __init__(self) -> None:
        self._started = False

    @property
    def is_started(self) -> bool:
        return self._started

    async def start(self) -> None:
        if self._started:
            raise LifecycleError(f"{self.name} store is already started")
        await self._start()
        self._started = True
        logger.info("%s store started", self.name)

    async def stop(self) -> None:
        if not self._started:
            raise LifecycleError(f"{self.name} store is not started")
        try:
            await self._stop()
        finally:
            self._started = False
        logger.info("%s store stopped", self.name)

    async def query(self, text: str, max_results: Optional[int] = None) -> KnowledgeCollection:
        if text is None or not text.strip():
            raise InvalidArgumentError("Query must not be empty")
        if max_results is not None and max_results < 0:
            raise InvalidArgumentError(f"max_results must be >= 0, got {max_results}")
        if not self._started:
            raise LifecycleError(f"{self.name} store must be started before querying")

        limit = DEFAULT_MAX_RESULTS if max_results is None else max_results
        if limit == 0:
            return KnowledgeCollection()
        results = await self._search(text.strip(), limit)
        return results.top_n(limit)

    async def add_item(self, item: KnowledgeItem) -> None:
        if item is None:
            raise InvalidArgumentError("Knowledge item must not be None")
        if not self._started:
            raise LifecycleError(f"{self.name} store must be started before adding items")
        await self._add(item)

    async def _start(self) -> None:
        return None

    async def _stop(self) -> None:
        return None

    @abstractmethod
    async def _search(self, text: str, limit: int) -> KnowledgeCollection:  # pragma: no cover - interface only
        raise NotImplementedError

    async def _add(self, item: KnowledgeItem) -> None:
        raise NotSupportedError(f"{self.name} store does not support adding items")
