from __future__ import annotations

import logging
from typing import Optional

from .errors import InvalidArgumentError
from .knowledge import KnowledgeCollection, KnowledgeItem
from .stores.base import KnowledgeStore

logger = logging.getLogger("ragbot.retrieval")

DEFAULT_TOKENS_PER_ITEM = 128


class RetrievalGateway:
    """
    Front for whichever KnowledgeStore is wired in.

    `retrieve` caps the number of results by how much prompt budget is left,
    assuming each item costs roughly `tokens_per_item` tokens.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        max_results: int = 8,
        tokens_per_item: int = DEFAULT_TOKENS_PER_ITEM,
    ) -> None:
        if max_results < 0:
            raise InvalidArgumentError("max_results must be >= 0")
        if tokens_per_item < 1:
            raise InvalidArgumentError("tokens_per_item must be >= 1")
        self.store = store
        self.max_results = max_results
        self.tokens_per_item = tokens_per_item

    async def start(self) -> None:
        await self.store.start()

    async def stop(self) -> None:
        await self.store.stop()

    async def query(self, text: str, max_results: Optional[int] = None) -> KnowledgeCollection:
        return await self.store.query(text, self.max_results if max_results is None else max_results)

    async def add_item(self, item: KnowledgeItem) -> None:
        await self.store.add_item(item)

    def result_cap(self, token_budget: int) -> int:
        if token_budget <= 0:
            return 0
        return min(self.max_results, token_budget // self.tokens_per_item)

    async def retrieve(self, text: str, token_budget: int) -> KnowledgeCollection:
        if text is None or not text.strip():
            raise InvalidArgumentError("Query must not be empty")
        cap = self.result_cap(token_budget)
        if cap == 0:
            logger.debug("No token budget left for knowledge (budget=%d)", token_budget)
            return KnowledgeCollection()
        return await self.query(text, cap)
