from __future__ import annotations

from typing import Dict, List, Optional

import pytest

from ragbot.agent_config import AgentConfig
from ragbot.channels.base import MessageChannel
from ragbot.errors import TransportError
from ragbot.knowledge import KnowledgeCollection, KnowledgeItem
from ragbot.models import Message
from ragbot.providers import BaseProvider
from ragbot.storage.context_store import ContextStore
from ragbot.stores.base import KnowledgeStore


class MemoryContextStore(ContextStore):
    def __init__(self) -> None:
        self.data: Dict[str, bytes] = {}
        self.saves = 0

    def load(self, name: str) -> Optional[bytes]:
        return self.data.get(name)

    def save(self, name: str, data: bytes) -> None:
        self.saves += 1
        self.data[name] = data


class RecordingChannel(MessageChannel):
    name = "recording"

    def __init__(self) -> None:
        super().__init__()
        self.sent: List[Message] = []

    async def _send(self, message: Message) -> None:
        self.sent.append(message)


class FailingProvider(BaseProvider):
    name = "failing"

    def __init__(self) -> None:
        super().__init__()
        self.calls = 0

    async def _complete(self, prompt, *, schema=None) -> str:
        self.calls += 1
        raise TransportError("connection refused")


class RecordingKnowledgeStore(KnowledgeStore):
    name = "recording"

    def __init__(self, results: Optional[List[tuple]] = None) -> None:
        super().__init__()
        self.results = results or []
        self.searches: List[tuple] = []

    async def _search(self, text: str, limit: int) -> KnowledgeCollection:
        self.searches.append((text, limit))
        collection = KnowledgeCollection()
        for content, score in self.results:
            collection.add(KnowledgeItem(content=content, origin=f"test://{content[:10]}"), score)
        return collection


@pytest.fixture
def agent_config() -> AgentConfig:
    return AgentConfig(name="Bob", system_prompt="You are Bob", announce_on_start=False)


@pytest.fixture
def memory_store() -> MemoryContextStore:
    return MemoryContextStore()
