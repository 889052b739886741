"""
Similarity search backed by a persistent chromadb collection.

Embeddings are left to the collection's default embedding function.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from ..errors import InvalidArgumentError, ProviderError
from ..knowledge import KnowledgeCollection, KnowledgeItem
from .base import KnowledgeStore

logger = logging.getLogger("ragbot.stores.chroma")

DEFAULT_COLLECTION = "ragbot_knowledge"


def get_chroma_client(persist_dir: str) -> Any:
    import chromadb

    return chromadb.PersistentClient(path=persist_dir)


class ChromaKnowledgeStore(KnowledgeStore):
    name = "chroma"

    def __init__(
        self,
        persist_dir: str = "./data/chroma",
        collection_name: str = DEFAULT_COLLECTION,
        collection: Optional[Any] = None,
    ) -> None:
        super().__init__()
        if not collection_name:
            raise InvalidArgumentError("collection_name must not be empty")
        self.persist_dir = persist_dir
        self.collection_name = collection_name
        self._collection = collection

    async def _start(self) -> None:
        if self._collection is None:
            self._collection = await asyncio.to_thread(self._open_collection)
        logger.info("Using chroma collection %s", self.collection_name)

    def _open_collection(self) -> Any:
        client = get_chroma_client(self.persist_dir)
        return client.get_or_create_collection(
            name=self.collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    async def _search(self, text: str, limit: int) -> KnowledgeCollection:
        try:
            raw = await asyncio.to_thread(
                self._collection.query,
                query_texts=[text],
                n_results=limit,
                include=["documents", "metadatas", "distances"],
            )
        except Exception as exc:
            raise ProviderError(f"chroma query failed: {exc}") from exc

        results = KnowledgeCollection()
        documents = (raw.get("documents") or [[]])[0]
        metadatas = (raw.get("metadatas") or [[]])[0]
        distances = (raw.get("distances") or [[]])[0]
        ids = (raw.get("ids") or [[]])[0]

        for i, document in enumerate(documents):
            if not document or not document.strip():
                continue
            meta = (metadatas[i] if i < len(metadatas) else None) or {}
            origin = meta.get("origin") or (ids[i] if i < len(ids) else self.collection_name)
            created_at = _parse_timestamp(meta.get("created_at"))
            distance = distances[i] if i < len(distances) else 1.0
            results.add(KnowledgeItem(content=document, origin=origin, created_at=created_at), 1.0 - distance)
        return results

    async def _add(self, item: KnowledgeItem) -> None:
        await asyncio.to_thread(
            self._collection.add,
            ids=[str(uuid.uuid4())],
            documents=[item.content],
            metadatas=[{"origin": item.origin, "created_at": item.created_at.isoformat()}],
        )


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, str):
        try:
            return datetime.fromisoformat(raw)
        except ValueError:
            pass
    return datetime.now(timezone.utc)
