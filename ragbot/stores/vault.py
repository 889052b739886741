"""
Keyword search over a folder of Markdown notes (an Obsidian-style vault).
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Tuple

import yaml

from ..errors import InvalidArgumentError
from ..knowledge import KnowledgeCollection, KnowledgeItem
from .base import KnowledgeStore

logger = logging.getLogger("ragbot.stores.vault")

SCORE_PER_OCCURRENCE = 0.1


@dataclass
class Note:
    path: str
    body: str
    metadata: Dict[str, Any]


def split_front_matter(text: str) -> Tuple[Dict[str, Any], str]:
    """Return (front matter, body). Notes without valid front matter keep their full text."""
    if not text.startswith("---"):
        return {}, text
    parts = text.split("\n---", 1)
    if len(parts) != 2:
        return {}, text
    header = parts[0][3:]
    body = parts[1].split("\n", 1)[1] if "\n" in parts[1] else ""
    try:
        meta = yaml.safe_load(header) or {}
    except yaml.YAMLError:
        return {}, text
    if not isinstance(meta, dict):
        return {}, text
    return meta, body


def score_note(body: str, query: str) -> float:
    occurrences = body.lower().count(query.lower())
    return min(1.0, occurrences * SCORE_PER_OCCURRENCE)


class VaultKnowledgeStore(KnowledgeStore):
    name = "vault"

    def __init__(self, vault_path: str) -> None:
        super().__init__()
        if not vault_path:
            raise InvalidArgumentError("vault_path must not be empty")
        self.vault_path = Path(vault_path)
        self._notes: List[Note] = []

    async def _start(self) -> None:
        if not self.vault_path.is_dir():
            raise FileNotFoundError(f"Vault folder not found: {self.vault_path}")
        self._notes = await asyncio.to_thread(self._load_notes)
        logger.info("Loaded %d note(s) from %s", len(self._notes), self.vault_path)

    async def _stop(self) -> None:
        self._notes = []

    def _load_notes(self) -> List[Note]:
        notes: List[Note] = []
        for path in sorted(self.vault_path.rglob("*.md")):
            if any(part.startswith(".") for part in path.relative_to(self.vault_path).parts):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable note %s: %s", path, exc)
                continue
            meta, body = split_front_matter(text)
            if body.strip():
                notes.append(Note(path=str(path.relative_to(self.vault_path)), body=body.strip(), metadata=meta))
        return notes

    async def _search(self, text: str, limit: int) -> KnowledgeCollection:
        results = KnowledgeCollection()
        for note in self._notes:
            score = score_note(note.body, text)
            if score > 0:
                results.add(KnowledgeItem(content=note.body, origin=note.path), score)
        return results
