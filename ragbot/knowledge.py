"""
Knowledge items and score-ordered collections returned by retrieval.
"""

from __future__ import annotations

import bisect
import json
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, NamedTuple, Optional

from .errors import FormatError, InvalidArgumentError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class KnowledgeItem:
    content: str
    origin: str
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        content = (self.content or "").strip()
        origin = (self.origin or "").strip()
        if not content:
            raise InvalidArgumentError("Knowledge content must not be empty")
        if not origin:
            raise InvalidArgumentError("Knowledge origin must not be empty")
        object.__setattr__(self, "content", content)
        object.__setattr__(self, "origin", origin)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "content": self.content,
            "origin": self.origin,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "KnowledgeItem":
        created_raw = raw.get("created_at")
        created_at = datetime.fromisoformat(created_raw) if created_raw else _utcnow()
        return cls(content=raw.get("content", ""), origin=raw.get("origin", ""), created_at=created_at)


class ScoredKnowledge(NamedTuple):
    score: float
    item: KnowledgeItem


def _normalize_score(score: float) -> float:
    score = float(score)
    if math.isnan(score) or math.isinf(score):
        return 0.0
    return score


class KnowledgeCollection:
    """
    Sequence of (score, item) pairs kept sorted by score, highest first.

    Equal scores keep their insertion order.
    """

    def __init__(self, entries: Optional[List[ScoredKnowledge]] = None) -> None:
        self._entries: List[ScoredKnowledge] = []
        for entry in entries or []:
            self.add(entry.item, entry.score)

    def add(self, item: KnowledgeItem, score: float) -> None:
        if item is None:
            raise InvalidArgumentError("Knowledge item must not be None")
        entry = ScoredKnowledge(_normalize_score(score), item)
        # insort_right on the negated score keeps ties in arrival order.
        bisect.insort_right(self._entries, entry, key=lambda e: -e.score)

    def top_n(self, count: int) -> "KnowledgeCollection":
        if count < 0:
            raise InvalidArgumentError(f"count must be >= 0, got {count}")
        result = KnowledgeCollection()
        result._entries = list(self._entries[:count])
        return result

    def items(self) -> List[KnowledgeItem]:
        return [entry.item for entry in self._entries]

    def scores(self) -> List[float]:
        return [entry.score for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[ScoredKnowledge]:
        return iter(self._entries)

    def __getitem__(self, index: int) -> ScoredKnowledge:
        return self._entries[index]

    def __bool__(self) -> bool:
        return bool(self._entries)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KnowledgeCollection):
            return NotImplemented
        return self._entries == other._entries

    def __repr__(self) -> str:
        return f"KnowledgeCollection({len(self._entries)} items)"

    def to_json(self) -> str:
        payload = [{"score": entry.score, **entry.item.to_dict()} for entry in self._entries]
        return json.dumps(payload, indent=2)

    @classmethod
    def from_json(cls, text: str) -> "KnowledgeCollection":
        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise FormatError(f"Invalid knowledge collection JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise FormatError("Knowledge collection JSON must be a list")

        collection = cls()
        for entry in raw:
            if not isinstance(entry, dict):
                raise FormatError("Knowledge collection entries must be objects")
            try:
                item = KnowledgeItem.from_dict(entry)
            except (InvalidArgumentError, ValueError) as exc:
                raise FormatError(f"Invalid knowledge entry: {exc}") from exc
            collection.add(item, entry.get("score", 0.0))
        return collection
