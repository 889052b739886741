"""
Token estimation.

The heuristic approximates sub-word tokenization without a model tokenizer.
It is deliberately pluggable: anything implementing TokenEstimator can be
handed to AgentContext, PromptAssembler and the providers.
"""

from __future__ import annotations

import math
import re
import unicodedata
from abc import ABC, abstractmethod
from typing import Iterable, Mapping, Optional, Protocol

FIELD_OVERHEAD = 4
MESSAGE_OVERHEAD = 8
STRUCTURE_OVERHEAD = 4

_WORD_SPLIT = re.compile(r"[ \t\n\r]+")
_SUBWORD_SPLIT = re.compile(r"[_\-.,;:!?]")


class _HasText(Protocol):
    content: str
    sender: str


class TokenEstimator(ABC):
    @abstractmethod
    def count(self, text: Optional[str]) -> int:  # pragma: no cover - interface only
        raise NotImplementedError

    def count_context(
        self,
        system_prompt: str,
        fields: Mapping[str, str],
        history: Iterable[_HasText],
    ) -> int:
        """Estimate a structured context including serialization overhead."""
        total = self.count(system_prompt)
        for key, value in fields.items():
            total += self.count(key) + self.count(value) + FIELD_OVERHEAD
        for message in history:
            total += self.count_message(message)
        return total + STRUCTURE_OVERHEAD

    def count_message(self, message: _HasText) -> int:
        """Cost of one history entry inside a structured context."""
        return self.count(message.content) + self.count(message.sender) + MESSAGE_OVERHEAD


class HeuristicTokenEstimator(TokenEstimator):
    """Roughly four characters per token, plus one per separator character."""

    def count(self, text: Optional[str]) -> int:
        if not text:
            return 0

        tokens = 0
        for word in _WORD_SPLIT.split(text):
            if not word:
                continue
            if len(word) <= 4:
                tokens += 1
                continue
            for sub in _SUBWORD_SPLIT.split(word):
                if not sub:
                    continue
                tokens += 1 if len(sub) <= 4 else math.ceil(len(sub) / 4)

        tokens += sum(1 for ch in text if _is_separator(ch))
        return tokens


def _is_separator(ch: str) -> bool:
    return ch.isspace() or unicodedata.category(ch).startswith("P")


DEFAULT_ESTIMATOR: TokenEstimator = HeuristicTokenEstimator()
