"""
AgentContext: system prompt, context fields and conversation history under a
token budget.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from .errors import ContextFormatError, InvalidArgumentError
from .models import ContextData, Message
from .tokens import DEFAULT_ESTIMATOR, TokenEstimator

logger = logging.getLogger("ragbot.context")

DEFAULT_MAX_TOKENS = 4096

REQUIRED_KEYS = ("system_prompt", "context_fields", "conversation_history")


class AgentContext:
    def __init__(
        self,
        system_prompt: str,
        context_fields: Optional[Mapping[str, Any]] = None,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        estimator: Optional[TokenEstimator] = None,
    ) -> None:
        if not system_prompt or not system_prompt.strip():
            raise InvalidArgumentError("System prompt must not be empty")
        if max_tokens < 1:
            raise InvalidArgumentError(f"max_tokens must be >= 1, got {max_tokens}")

        self._system_prompt = system_prompt
        self._fields: Dict[str, str] = {}
        self._history: List[Message] = []
        # token cost of each history entry, aligned with _history
        self._costs: List[int] = []
        self.max_tokens = max_tokens
        self.estimator = estimator or DEFAULT_ESTIMATOR

        for key, value in (context_fields or {}).items():
            self.set_context_field(key, value)

    @property
    def system_prompt(self) -> str:
        return self._system_prompt

    @property
    def context_fields(self) -> Dict[str, str]:
        return dict(self._fields)

    @property
    def conversation_history(self) -> Tuple[Message, ...]:
        return tuple(self._history)

    def add_message(self, message: Message) -> None:
        if message is None:
            raise InvalidArgumentError("Message must not be None")
        self._history.append(message)
        self._costs.append(self.estimator.count_message(message))

    def set_context_field(self, key: str, value: Any) -> None:
        if not key:
            raise InvalidArgumentError("Context field key must not be empty")
        self._fields[key] = "" if value is None else str(value)

    def get_context_field(self, key: str) -> Optional[str]:
        return self._fields.get(key)

    def remove_context_field(self, key: str) -> bool:
        return self._fields.pop(key, None) is not None

    def token_count(self, history: Optional[List[Message]] = None) -> int:
        return self.estimator.count_context(
            self._system_prompt,
            self._fields,
            self._history if history is None else history,
        )

    def snapshot(self) -> ContextData:
        """
        Copy of the context with duplicates removed and the oldest messages
        dropped until the estimate fits in max_tokens.
        """
        fields = dict(self._fields)
        kept: List[Tuple[Message, int]] = []
        seen = set()
        duplicates = 0
        for message, cost in zip(self._history, self._costs):
            key = (message.sender, message.content)
            if key in seen:
                duplicates += 1
                continue
            seen.add(key)
            kept.append((message, cost))
        if duplicates:
            logger.debug("Dropped %d duplicate message(s)", duplicates)

        # The estimate is additive per message, so the budget is re-checked
        # after each removal against a running total.
        total = self.estimator.count_context(self._system_prompt, fields, [])
        total += sum(cost for _, cost in kept)
        dropped = 0
        while dropped < len(kept) and total > self.max_tokens:
            total -= kept[dropped][1]
            dropped += 1
        history = [message for message, _ in kept[dropped:]]
        if dropped:
            logger.debug("Truncated %d oldest message(s) to fit %d tokens", dropped, self.max_tokens)

        return ContextData(
            system_prompt=self._system_prompt,
            context_fields=fields,
            conversation_history=history,
        )

    def serialize(self) -> str:
        return self.snapshot().model_dump_json(indent=2, exclude_none=True)

    @classmethod
    def deserialize(
        cls,
        text: str,
        *,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        estimator: Optional[TokenEstimator] = None,
    ) -> "AgentContext":
        if not text or not text.strip():
            raise ContextFormatError("Context data is empty")

        try:
            raw = json.loads(text)
        except json.JSONDecodeError as exc:
            raise ContextFormatError(f"Context data is not valid JSON: {exc}") from exc

        if not isinstance(raw, dict):
            raise ContextFormatError("Context data must be a JSON object")
        missing = [key for key in REQUIRED_KEYS if raw.get(key) is None]
        if missing:
            raise ContextFormatError(f"Context data is missing required field(s): {', '.join(missing)}")
        if not isinstance(raw["context_fields"], dict):
            raise ContextFormatError("context_fields must be an object")
        if not isinstance(raw["conversation_history"], list):
            raise ContextFormatError("conversation_history must be a list")

        try:
            context = cls(
                raw["system_prompt"],
                context_fields=raw["context_fields"],
                max_tokens=max_tokens,
                estimator=estimator,
            )
        except InvalidArgumentError as exc:
            raise ContextFormatError(str(exc)) from exc

        for index, entry in enumerate(raw["conversation_history"]):
            if not isinstance(entry, dict) or not str(entry.get("content") or "").strip():
                logger.warning("Skipping empty message at index %d in stored context", index)
                continue
            try:
                message = Message.model_validate(entry)
            except ValidationError as exc:
                logger.warning("Skipping malformed message at index %d: %s", index, exc.errors()[0]["msg"])
                continue
            context.add_message(message)

        return context
