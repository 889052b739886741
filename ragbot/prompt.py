"""
Prompt assembly.

Layout, top to bottom:

    <system prompt>
    <key>: <value> ...

    THESE DOCUMENTS MIGHT BE RELEVANT
    <item>
    --------
    <item>

    THE CONVERSATION SO FAR:
    <sender> SAID:
    <content>
    ...

    <sender> SAID:
    <new user turn>

    <agent> SAID:

Knowledge may use at most `knowledge_fraction` of the budget. History gets what
is left, newest messages first, and is rendered in chronological order.
"""

from __future__ import annotations

import logging
from typing import List, Optional

from .context import AgentContext
from .errors import InvalidArgumentError
from .knowledge import KnowledgeCollection
from .models import Message
from .tokens import DEFAULT_ESTIMATOR, TokenEstimator

logger = logging.getLogger("ragbot.prompt")

KNOWLEDGE_HEADER = "THESE DOCUMENTS MIGHT BE RELEVANT"
HISTORY_HEADER = "THE CONVERSATION SO FAR:"
DELIMITER = "\n--------\n"


def render_turn(sender: str, content: str) -> str:
    return f"{sender} SAID:\n{content}"


class PromptAssembler:
    def __init__(
        self,
        agent_name: str,
        estimator: Optional[TokenEstimator] = None,
        knowledge_fraction: float = 0.75,
    ) -> None:
        if not 0.0 <= knowledge_fraction <= 1.0:
            raise InvalidArgumentError("knowledge_fraction must be between 0 and 1")
        self.agent_name = agent_name
        self.estimator = estimator or DEFAULT_ESTIMATOR
        self.knowledge_fraction = knowledge_fraction

    def build(
        self,
        context: AgentContext,
        user_turn: str,
        knowledge: Optional[KnowledgeCollection] = None,
        *,
        sender: str = "User",
    ) -> str:
        if not user_turn or not user_turn.strip():
            raise InvalidArgumentError("User turn must not be empty")

        budget = context.max_tokens
        header = self._render_header(context)
        tail = render_turn(sender, user_turn) + "\n\n" + render_turn(self.agent_name, "")

        if self._count([header, tail]) > budget:
            logger.warning(
                "Fixed prompt parts exceed the %d token budget; sending without knowledge or history",
                budget,
            )
            return self._join([header, tail])

        knowledge_block = self._fit_knowledge(header, tail, knowledge, budget)
        history_block = self._fit_history(
            [header, knowledge_block], tail, list(context.snapshot().conversation_history), budget
        )
        return self._join([header, knowledge_block, history_block, tail])

    def _render_header(self, context: AgentContext) -> str:
        lines = [context.system_prompt.strip()]
        for key, value in context.context_fields.items():
            lines.append(f"{key}: {value}")
        return "\n".join(lines)

    def _fit_knowledge(
        self,
        header: str,
        tail: str,
        knowledge: Optional[KnowledgeCollection],
        budget: int,
    ) -> str:
        if not knowledge:
            return ""

        knowledge_budget = int(budget * self.knowledge_fraction)
        accepted: List[str] = []
        for entry in knowledge:
            candidate = self._render_knowledge(accepted + [entry.item.content])
            if self.estimator.count(candidate) > knowledge_budget:
                break
            if self._count([header, candidate, tail]) > budget:
                break
            accepted.append(entry.item.content)

        skipped = len(knowledge) - len(accepted)
        if skipped:
            logger.debug("Omitted %d knowledge item(s) over budget", skipped)
        return self._render_knowledge(accepted) if accepted else ""

    def _fit_history(self, before: List[str], tail: str, history: List[Message], budget: int) -> str:
        if not history:
            return ""

        chosen: List[Message] = []
        for message in reversed(history):
            candidate = self._render_history([message] + chosen)
            if self._count(before + [candidate, tail]) > budget:
                break
            chosen.insert(0, message)
        return self._render_history(chosen) if chosen else ""

    @staticmethod
    def _render_knowledge(contents: List[str]) -> str:
        return KNOWLEDGE_HEADER + "\n" + DELIMITER.join(contents)

    @staticmethod
    def _render_history(messages: List[Message]) -> str:
        turns = "\n\n".join(render_turn(m.sender, m.content) for m in messages)
        return HISTORY_HEADER + "\n" + turns

    def _count(self, parts: List[str]) -> int:
        return self.estimator.count(self._join(parts))

    @staticmethod
    def _join(parts: List[str]) -> str:
        return "\n\n".join(part for part in parts if part)
