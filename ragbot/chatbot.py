"""
The chatbot ties an AgentContext, a language-model provider, an optional
retrieval gateway and a message channel together.

Inbound messages are queued and handled one at a time. A failed exchange is
logged and dropped without touching the history. Two timers run beside the
message loop: one persists the context on a fixed period, the other sends a
proactive message after a random number of minutes and re-arms itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from typing import Any, Dict, Mapping, Optional, Tuple, Type

from pydantic import BaseModel

from .agent_config import AgentConfig
from .channels.base import MessageChannel
from .context import AgentContext
from .errors import (
    CompletionTimeoutError,
    ContextFormatError,
    InvalidArgumentError,
    LifecycleError,
    ProviderError,
)
from .knowledge import KnowledgeCollection
from .models import Message
from .prompt import PromptAssembler
from .providers import BaseProvider
from .retrieval import RetrievalGateway
from .scheduling import DelayFn, RecurringTask, fixed_delay, random_minutes
from .storage.context_store import ContextStore
from .tokens import DEFAULT_ESTIMATOR, TokenEstimator

logger = logging.getLogger("ragbot.chatbot")

PERIODIC_PROMPT = (
    "Generate a message to share with the users based on our conversation history and context. "
    "A joke, fun fact, comments about yourself, or other conversation starter would be a good idea."
)
ANNOUNCEMENT_PROMPT = (
    "Generate a brief, friendly online announcement message to let users know you are available "
    "to help. Keep it concise and welcoming."
)
SYSTEM_SENDER = "System"

IDLE = "idle"
RUNNING = "running"
DISPOSED = "disposed"


class Chatbot:
    def __init__(
        self,
        provider: BaseProvider,
        channel: MessageChannel,
        config: AgentConfig,
        *,
        store: ContextStore,
        knowledge: Optional[RetrievalGateway] = None,
        estimator: Optional[TokenEstimator] = None,
        context_fields: Optional[Mapping[str, Any]] = None,
        completion_timeout: float = 60.0,
        persist_interval: float = 300.0,
        periodic_delay: Optional[DelayFn] = None,
        rng: Optional[random.Random] = None,
    ) -> None:
        self.provider = provider
        self.channel = channel
        self.config = config
        self.name = config.name
        self.store = store
        self.knowledge = knowledge
        self.estimator = estimator or DEFAULT_ESTIMATOR
        self.completion_timeout = completion_timeout
        self.persist_interval = persist_interval
        self.periodic_delay = periodic_delay or random_minutes(
            config.min_periodic_minutes, config.max_periodic_minutes, rng
        )
        self.assembler = PromptAssembler(config.name, self.estimator, config.knowledge_fraction)
        self.context = self._load_context(context_fields or {})

        self.state = IDLE
        self._lock = asyncio.Lock()
        self._queue: "asyncio.Queue[Message]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._persist_timer: Optional[RecurringTask] = None
        self._periodic_timer: Optional[RecurringTask] = None

    def _fresh_context(self) -> AgentContext:
        return AgentContext(
            self.config.system_prompt,
            context_fields=self.config.context_fields,
            max_tokens=self.config.max_tokens,
            estimator=self.estimator,
        )

    def _load_context(self, context_fields: Mapping[str, Any]) -> AgentContext:
        context: Optional[AgentContext] = None
        try:
            raw = self.store.load(self.name)
        except OSError as exc:
            logger.warning("Could not read stored context for %s: %s", self.name, exc)
            raw = None

        if raw is not None:
            try:
                context = AgentContext.deserialize(
                    raw.decode("utf-8", errors="replace"),
                    max_tokens=self.config.max_tokens,
                    estimator=self.estimator,
                )
            except ContextFormatError as exc:
                logger.warning("Stored context for %s is unusable, starting fresh: %s", self.name, exc)
            else:
                if context.system_prompt != self.config.system_prompt:
                    logger.info("System prompt for %s changed, starting a fresh context", self.name)
                    context = None
                else:
                    logger.info(
                        "Loaded context for %s with %d message(s)",
                        self.name,
                        len(context.conversation_history),
                    )

        if context is None:
            context = self._fresh_context()
        for key, value in context_fields.items():
            context.set_context_field(key, value)
        return context

    # -- lifecycle ---------------------------------------------------------

    async def start(self) -> None:
        if self.state != IDLE:
            raise LifecycleError(f"Chatbot {self.name} cannot start from state {self.state}")

        self.channel.subscribe(self._on_message)
        self._worker = asyncio.create_task(self._consume(), name=f"{self.name}-inbox")
        self._persist_timer = RecurringTask("persist", self.persist, fixed_delay(self.persist_interval))
        self._periodic_timer = RecurringTask("periodic-message", self.send_periodic_message, self.periodic_delay)
        self._persist_timer.start()
        self._periodic_timer.start()
        self.state = RUNNING
        logger.info("Chatbot %s started", self.name)

        if self.config.announce_on_start:
            try:
                await self.send_proactive(ANNOUNCEMENT_PROMPT)
            except Exception:
                logger.exception("Online announcement for %s failed", self.name)

    async def stop(self) -> None:
        if self.state == DISPOSED:
            return
        was_running = self.state == RUNNING
        self.state = DISPOSED
        self.channel.unsubscribe(self._on_message)

        for timer in (self._periodic_timer, self._persist_timer):
            if timer is not None:
                await timer.stop()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        pending = self._queue.qsize()
        if pending:
            logger.warning("Dropping %d unprocessed message(s) for %s", pending, self.name)

        if was_running:
            await self.persist()
        logger.info("Chatbot %s stopped", self.name)

    async def __aenter__(self) -> "Chatbot":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.stop()

    # -- inbound -----------------------------------------------------------

    async def _on_message(self, message: Message) -> None:
        if self.state != RUNNING:
            return
        self._queue.put_nowait(message)

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            try:
                await self.handle_message(message)
            finally:
                self._queue.task_done()

    async def wait_idle(self) -> None:
        """Wait until every queued inbound message has been handled."""
        await self._queue.join()

    async def handle_message(self, message: Message) -> Optional[str]:
        """
        Answer one inbound message. Returns the response, or None when the
        message was ignored or the exchange failed.
        """
        if message is None or not message.content or not message.content.strip():
            logger.debug("Ignoring empty message")
            return None

        try:
            response = await self._exchange(message)
        except Exception:
            logger.exception("Dropping exchange with %s", message.sender)
            return None

        await self.persist()
        await self.send_message(response)
        return response

    # -- prompting ---------------------------------------------------------

    async def send_prompt(self, prompt: str, sender: str = "User") -> str:
        """Run one exchange and return the response. Errors propagate."""
        if not prompt or not prompt.strip():
            raise InvalidArgumentError("Prompt must not be empty")
        response = await self._exchange(Message(content=prompt, sender=sender))
        await self.persist()
        return response

    async def send_prompt_json(
        self,
        prompt: str,
        *,
        schema: Optional[Mapping[str, Any]] = None,
        response_model: Optional[Type[BaseModel]] = None,
        sender: str = "User",
    ) -> Any:
        """Like send_prompt, but decode the answer as JSON (or into `response_model`)."""
        if not prompt or not prompt.strip():
            raise InvalidArgumentError("Prompt must not be empty")
        message = Message(content=prompt, sender=sender)
        full_prompt = await self._build_prompt(message)
        result = await self._with_timeout(
            self.provider.complete_json(full_prompt, schema=schema, response_model=response_model)
        )
        as_data = result.model_dump(mode="json") if isinstance(result, BaseModel) else result
        await self._record(message, json.dumps(as_data))
        await self.persist()
        return result

    async def send_proactive(self, instruction: str) -> Optional[str]:
        """Ask the model for an unsolicited message and send it. History is not changed."""
        prompt = await self._build_prompt(Message(content=instruction, sender=SYSTEM_SENDER), retrieve=False)
        response = await self._complete(prompt)
        await self.send_message(response)
        return response

    async def send_periodic_message(self) -> None:
        logger.info("Sending periodic message for %s", self.name)
        await self.send_proactive(PERIODIC_PROMPT)

    async def _exchange(self, message: Message) -> str:
        prompt = await self._build_prompt(message)
        response = await self._complete(prompt)
        await self._record(message, response)
        return response

    async def _build_prompt(self, message: Message, *, retrieve: bool = True) -> str:
        knowledge = await self._retrieve(message.content) if retrieve else None
        async with self._lock:
            return self.assembler.build(self.context, message.content, knowledge, sender=message.sender)

    async def _retrieve(self, text: str) -> Optional[KnowledgeCollection]:
        if self.knowledge is None:
            return None
        budget = int(self.context.max_tokens * self.config.knowledge_fraction)
        results = await self.knowledge.retrieve(text, budget)
        logger.debug("Retrieved %d knowledge item(s)", len(results))
        return results

    async def _complete(self, prompt: str) -> str:
        response = await self._with_timeout(self.provider.complete(prompt))
        if not response or not response.strip():
            raise ProviderError("Model returned an empty response")
        return response.strip()

    async def _with_timeout(self, awaitable):
        try:
            return await asyncio.wait_for(awaitable, timeout=self.completion_timeout)
        except asyncio.TimeoutError as exc:
            raise CompletionTimeoutError(
                f"No completion within {self.completion_timeout:.0f}s"
            ) from exc

    async def _record(self, message: Message, response: str) -> None:
        async with self._lock:
            self.context.add_message(message)
            self.context.add_message(self._agent_message(response))

    def _agent_message(self, content: str) -> Message:
        return Message(content=content, sender=self.name)

    # -- outbound ----------------------------------------------------------

    async def send_message(self, content: str) -> bool:
        try:
            await self.channel.send(self._agent_message(content))
        except Exception:
            logger.exception("Failed to send message via %s", self.channel.name)
            return False
        return True

    # -- state -------------------------------------------------------------

    async def persist(self) -> bool:
        async with self._lock:
            data = self.context.serialize().encode("utf-8")
        try:
            await asyncio.to_thread(self.store.save, self.name, data)
        except Exception:
            logger.exception("Failed to persist context for %s", self.name)
            return False
        return True

    def set_context(self, key: str, value: Any) -> None:
        self.context.set_context_field(key, value)

    def remove_context(self, key: str) -> bool:
        return self.context.remove_context_field(key)

    def get_context(self, key: str) -> Optional[str]:
        return self.context.get_context_field(key)

    @property
    def context_fields(self) -> Dict[str, str]:
        return self.context.context_fields

    @property
    def conversation_history(self) -> Tuple[Message, ...]:
        return self.context.conversation_history

    def to_json(self) -> str:
        return self.context.serialize()
