"""
Message channel interface.

A channel delivers inbound messages to subscribed listeners and sends
outbound messages. Listeners are async callables taking a Message.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, List

from ..errors import LifecycleError
from ..models import Message

logger = logging.getLogger("ragbot.channels")

MessageListener = Callable[[Message], Awaitable[None]]


class MessageChannel(ABC):
    name = "channel"

    def __init__(self) -> None:
        self._listeners: List[MessageListener] = []
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def subscribe(self, listener: MessageListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def unsubscribe(self, listener: MessageListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _dispatch(self, message: Message) -> None:
        for listener in list(self._listeners):
            try:
                await listener(message)
            except Exception:
                logger.exception("%s listener failed for message from %s", self.name, message.sender)

    def _require_running(self) -> None:
        if not self._running:
            raise LifecycleError(f"{self.name} channel is not running")

    async def start(self) -> None:
        if self._running:
            raise LifecycleError(f"{self.name} channel is already running")
        await self._start()
        self._running = True
        logger.info("%s channel started", self.name)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        await self._stop()
        logger.info("%s channel stopped", self.name)

    async def send(self, message: Message) -> None:
        self._require_running()
        await self._send(message)

    async def _start(self) -> None:
        return None

    async def _stop(self) -> None:
        return None

    @abstractmethod
    async def _send(self, message: Message) -> None:  # pragma: no cover - interface only
        raise NotImplementedError
