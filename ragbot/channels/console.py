from __future__ import annotations

import asyncio
import logging
import sys
import threading
from typing import Callable, Optional, TextIO

from ..models import Message
from .base import MessageChannel

logger = logging.getLogger("ragbot.channels.console")

EXIT_COMMANDS = {"exit", "quit"}


class ConsoleChannel(MessageChannel):
    """
    Interactive terminal channel.

    Lines are read on a daemon thread and handed to the event loop, so a
    blocked input() never holds up timers or interpreter shutdown.
    `closed` is set on EOF or when the user types exit/quit.
    """

    name = "console"

    def __init__(
        self,
        input_fn: Callable[[], str] = input,
        stream: Optional[TextIO] = None,
        user_name: str = "User",
    ) -> None:
        super().__init__()
        self._input_fn = input_fn
        self._stream = stream or sys.stdout
        self.user_name = user_name
        self.closed = asyncio.Event()
        self._lines: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._reader: Optional[threading.Thread] = None
        self._pump: Optional[asyncio.Task] = None

    async def _start(self) -> None:
        self.closed.clear()
        loop = asyncio.get_running_loop()
        self._reader = threading.Thread(target=self._read_lines, args=(loop,), name="console-reader", daemon=True)
        self._reader.start()
        self._pump = asyncio.create_task(self._pump_lines(), name="console-pump")

    async def _stop(self) -> None:
        if self._pump is not None and not self._pump.done():
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        self._pump = None
        self.closed.set()

    def _read_lines(self, loop: asyncio.AbstractEventLoop) -> None:
        while True:
            try:
                line = self._input_fn()
            except (EOFError, KeyboardInterrupt):
                line = None
            try:
                loop.call_soon_threadsafe(self._lines.put_nowait, line)
            except RuntimeError:
                # Event loop already closed.
                return
            if line is None or line.strip().lower() in EXIT_COMMANDS:
                return

    async def _pump_lines(self) -> None:
        while True:
            line = await self._lines.get()
            if line is None or line.strip().lower() in EXIT_COMMANDS:
                break
            text = line.strip()
            if text:
                await self._dispatch(Message(content=text, sender=self.user_name, channel=self.name))
        self.closed.set()

    async def _send(self, message: Message) -> None:
        print(f"[{message.sender}] {message.content}", file=self._stream, flush=True)
