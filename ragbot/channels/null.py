from __future__ import annotations

from ..models import Message
from .base import MessageChannel


class NullChannel(MessageChannel):
    """Accepts every outbound message and never produces inbound ones."""

    name = "null"

    async def send(self, message: Message) -> None:
        return None

    async def _send(self, message: Message) -> None:
        return None
