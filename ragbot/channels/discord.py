"""
Discord channel over the REST API.

Polls one text channel for new messages instead of holding a gateway
websocket. Messages from bots (including this one) are ignored.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional

import httpx

from ..errors import InvalidArgumentError, LifecycleError, TransportError
from ..models import Message
from ..utils.message_splitter import DISCORD_MAX_LENGTH, needs_splitting, split_message
from .base import MessageChannel

logger = logging.getLogger("ragbot.channels.discord")

DISCORD_API_BASE = "https://discord.com/api/v10"
# Used when a 429 response carries no readable retry_after.
DEFAULT_RETRY_AFTER = 1.0


class DiscordChannel(MessageChannel):
    name = "discord"

    def __init__(
        self,
        token: str,
        channel_id: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        poll_interval: float = 2.0,
        api_base: str = DISCORD_API_BASE,
    ) -> None:
        super().__init__()
        if not token:
            raise InvalidArgumentError("Discord token must not be empty")
        if not channel_id:
            raise InvalidArgumentError("Discord channel id must not be empty")
        self.token = token
        self.channel_id = str(channel_id)
        self.poll_interval = poll_interval
        self.api_base = api_base.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._bot_user_id: Optional[str] = None
        self.channel_name: Optional[str] = None
        self._last_message_id: Optional[str] = None
        self._poller: Optional[asyncio.Task] = None
        self.ready = asyncio.Event()

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bot {self.token}", "Content-Type": "application/json"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if self._client is None:
            raise LifecycleError("discord channel is not running")
        while True:
            try:
                resp = await self._client.request(method, f"{self.api_base}{path}", headers=self._headers(), **kwargs)
            except httpx.HTTPError as exc:
                raise TransportError(f"Discord request failed: {exc}") from exc
            if resp.status_code == 429:
                retry_after = _retry_after(resp)
                logger.warning("Discord rate limited; retrying in %.2fs", retry_after)
                await asyncio.sleep(retry_after)
                continue
            if resp.status_code >= 400:
                raise TransportError(f"Discord returned HTTP {resp.status_code}: {resp.text[:200]}")
            if resp.status_code == 204 or not resp.content:
                return None
            return resp.json()

    async def _start(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        me = await self._request("GET", "/users/@me")
        self._bot_user_id = str(me["id"])
        channel = await self._request("GET", f"/channels/{self.channel_id}")
        self.channel_name = channel.get("name") or self.channel_id
        latest = await self._request("GET", f"/channels/{self.channel_id}/messages", params={"limit": 1})
        self._last_message_id = str(latest[0]["id"]) if latest else None
        self._poller = asyncio.create_task(self._poll_loop(), name="discord-poller")
        self.ready.set()
        logger.info("Connected to Discord channel #%s as %s", self.channel_name, me.get("username"))

    async def _stop(self) -> None:
        self.ready.clear()
        if self._poller is not None:
            self._poller.cancel()
            try:
                await self._poller
            except asyncio.CancelledError:
                pass
            self._poller = None
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _poll_loop(self) -> None:
        while True:
            try:
                await self.poll_once()
            except TransportError as exc:
                logger.warning("Discord poll failed: %s", exc)
            except Exception:
                logger.exception("Discord poll failed")
            await asyncio.sleep(self.poll_interval)

    async def poll_once(self) -> int:
        """Fetch and dispatch messages posted since the last poll. Returns how many were dispatched."""
        params: Dict[str, Any] = {"limit": 50}
        if self._last_message_id:
            params["after"] = self._last_message_id
        batch: List[Dict[str, Any]] = await self._request(
            "GET", f"/channels/{self.channel_id}/messages", params=params
        ) or []

        dispatched = 0
        # Discord returns newest first.
        for raw in sorted(batch, key=lambda m: int(m["id"])):
            self._last_message_id = str(raw["id"])
            author = raw.get("author") or {}
            if author.get("bot") or str(author.get("id")) == self._bot_user_id:
                continue
            content = raw.get("content") or ""
            await self._dispatch(
                Message(
                    content=content,
                    sender=author.get("username") or "unknown",
                    channel=self.channel_name,
                )
            )
            dispatched += 1
        return dispatched

    async def _send(self, message: Message) -> None:
        content = message.content
        if not content or not content.strip():
            return
        chunks = split_message(content, DISCORD_MAX_LENGTH) if needs_splitting(content) else [content]
        for chunk in chunks:
            await self._request("POST", f"/channels/{self.channel_id}/messages", json={"content": chunk})


def _retry_after(resp: httpx.Response) -> float:
    try:
        return float(resp.json().get("retry_after", DEFAULT_RETRY_AFTER))
    except (ValueError, AttributeError, TypeError):
        return DEFAULT_RETRY_AFTER
