"""
Wiring: settings + agent config -> provider, channel, knowledge, storage and
the chatbot, plus the run loop used by the CLI.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import List, Optional

from .agent_config import AgentConfig
from .channels.base import MessageChannel
from .channels.console import ConsoleChannel
from .channels.discord import DiscordChannel
from .channels.http import HttpChannel
from .channels.null import NullChannel
from .chatbot import Chatbot
from .config import Settings
from .errors import AgentConfigError
from .providers import BaseProvider, build_provider
from .retrieval import RetrievalGateway
from .storage.context_store import ContextStore, FileContextStore, SqliteContextStore
from .stores.base import KnowledgeStore
from .stores.chroma import ChromaKnowledgeStore
from .stores.vault import VaultKnowledgeStore
from .stores.websearch import WebSearchKnowledgeStore

logger = logging.getLogger("ragbot.runtime")

CHANNELS = ("console", "discord", "http", "null")
KNOWLEDGE_BACKENDS = ("none", "vault", "chroma", "websearch")
CONTEXT_STORES = ("file", "sqlite")


def build_channel(settings: Settings) -> MessageChannel:
    if settings.channel == "console":
        return ConsoleChannel()
    if settings.channel == "discord":
        if not settings.discord_token or not settings.discord_channel_id:
            raise AgentConfigError("CHANNEL=discord requires DISCORD_TOKEN and DISCORD_CHANNEL_ID")
        return DiscordChannel(
            settings.discord_token,
            settings.discord_channel_id,
            poll_interval=settings.discord_poll_seconds,
        )
    if settings.channel == "http":
        return HttpChannel(settings.http_host, settings.http_port, auth_token=settings.auth_token)
    if settings.channel == "null":
        return NullChannel()
    raise AgentConfigError(f"Unknown CHANNEL {settings.channel!r}; expected one of {', '.join(CHANNELS)}")


def build_knowledge_store(settings: Settings) -> Optional[KnowledgeStore]:
    backend = settings.knowledge_backend
    if backend == "none":
        return None
    if backend == "vault":
        if not settings.vault_path:
            raise AgentConfigError("KNOWLEDGE_BACKEND=vault requires VAULT_PATH")
        if not Path(settings.vault_path).expanduser().is_dir():
            raise AgentConfigError(f"VAULT_PATH folder not found: {settings.vault_path}")
        return VaultKnowledgeStore(settings.vault_path)
    if backend == "chroma":
        return ChromaKnowledgeStore(settings.chroma_path, settings.chroma_collection)
    if backend == "websearch":
        if not settings.serpapi_api_key:
            raise AgentConfigError("KNOWLEDGE_BACKEND=websearch requires SERPAPI_API_KEY")
        return WebSearchKnowledgeStore(settings.serpapi_api_key)
    raise AgentConfigError(
        f"Unknown KNOWLEDGE_BACKEND {backend!r}; expected one of {', '.join(KNOWLEDGE_BACKENDS)}"
    )


def build_context_store(settings: Settings) -> ContextStore:
    if settings.context_store == "file":
        return FileContextStore(settings.context_dir)
    if settings.context_store == "sqlite":
        return SqliteContextStore(settings.context_db_path)
    raise AgentConfigError(
        f"Unknown CONTEXT_STORE {settings.context_store!r}; expected one of {', '.join(CONTEXT_STORES)}"
    )


def build_chatbot(
    settings: Settings,
    agent_config: AgentConfig,
    *,
    provider: Optional[BaseProvider] = None,
    channel: Optional[MessageChannel] = None,
    knowledge_store: Optional[KnowledgeStore] = None,
    store: Optional[ContextStore] = None,
) -> Chatbot:
    """Assemble a Chatbot; any collaborator passed in replaces the configured one."""
    knowledge_store = knowledge_store if knowledge_store is not None else build_knowledge_store(settings)
    gateway = None
    if knowledge_store is not None:
        gateway = RetrievalGateway(knowledge_store, max_results=agent_config.max_knowledge_results)

    return Chatbot(
        provider or build_provider(settings),
        channel or build_channel(settings),
        agent_config,
        store=store or build_context_store(settings),
        knowledge=gateway,
        completion_timeout=settings.llm_timeout_seconds,
        persist_interval=settings.persist_interval_seconds,
    )


async def _wait_for_shutdown(channel: MessageChannel) -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    installed: List[signal.Signals] = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
            installed.append(sig)
        except (NotImplementedError, RuntimeError):
            # Not available on Windows event loops; Ctrl+C raises KeyboardInterrupt instead.
            pass

    waiters = [asyncio.create_task(stop.wait())]
    closed = getattr(channel, "closed", None)
    if isinstance(closed, asyncio.Event):
        waiters.append(asyncio.create_task(closed.wait()))
    try:
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for waiter in waiters:
            waiter.cancel()
        for sig in installed:
            loop.remove_signal_handler(sig)


async def run(settings: Settings, agent_config: AgentConfig, chatbot: Optional[Chatbot] = None) -> None:
    """Start everything, wait for a shutdown signal, then stop in reverse order."""
    chatbot = chatbot or build_chatbot(settings, agent_config)
    gateway = chatbot.knowledge

    if gateway is not None:
        await gateway.start()
    try:
        await chatbot.channel.start()
        try:
            await chatbot.start()
            try:
                await _wait_for_shutdown(chatbot.channel)
            finally:
                await chatbot.stop()
        finally:
            await chatbot.channel.stop()
    finally:
        if gateway is not None:
            await gateway.stop()
        await chatbot.provider.aclose()
