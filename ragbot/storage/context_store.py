"""
Storage port for persisted agent contexts.

Stores deal in bytes keyed by agent name; (de)serialization stays in
AgentContext. Both implementations are synchronous; the chatbot calls them via
asyncio.to_thread.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import time
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from ..errors import InvalidArgumentError
from .db import connect, ensure_parent_dir

logger = logging.getLogger("ragbot.storage")

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class ContextStore(ABC):
    @abstractmethod
    def load(self, name: str) -> Optional[bytes]:  # pragma: no cover - interface only
        raise NotImplementedError

    @abstractmethod
    def save(self, name: str, data: bytes) -> None:  # pragma: no cover - interface only
        raise NotImplementedError


def safe_name(name: str) -> str:
    cleaned = _UNSAFE.sub("_", (name or "").strip()).strip("._")
    if not cleaned:
        raise InvalidArgumentError(f"Agent name {name!r} cannot be used as a storage key")
    return cleaned


class FileContextStore(ContextStore):
    """One `<name>.context.json` file per agent in `directory`."""

    def __init__(self, directory: str) -> None:
        self.directory = Path(directory)

    def path_for(self, name: str) -> Path:
        return self.directory / f"{safe_name(name)}.context.json"

    def load(self, name: str) -> Optional[bytes]:
        path = self.path_for(name)
        if not path.exists():
            return None
        return path.read_bytes()

    def save(self, name: str, data: bytes) -> None:
        path = self.path_for(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        # Write next to the target and rename so readers never see half a file.
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_path, path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug("Wrote %d bytes to %s", len(data), path)


class SqliteContextStore(ContextStore):
    """Contexts as rows of an `agent_contexts` table."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.init_db()

    def init_db(self) -> None:
        ensure_parent_dir(self.db_path)
        with connect(self.db_path) as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            conn.execute("PRAGMA busy_timeout=3000")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS agent_contexts (
                    name TEXT PRIMARY KEY,
                    data BLOB NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )

    def load(self, name: str) -> Optional[bytes]:
        with connect(self.db_path) as conn:
            row = conn.execute(
                "SELECT data FROM agent_contexts WHERE name = ?",
                (safe_name(name),),
            ).fetchone()
        if row is None:
            return None
        data = row["data"]
        return data.encode("utf-8") if isinstance(data, str) else bytes(data)

    def save(self, name: str, data: bytes) -> None:
        ts = time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())
        with connect(self.db_path) as conn:
            conn.execute(
                """
                INSERT INTO agent_contexts (name, data, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET data = excluded.data, updated_at = excluded.updated_at
                """,
                (safe_name(name), data, ts),
            )
