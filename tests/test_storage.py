from __future__ import annotations

from pathlib import Path

import pytest

from ragbot.errors import InvalidArgumentError
from ragbot.storage.context_store import FileContextStore, SqliteContextStore, safe_name


def test_file_store_round_trip(tmp_path: Path) -> None:
    store = FileContextStore(str(tmp_path / "contexts"))
    assert store.load("Bob") is None

    store.save("Bob", b'{"a": 1}')
    store.save("Bob", b'{"a": 2}')

    assert store.load("Bob") == b'{"a": 2}'
    assert sorted(p.name for p in (tmp_path / "contexts").iterdir()) == ["Bob.context.json"]


def test_file_store_sanitizes_names(tmp_path: Path) -> None:
    store = FileContextStore(str(tmp_path))
    path = store.path_for("../evil bot")
    assert path.parent == tmp_path
    assert path.name == "evil_bot.context.json"


def test_safe_name_rejects_empty() -> None:
    with pytest.raises(InvalidArgumentError):
        safe_name("../")


def test_sqlite_store_upserts(tmp_path: Path) -> None:
    store = SqliteContextStore(str(tmp_path / "db" / "contexts.db"))
    assert store.load("Bob") is None

    store.save("Bob", b"first")
    store.save("Bob", b"second")
    store.save("Alice", b"other")

    assert store.load("Bob") == b"second"
    assert store.load("Alice") == b"other"

    reopened = SqliteContextStore(str(tmp_path / "db" / "contexts.db"))
    assert reopened.load("Bob") == b"second"
