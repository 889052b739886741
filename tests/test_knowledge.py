from __future__ import annotations

import math
import random

import pytest

from ragbot.errors import FormatError, InvalidArgumentError
from ragbot.knowledge import KnowledgeCollection, KnowledgeItem


def _item(name: str) -> KnowledgeItem:
    return KnowledgeItem(content=f"content of {name}", origin=f"notes/{name}.md")


def test_item_trims_and_validates() -> None:
    item = KnowledgeItem(content="  hello  ", origin=" a.md ")
    assert item.content == "hello"
    assert item.origin == "a.md"
    assert item.created_at.tzinfo is not None

    with pytest.raises(InvalidArgumentError):
        KnowledgeItem(content="   ", origin="a.md")
    with pytest.raises(InvalidArgumentError):
        KnowledgeItem(content="x", origin="")


def test_add_keeps_descending_order() -> None:
    a, b, c = _item("a"), _item("b"), _item("c")
    collection = KnowledgeCollection()
    collection.add(a, 0.2)
    collection.add(b, 0.9)
    collection.add(c, 0.5)

    assert collection.items() == [b, c, a]
    assert collection.scores() == [0.9, 0.5, 0.2]


def test_sort_invariant_holds_after_every_add() -> None:
    rng = random.Random(7)
    collection = KnowledgeCollection()
    for i in range(50):
        collection.add(_item(str(i)), rng.random())
        scores = collection.scores()
        assert scores == sorted(scores, reverse=True)


def test_equal_scores_keep_insertion_order() -> None:
    first, second = _item("first"), _item("second")
    collection = KnowledgeCollection()
    collection.add(first, 0.5)
    collection.add(second, 0.5)
    assert collection.items() == [first, second]


def test_non_finite_scores_become_zero() -> None:
    collection = KnowledgeCollection()
    collection.add(_item("nan"), math.nan)
    collection.add(_item("inf"), math.inf)
    collection.add(_item("pos"), 0.1)
    assert collection.scores() == [0.1, 0.0, 0.0]


def test_add_rejects_none() -> None:
    with pytest.raises(InvalidArgumentError):
        KnowledgeCollection().add(None, 1.0)  # type: ignore[arg-type]


def test_top_n_returns_new_collection() -> None:
    collection = KnowledgeCollection()
    for i, score in enumerate([0.1, 0.7, 0.4, 0.9]):
        collection.add(_item(str(i)), score)

    top = collection.top_n(2)
    assert top.scores() == [0.9, 0.7]
    assert len(collection) == 4
    assert len(collection.top_n(10)) == 4
    assert len(collection.top_n(0)) == 0


def test_top_n_is_idempotent() -> None:
    collection = KnowledgeCollection()
    for i in range(6):
        collection.add(_item(str(i)), i / 10)
    assert collection.top_n(3).top_n(3) == collection.top_n(3)


def test_top_n_rejects_negative() -> None:
    with pytest.raises(InvalidArgumentError):
        KnowledgeCollection().top_n(-1)


def test_json_round_trip_and_errors() -> None:
    collection = KnowledgeCollection()
    collection.add(_item("a"), 0.3)
    collection.add(_item("b"), 0.8)

    restored = KnowledgeCollection.from_json(collection.to_json())
    assert restored == collection

    with pytest.raises(FormatError):
        KnowledgeCollection.from_json("{not json")
    with pytest.raises(FormatError):
        KnowledgeCollection.from_json('{"a": 1}')
