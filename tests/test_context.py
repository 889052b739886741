from __future__ import annotations

import json
import random
from datetime import datetime, timedelta, timezone

import pytest

from ragbot.context import AgentContext
from ragbot.errors import ContextFormatError, InvalidArgumentError
from ragbot.models import Message
from ragbot.tokens import HeuristicTokenEstimator

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _msg(content: str, sender: str = "User", minutes: int = 0) -> Message:
    return Message(content=content, sender=sender, timestamp=T0 + timedelta(minutes=minutes))


def test_requires_system_prompt() -> None:
    with pytest.raises(InvalidArgumentError):
        AgentContext("   ")


def test_context_field_map_semantics() -> None:
    context = AgentContext("You are Bob", context_fields={"mood": "happy"})
    context.set_context_field("location", "kitchen")
    context.set_context_field("mood", "sleepy")

    assert context.get_context_field("mood") == "sleepy"
    assert context.remove_context_field("location") is True
    assert context.remove_context_field("location") is False
    assert context.get_context_field("location") is None
    assert context.context_fields == {"mood": "sleepy"}


def test_truncates_oldest_messages_to_fit_budget() -> None:
    context = AgentContext("You are Bob", max_tokens=50)
    for i in range(10):
        context.add_message(_msg(f"m{i}", "User" if i % 2 == 0 else "Bob", minutes=i))

    snapshot = context.snapshot()
    contents = [m.content for m in snapshot.conversation_history]
    assert contents == ["m6", "m7", "m8", "m9"]

    estimator = HeuristicTokenEstimator()
    assert estimator.count_context(
        snapshot.system_prompt, snapshot.context_fields, snapshot.conversation_history
    ) <= 50
    # the live history is untouched
    assert len(context.conversation_history) == 10


def test_never_drops_system_prompt_or_fields() -> None:
    context = AgentContext("You are Bob", context_fields={"a": "b"}, max_tokens=5)
    context.add_message(_msg("hello there"))

    snapshot = context.snapshot()
    assert snapshot.conversation_history == []
    assert snapshot.system_prompt == "You are Bob"
    assert snapshot.context_fields == {"a": "b"}


def test_duplicates_keep_first_occurrence() -> None:
    context = AgentContext("You are Bob")
    first = _msg("hi", "User", minutes=0)
    context.add_message(first)
    context.add_message(_msg("hello", "Bob", minutes=1))
    context.add_message(_msg("hi", "User", minutes=2))
    context.add_message(_msg("hi", "Bob", minutes=3))

    history = context.snapshot().conversation_history
    assert [(m.sender, m.content) for m in history] == [("User", "hi"), ("Bob", "hello"), ("Bob", "hi")]
    assert history[0].timestamp == first.timestamp


def test_repeated_greetings_collapse_to_first_pair() -> None:
    context = AgentContext("You are Bob", max_tokens=50)
    for i in range(10):
        context.add_message(_msg("hi", "User" if i % 2 == 0 else "Bob", minutes=i))

    history = context.snapshot().conversation_history
    assert [(m.sender, m.content) for m in history] == [("User", "hi"), ("Bob", "hi")]
    assert [m.timestamp for m in history] == [T0, T0 + timedelta(minutes=1)]


class CountingEstimator(HeuristicTokenEstimator):
    def __init__(self) -> None:
        self.calls = 0

    def count(self, text: str) -> int:
        self.calls += 1
        return super().count(text)


def test_snapshot_of_long_history_counts_each_message_once() -> None:
    estimator = CountingEstimator()
    context = AgentContext("You are Bob", max_tokens=200, estimator=estimator)
    for i in range(3000):
        context.add_message(_msg(f"message number {i}", "User" if i % 2 == 0 else "Bob", minutes=i))
    assert estimator.calls == 2 * 3000

    estimator.calls = 0
    snapshot = context.snapshot()

    # only the system prompt and fields are counted again
    assert estimator.calls <= 5
    history = snapshot.conversation_history
    assert history
    assert history[-1].content == "message number 2999"
    assert list(context.conversation_history)[-len(history):] == history
    assert HeuristicTokenEstimator().count_context(snapshot.system_prompt, snapshot.context_fields, history) <= 200


def _deduplicated(messages):
    seen = set()
    kept = []
    for message in messages:
        key = (message.sender, message.content)
        if key not in seen:
            seen.add(key)
            kept.append(message)
    return kept


@pytest.mark.parametrize("max_tokens", [1, 10, 30, 50, 200, 1000])
@pytest.mark.parametrize("size", [0, 1, 5, 50, 300])
def test_snapshot_fits_budget_and_keeps_newest_messages(max_tokens: int, size: int) -> None:
    rng = random.Random(max_tokens * 1000 + size)
    words = ["hi", "hello", "weather", "tomorrow's", "forecast,", "rain", "a-b-c", "ok!", "long_identifier_name"]
    context = AgentContext("You are Bob", context_fields={"mood": "calm"}, max_tokens=max_tokens)
    for i in range(size):
        content = " ".join(rng.choice(words) for _ in range(rng.randint(1, 6)))
        context.add_message(_msg(content, rng.choice(["User", "Bob", "Alice"]), minutes=i))

    snapshot = context.snapshot()
    history = snapshot.conversation_history
    estimator = HeuristicTokenEstimator()
    assert not history or estimator.count_context(snapshot.system_prompt, snapshot.context_fields, history) <= max_tokens
    deduplicated = _deduplicated(context.conversation_history)
    assert deduplicated[len(deduplicated) - len(history):] == history
    # one more message would not have fit
    if len(history) < len(deduplicated):
        wider = deduplicated[len(deduplicated) - len(history) - 1:]
        assert estimator.count_context(snapshot.system_prompt, snapshot.context_fields, wider) > max_tokens


def test_round_trip_preserves_prompt_fields_and_history_suffix() -> None:
    context = AgentContext("You are Bob", context_fields={"team": "blue"}, max_tokens=60)
    sent = [_msg(f"message {i}", "User", minutes=i) for i in range(8)]
    for message in sent:
        context.add_message(message)

    restored = AgentContext.deserialize(context.serialize(), max_tokens=60)

    assert restored.system_prompt == "You are Bob"
    assert restored.context_fields == {"team": "blue"}
    history = list(restored.conversation_history)
    assert history
    assert history == sent[len(sent) - len(history):]


def test_serialize_is_indented_json_without_nulls() -> None:
    context = AgentContext("You are Bob")
    context.add_message(_msg("hi"))
    text = context.serialize()
    data = json.loads(text)

    assert "\n" in text
    assert set(data) == {"system_prompt", "context_fields", "conversation_history"}
    assert "channel" not in data["conversation_history"][0]


@pytest.mark.parametrize(
    "text",
    [
        "",
        "   ",
        "{not json",
        "[]",
        json.dumps({"context_fields": {}, "conversation_history": []}),
        json.dumps({"system_prompt": "x", "conversation_history": []}),
        json.dumps({"system_prompt": "x", "context_fields": {}}),
        json.dumps({"system_prompt": "  ", "context_fields": {}, "conversation_history": []}),
    ],
)
def test_deserialize_rejects_malformed_documents(text: str) -> None:
    with pytest.raises(ContextFormatError):
        AgentContext.deserialize(text)


def test_deserialize_skips_blank_and_broken_messages(caplog: pytest.LogCaptureFixture) -> None:
    text = json.dumps(
        {
            "system_prompt": "You are Bob",
            "context_fields": {"k": "v"},
            "conversation_history": [
                {"content": "first", "sender": "User", "timestamp": T0.isoformat()},
                {"content": "   ", "sender": "User", "timestamp": T0.isoformat()},
                {"content": "no sender"},
                None,
                {"content": "last", "sender": "Bob", "timestamp": T0.isoformat()},
            ],
        }
    )

    with caplog.at_level("WARNING", logger="ragbot.context"):
        context = AgentContext.deserialize(text)

    assert [m.content for m in context.conversation_history] == ["first", "last"]
    assert context.get_context_field("k") == "v"
    assert len([r for r in caplog.records if "Skipping" in r.getMessage()]) == 3
