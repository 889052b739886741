from __future__ import annotations

from ragbot.models import Message
from ragbot.tokens import HeuristicTokenEstimator


def test_empty_text_counts_zero() -> None:
    estimator = HeuristicTokenEstimator()
    assert estimator.count("") == 0
    assert estimator.count(None) == 0


def test_short_words_count_one_each_plus_separators() -> None:
    estimator = HeuristicTokenEstimator()
    assert estimator.count("hi") == 1
    # three words, two spaces
    assert estimator.count("You are Bob") == 5


def test_long_words_are_split_into_subwords() -> None:
    estimator = HeuristicTokenEstimator()
    assert estimator.count("hello") == 2
    assert estimator.count("hello world") == 5
    # foo + bar + ceil(6/4) plus the two underscores
    assert estimator.count("foo_bar_bazqux") == 6


def test_punctuation_adds_tokens() -> None:
    estimator = HeuristicTokenEstimator()
    # "Hi," -> 1, "there!" -> 2, then ',', ' ', '!'
    assert estimator.count("Hi, there!") == 6


def test_context_count_includes_overheads() -> None:
    estimator = HeuristicTokenEstimator()
    assert estimator.count_context("You are Bob", {}, []) == 9
    assert estimator.count_context("You are Bob", {"k": "v"}, []) == 15
    history = [Message(content="hi", sender="User")]
    assert estimator.count_context("You are Bob", {}, history) == 19


def test_estimate_is_deterministic() -> None:
    estimator = HeuristicTokenEstimator()
    text = "The quick-brown fox; jumped over: the lazy_dog!"
    assert estimator.count(text) == estimator.count(text)
