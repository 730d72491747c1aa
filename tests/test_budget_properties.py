"""
Tests for TokenBudget history trimming.
"""

import json

import allure
import pytest
from hypothesis import given, settings, strategies as st

from promptkit.budget import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_RESERVE_FOR_RESPONSE,
    DEFAULT_RESERVE_TOKENS,
    TokenBudget,
    TrimStrategy,
)
from promptkit.errors import InvalidArgumentError, MalformedDataError


message_strategy = st.tuples(
    st.sampled_from(["system", "user", "assistant"]),
    st.text(alphabet="abcxyz .{};\n", min_size=1, max_size=200).filter(lambda s: s.strip()),
)


def is_subsequence(short, long):
    remaining = iter(long)
    return all(item in remaining for item in short)


def small_budget(strategy=TrimStrategy.REMOVE_OLDEST, keep_first_turns=1):
    # 90 tokens available for history
    return TokenBudget(100, 10, reserve_tokens=0, strategy=strategy, keep_first_turns=keep_first_turns)


@allure.feature("Token Budget")
@allure.story("Trimming keeps the history within budget")
@allure.severity(allure.severity_level.CRITICAL)
@settings(max_examples=100)
@given(
    messages=st.lists(message_strategy, max_size=25),
    strategy=st.sampled_from(list(TrimStrategy)),
    keep_first_turns=st.integers(min_value=0, max_value=3),
)
def test_trimming_invariants(messages, strategy, keep_first_turns):
    """
    After any sequence of additions the kept messages are an ordered subset
    of those added, every system message survives, the token total matches
    the kept messages, and the budget is only exceeded when nothing but
    system messages remain.
    """
    budget = TokenBudget(200, 50, reserve_tokens=0, strategy=strategy, keep_first_turns=keep_first_turns)
    trimmed = sum(budget.add_message(role, content) for role, content in messages)

    kept = budget.get_messages()
    assert is_subsequence(kept, messages)
    assert [m for m in kept if m[0] == "system"] == [m for m in messages if m[0] == "system"]
    assert budget.used_tokens == sum(m.tokens for m in budget.get_messages_with_tokens())
    assert budget.trimmed_count == trimmed == len(messages) - len(kept)
    if budget.is_over_budget:
        assert all(role == "system" for role, _ in kept)


@pytest.mark.parametrize("strategy,removed", [
    (TrimStrategy.REMOVE_OLDEST, "short one"),
    (TrimStrategy.REMOVE_LONGEST, "x" * 300),
    (TrimStrategy.SLIDING_WINDOW, "y" * 300),
])
def test_strategy_picks_message_to_trim(strategy, removed):
    # 96 tokens available; the fourth message overshoots by 3
    budget = TokenBudget(100, 4, reserve_tokens=0, strategy=strategy)
    budget.add_message("system", "sys")
    budget.add_message("user", "short one")
    budget.add_message("assistant", "x" * 300)

    assert budget.add_message("user", "y" * 300) == 1

    contents = [content for _, content in budget.get_messages()]
    assert removed not in contents
    assert contents[0] == "sys"
    assert budget.trimmed_count == 1
    assert budget.trimmed_tokens == TokenBudget.message_tokens(removed)
    assert not budget.is_over_budget


def test_sliding_window_falls_back_to_oldest():
    budget = small_budget(TrimStrategy.SLIDING_WINDOW, keep_first_turns=5)
    budget.add_message("user", "first " * 30)
    budget.add_message("user", "second " * 30)

    assert budget.get_messages() == [("user", "second " * 30)]


def test_only_system_messages_cannot_be_trimmed():
    budget = small_budget()
    budget.add_message("system", "word " * 100)

    assert budget.is_over_budget
    assert budget.message_count == 1
    assert budget.remaining_tokens == 0
    assert budget.usage_percent == 100.0


@allure.feature("Token Budget")
@allure.story("Construction and accounting")
@allure.severity(allure.severity_level.NORMAL)
def test_defaults_and_accounting():
    budget = TokenBudget()

    assert budget.max_tokens == DEFAULT_MAX_TOKENS
    assert budget.reserve_for_response == DEFAULT_RESERVE_FOR_RESPONSE
    assert budget.reserve_tokens == DEFAULT_RESERVE_TOKENS
    assert budget.strategy is TrimStrategy.REMOVE_OLDEST
    assert budget.keep_first_turns == 1
    assert budget.used_tokens == 0
    assert budget.usage_percent == 0.0
    assert not budget.is_over_budget

    assert TokenBudget(10000, 2000, reserve_tokens=300).available_tokens == 7700

    before = budget.remaining_tokens
    budget.add_message("USER", "Hello, how are you today?")
    assert budget.remaining_tokens == before - TokenBudget.message_tokens("Hello, how are you today?")
    assert budget.usage_percent > 0.0
    assert budget.get_messages() == [("user", "Hello, how are you today?")]


@pytest.mark.parametrize("kwargs", [
    {"max_tokens": 50},
    {"max_tokens": "1000"},
    {"reserve_for_response": -1},
    {"max_tokens": 1000, "reserve_for_response": 1000},
    {"reserve_tokens": -1},
    {"keep_first_turns": -1},
    {"strategy": "RemoveOldest"},
])
def test_constructor_rejects_bad_values(kwargs):
    with pytest.raises(InvalidArgumentError):
        TokenBudget(**kwargs)


@pytest.mark.parametrize("role,content", [("", "x"), ("user", ""), ("user", "   "), ("admin", "x"), ("user", None)])
def test_add_message_rejects_bad_input(role, content):
    with pytest.raises(InvalidArgumentError):
        TokenBudget().add_message(role, content)


def test_would_fit():
    budget = small_budget()
    assert budget.would_fit("")
    assert budget.would_fit("Short message")
    assert not budget.would_fit("x" * 5000)


def test_clear_history_and_clear_all():
    budget = TokenBudget()
    budget.add_message("system", "System prompt here.")
    budget.add_message("user", "Hello")
    budget.add_message("assistant", "Hi")

    budget.clear_history()
    assert budget.get_messages() == [("system", "System prompt here.")]
    assert budget.used_tokens == TokenBudget.message_tokens("System prompt here.")

    budget.clear_all()
    assert budget.message_count == 0
    assert budget.used_tokens == 0


def test_summary():
    budget = TokenBudget(10000, 2000)
    assert budget.get_summary().largest_message_tokens == 0
    assert budget.get_summary().average_message_tokens == 0

    for role, content in [("system", "Be helpful."), ("user", "Question"), ("assistant", "Answer"), ("user", "Follow-up")]:
        budget.add_message(role, content)
    summary = budget.get_summary()

    assert summary.max_tokens == 10000
    assert summary.reserve_for_response == 2000
    assert (summary.system_messages, summary.user_messages, summary.assistant_messages) == (1, 2, 1)
    assert summary.message_count == 4
    assert summary.used_tokens == budget.used_tokens
    assert summary.largest_message_tokens == max(m.tokens for m in budget.get_messages_with_tokens())
    assert summary.average_message_tokens > 0
    assert not summary.is_over_budget
    text = str(summary)
    assert text.startswith("TokenBudget: ")
    assert "4 messages" in text
    assert "strategy=RemoveOldest" in text


@allure.feature("Token Budget")
@allure.story("Model presets")
@allure.severity(allure.severity_level.NORMAL)
@pytest.mark.parametrize("model,window", [
    ("gpt-4", 8_192),
    ("gpt-4-32k", 32_768),
    ("gpt-4-turbo", 128_000),
    ("GPT-4o", 128_000),
    ("gpt-4o-mini", 128_000),
    ("gpt-3.5-turbo", 16_385),
    ("claude-3-opus", 200_000),
    ("claude-3-5-sonnet", 200_000),
    ("claude-4-opus", 200_000),
    ("some-future-model", DEFAULT_MAX_TOKENS),
])
def test_for_model(model, window):
    assert TokenBudget.for_model(model).max_tokens == window


def test_for_model_reserve():
    assert TokenBudget.for_model("gpt-4", reserve_for_response=500).reserve_for_response == 500
    clamped = TokenBudget.for_model("gpt-4", reserve_for_response=50_000)
    assert clamped.reserve_for_response == 8_092
    with pytest.raises(InvalidArgumentError):
        TokenBudget.for_model("  ")


@allure.feature("Token Budget")
@allure.story("Persistence")
@allure.severity(allure.severity_level.NORMAL)
def test_json_round_trip():
    budget = TokenBudget(8192, 1000, reserve_tokens=500, strategy=TrimStrategy.SLIDING_WINDOW, keep_first_turns=2)
    budget.add_message("system", "You are a coding assistant.")
    budget.add_message("user", "Write me a function.")
    budget.add_message("assistant", "Here is a function...")
    budget.trimmed_count = 3

    data = json.loads(budget.to_json())
    assert data["strategy"] == "SlidingWindow"
    assert set(data) == {
        "maxTokens", "reserveForResponse", "reserveTokens", "strategy",
        "keepFirstTurns", "messages", "trimmedCount", "trimmedTokens",
    }

    restored = TokenBudget.from_json(budget.to_json())
    assert restored.to_dict() == budget.to_dict()
    assert restored.used_tokens == budget.used_tokens


def test_from_json_is_lenient_about_messages_and_strategy():
    restored = TokenBudget.from_json(json.dumps({
        "maxTokens": 1000,
        "reserveForResponse": 100,
        "strategy": "remove_longest",
        "messages": [
            {"role": "user", "content": "counted", "tokens": 0},
            {"role": "user", "content": ""},
            {"role": "wizard", "content": "skipped"},
            {"role": "assistant", "content": "kept", "tokens": 42},
        ],
    }))

    assert restored.strategy is TrimStrategy.REMOVE_LONGEST
    assert restored.reserve_tokens == DEFAULT_RESERVE_TOKENS
    assert [(m.role, m.content, m.tokens) for m in restored.get_messages_with_tokens()] == [
        ("user", "counted", TokenBudget.message_tokens("counted")),
        ("assistant", "kept", 42),
    ]

    unknown = TokenBudget.from_json('{"strategy": "Random", "messages": []}')
    assert unknown.strategy is TrimStrategy.REMOVE_OLDEST


def test_from_json_errors():
    with pytest.raises(InvalidArgumentError):
        TokenBudget.from_json("")
    for text in ["not json at all", '{"maxTokens": 1000}', '{"maxTokens": 50, "messages": []}', "[1]"]:
        with pytest.raises(MalformedDataError):
            TokenBudget.from_json(text)
