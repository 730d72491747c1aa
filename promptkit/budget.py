"""
Token budgeting for chat histories.

TokenBudget tracks the estimated token cost of a message list against a
model's context window and trims old turns when the history no longer
fits, leaving room for the model's reply.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from .errors import InvalidArgumentError, MalformedDataError
from .guard import estimate_tokens
from .llm.base import VALID_ROLES
from .serialization import dump_json, load_json_object


logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 128_000
DEFAULT_RESERVE_FOR_RESPONSE = 4096
DEFAULT_RESERVE_TOKENS = 200
MIN_MAX_TOKENS = 100

# Per-message overhead for role and framing tokens
MESSAGE_OVERHEAD_TOKENS = 4

MODEL_CONTEXT_WINDOWS: dict[str, int] = {
    "gpt-4": 8_192,
    "gpt-4-0613": 8_192,
    "gpt-4-32k": 32_768,
    "gpt-4-32k-0613": 32_768,
    "gpt-4-turbo": 128_000,
    "gpt-4-turbo-2024-04-09": 128_000,
    "gpt-4-1106-preview": 128_000,
    "gpt-4o": 128_000,
    "gpt-4o-2024-05-13": 128_000,
    "gpt-4o-2024-08-06": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4o-mini-2024-07-18": 128_000,
    "gpt-3.5-turbo": 16_385,
    "gpt-3.5-turbo-0125": 16_385,
    "gpt-3.5-turbo-16k": 16_385,
    "claude-3-opus": 200_000,
    "claude-3-opus-20240229": 200_000,
    "claude-3-sonnet": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-3-haiku": 200_000,
    "claude-3-5-haiku": 200_000,
    "claude-4-opus": 200_000,
    "claude-4-sonnet": 200_000,
}


class TrimStrategy(Enum):
    """Which message goes first when the history is over budget."""
    REMOVE_OLDEST = "RemoveOldest"
    SLIDING_WINDOW = "SlidingWindow"
    REMOVE_LONGEST = "RemoveLongest"

    @classmethod
    def parse(cls, value: Any) -> Optional["TrimStrategy"]:
        """Match a value or member name ignoring case; None if unknown."""
        if not isinstance(value, str):
            return None
        wanted = value.strip().replace("_", "").casefold()
        for member in cls:
            if wanted in (member.value.casefold(), member.name.replace("_", "").casefold()):
                return member
        return None


@dataclass
class BudgetMessage:
    role: str
    content: str
    tokens: int


@dataclass
class BudgetSummary:
    """Point-in-time statistics from TokenBudget.get_summary()."""
    max_tokens: int
    reserve_for_response: int
    reserve_tokens: int
    available_tokens: int
    used_tokens: int
    remaining_tokens: int
    usage_percent: float
    is_over_budget: bool
    message_count: int
    system_messages: int
    user_messages: int
    assistant_messages: int
    trimmed_count: int
    trimmed_tokens: int
    strategy: TrimStrategy
    largest_message_tokens: int
    average_message_tokens: int

    def __str__(self) -> str:
        return (
            f"TokenBudget: {self.used_tokens}/{self.available_tokens} tokens "
            f"({self.usage_percent:.1f}%), {self.message_count} messages, "
            f"{self.trimmed_count} trimmed ({self.trimmed_tokens} tokens), "
            f"strategy={self.strategy.value}"
        )


def _non_negative(value: Any, what: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise InvalidArgumentError(f"{what} must be a non-negative integer, got {value!r}")
    return value


class TokenBudget:
    """
    Keeps a message list within a model's context window.

    available_tokens = max_tokens - reserve_for_response - reserve_tokens.
    Each message costs its estimated tokens plus a small framing overhead.
    When an added message pushes the total over the available tokens,
    messages are removed per the trim strategy until it fits again.
    System messages are never trimmed.

    Example:
        budget = TokenBudget.for_model("gpt-4")
        budget.add_message("system", "You are a helpful assistant.")
        budget.add_message("user", "What is quantum computing?")
        messages = budget.get_messages()
    """

    def __init__(
        self,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        reserve_for_response: int = DEFAULT_RESERVE_FOR_RESPONSE,
        *,
        reserve_tokens: int = DEFAULT_RESERVE_TOKENS,
        strategy: TrimStrategy = TrimStrategy.REMOVE_OLDEST,
        keep_first_turns: int = 1,
    ) -> None:
        """
        Initialize the budget.

        Args:
            max_tokens: Model context window, at least 100
            reserve_for_response: Tokens kept free for the reply
            reserve_tokens: Extra safety margin
            strategy: How to pick messages to trim
            keep_first_turns: Leading user/assistant turns the sliding
                window protects

        Raises:
            InvalidArgumentError: If the sizes are out of range
        """
        if isinstance(max_tokens, bool) or not isinstance(max_tokens, int) or max_tokens < MIN_MAX_TOKENS:
            raise InvalidArgumentError(f"max_tokens must be at least {MIN_MAX_TOKENS}, got {max_tokens!r}")
        _non_negative(reserve_for_response, "reserve_for_response")
        if reserve_for_response >= max_tokens:
            raise InvalidArgumentError(
                f"reserve_for_response ({reserve_for_response}) must be less than max_tokens ({max_tokens})"
            )

        self._max_tokens = max_tokens
        self._reserve_for_response = reserve_for_response
        self.reserve_tokens = reserve_tokens
        self.strategy = strategy
        self.keep_first_turns = keep_first_turns

        self._messages: list[BudgetMessage] = []
        self._used = 0
        self.trimmed_count = 0
        self.trimmed_tokens = 0

    @classmethod
    def for_model(cls, model: str, reserve_for_response: int = DEFAULT_RESERVE_FOR_RESPONSE) -> "TokenBudget":
        """Create a budget sized to a known model's context window.

        Unknown models get the default 128k window. The response reserve is
        clamped to leave at least 100 tokens for the history.
        """
        if not isinstance(model, str) or not model.strip():
            raise InvalidArgumentError("Model name cannot be null or empty.")
        window = MODEL_CONTEXT_WINDOWS.get(model.strip().lower(), DEFAULT_MAX_TOKENS)
        return cls(window, min(reserve_for_response, window - MIN_MAX_TOKENS))

    @staticmethod
    def message_tokens(content: str) -> int:
        """Estimated cost of one message with this content."""
        return estimate_tokens(content) + MESSAGE_OVERHEAD_TOKENS

    @property
    def max_tokens(self) -> int:
        return self._max_tokens

    @property
    def reserve_for_response(self) -> int:
        return self._reserve_for_response

    @property
    def reserve_tokens(self) -> int:
        return self._reserve_tokens

    @reserve_tokens.setter
    def reserve_tokens(self, value: int) -> None:
        self._reserve_tokens = _non_negative(value, "reserve_tokens")

    @property
    def strategy(self) -> TrimStrategy:
        return self._strategy

    @strategy.setter
    def strategy(self, value: TrimStrategy) -> None:
        if not isinstance(value, TrimStrategy):
            raise InvalidArgumentError(f"strategy must be a TrimStrategy, got {value!r}")
        self._strategy = value

    @property
    def keep_first_turns(self) -> int:
        return self._keep_first_turns

    @keep_first_turns.setter
    def keep_first_turns(self, value: int) -> None:
        self._keep_first_turns = _non_negative(value, "keep_first_turns")

    @property
    def available_tokens(self) -> int:
        return max(0, self._max_tokens - self._reserve_for_response - self._reserve_tokens)

    @property
    def used_tokens(self) -> int:
        return self._used

    @property
    def remaining_tokens(self) -> int:
        return max(0, self.available_tokens - self._used)

    @property
    def usage_percent(self) -> float:
        available = self.available_tokens
        if available <= 0:
            return 100.0
        return min(100.0, self._used / available * 100.0)

    @property
    def is_over_budget(self) -> bool:
        return self._used > self.available_tokens

    @property
    def message_count(self) -> int:
        return len(self._messages)

    @property
    def system_tokens(self) -> int:
        """Tokens held by system messages, which are never trimmed."""
        return sum(m.tokens for m in self._messages if m.role == "system")

    def add_message(self, role: str, content: str) -> int:
        """Append a message and trim the history if it no longer fits.

        Args:
            role: "system", "user" or "assistant" (any case)
            content: Message text

        Returns:
            Number of messages trimmed to make room

        Raises:
            InvalidArgumentError: If role or content is blank, or the role
                is unknown
        """
        if not isinstance(role, str) or not role.strip():
            raise InvalidArgumentError("Role cannot be null or empty.")
        if not isinstance(content, str) or not content.strip():
            raise InvalidArgumentError("Content cannot be null or empty.")
        normalized = role.lower()
        if normalized not in VALID_ROLES:
            raise InvalidArgumentError(
                f"Invalid role '{role}'. Must be 'system', 'user', or 'assistant'."
            )

        tokens = self.message_tokens(content)
        self._messages.append(BudgetMessage(normalized, content, tokens))
        self._used += tokens
        return self._trim_if_needed()

    def would_fit(self, content: str) -> bool:
        """True if a message with this content fits without trimming."""
        if not content:
            return True
        return self._used + self.message_tokens(content) <= self.available_tokens

    def get_messages(self) -> list[tuple[str, str]]:
        """Return (role, content) pairs of the kept messages, oldest first."""
        return [(m.role, m.content) for m in self._messages]

    def get_messages_with_tokens(self) -> list[BudgetMessage]:
        return [BudgetMessage(m.role, m.content, m.tokens) for m in self._messages]

    def clear_history(self) -> None:
        """Remove every message except system messages."""
        self._messages = [m for m in self._messages if m.role == "system"]
        self._used = sum(m.tokens for m in self._messages)

    def clear_all(self) -> None:
        self._messages.clear()
        self._used = 0

    def get_summary(self) -> BudgetSummary:
        tokens = [m.tokens for m in self._messages]
        return BudgetSummary(
            max_tokens=self._max_tokens,
            reserve_for_response=self._reserve_for_response,
            reserve_tokens=self._reserve_tokens,
            available_tokens=self.available_tokens,
            used_tokens=self._used,
            remaining_tokens=self.remaining_tokens,
            usage_percent=self.usage_percent,
            is_over_budget=self.is_over_budget,
            message_count=len(self._messages),
            system_messages=sum(1 for m in self._messages if m.role == "system"),
            user_messages=sum(1 for m in self._messages if m.role == "user"),
            assistant_messages=sum(1 for m in self._messages if m.role == "assistant"),
            trimmed_count=self.trimmed_count,
            trimmed_tokens=self.trimmed_tokens,
            strategy=self._strategy,
            largest_message_tokens=max(tokens, default=0),
            average_message_tokens=round(sum(tokens) / len(tokens)) if tokens else 0,
        )

    def _trim_if_needed(self) -> int:
        trimmed = 0
        available = self.available_tokens
        while self._used > available:
            index = self._find_trim_candidate()
            if index < 0:
                # Only system messages left
                break
            removed = self._messages.pop(index)
            self._used -= removed.tokens
            self.trimmed_count += 1
            self.trimmed_tokens += removed.tokens
            trimmed += 1

        if trimmed:
            logger.debug(
                "Trimmed %d message(s) strategy=%s used=%d/%d",
                trimmed, self._strategy.value, self._used, available,
            )
        return trimmed

    def _find_trim_candidate(self) -> int:
        if self._strategy is TrimStrategy.SLIDING_WINDOW:
            return self._sliding_window_candidate()
        if self._strategy is TrimStrategy.REMOVE_LONGEST:
            return self._longest_candidate()
        return self._oldest_candidate()

    def _oldest_candidate(self) -> int:
        for index, message in enumerate(self._messages):
            if message.role != "system":
                return index
        return -1

    def _sliding_window_candidate(self) -> int:
        protected = self._keep_first_turns * 2  # user + assistant per turn
        seen = 0
        for index, message in enumerate(self._messages):
            if message.role == "system":
                continue
            seen += 1
            if seen > protected:
                return index
        # Everything left is protected
        return self._oldest_candidate()

    def _longest_candidate(self) -> int:
        best_index, best_tokens = -1, -1
        for index, message in enumerate(self._messages):
            if message.role != "system" and message.tokens > best_tokens:
                best_index, best_tokens = index, message.tokens
        return best_index

    def to_dict(self) -> dict[str, Any]:
        return {
            "maxTokens": self._max_tokens,
            "reserveForResponse": self._reserve_for_response,
            "reserveTokens": self._reserve_tokens,
            "strategy": self._strategy.value,
            "keepFirstTurns": self._keep_first_turns,
            "messages": [
                {"role": m.role, "content": m.content, "tokens": m.tokens}
                for m in self._messages
            ],
            "trimmedCount": self.trimmed_count,
            "trimmedTokens": self.trimmed_tokens,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TokenBudget":
        """
        Restore a budget from its persisted form without trimming.

        Messages with empty content or an unknown role are skipped, missing
        or non-positive token counts are re-estimated, and an unknown
        strategy name leaves the default.

        Raises:
            MalformedDataError: If the messages array is missing or a size
                is out of range
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid token budget data: expected an object")

        messages = data.get("messages")
        if not isinstance(messages, list):
            raise MalformedDataError("Invalid token budget JSON: missing messages array.")

        try:
            budget = cls(
                data.get("maxTokens", DEFAULT_MAX_TOKENS),
                data.get("reserveForResponse", DEFAULT_RESERVE_FOR_RESPONSE),
                reserve_tokens=data.get("reserveTokens", DEFAULT_RESERVE_TOKENS),
                keep_first_turns=data.get("keepFirstTurns", 1),
            )
            budget.trimmed_count = _non_negative(data.get("trimmedCount", 0), "trimmedCount")
            budget.trimmed_tokens = _non_negative(data.get("trimmedTokens", 0), "trimmedTokens")
        except InvalidArgumentError as e:
            raise MalformedDataError(f"Invalid token budget: {e}") from e

        strategy = TrimStrategy.parse(data.get("strategy"))
        if strategy is not None:
            budget.strategy = strategy

        for item in messages:
            if not isinstance(item, dict):
                continue
            role = str(item.get("role") or "").lower()
            content = item.get("content")
            if role not in VALID_ROLES or not isinstance(content, str) or not content:
                continue
            tokens = item.get("tokens")
            if isinstance(tokens, bool) or not isinstance(tokens, int) or tokens <= 0:
                tokens = cls.message_tokens(content)
            budget._messages.append(BudgetMessage(role, content, tokens))

        budget._used = sum(m.tokens for m in budget._messages)
        return budget

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str) -> "TokenBudget":
        return cls.from_dict(load_json_object(text, "token budget"))

    def __repr__(self) -> str:
        return (
            f"TokenBudget(used={self._used}, available={self.available_tokens}, "
            f"messages={len(self._messages)}, strategy={self._strategy.value})"
        )
