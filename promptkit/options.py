"""
Model parameters for chat completion requests.

PromptOptions wraps sampling parameters without exposing any HTTP payload
details to callers, and offers presets for common workloads.
"""
from dataclasses import dataclass, fields
from typing import Any

from .errors import InvalidArgumentError, MalformedDataError


# (minimum, maximum) per float field; max_tokens is checked separately
_FLOAT_RANGES: dict[str, tuple[float, float]] = {
    "temperature": (0.0, 2.0),
    "top_p": (0.0, 1.0),
    "frequency_penalty": (-2.0, 2.0),
    "presence_penalty": (-2.0, 2.0),
}

# Serialized (camelCase) key for each field
_JSON_KEYS: dict[str, str] = {
    "temperature": "temperature",
    "max_tokens": "maxTokens",
    "top_p": "topP",
    "frequency_penalty": "frequencyPenalty",
    "presence_penalty": "presencePenalty",
}


def _check_field(name: str, value: Any) -> None:
    if name == "max_tokens":
        if isinstance(value, bool) or not isinstance(value, int):
            raise InvalidArgumentError(f"max_tokens must be an integer, got {value!r}")
        if value < 1:
            raise InvalidArgumentError(f"max_tokens must be at least 1, got {value}")
        return

    if name in _FLOAT_RANGES:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidArgumentError(f"{name} must be a number, got {value!r}")
        low, high = _FLOAT_RANGES[name]
        if value < low or value > high:
            raise InvalidArgumentError(
                f"{name} must be between {low} and {high}, got {value}"
            )


@dataclass
class PromptOptions:
    """Configurable sampling parameters for a completion request.

    Every assignment is range-checked, both at construction and afterwards.

    Attributes:
        temperature: Sampling temperature (0.0-2.0).
        max_tokens: Maximum number of tokens in the response (>= 1).
        top_p: Nucleus sampling mass (0.0-1.0).
        frequency_penalty: Penalty for frequent tokens (-2.0-2.0).
        presence_penalty: Penalty for already-present tokens (-2.0-2.0).

    Example:
        opts = PromptOptions(temperature=0.1, max_tokens=4000)
        creative = PromptOptions.for_creative_writing()
    """
    temperature: float = 0.7
    max_tokens: int = 800
    top_p: float = 0.95
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    def __setattr__(self, name: str, value: Any) -> None:
        _check_field(name, value)
        super().__setattr__(name, value)

    @classmethod
    def for_code_generation(cls) -> "PromptOptions":
        """Low temperature, high token limit."""
        return cls(temperature=0.1, max_tokens=4000, top_p=0.95)

    @classmethod
    def for_creative_writing(cls) -> "PromptOptions":
        """High temperature for varied output."""
        return cls(temperature=0.9, max_tokens=2000, top_p=0.9)

    @classmethod
    def for_data_extraction(cls) -> "PromptOptions":
        """Deterministic settings for structured extraction."""
        return cls(temperature=0.0, max_tokens=2000, top_p=1.0)

    @classmethod
    def for_summarization(cls) -> "PromptOptions":
        return cls(temperature=0.3, max_tokens=1000, top_p=0.9)

    def to_payload(self) -> dict[str, Any]:
        """Return the request body fields for a chat completion call."""
        return {
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "top_p": self.top_p,
            "frequency_penalty": self.frequency_penalty,
            "presence_penalty": self.presence_penalty,
        }

    def to_dict(self) -> dict[str, Any]:
        """Convert to a camelCase dictionary for JSON persistence."""
        return {_JSON_KEYS[f.name]: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PromptOptions":
        """Create options from a camelCase dictionary.

        Missing keys fall back to the defaults.

        Args:
            data: Dictionary as produced by to_dict().

        Returns:
            A new PromptOptions instance.

        Raises:
            MalformedDataError: If data is not an object or a value is
                invalid.
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Field 'options' must be an object")

        kwargs = {
            name: data[key]
            for name, key in _JSON_KEYS.items()
            if key in data
        }
        try:
            return cls(**kwargs)
        except InvalidArgumentError as e:
            raise MalformedDataError(f"Invalid options: {e}") from e
