"""
Exception hierarchy for promptkit.

Every error raised by the library derives from PromptError so callers can
catch the whole family with a single except clause.
"""
from typing import Iterable, Optional


class PromptError(Exception):
    """Base class for all promptkit errors."""


class InvalidArgumentError(PromptError, ValueError):
    """Raised when a caller passes a malformed or out-of-range argument."""


class MissingVariablesError(PromptError):
    """Raised when strict rendering finds placeholders with no value."""

    def __init__(self, missing: Iterable[str], template_location: Optional[str] = None):
        self.missing = list(missing)
        self.template_location = template_location
        message = (
            f"Missing values for template variables: {', '.join(self.missing)}. "
            "Provide them via the variables parameter or set defaults."
        )
        if template_location:
            message += f" (template at {template_location})"
        super().__init__(message)


class EmptyChainError(PromptError):
    """Raised when a chain with no steps is run."""

    def __init__(self, message: str = "Cannot run an empty chain. Add at least one step with add_step()."):
        super().__init__(message)


class MalformedDataError(PromptError, ValueError):
    """Raised when persisted template, chain or library data fails validation."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        column: Optional[int] = None,
    ):
        self.line = line
        self.column = column

        if line is not None and column is not None:
            full_message = f"{message} (line {line}, column {column})"
        elif line is not None:
            full_message = f"{message} (line {line})"
        else:
            full_message = message

        super().__init__(full_message)


class SenderError(PromptError):
    """Raised when the model endpoint fails after the retry budget is spent."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        body: Optional[str] = None,
        retry_after: Optional[float] = None,
    ):
        self.status_code = status_code
        self.body = body
        self.retry_after = retry_after
        super().__init__(message)


class ChainCancelledError(PromptError):
    """Raised when a chain run observes its cancel signal at a step boundary."""

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(f"Chain cancelled before step '{step_name}'")


class ConfigurationError(PromptError):
    """Raised when required client configuration is missing or invalid."""
