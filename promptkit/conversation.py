"""
Multi-turn conversations for promptkit.
Keeps message history so each request carries the full dialogue context,
and persists conversations as JSON.
"""
import logging
from typing import Any, Optional

from .budget import TokenBudget
from .errors import InvalidArgumentError, MalformedDataError
from .llm.base import VALID_ROLES, ChatMessage, LLMSender
from .options import PromptOptions
from .serialization import PathLike, dump_json, load_json_object, read_text_file, write_text_file


logger = logging.getLogger(__name__)


def _require_message(message: Any) -> str:
    if not isinstance(message, str) or not message.strip():
        raise InvalidArgumentError("Message cannot be null or empty.")
    return message


class Conversation:
    """
    A chat session that accumulates messages across turns.

    Example:
        conv = Conversation(sender, "You are a helpful assistant.")
        await conv.send("What is 2+2?")
        await conv.send("Now multiply that by 3.")

    With a TokenBudget attached, the history is trimmed as it grows so
    every request fits the model's context window. System prompts are
    never trimmed.
    """

    def __init__(
        self,
        sender: Optional[LLMSender] = None,
        system_prompt: Optional[str] = None,
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
        budget: Optional[TokenBudget] = None,
    ) -> None:
        """
        Initialize a conversation.

        Args:
            sender: Sender used by send(); optional for offline use
            system_prompt: Optional system prompt; ignored when blank
            options: Sampling parameters for every turn
            max_retries: Retry budget passed to the sender
            budget: Optional token budget that trims the history
        """
        self._sender = sender
        self._messages: list[ChatMessage] = []
        self._budget: Optional[TokenBudget] = None
        self.options = options or PromptOptions()
        self.max_retries = max_retries

        if system_prompt and system_prompt.strip():
            self._messages.append(ChatMessage("system", system_prompt))
        self.budget = budget

    @property
    def sender(self) -> Optional[LLMSender]:
        return self._sender

    @sender.setter
    def sender(self, value: Optional[LLMSender]) -> None:
        self._sender = value

    @property
    def options(self) -> PromptOptions:
        return self._options

    @options.setter
    def options(self, value: PromptOptions) -> None:
        if not isinstance(value, PromptOptions):
            raise InvalidArgumentError("options must be a PromptOptions instance")
        self._options = value

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @max_retries.setter
    def max_retries(self, value: int) -> None:
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidArgumentError(f"max_retries must be a non-negative integer, got {value!r}")
        self._max_retries = value

    @property
    def budget(self) -> Optional[TokenBudget]:
        return self._budget

    @budget.setter
    def budget(self, value: Optional[TokenBudget]) -> None:
        """Attach a budget, replacing its messages with this history."""
        if value is not None and not isinstance(value, TokenBudget):
            raise InvalidArgumentError("budget must be a TokenBudget instance")
        self._budget = value
        if value is not None:
            value.clear_all()
            trimmed = 0
            for message in self._messages:
                if message.content.strip():
                    trimmed += value.add_message(message.role, message.content)
            if trimmed:
                self._sync_with_budget()

    @property
    def message_count(self) -> int:
        """Number of messages, including the system prompt."""
        return len(self._messages)

    @property
    def system_prompt(self) -> Optional[str]:
        if self._messages and self._messages[0].role == "system":
            return self._messages[0].content
        return None

    async def send(self, message: str) -> Optional[str]:
        """
        Send a user message with the full history and record the reply.

        The user message stays in the history even if the request fails.
        The reply is only recorded when the model produced content.

        Args:
            message: User message text

        Returns:
            The assistant's reply, or None if no content was generated

        Raises:
            InvalidArgumentError: If message is blank, no sender is set, or
                the message cannot fit the token budget even alone
            SenderError: Propagated from the sender
        """
        _require_message(message)
        if self._sender is None:
            raise InvalidArgumentError("Conversation has no sender")
        if self._budget is not None:
            needed = self._budget.system_tokens + TokenBudget.message_tokens(message)
            if needed > self._budget.available_tokens:
                raise InvalidArgumentError(
                    f"Message needs about {needed} tokens with the system prompt, "
                    f"more than the {self._budget.available_tokens} the budget allows"
                )

        self._append("user", message)
        snapshot = list(self._messages)

        response = await self._sender.chat(
            snapshot,
            options=self._options,
            max_retries=self._max_retries,
        )

        if response.content is not None:
            self._append("assistant", response.content)
        else:
            logger.debug("Conversation turn produced no content")

        return response.content

    def add_user_message(self, message: str) -> None:
        """Append a user message without sending it."""
        self._append("user", _require_message(message))

    def add_assistant_message(self, message: str) -> None:
        """Append an assistant message, e.g. for few-shot examples."""
        self._append("assistant", _require_message(message))

    def clear(self) -> None:
        """Remove all messages except a leading system prompt."""
        system = self._messages[0] if self._messages and self._messages[0].role == "system" else None
        self._messages.clear()
        if system is not None:
            self._messages.append(system)
        if self._budget is not None:
            self.budget = self._budget

    def _append(self, role: str, content: str) -> None:
        self._messages.append(ChatMessage(role, content))
        if self._budget is not None and content.strip() and self._budget.add_message(role, content):
            self._sync_with_budget()

    def _sync_with_budget(self) -> None:
        # The budget only removes messages, so its list is an ordered subset.
        # Blank messages it never counted are dropped along with the trimmed ones.
        kept = self._budget.get_messages()
        logger.debug("Budget trimmed history from %d to %d message(s)", len(self._messages), len(kept))
        self._messages = [ChatMessage(role, content) for role, content in kept]

    def get_history(self) -> list[tuple[str, str]]:
        """Return (role, content) pairs, oldest first."""
        return [(m.role, m.content) for m in self._messages]

    def to_dict(self) -> dict[str, Any]:
        return {
            "messages": [m.to_dict() for m in self._messages],
            "parameters": {
                **self._options.to_dict(),
                "maxRetries": self._max_retries,
            },
        }

    @classmethod
    def from_dict(cls, data: Any, sender: Optional[LLMSender] = None) -> "Conversation":
        """
        Restore a conversation from its persisted form.

        Messages with empty content or an unknown role are skipped.

        Raises:
            MalformedDataError: If the messages array is missing or the
                parameters are invalid
        """
        if not isinstance(data, dict):
            raise MalformedDataError("Invalid conversation data: expected an object")

        messages = data.get("messages")
        if not isinstance(messages, list):
            raise MalformedDataError("Invalid conversation JSON: missing messages array.")

        conv = cls(sender)

        parameters = data.get("parameters")
        if parameters is not None:
            if not isinstance(parameters, dict):
                raise MalformedDataError("Field 'parameters' must be an object")
            conv.options = PromptOptions.from_dict(parameters)
            max_retries = parameters.get("maxRetries", 3)
            try:
                conv.max_retries = max_retries
            except InvalidArgumentError as e:
                raise MalformedDataError(f"Invalid parameters: {e}") from e

        for item in messages:
            if not isinstance(item, dict):
                continue
            role = str(item.get("role") or "").lower()
            content = item.get("content")
            if role not in VALID_ROLES or not isinstance(content, str) or not content:
                continue
            conv._messages.append(ChatMessage(role, content))

        return conv

    def to_json(self, indent: Optional[int] = 2) -> str:
        return dump_json(self.to_dict(), indent=indent)

    @classmethod
    def from_json(cls, text: str, sender: Optional[LLMSender] = None) -> "Conversation":
        return cls.from_dict(load_json_object(text, "conversation"), sender)

    def save(self, path: PathLike, indent: Optional[int] = 2) -> None:
        """Save the conversation to a JSON file."""
        write_text_file(path, self.to_json(indent=indent))

    @classmethod
    def load(cls, path: PathLike, sender: Optional[LLMSender] = None) -> "Conversation":
        """Load a conversation from a JSON file."""
        return cls.from_json(read_text_file(path), sender)

    def __repr__(self) -> str:
        return f"Conversation(messages={len(self._messages)})"
