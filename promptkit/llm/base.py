"""
Base classes for chat completion senders in promptkit.
Defines the abstract interface that the chain, conversation and template
helpers use to reach a model.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from ..errors import InvalidArgumentError
from ..options import PromptOptions


VALID_ROLES = ("system", "user", "assistant")


@dataclass
class ChatMessage:
    """A single message in a chat completion request."""
    role: str
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to the wire format used by chat completion APIs."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Represents a complete chat completion response.

    content is None when the model generated nothing, which is a valid
    outcome and not an error.
    """
    content: Optional[str]
    model: str = ""
    finish_reason: Optional[str] = None
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    latency_ms: float = 0.0
    raw_response: Optional[dict] = None

    def __post_init__(self) -> None:
        if self.total_tokens == 0:
            self.total_tokens = self.input_tokens + self.output_tokens


class LLMSender(ABC):
    """
    Abstract base class for chat completion senders.

    Implementations provide chat(); send() builds the message list for a
    single prompt on top of it. Retries, pooling and deadlines are the
    implementation's concern.
    """

    @abstractmethod
    async def chat(
        self,
        messages: list[ChatMessage],
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
    ) -> LLMResponse:
        """
        Send a chat completion request.

        Args:
            messages: Conversation so far, oldest first
            options: Optional sampling parameters (library defaults if None)
            max_retries: Retry budget for transient failures

        Returns:
            LLMResponse with the completion

        Raises:
            SenderError: If the request fails after retries
        """
        pass

    async def send(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
    ) -> Optional[str]:
        """
        Send a single prompt and return the response text.

        Args:
            prompt: The user prompt
            system_prompt: Optional system prompt; ignored when blank
            options: Optional sampling parameters
            max_retries: Retry budget for transient failures

        Returns:
            The response text, or None if no content was generated

        Raises:
            InvalidArgumentError: If prompt is blank or max_retries is negative
        """
        if not isinstance(prompt, str) or not prompt.strip():
            raise InvalidArgumentError("Prompt cannot be null or empty.")
        if max_retries < 0:
            raise InvalidArgumentError(f"max_retries must be non-negative, got {max_retries}")

        messages: list[ChatMessage] = []
        if system_prompt and system_prompt.strip():
            messages.append(ChatMessage("system", system_prompt))
        messages.append(ChatMessage("user", prompt))

        response = await self.chat(messages, options=options, max_retries=max_retries)
        return response.content

    async def aclose(self) -> None:
        """Release any resources held by the sender."""

    async def __aenter__(self) -> "LLMSender":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}()"
