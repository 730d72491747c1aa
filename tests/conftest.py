"""
Shared fakes for promptkit tests.
"""
from typing import Callable, Optional

import pytest

from promptkit.llm.base import ChatMessage, LLMResponse, LLMSender
from promptkit.options import PromptOptions


class EchoSender(LLMSender):
    """Returns the last message's content and records every call."""

    def __init__(self, reply: Optional[Callable[[str], Optional[str]]] = None) -> None:
        self.calls: list[dict] = []
        self._reply = reply or (lambda prompt: prompt)
        self.closed = False

    async def chat(
        self,
        messages: list[ChatMessage],
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
    ) -> LLMResponse:
        self.calls.append({
            "messages": [m.to_dict() for m in messages],
            "options": options,
            "max_retries": max_retries,
        })
        return LLMResponse(content=self._reply(messages[-1].content))

    async def aclose(self) -> None:
        self.closed = True

    @property
    def call_count(self) -> int:
        return len(self.calls)

    @property
    def prompts(self) -> list[str]:
        return [call["messages"][-1]["content"] for call in self.calls]


class FailingSender(LLMSender):
    """Raises the given error on every call."""

    def __init__(self, error: Exception) -> None:
        self.error = error
        self.call_count = 0

    async def chat(self, messages, options=None, max_retries=3) -> LLMResponse:
        self.call_count += 1
        raise self.error


@pytest.fixture
def echo_sender() -> EchoSender:
    return EchoSender()
