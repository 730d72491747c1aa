"""
One-shot request helper for promptkit.
"""
from typing import Optional

from .errors import InvalidArgumentError
from .llm.azure_openai import AzureOpenAISender
from .llm.base import LLMSender
from .options import PromptOptions


async def get_response(
    prompt: str,
    system_prompt: Optional[str] = None,
    *,
    max_retries: int = 3,
    options: Optional[PromptOptions] = None,
    sender: Optional[LLMSender] = None,
) -> Optional[str]:
    """
    Send a single prompt and return the response text.

    When no sender is given, one is built from the AZURE_OPENAI_* environment
    variables for this call only and closed afterwards.

    Args:
        prompt: The user prompt
        system_prompt: Optional system prompt
        max_retries: Retry budget for transient failures
        options: Optional sampling parameters (library defaults if None)
        sender: Optional sender to use instead of the environment-configured one

    Returns:
        The model's response text, or None if no content was generated

    Raises:
        InvalidArgumentError: If prompt is blank or max_retries is negative
        ConfigurationError: If no sender is given and the environment is incomplete
        SenderError: If the request fails after retries
    """
    if not isinstance(prompt, str) or not prompt.strip():
        raise InvalidArgumentError("Prompt cannot be null or empty.")
    if max_retries < 0:
        raise InvalidArgumentError(f"max_retries must be non-negative, got {max_retries}")

    if sender is not None:
        return await sender.send(prompt, system_prompt, options, max_retries)

    async with AzureOpenAISender.from_env() as env_sender:
        return await env_sender.send(prompt, system_prompt, options, max_retries)
