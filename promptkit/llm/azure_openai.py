"""
Azure OpenAI sender implementation for promptkit.
"""
import asyncio
import logging
import time
from typing import Any, Optional

import httpx

from ..config import ClientConfig
from ..constants import MAX_RETRY_BACKOFF_SECONDS, RETRYABLE_STATUS_CODES
from ..errors import InvalidArgumentError, SenderError
from ..options import PromptOptions
from .base import ChatMessage, LLMResponse, LLMSender


logger = logging.getLogger(__name__)


class AzureOpenAISender(LLMSender):
    """
    Sends chat completions to an Azure OpenAI deployment over httpx.

    Transient failures (429, 5xx gateway errors, transport errors) are
    retried with exponential backoff up to max_retries extra attempts.
    The instance owns its httpx client unless one is passed in.
    """

    def __init__(
        self,
        config: ClientConfig,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the sender.

        Args:
            config: Connection settings
            client: Optional shared httpx client; not closed by aclose()
        """
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout)

    @classmethod
    def from_env(cls) -> "AzureOpenAISender":
        """Create a sender configured from environment variables."""
        return cls(ClientConfig.from_env())

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def model(self) -> str:
        return self._config.model

    async def chat(
        self,
        messages: list[ChatMessage],
        options: Optional[PromptOptions] = None,
        max_retries: int = 3,
    ) -> LLMResponse:
        """Send a chat completion request to the configured deployment."""
        if not messages:
            raise InvalidArgumentError("messages cannot be empty")
        if max_retries < 0:
            raise InvalidArgumentError(f"max_retries must be non-negative, got {max_retries}")

        opts = options or PromptOptions()
        payload = {
            "messages": [m.to_dict() for m in messages],
            **opts.to_payload(),
        }

        start_time = time.perf_counter()
        data = await self._post_with_retries(payload, max_retries)
        latency_ms = (time.perf_counter() - start_time) * 1000

        return self._parse_response(data, latency_ms)

    async def _post_with_retries(self, payload: dict[str, Any], max_retries: int) -> dict[str, Any]:
        last_error: Optional[SenderError] = None
        attempts = max(max_retries, 0) + 1

        for attempt in range(attempts):
            if attempt > 0:
                await asyncio.sleep(self._backoff_delay(attempt, last_error))

            try:
                response = await self._client.post(
                    self._config.completions_url,
                    params={"api-version": self._config.api_version},
                    headers=self._build_headers(),
                    json=payload,
                )
            except httpx.TransportError as e:
                last_error = SenderError(f"Request to Azure OpenAI failed: {e}")
                logger.warning(
                    "Azure OpenAI transport error attempt=%s/%s error=%s",
                    attempt + 1, attempts, e,
                )
                continue

            if response.status_code in RETRYABLE_STATUS_CODES:
                last_error = self._status_error(response)
                logger.warning(
                    "Azure OpenAI returned %s attempt=%s/%s",
                    response.status_code, attempt + 1, attempts,
                )
                continue

            if response.is_error:
                raise self._status_error(response)

            try:
                return response.json()
            except ValueError as e:
                raise SenderError(
                    f"Azure OpenAI returned invalid JSON: {e}",
                    status_code=response.status_code,
                    body=response.text[:500],
                ) from e

        # Only retryable failures reach here
        raise SenderError(
            f"Azure OpenAI request failed after {attempts} attempt(s): {last_error}",
            status_code=last_error.status_code if last_error else None,
            body=last_error.body if last_error else None,
        )

    def _backoff_delay(self, attempt: int, last_error: Optional[SenderError]) -> float:
        if last_error is not None and last_error.retry_after is not None:
            return min(last_error.retry_after, MAX_RETRY_BACKOFF_SECONDS)
        return min(self._config.retry_backoff * (2 ** (attempt - 1)), MAX_RETRY_BACKOFF_SECONDS)

    @staticmethod
    def _status_error(response: httpx.Response) -> SenderError:
        body = response.text[:500]
        retry_after: Optional[float] = None
        header = response.headers.get("retry-after")
        if header:
            try:
                retry_after = float(header)
            except ValueError:
                # HTTP-date form; fall back to exponential backoff
                retry_after = None
        return SenderError(
            f"Azure OpenAI returned HTTP {response.status_code}: {body}",
            status_code=response.status_code,
            body=body,
            retry_after=retry_after,
        )

    def _parse_response(self, data: dict[str, Any], latency_ms: float) -> LLMResponse:
        choices = data.get("choices") or []
        content: Optional[str] = None
        finish_reason: Optional[str] = None

        if choices:
            choice = choices[0]
            message = choice.get("message") or {}
            content = message.get("content")
            finish_reason = choice.get("finish_reason")
            if isinstance(content, list):
                # Some gateways return a list of content parts
                content = "".join(
                    part.get("text", "") if isinstance(part, dict) else str(part)
                    for part in content
                )

        usage = data.get("usage") or {}
        return LLMResponse(
            content=content,
            model=data.get("model", self._config.model),
            finish_reason=finish_reason,
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
            raw_response=data,
        )

    def _build_headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "api-key": self._config.api_key,
        }

    async def aclose(self) -> None:
        """Close the underlying httpx client if this sender created it."""
        if self._owns_client:
            await self._client.aclose()

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(model={self._config.model})"
