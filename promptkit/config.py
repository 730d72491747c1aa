"""
Client configuration for promptkit.
Resolves Azure OpenAI connection settings from environment variables.
"""
import os
from dataclasses import dataclass
from typing import Mapping, Optional
from urllib.parse import urlparse

from .constants import (
    DEFAULT_API_VERSION,
    DEFAULT_RETRY_BACKOFF_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
    ENV_API_KEY,
    ENV_API_MODEL,
    ENV_API_URI,
    ENV_API_VERSION,
    ENV_RETRY_BACKOFF,
    ENV_TIMEOUT,
)
from .errors import ConfigurationError


def _require(environ: Mapping[str, str], name: str, hint: str) -> str:
    value = (environ.get(name) or "").strip()
    if not value:
        raise ConfigurationError(f"Environment variable {name} is not set or is empty. {hint}")
    return value


def _as_positive_float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = (environ.get(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigurationError(f"{name} must be a number, got '{raw}'") from e
    if value <= 0:
        raise ConfigurationError(f"{name} must be greater than 0, got '{raw}'")
    return value


@dataclass(frozen=True)
class ClientConfig:
    """Connection settings for an Azure OpenAI deployment.

    Attributes:
        endpoint: Resource endpoint, e.g. https://my-resource.openai.azure.com
        api_key: API key sent in the api-key header.
        model: Deployment name.
        api_version: REST API version query parameter.
        timeout: Per-request timeout in seconds.
        retry_backoff: Base delay in seconds for exponential backoff.
    """
    endpoint: str
    api_key: str
    model: str
    api_version: str = DEFAULT_API_VERSION
    timeout: float = DEFAULT_TIMEOUT_SECONDS
    retry_backoff: float = DEFAULT_RETRY_BACKOFF_SECONDS

    @property
    def completions_url(self) -> str:
        """Chat completions URL for the configured deployment."""
        return f"{self.endpoint.rstrip('/')}/openai/deployments/{self.model}/chat/completions"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "ClientConfig":
        """
        Build a config from environment variables.

        Args:
            environ: Mapping to read from (defaults to os.environ)

        Returns:
            A validated ClientConfig

        Raises:
            ConfigurationError: If a required variable is missing, the
                endpoint is not an absolute http(s) URI, or a numeric
                setting is invalid
        """
        env = os.environ if environ is None else environ

        endpoint = _require(env, ENV_API_URI, "Set it pointing to your Azure OpenAI endpoint.")
        parsed = urlparse(endpoint)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                f"{ENV_API_URI} value '{endpoint}' is not a valid HTTP(S) URI."
            )

        api_key = _require(env, ENV_API_KEY, "Set it with your Azure OpenAI API key.")
        model = _require(env, ENV_API_MODEL, "Set it with your deployed model name (e.g. gpt-4).")

        return cls(
            endpoint=endpoint,
            api_key=api_key,
            model=model,
            api_version=(env.get(ENV_API_VERSION) or "").strip() or DEFAULT_API_VERSION,
            timeout=_as_positive_float(env, ENV_TIMEOUT, DEFAULT_TIMEOUT_SECONDS),
            retry_backoff=_as_positive_float(env, ENV_RETRY_BACKOFF, DEFAULT_RETRY_BACKOFF_SECONDS),
        )

    def __repr__(self) -> str:
        return (
            f"ClientConfig(endpoint={self.endpoint!r}, model={self.model!r}, "
            f"api_version={self.api_version!r}, api_key='***')"
        )
