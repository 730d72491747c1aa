"""
Constants and configuration defaults for promptkit.
"""
from typing import Final

APP_NAME: Final[str] = "promptkit"
APP_VERSION: Final[str] = "1.0.0"
APP_DESCRIPTION: Final[str] = "Prompt templates, chains and conversations over Azure OpenAI"

ENV_API_URI: Final[str] = "AZURE_OPENAI_API_URI"
ENV_API_KEY: Final[str] = "AZURE_OPENAI_API_KEY"
ENV_API_MODEL: Final[str] = "AZURE_OPENAI_API_MODEL"
ENV_API_VERSION: Final[str] = "AZURE_OPENAI_API_VERSION"
ENV_TIMEOUT: Final[str] = "PROMPTKIT_TIMEOUT"
ENV_RETRY_BACKOFF: Final[str] = "PROMPTKIT_RETRY_BACKOFF"

DEFAULT_API_VERSION: Final[str] = "2024-06-01"
DEFAULT_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_RETRY_BACKOFF_SECONDS: Final[float] = 1.0
MAX_RETRY_BACKOFF_SECONDS: Final[float] = 30.0
DEFAULT_MAX_RETRIES: Final[int] = 3

RETRYABLE_STATUS_CODES: Final[frozenset] = frozenset({429, 500, 502, 503, 504})
