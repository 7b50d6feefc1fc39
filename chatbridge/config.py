import os
from dataclasses import dataclass
from typing import Optional

import dotenv

OPENAI_CHAT_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
GOOGLE_MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"
ANTHROPIC_VERSION = "2023-06-01"


@dataclass(frozen=True)
class Settings:
    """
    Endpoint, ceiling and timeout configuration for the adapters.

    Attributes:
        openai_url: Chat-completions endpoint.
        anthropic_url: Messages endpoint.
        anthropic_version: Value of the ``anthropic-version`` header.
        anthropic_max_tokens: Fixed ``max_tokens`` ceiling sent to Anthropic.
        google_base_url: Models collection URL; ``/<model>:<operation>`` is appended.
        request_timeout: Seconds a request may sit idle waiting for bytes.
        resource_timeout: Overall seconds one call may take, start to finish.
        connect_timeout: Seconds to establish a connection.
        connect_retries: Connection attempts re-made while the network is down.
    """
    openai_url: str = OPENAI_CHAT_URL
    anthropic_url: str = ANTHROPIC_MESSAGES_URL
    anthropic_version: str = ANTHROPIC_VERSION
    anthropic_max_tokens: int = 4096
    google_base_url: str = GOOGLE_MODELS_URL
    request_timeout: float = 300.0
    resource_timeout: float = 1800.0
    connect_timeout: float = 30.0
    connect_retries: int = 3

    @classmethod
    def from_env(cls, env_file: Optional[str] = ".env") -> "Settings":
        """
        Build settings from ``CHATBRIDGE_*`` environment variables.

        A ``.env`` file is loaded first (without overriding variables that are
        already set), so local development can keep overrides next to the
        API keys.

        Args:
            env_file (str, optional): Path of the dotenv file. None skips it.

        Returns:
            Settings: Defaults overridden by whatever the environment provides.

        Raises:
            ValueError: If a numeric variable cannot be parsed.
        """
        if env_file:
            dotenv.load_dotenv(env_file)

        defaults = cls()
        return cls(
            openai_url=os.getenv("CHATBRIDGE_OPENAI_URL", defaults.openai_url),
            anthropic_url=os.getenv("CHATBRIDGE_ANTHROPIC_URL", defaults.anthropic_url),
            anthropic_version=os.getenv("CHATBRIDGE_ANTHROPIC_VERSION", defaults.anthropic_version),
            anthropic_max_tokens=_int_env("CHATBRIDGE_ANTHROPIC_MAX_TOKENS", defaults.anthropic_max_tokens),
            google_base_url=os.getenv("CHATBRIDGE_GOOGLE_URL", defaults.google_base_url),
            request_timeout=_float_env("CHATBRIDGE_REQUEST_TIMEOUT", defaults.request_timeout),
            resource_timeout=_float_env("CHATBRIDGE_RESOURCE_TIMEOUT", defaults.resource_timeout),
            connect_timeout=_float_env("CHATBRIDGE_CONNECT_TIMEOUT", defaults.connect_timeout),
            connect_retries=_int_env("CHATBRIDGE_CONNECT_RETRIES", defaults.connect_retries),
        )


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None
