import os
import threading
from typing import Dict, Mapping, Optional, Protocol

import dotenv

from .types import Provider

# Environment variable holding each provider's API key
ENV_KEYS: Dict[Provider, str] = {
    Provider.OPENAI: "OPENAI_API_KEY",
    Provider.ANTHROPIC: "ANTHROPIC_API_KEY",
    Provider.GOOGLE: "GOOGLE_API_KEY",
}


class CredentialStore(Protocol):
    """
    Source of provider API keys.

    Implementations must answer from memory; adapters call this on every request.
    """

    def get_secret(self, provider: Provider) -> Optional[str]:
        ...


class StaticCredentialStore:
    """
    Credential store backed by a plain mapping.
    """

    def __init__(self, secrets: Optional[Mapping[Provider, str]] = None):
        self._secrets: Dict[Provider, str] = dict(secrets or {})

    def get_secret(self, provider: Provider) -> Optional[str]:
        return self._secrets.get(provider)

    def set_secret(self, provider: Provider, secret: Optional[str]) -> None:
        if secret:
            self._secrets[provider] = secret
        else:
            self._secrets.pop(provider, None)


class EnvCredentialStore:
    """
    Credential store reading API keys from the environment and a ``.env`` file.

    The process environment wins over the dotenv file. Lookups are cached, so
    the file is read at most once per provider; call ``refresh()`` after keys
    change.
    """

    def __init__(self, env_file: Optional[str] = ".env"):
        self.env_file = env_file
        self._cache: Dict[Provider, Optional[str]] = {}
        self._lock = threading.Lock()

    def get_secret(self, provider: Provider) -> Optional[str]:
        with self._lock:
            if provider not in self._cache:
                self._cache[provider] = self._load(provider)
            return self._cache[provider]

    def refresh(self) -> None:
        with self._lock:
            self._cache.clear()

    def _load(self, provider: Provider) -> Optional[str]:
        name = ENV_KEYS[provider]
        value = os.getenv(name)
        if not value and self.env_file and os.path.exists(self.env_file):
            value = dotenv.get_key(self.env_file, name)
        return value or None
