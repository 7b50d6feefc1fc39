from typing import Optional, Union

from .config import Settings
from .credentials import CredentialStore
from .providers.anthropic import AnthropicProvider
from .providers.base import ProviderAdapter
from .providers.gemini import GeminiProvider
from .providers.openai import OpenAIProvider
from .types import ModelDescriptor, Provider


class AdapterFactory:
    """
    Selects the adapter for a provider or model.

    Holds only the credential store (and settings) needed to build adapters;
    HTTP clients come from the shared per-provider pool.
    """

    def __init__(self, credentials: CredentialStore, settings: Optional[Settings] = None):
        self.credentials = credentials
        self.settings = settings or Settings()

    def for_provider(self, provider: Union[Provider, str]) -> ProviderAdapter:
        """
        Return a new adapter for ``provider``.

        Args:
            provider (Provider | str): Provider enum, or its value
                ('OpenAI', 'Anthropic', 'Google').

        Raises:
            ValueError: If the provider is not supported.
        """
        try:
            provider = Provider(provider)
        except ValueError:
            raise ValueError(f"Unknown provider: {provider}") from None

        match provider:
            case Provider.OPENAI:
                return OpenAIProvider(self.credentials, settings=self.settings)
            case Provider.ANTHROPIC:
                return AnthropicProvider(self.credentials, settings=self.settings)
            case Provider.GOOGLE:
                return GeminiProvider(self.credentials, settings=self.settings)

    def for_model(self, model: ModelDescriptor) -> ProviderAdapter:
        return self.for_provider(model.provider)
