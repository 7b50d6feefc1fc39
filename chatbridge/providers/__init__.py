from .base import ProviderAdapter
from .openai import OpenAIProvider
from .anthropic import AnthropicProvider
from .gemini import GeminiProvider

__all__ = ["ProviderAdapter", "OpenAIProvider", "AnthropicProvider", "GeminiProvider"]
