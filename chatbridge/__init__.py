from .catalog import MODELS, get_model, models_for
from .config import Settings
from .credentials import CredentialStore, EnvCredentialStore, StaticCredentialStore
from .errors import (
    DecodingError,
    ErrorKind,
    InvalidCredentialError,
    InvalidResponseShapeError,
    NetworkError,
    RateLimitedError,
    ServerError,
    ServiceError,
    StreamingProtocolError,
)
from .factory import AdapterFactory
from .providers import AnthropicProvider, GeminiProvider, OpenAIProvider, ProviderAdapter
from .streaming import MessageStream
from .types import (
    ChatMessage,
    ContentPart,
    ImagePart,
    ModelDescriptor,
    PdfPart,
    Provider,
    ReasoningEffort,
    StreamEvent,
    TextPart,
)
from .utils import attachment_from_file, create_message

__all__ = [
    "AdapterFactory",
    "ProviderAdapter",
    "OpenAIProvider",
    "AnthropicProvider",
    "GeminiProvider",
    "MessageStream",
    "ChatMessage",
    "ContentPart",
    "TextPart",
    "ImagePart",
    "PdfPart",
    "ModelDescriptor",
    "Provider",
    "ReasoningEffort",
    "StreamEvent",
    "Settings",
    "CredentialStore",
    "EnvCredentialStore",
    "StaticCredentialStore",
    "ServiceError",
    "ErrorKind",
    "InvalidCredentialError",
    "RateLimitedError",
    "ServerError",
    "NetworkError",
    "InvalidResponseShapeError",
    "DecodingError",
    "StreamingProtocolError",
    "MODELS",
    "get_model",
    "models_for",
    "create_message",
    "attachment_from_file",
]
