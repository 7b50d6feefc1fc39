from dataclasses import dataclass, field
from enum import Enum
from typing import Literal, Optional, Tuple, Union, TYPE_CHECKING

if TYPE_CHECKING:
    from .errors import ServiceError

# =============================================================================
# Providers & Models
# =============================================================================


class Provider(str, Enum):
    """
    Supported LLM providers.
    """
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    GOOGLE = "Google"

    @property
    def display_name(self) -> str:
        return {
            Provider.OPENAI: "ChatGPT",
            Provider.ANTHROPIC: "Claude",
            Provider.GOOGLE: "Gemini",
        }[self]


class ReasoningEffort(str, Enum):
    """
    Cross-provider reasoning effort selection.

    Only OpenAI exposes this natively; ``AUTO`` leaves the provider default.
    """
    AUTO = "auto"
    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    XHIGH = "xhigh"


@dataclass(frozen=True)
class ModelDescriptor:
    """
    Static metadata for one selectable model.

    ``default_max_output_tokens`` is the output ceiling sent to providers that
    take a per-model one (Gemini's ``maxOutputTokens``).
    """
    id: str
    provider: Provider
    display_name: str = ""
    supports_reasoning_effort: bool = False
    supports_extended_reasoning_tiers: bool = False
    default_max_output_tokens: int = 4096


# =============================================================================
# Message Model
# =============================================================================

Role = Literal["system", "user", "assistant"]
ROLES: Tuple[str, ...] = ("system", "user", "assistant")


@dataclass(frozen=True)
class TextPart:
    """
    Text content part.
    """
    text: str


@dataclass(frozen=True)
class ImagePart:
    """
    Image attachment. ``data`` holds the raw bytes, never re-encoded.
    """
    data: bytes
    mime_type: str


@dataclass(frozen=True)
class PdfPart:
    """
    PDF attachment. ``filename`` is only used by providers that want one.
    """
    data: bytes
    filename: Optional[str] = None


ContentPart = Union[TextPart, ImagePart, PdfPart]


@dataclass(frozen=True)
class ChatMessage:
    """
    One chat turn: a role and its ordered content parts.

    Roles:
    - "system": System prompt / instructions
    - "user": User message
    - "assistant": Model response
    """
    role: Role
    contents: Tuple[ContentPart, ...]

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(f"Unknown message role: {self.role!r}")
        # Accept any sequence but store an immutable tuple
        object.__setattr__(self, "contents", tuple(self.contents))
        if not self.contents:
            raise ValueError("A chat message needs at least one content part")

    @classmethod
    def text(cls, role: Role, text: str) -> "ChatMessage":
        return cls(role=role, contents=(TextPart(text),))

    @property
    def text_content(self) -> str:
        """Concatenation of every text part, in order."""
        return "".join(part.text for part in self.contents if isinstance(part, TextPart))

    @property
    def has_attachments(self) -> bool:
        """True when the message carries an image or PDF part."""
        return any(isinstance(part, (ImagePart, PdfPart)) for part in self.contents)


# =============================================================================
# Stream Events
# =============================================================================

StreamEventType = Literal["delta", "completed", "failed"]


@dataclass(frozen=True)
class StreamEvent:
    """
    A decoded streaming event.

    - type='delta': one text fragment in ``text``
    - type='completed': the stream ended normally
    - type='failed': the stream ended with ``error``
    """
    type: StreamEventType
    text: str = ""
    error: Optional["ServiceError"] = field(default=None, compare=False)

    @classmethod
    def delta(cls, text: str) -> "StreamEvent":
        return cls(type="delta", text=text)

    @classmethod
    def completed(cls) -> "StreamEvent":
        return cls(type="completed")

    @classmethod
    def failed(cls, error: "ServiceError") -> "StreamEvent":
        return cls(type="failed", error=error)

    @property
    def is_terminal(self) -> bool:
        return self.type != "delta"
