import base64
from pathlib import Path
from typing import List, Sequence, Union

from .types import ChatMessage, ContentPart, ImagePart, PdfPart, Role, TextPart

# =============================================================================
# Encoding Helpers
# =============================================================================


def encode_bytes(data: bytes) -> str:
    """
    Base64-encode raw attachment bytes for transport.

    Args:
        data (bytes): The attachment payload, untouched.

    Returns:
        str: Standard base64 text (ASCII).
    """
    return base64.b64encode(data).decode("ascii")


def decode_bytes(encoded: str) -> bytes:
    """Inverse of ``encode_bytes``."""
    return base64.b64decode(encoded)


def data_url(mime_type: str, data: bytes) -> str:
    """
    Build a ``data:<mime>;base64,<data>`` URL.
    """
    return f"data:{mime_type};base64,{encode_bytes(data)}"


# =============================================================================
# Attachment Helpers
# =============================================================================

MAX_ATTACHMENT_SIZE = 20 * 1024 * 1024

# Map file extensions to MIME types
MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".pdf": "application/pdf",
}
SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/png", "image/gif", "image/webp")


class AttachmentError(Exception):
    """
    Raised when a file cannot be turned into an attachment part.
    """

    FILE_TOO_LARGE = "File is too large. Maximum size is 20MB."
    UNSUPPORTED_TYPE = "Unsupported file type. Please use JPEG, PNG, GIF, WebP, or PDF."
    READ_ERROR = "Could not read the file."


def attachment_from_file(path: Union[str, Path]) -> Union[ImagePart, PdfPart]:
    """
    Read a local file into an image or PDF content part.

    The MIME type is derived from the file extension; the bytes are kept as-is.

    Args:
        path (Union[str, Path]): Path to a JPEG, PNG, GIF, WebP or PDF file.

    Returns:
        ImagePart | PdfPart: The attachment part.

    Raises:
        AttachmentError: If the file is unreadable, too large or unsupported.
    """
    path = Path(path)
    mime_type = MIME_TYPES.get(path.suffix.lower())
    if mime_type is None:
        raise AttachmentError(AttachmentError.UNSUPPORTED_TYPE)

    try:
        data = path.read_bytes()
    except OSError as exc:
        raise AttachmentError(AttachmentError.READ_ERROR) from exc

    return attachment_from_bytes(data, mime_type, filename=path.name)


def attachment_from_bytes(
    data: bytes,
    mime_type: str = "image/png",
    *,
    filename: Union[str, None] = None,
) -> Union[ImagePart, PdfPart]:
    """
    Wrap in-memory bytes (e.g. a pasted image) as an attachment part.

    Raises:
        AttachmentError: If the payload is too large or of an unsupported type.
    """
    if len(data) > MAX_ATTACHMENT_SIZE:
        raise AttachmentError(AttachmentError.FILE_TOO_LARGE)
    if mime_type == "application/pdf":
        return PdfPart(data=data, filename=filename)
    if mime_type in SUPPORTED_IMAGE_TYPES:
        return ImagePart(data=data, mime_type=mime_type)
    raise AttachmentError(AttachmentError.UNSUPPORTED_TYPE)


# =============================================================================
# Message Helpers
# =============================================================================


def create_message(
    role: Role,
    content: Union[str, Sequence[Union[str, ContentPart]]],
) -> ChatMessage:
    """
    Create a ChatMessage from a string or a list of strings/content parts.

    Plain strings inside a list become ``TextPart`` objects; order is kept.

    Args:
        role (str): 'system', 'user' or 'assistant'.
        content (Union[str, List]): The content of the message.

    Returns:
        ChatMessage: The immutable message.
    """
    if isinstance(content, str):
        return ChatMessage.text(role, content)

    parts: List[ContentPart] = []
    for item in content:
        if isinstance(item, str):
            parts.append(TextPart(item))
        else:
            parts.append(item)
    return ChatMessage(role=role, contents=tuple(parts))
