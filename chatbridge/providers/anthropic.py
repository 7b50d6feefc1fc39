import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

import httpx

from .base import (
    failed_stream,
    parse_json_line,
    post_json,
    require_secret,
    split_system_prompt,
    stream_events,
)
from ..config import Settings
from ..credentials import CredentialStore
from ..errors import InvalidResponseShapeError, ServiceError, StreamingProtocolError
from ..http import get_http_client
from ..streaming import MessageStream
from ..types import (
    ChatMessage,
    ImagePart,
    ModelDescriptor,
    PdfPart,
    Provider,
    ReasoningEffort,
    StreamEvent,
    TextPart,
)
from ..utils import encode_bytes

logger = logging.getLogger(__name__)

# =============================================================================
# Response Models
# =============================================================================


@dataclass(frozen=True)
class TextBlock:
    text: str


@dataclass(frozen=True)
class UnknownBlock:
    type: str


ContentBlock = Union[TextBlock, UnknownBlock]


def parse_content_block(raw: Any) -> ContentBlock:
    """Decode one response content block; anything but text is kept as unknown."""
    if not isinstance(raw, dict):
        return UnknownBlock(type="")
    block_type = raw.get("type")
    if block_type == "text" and isinstance(raw.get("text"), str):
        return TextBlock(text=raw["text"])
    return UnknownBlock(type=str(block_type or ""))


@dataclass(frozen=True)
class TextDeltaEvent:
    text: str


@dataclass(frozen=True)
class MessageStopEvent:
    pass


@dataclass(frozen=True)
class ErrorEvent:
    message: str


@dataclass(frozen=True)
class OtherEvent:
    type: str


AnthropicStreamEvent = Union[TextDeltaEvent, MessageStopEvent, ErrorEvent, OtherEvent]


def parse_stream_event(data: Dict[str, Any], fallback_type: Optional[str] = None) -> AnthropicStreamEvent:
    """
    Decode one streaming payload into a tagged event.

    The payload's own ``type`` wins; the preceding ``event:`` line is used when
    the payload omits it.
    """
    event_type = data.get("type") or fallback_type or ""
    if event_type == "content_block_delta":
        delta = data.get("delta")
        if isinstance(delta, dict) and delta.get("type") == "text_delta":
            text = delta.get("text")
            if isinstance(text, str):
                return TextDeltaEvent(text=text)
        return OtherEvent(type=event_type)
    if event_type == "message_stop":
        return MessageStopEvent()
    if event_type == "error":
        error = data.get("error")
        message = error.get("message") if isinstance(error, dict) else None
        return ErrorEvent(message=message if isinstance(message, str) else "Unknown streaming error")
    return OtherEvent(type=str(event_type))


class AnthropicStreamDecoder:
    """
    Decoder for ``event: <type>`` / ``data: <json>`` record pairs.

    Malformed payloads are skipped unless introduced by an ``error`` event line,
    in which case the stream fails.
    """

    def __init__(self):
        self.event_type: Optional[str] = None
        self.failed = False

    def feed(self, line: str) -> Iterable[StreamEvent]:
        if self.failed:
            return ()
        line = line.rstrip("\r")
        if not line:
            # Blank line closes the current record
            self.event_type = None
            return ()
        if line.startswith("event:"):
            self.event_type = line[6:].strip()
            return ()
        if not line.startswith("data:"):
            return ()

        payload = line[5:].strip()
        introduced_by_error = self.event_type == "error"
        data = parse_json_line(payload) if payload else None
        if not isinstance(data, dict):
            if introduced_by_error:
                return self._fail(payload or "malformed error event")
            return ()

        event = parse_stream_event(data, fallback_type=self.event_type)
        if isinstance(event, TextDeltaEvent):
            return (StreamEvent.delta(event.text),) if event.text else ()
        if isinstance(event, ErrorEvent):
            return self._fail(event.message)
        # message_stop and everything else: end of input terminates
        return ()

    def finish(self) -> Iterable[StreamEvent]:
        return ()

    def _fail(self, message: str) -> Iterable[StreamEvent]:
        self.failed = True
        logger.info("anthropic stream reported error: %s", message)
        return (StreamEvent.failed(StreamingProtocolError(message)),)


class AnthropicProvider:
    """
    Adapter for the Anthropic (Claude) messages API.
    """

    provider = Provider.ANTHROPIC

    def __init__(
        self,
        credentials: CredentialStore,
        *,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.credentials = credentials
        self.settings = settings or Settings()
        self._http_client = http_client

    @property
    def client(self) -> httpx.AsyncClient:
        return self._http_client or get_http_client(self.provider, self.settings)

    def is_configured(self) -> bool:
        return bool(self.credentials.get_secret(self.provider))

    async def send_message(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        reasoning_effort: ReasoningEffort = ReasoningEffort.AUTO,
    ) -> str:
        """
        Send a chat request to the Claude API.

        ``reasoning_effort`` has no Anthropic equivalent and is ignored.

        Returns:
            str: Concatenation of every text content block.
        """
        api_key = require_secret(self.credentials.get_secret(self.provider))
        payload = await post_json(
            self.client,
            self.settings.anthropic_url,
            headers=self._headers(api_key),
            body=self.build_request_body(messages, model, stream=False),
            settings=self.settings,
            provider=self.provider,
        )
        return self.parse_response(payload)

    def stream_message(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        reasoning_effort: ReasoningEffort = ReasoningEffort.AUTO,
    ) -> MessageStream:
        """
        Stream a chat response from Claude.
        """
        try:
            api_key = require_secret(self.credentials.get_secret(self.provider))
        except ServiceError as exc:
            return failed_stream(exc)

        return MessageStream(
            stream_events(
                self.client,
                self.settings.anthropic_url,
                headers=self._headers(api_key),
                body=self.build_request_body(messages, model, stream=True),
                settings=self.settings,
                provider=self.provider,
                decoder=AnthropicStreamDecoder(),
            )
        )

    def build_request_body(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        stream: bool,
    ) -> Dict[str, Any]:
        """
        Build the messages-API JSON body.

        Anthropic's API takes the system prompt as a separate top-level
        ``system`` field rather than inside ``messages``.
        """
        system_text, turns = split_system_prompt(messages)
        body: Dict[str, Any] = {
            "model": model.id,
            "max_tokens": self.settings.anthropic_max_tokens,
            "messages": [self._convert_message(msg) for msg in turns],
            "stream": stream,
        }
        if system_text is not None:
            body["system"] = system_text
        return body

    @staticmethod
    def _convert_message(msg: ChatMessage) -> Dict[str, Any]:
        if not msg.has_attachments:
            return {"role": msg.role, "content": msg.text_content}

        content: List[Dict[str, Any]] = []
        for part in msg.contents:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                content.append({
                    "type": "image",
                    "source": {
                        "type": "base64",
                        "media_type": part.mime_type,
                        "data": encode_bytes(part.data),
                    },
                })
            elif isinstance(part, PdfPart):
                # Native PDF support via the document block
                content.append({
                    "type": "document",
                    "source": {
                        "type": "base64",
                        "media_type": "application/pdf",
                        "data": encode_bytes(part.data),
                    },
                })
        return {"role": msg.role, "content": content}

    @staticmethod
    def parse_response(payload: Any) -> str:
        """
        Join the text blocks of a messages-API response.

        Raises:
            InvalidResponseShapeError: The body has no ``content`` list.
        """
        if not isinstance(payload, dict) or not isinstance(payload.get("content"), list):
            raise InvalidResponseShapeError()
        blocks = [parse_content_block(raw) for raw in payload["content"]]
        return "".join(block.text for block in blocks if isinstance(block, TextBlock))

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "x-api-key": api_key,
            "anthropic-version": self.settings.anthropic_version,
            "Content-Type": "application/json",
        }
