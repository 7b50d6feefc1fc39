import logging
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
from ..errors import InvalidResponseShapeError, ServiceError
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
from ..utils import data_url

logger = logging.getLogger(__name__)

DEFAULT_PDF_FILENAME = "document.pdf"

# Wire value per selection: (extended-tier model, standard model)
_REASONING_TIERS: Dict[ReasoningEffort, tuple] = {
    ReasoningEffort.NONE: ("none", "none"),
    ReasoningEffort.LOW: ("medium", "low"),  # extended tier has no "low"
    ReasoningEffort.MEDIUM: ("medium", "medium"),
    ReasoningEffort.HIGH: ("high", "high"),
    ReasoningEffort.XHIGH: ("xhigh", "high"),  # standard tier has no "xhigh"
}


def map_reasoning_effort(effort: ReasoningEffort, model: ModelDescriptor) -> Optional[str]:
    """
    Translate the caller's reasoning selection into OpenAI's ``reasoning_effort``.

    Returns None (field omitted, provider default) for ``AUTO`` or for models
    without reasoning support.
    """
    if not model.supports_reasoning_effort or effort == ReasoningEffort.AUTO:
        return None
    extended, standard = _REASONING_TIERS[ReasoningEffort(effort)]
    return extended if model.supports_extended_reasoning_tiers else standard


class OpenAIStreamDecoder:
    """
    Decoder for ``data: <json>`` lines terminated by ``data: [DONE]``.

    The format has no in-band error envelope, so malformed lines are skipped.
    """

    def __init__(self):
        self.done = False

    def feed(self, line: str) -> Iterable[StreamEvent]:
        if self.done or not line.startswith("data:"):
            return ()
        payload = line[5:].strip()
        if not payload:
            return ()
        if payload == "[DONE]":
            self.done = True
            return (StreamEvent.completed(),)

        chunk = parse_json_line(payload)
        piece = _delta_text(chunk)
        return (StreamEvent.delta(piece),) if piece else ()

    def finish(self) -> Iterable[StreamEvent]:
        return ()


def _delta_text(chunk: Any) -> str:
    if not isinstance(chunk, dict):
        return ""
    choices = chunk.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return ""
    delta = choices[0].get("delta")
    if not isinstance(delta, dict):
        return ""
    content = delta.get("content")
    # Handle both list and string content
    if isinstance(content, list):
        return "".join(
            part.get("text", "") for part in content if isinstance(part, dict)
        )
    return content if isinstance(content, str) else ""


class OpenAIProvider:
    """
    Adapter for the OpenAI chat-completions API.
    """

    provider = Provider.OPENAI

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
        Send a chat request and return the first choice's message content.

        Raises:
            ServiceError: Credential, HTTP, transport or response-shape failure.
        """
        api_key = require_secret(self.credentials.get_secret(self.provider))
        body = self.build_request_body(messages, model, stream=False, reasoning_effort=reasoning_effort)
        payload = await post_json(
            self.client,
            self.settings.openai_url,
            headers=self._headers(api_key),
            body=body,
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
        Stream a chat response as text deltas.
        """
        try:
            api_key = require_secret(self.credentials.get_secret(self.provider))
        except ServiceError as exc:
            return failed_stream(exc)

        body = self.build_request_body(messages, model, stream=True, reasoning_effort=reasoning_effort)
        return MessageStream(
            stream_events(
                self.client,
                self.settings.openai_url,
                headers=self._headers(api_key),
                body=body,
                settings=self.settings,
                provider=self.provider,
                decoder=OpenAIStreamDecoder(),
            )
        )

    def build_request_body(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        stream: bool,
        reasoning_effort: ReasoningEffort = ReasoningEffort.AUTO,
    ) -> Dict[str, Any]:
        """
        Build the chat-completions JSON body.

        The canonical system prompt goes first as a ``system`` message; every
        other turn keeps its position.
        """
        system_text, turns = split_system_prompt(messages)
        converted: List[Dict[str, Any]] = []
        if system_text is not None:
            converted.append({"role": "system", "content": system_text})
        converted.extend(self._convert_message(msg) for msg in turns)

        body: Dict[str, Any] = {
            "model": model.id,
            "messages": converted,
            "stream": stream,
        }
        effort = map_reasoning_effort(reasoning_effort, model)
        if effort is not None:
            body["reasoning_effort"] = effort
        return body

    @staticmethod
    def _convert_message(msg: ChatMessage) -> Dict[str, Any]:
        """
        Convert one message: plain string content when text-only, otherwise
        an ordered array of typed parts.
        """
        if not msg.has_attachments:
            return {"role": msg.role, "content": msg.text_content}

        content: List[Dict[str, Any]] = []
        for part in msg.contents:
            if isinstance(part, TextPart):
                content.append({"type": "text", "text": part.text})
            elif isinstance(part, ImagePart):
                content.append({
                    "type": "image_url",
                    "image_url": {"url": data_url(part.mime_type, part.data)},
                })
            elif isinstance(part, PdfPart):
                content.append({
                    "type": "file",
                    "file": {
                        "filename": part.filename or DEFAULT_PDF_FILENAME,
                        "file_data": data_url("application/pdf", part.data),
                    },
                })
        return {"role": msg.role, "content": content}

    @staticmethod
    def parse_response(payload: Union[Dict[str, Any], Any]) -> str:
        """
        Extract the assistant text from a chat-completions response.

        Raises:
            InvalidResponseShapeError: No choices, or no message content.
        """
        if not isinstance(payload, dict):
            raise InvalidResponseShapeError()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
            raise InvalidResponseShapeError()
        message = choices[0].get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str):
            raise InvalidResponseShapeError()
        return content

    @staticmethod
    def _headers(api_key: str) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        }
