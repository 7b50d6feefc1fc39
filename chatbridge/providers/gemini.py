import logging
from typing import Any, Dict, Iterable, List, Optional

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
from ..utils import encode_bytes

logger = logging.getLogger(__name__)

THINKING_MODEL_PREFIX = "gemini-3"
MAX_TOKENS_FINISH_REASON = "MAX_TOKENS"
TRUNCATION_NOTICE = "\n\n[Response truncated: the model reached its maximum output length.]"


def is_top_tier(model_id: str) -> bool:
    """Pro models are the flagship tier."""
    return "-pro" in model_id


def thinking_level(model_id: str) -> Optional[str]:
    """
    Static thinking policy: "high" for the flagship, "medium" for lighter
    tiers, None for models that predate thinking levels.
    """
    if not model_id.startswith(THINKING_MODEL_PREFIX):
        return None
    return "high" if is_top_tier(model_id) else "medium"


def candidate_text(candidate: Dict[str, Any]) -> str:
    """Concatenate the text parts of one candidate, skipping thought summaries."""
    content = candidate.get("content")
    if not isinstance(content, dict):
        return ""
    parts = content.get("parts")
    if not isinstance(parts, list):
        return ""
    return "".join(
        part["text"]
        for part in parts
        if isinstance(part, dict) and isinstance(part.get("text"), str) and not part.get("thought")
    )


class GeminiStreamDecoder:
    """
    Decoder for Gemini's ``alt=sse`` stream.

    Each decoded object contributes one delta per candidate. A candidate that
    stops on the token limit is followed by a truncation notice, since the
    provider gives no other sign of it.
    """

    def __init__(self):
        self.done = False

    def feed(self, line: str) -> Iterable[StreamEvent]:
        if self.done:
            return ()
        line = line.strip()
        if not line or line.startswith("event:") or line.startswith(":"):
            return ()
        payload = line[5:].strip() if line.startswith("data:") else line
        if payload == "[DONE]":
            self.done = True
            return (StreamEvent.completed(),)

        chunk = parse_json_line(payload)
        if not isinstance(chunk, dict):
            return ()

        events: List[StreamEvent] = []
        for candidate in chunk.get("candidates") or []:
            if not isinstance(candidate, dict):
                continue
            text = candidate_text(candidate)
            if text:
                events.append(StreamEvent.delta(text))
            if candidate.get("finishReason") == MAX_TOKENS_FINISH_REASON:
                logger.info("gemini response hit the output token limit")
                events.append(StreamEvent.delta(TRUNCATION_NOTICE))
        return events

    def finish(self) -> Iterable[StreamEvent]:
        return ()


class GeminiProvider:
    """
    Adapter for the Google Gemini generateContent API.
    """

    provider = Provider.GOOGLE

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
        Send a chat request to the Gemini API.

        Thinking is a static per-model policy, so ``reasoning_effort`` is ignored.

        Returns:
            str: The first candidate's text.
        """
        api_key = require_secret(self.credentials.get_secret(self.provider))
        payload = await post_json(
            self.client,
            self.endpoint(model, stream=False),
            headers=self._headers(api_key, stream=False),
            body=self.build_request_body(messages, model),
            settings=self.settings,
            provider=self.provider,
            forbidden_is_auth=True,
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
        Stream a chat response from Gemini.
        """
        try:
            api_key = require_secret(self.credentials.get_secret(self.provider))
        except ServiceError as exc:
            return failed_stream(exc)

        return MessageStream(
            stream_events(
                self.client,
                self.endpoint(model, stream=True),
                headers=self._headers(api_key, stream=True),
                body=self.build_request_body(messages, model),
                settings=self.settings,
                provider=self.provider,
                decoder=GeminiStreamDecoder(),
                forbidden_is_auth=True,
            )
        )

    def endpoint(self, model: ModelDescriptor, *, stream: bool) -> str:
        """
        ``<base>/<model>:generateContent`` or ``<base>/<model>:streamGenerateContent?alt=sse``.
        """
        base = self.settings.google_base_url.rstrip("/")
        if stream:
            return f"{base}/{model.id}:streamGenerateContent?alt=sse"
        return f"{base}/{model.id}:generateContent"

    def build_request_body(self, messages: List[ChatMessage], model: ModelDescriptor) -> Dict[str, Any]:
        """
        Build the generateContent JSON body.

        Gemini has no system role: the system prompt becomes the leading text
        part of the first user turn.
        """
        system_text, turns = split_system_prompt(messages)
        contents = [self._convert_message(msg) for msg in turns]

        if system_text:
            first_user = next((c for c in contents if c["role"] == "user"), None)
            if first_user is None:
                contents.insert(0, {"role": "user", "parts": [{"text": system_text}]})
            else:
                first_user["parts"].insert(0, {"text": system_text})

        generation_config: Dict[str, Any] = {"maxOutputTokens": model.default_max_output_tokens}
        level = thinking_level(model.id)
        if level is not None:
            generation_config["thinkingConfig"] = {"thinkingLevel": level}

        return {"contents": contents, "generationConfig": generation_config}

    @staticmethod
    def _convert_message(msg: ChatMessage) -> Dict[str, Any]:
        # Map roles: "assistant" -> "model"
        role = "model" if msg.role == "assistant" else "user"
        parts: List[Dict[str, Any]] = []
        for part in msg.contents:
            if isinstance(part, TextPart):
                parts.append({"text": part.text})
            elif isinstance(part, ImagePart):
                parts.append({"inlineData": {"mimeType": part.mime_type, "data": encode_bytes(part.data)}})
            elif isinstance(part, PdfPart):
                parts.append({"inlineData": {"mimeType": "application/pdf", "data": encode_bytes(part.data)}})
        return {"role": role, "parts": parts}

    @staticmethod
    def parse_response(payload: Any) -> str:
        """
        Extract the first candidate's text.

        Raises:
            InvalidResponseShapeError: No candidate, or an empty result.
        """
        if not isinstance(payload, dict):
            raise InvalidResponseShapeError()
        candidates = payload.get("candidates")
        if not isinstance(candidates, list) or not candidates or not isinstance(candidates[0], dict):
            raise InvalidResponseShapeError()

        candidate = candidates[0]
        text = candidate_text(candidate)
        if candidate.get("finishReason") == MAX_TOKENS_FINISH_REASON:
            text += TRUNCATION_NOTICE
        if not text:
            raise InvalidResponseShapeError()
        return text

    @staticmethod
    def _headers(api_key: str, *, stream: bool) -> Dict[str, str]:
        # API key goes in a header, never the URL
        headers = {
            "x-goog-api-key": api_key,
            "Content-Type": "application/json",
        }
        if stream:
            headers["Accept"] = "text/event-stream"
        return headers
