import asyncio
import json
import logging
import time
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping, Optional, Protocol

import httpx

from ..config import Settings
from ..errors import (
    DecodingError,
    InvalidCredentialError,
    NetworkError,
    ServiceError,
    error_for_status,
)
from ..streaming import MessageStream
from ..types import ChatMessage, ModelDescriptor, Provider, ReasoningEffort, StreamEvent

logger = logging.getLogger(__name__)


class ProviderAdapter(Protocol):
    """
    Contract every provider adapter implements.

    Adapters are stateless per call and may be used concurrently.
    """

    provider: Provider

    def is_configured(self) -> bool:
        """
        Whether a non-empty API key is available for this provider.
        """
        ...

    async def send_message(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        reasoning_effort: ReasoningEffort = ReasoningEffort.AUTO,
    ) -> str:
        """
        Perform one non-streaming call.

        Args:
            messages (List[ChatMessage]): Conversation, in order.
            model (ModelDescriptor): Target model.
            reasoning_effort (ReasoningEffort): Caller's reasoning preference.

        Returns:
            str: The complete assistant text.

        Raises:
            ServiceError: Any failure, see ``chatbridge.errors``.
        """
        ...

    def stream_message(
        self,
        messages: List[ChatMessage],
        model: ModelDescriptor,
        *,
        reasoning_effort: ReasoningEffort = ReasoningEffort.AUTO,
    ) -> MessageStream:
        """
        Perform one streaming call.

        Returns:
            MessageStream: Deltas in arrival order, then exactly one terminal
            event ('completed' or 'failed') unless the stream is cancelled.
        """
        ...


class StreamDecoder(Protocol):
    """
    Per-call state machine turning SSE lines into stream events.
    """

    def feed(self, line: str) -> Iterable[StreamEvent]:
        ...

    def finish(self) -> Iterable[StreamEvent]:
        ...


def require_secret(secret: Optional[str]) -> str:
    """Return the secret or raise before any request is attempted."""
    if not secret:
        raise InvalidCredentialError()
    return secret


def split_system_prompt(messages: List[ChatMessage]) -> "tuple[Optional[str], List[ChatMessage]]":
    """
    Separate the system prompt from the conversational turns.

    Only one system prompt is honored per call: when several system messages
    are present the last one wins.

    Returns:
        Tuple containing:
        - system_text: Text of the canonical system message (or None)
        - turns: The remaining user/assistant messages, order preserved
    """
    system_text: Optional[str] = None
    turns: List[ChatMessage] = []
    for msg in messages:
        if msg.role == "system":
            if system_text is not None:
                logger.debug("multiple system messages supplied; keeping the last one")
            system_text = msg.text_content
        else:
            turns.append(msg)
    return system_text, turns


async def post_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str],
    body: Dict[str, Any],
    settings: Settings,
    provider: Provider,
    forbidden_is_auth: bool = False,
) -> Any:
    """
    POST a JSON body and return the decoded JSON response.

    Raises:
        NetworkError: Transport failure or overall deadline exceeded.
        InvalidCredentialError, RateLimitedError, ServerError: Non-2xx status.
        DecodingError: The body cannot be decompressed, or a 2xx body is not JSON.
    """
    start = time.perf_counter()
    try:
        response = await asyncio.wait_for(
            client.post(url, headers=dict(headers), json=body),
            timeout=settings.resource_timeout,
        )
    except asyncio.TimeoutError as exc:
        raise NetworkError(exc) from exc
    except httpx.DecodingError as exc:
        # Content-Encoding the body does not honor
        raise DecodingError(exc) from exc
    except httpx.HTTPError as exc:
        logger.warning("%s request failed: %s", provider.value, exc)
        raise NetworkError(exc) from exc

    latency_ms = (time.perf_counter() - start) * 1000.0
    logger.debug("%s responded %s in %.0f ms", provider.value, response.status_code, latency_ms)

    if not response.is_success:
        # 401/403/429 are decided from the status alone
        error = error_for_status(
            response.status_code,
            response.content if response.status_code not in (401, 403, 429) else None,
            forbidden_is_auth=forbidden_is_auth,
        )
        logger.info("%s call failed: %s", provider.value, error)
        raise error

    try:
        return json.loads(response.content)
    except ValueError as exc:
        raise DecodingError(exc) from exc


async def stream_events(
    client: httpx.AsyncClient,
    url: str,
    *,
    headers: Mapping[str, str],
    body: Dict[str, Any],
    settings: Settings,
    provider: Provider,
    decoder: StreamDecoder,
    forbidden_is_auth: bool = False,
) -> AsyncIterator[StreamEvent]:
    """
    Run one streaming request and yield decoded events.

    Every failure is yielded as a single terminal 'failed' event. Once a
    terminal event has been yielded the generator returns, which closes the
    response.
    """
    deadline = time.monotonic() + settings.resource_timeout
    try:
        async with client.stream("POST", url, headers=dict(headers), json=body) as response:
            if not response.is_success:
                raw = None
                if response.status_code not in (401, 403, 429):
                    raw = await response.aread()
                error = error_for_status(response.status_code, raw, forbidden_is_auth=forbidden_is_auth)
                logger.info("%s stream failed: %s", provider.value, error)
                yield StreamEvent.failed(error)
                return

            async for line in response.aiter_lines():
                for event in decoder.feed(line):
                    yield event
                    if event.is_terminal:
                        return
                if time.monotonic() > deadline:
                    yield StreamEvent.failed(NetworkError(TimeoutError("stream exceeded resource timeout")))
                    return

            for event in decoder.finish():
                yield event
                if event.is_terminal:
                    return
    except httpx.DecodingError as exc:
        yield StreamEvent.failed(DecodingError(exc))
        return
    except httpx.HTTPError as exc:
        logger.warning("%s stream interrupted: %s", provider.value, exc)
        yield StreamEvent.failed(NetworkError(exc))
        return

    yield StreamEvent.completed()


def failed_stream(error: ServiceError) -> MessageStream:
    """A stream that fails immediately, without touching the network."""

    async def _events() -> AsyncIterator[StreamEvent]:
        yield StreamEvent.failed(error)

    return MessageStream(_events())


def parse_json_line(payload: str) -> Optional[Any]:
    """Decode one stream payload, or None when it is not valid JSON."""
    try:
        return json.loads(payload)
    except ValueError:
        logger.debug("skipping malformed stream line: %.80s", payload)
        return None
