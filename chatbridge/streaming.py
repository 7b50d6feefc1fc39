"""
Cancellable stream of ``StreamEvent`` objects.

The adapter's event generator (the HTTP read loop) is only advanced when the
consumer asks for the next event, so nothing is read ahead. Each step runs as
a short-lived task: ``cancel()`` cancels the step in flight, which unwinds the
generator out of the ``httpx`` streaming context and closes the connection,
and ends iteration without any further event.

A consumer that stops iterating without ``cancel()`` or ``async with`` leaves
the connection idle, not read; it is closed once the stream is garbage
collected, when the event loop finalizes the generator.
"""
import asyncio
import logging
from typing import AsyncIterator, List, Optional

from .types import StreamEvent

logger = logging.getLogger(__name__)


class MessageStream:
    """
    Async iterator over the events of one streaming call.

    Usage:
        async with adapter.stream_message(messages, model) as stream:
            async for event in stream:
                if event.type == "delta":
                    print(event.text, end="")

    Leaving the ``async with`` block early cancels the underlying request.
    """

    def __init__(self, events: AsyncIterator[StreamEvent]):
        self._events = events
        self._step: Optional["asyncio.Task[Optional[StreamEvent]]"] = None
        self._closed = False
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def closed(self) -> bool:
        """True once iteration can yield nothing more."""
        return self._closed

    def __aiter__(self) -> "MessageStream":
        return self

    async def __anext__(self) -> StreamEvent:
        if self._closed:
            raise StopAsyncIteration

        self._step = asyncio.create_task(self._next_event())
        try:
            event = await self._step
        except asyncio.CancelledError:
            self._closed = True
            current = asyncio.current_task()
            # Our own cancel() ends iteration; the consumer being cancelled propagates
            if self._cancelled and not (current is not None and current.cancelling()):
                raise StopAsyncIteration from None
            raise
        except Exception:
            # Unexpected failures are re-raised to the consumer
            self._closed = True
            raise
        finally:
            self._step = None

        # cancel() may have run between the read and this point
        if event is None or self._cancelled:
            self._closed = True
            raise StopAsyncIteration
        if event.is_terminal:
            await self._close_source()
        return event

    async def _next_event(self) -> Optional[StreamEvent]:
        return await anext(self._events, None)

    async def _close_source(self) -> None:
        self._closed = True
        aclose = getattr(self._events, "aclose", None)
        if aclose is not None:
            await aclose()

    async def cancel(self) -> None:
        """
        Stop the stream. No further events are produced, not even a terminal one.

        Safe to call more than once and from a task other than the consumer.
        """
        if self._closed:
            return
        self._cancelled = True
        logger.debug("stream cancelled by consumer")

        step = self._step
        if step is not None and not step.done():
            # Interrupts a read in progress and wakes the waiting consumer
            step.cancel()
            await asyncio.wait({step})
        await self._close_source()

    aclose = cancel

    async def __aenter__(self) -> "MessageStream":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.cancel()

    async def text(self) -> str:
        """
        Drain the stream and return the concatenated deltas.

        Raises:
            ServiceError: If the stream terminated with a failure.
        """
        pieces: List[str] = []
        async for event in self:
            if event.type == "delta":
                pieces.append(event.text)
            elif event.type == "failed" and event.error is not None:
                raise event.error
        return "".join(pieces)

    async def collect(self) -> List[StreamEvent]:
        """Drain the stream and return every event, terminal one included."""
        return [event async for event in self]


__all__ = ["MessageStream"]
