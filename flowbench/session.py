"""Streaming session: one consumer-side stream, end to end.

Owns the explicit session state for a single producer/consumer pair.
Tokens from the stream client go into the update scheduler, apply
events reach whatever renderer is subscribed, and the segment parser
classifies the displayed text on demand.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from flowbench.client.stream import CancellationHandle, fetch_stream
from flowbench.scheduler.scheduler import ApplyListener, UpdateScheduler
from flowbench.schemas.config import ClientConfig, SegmentMarkup
from flowbench.schemas.streaming import DEFAULT_DELAY_MS, DEFAULT_WORDS, Segment
from flowbench.segments import SegmentParser

logger = logging.getLogger(__name__)


class StreamingSession:
    """Connects a stream client, an update scheduler and a segment parser.

    Only the token-arrival path writes to session state. ``start`` always
    begins from a clean slate; ``stop`` cancels the request and discards
    any tokens the scheduler has not applied yet.

    Args:
        scheduler: The update scheduler that owns accumulated text.
        config: Client connection settings.
        markup: Delimiters for the segment parser.
        transport: Optional httpx transport override.
    """

    def __init__(
        self,
        scheduler: UpdateScheduler,
        config: ClientConfig | None = None,
        markup: SegmentMarkup | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._scheduler = scheduler
        self._config = config or ClientConfig()
        self._transport = transport
        self._parser = SegmentParser(markup)

        self._handle: CancellationHandle | None = None
        self._task: asyncio.Task | None = None
        self._streaming = False
        self._token_count = 0
        self._error: Exception | None = None

    # ── Views ─────────────────────────────────────────────────────

    @property
    def scheduler(self) -> UpdateScheduler:
        return self._scheduler

    @property
    def text(self) -> str:
        return self._scheduler.text

    @property
    def display_text(self) -> str:
        return self._scheduler.display_text

    @property
    def is_pending(self) -> bool:
        return self._scheduler.is_pending

    @property
    def is_stale(self) -> bool:
        return self._scheduler.is_stale

    @property
    def is_streaming(self) -> bool:
        return self._streaming

    @property
    def char_count(self) -> int:
        return len(self._scheduler.text)

    @property
    def token_count(self) -> int:
        """Tokens received from the wire, applied or not."""
        return self._token_count

    @property
    def error(self) -> Exception | None:
        """The transport error that ended the last session, if any."""
        return self._error

    def segments(self) -> list[Segment]:
        """Typed partition of the displayed text."""
        return self._parser.parse(self._scheduler.display_text)

    def add_listener(self, listener: ApplyListener) -> None:
        """Subscribe a renderer to apply events."""
        self._scheduler.add_listener(listener)

    # ── Lifecycle ─────────────────────────────────────────────────

    def start(
        self, words: int = DEFAULT_WORDS, delay: int = DEFAULT_DELAY_MS
    ) -> CancellationHandle:
        """Reset and open a new stream. Must be called inside a running loop."""
        if self._handle is not None and not self._handle.cancelled:
            self._handle.cancel()
        self.reset()
        self._streaming = True
        self._handle = CancellationHandle()
        self._task = fetch_stream(
            words=words,
            delay=delay,
            cancellation=self._handle,
            on_token=self._on_token,
            on_done=self._on_done,
            on_error=self._on_error,
            config=self._config,
            transport=self._transport,
        )
        return self._handle

    def stop(self) -> None:
        """Cancel the stream and drop unapplied tokens."""
        if self._handle is not None:
            self._handle.cancel()
        discarded = self._scheduler.stop()
        if discarded:
            logger.info("Stopped with %d unapplied characters discarded", len(discarded))
        self._streaming = False

    def reset(self) -> None:
        """Clear all text and counters."""
        self._scheduler.reset()
        self._parser.reset()
        self._token_count = 0
        self._error = None

    async def wait(self) -> None:
        """Wait until the current stream has finished or been cancelled.

        The display view is settled afterwards, so a lagging view never
        outlives the stream that fed it.
        """
        if self._task is None:
            return
        task = self._task
        await asyncio.wait([task])
        if task is self._task:
            self._scheduler.settle()

    # ── Client callbacks ──────────────────────────────────────────

    def _on_token(self, token: str) -> None:
        self._token_count += 1
        self._scheduler.push(token)

    def _on_done(self) -> None:
        self._scheduler.end()
        self._streaming = False

    def _on_error(self, error: Exception) -> None:
        logger.error("Stream error: %s", error)
        self._error = error
        self._scheduler.stop()
        self._streaming = False
