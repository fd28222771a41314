"""Resilient consumer for the paced token stream.

Opens exactly one streaming request per session and reports progress
through callbacks: ``on_token`` zero or more times in arrival order, then
exactly one of ``on_done`` or ``on_error``. Cancelling through the
CancellationHandle aborts the in-flight read and ends the session
silently, with no terminal callback and no further tokens.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Callable
from contextlib import aclosing
from typing import Any

import httpx

from flowbench.client.sse import SSEDecoder, SSEMessage, parse_chunk
from flowbench.errors import StreamHTTPError, StreamTransportError
from flowbench.schemas.config import ClientConfig
from flowbench.schemas.streaming import DEFAULT_DELAY_MS, DEFAULT_WORDS

logger = logging.getLogger(__name__)

STREAM_PATH = "/stream"

# Callbacks may be sync or async
TokenCallback = Callable[[str], Any]
DoneCallback = Callable[[], Any]
ErrorCallback = Callable[[Exception], Any]


class CancellationHandle:
    """Caller-owned handle that aborts a running stream session.

    Cancelling from inside the session's own callbacks only sets the
    flag, which the read loop checks before every delivery. Cancelling
    from anywhere else also cancels the client task, which aborts the
    pending network read.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._task: asyncio.Task | None = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def attach(self, task: asyncio.Task) -> None:
        """Bind the client task this handle controls."""
        self._task = task

    def cancel(self) -> None:
        """Abort the session. Safe to call more than once."""
        if self._cancelled:
            return
        self._cancelled = True
        task = self._task
        if task is None or task.done():
            return
        try:
            current = asyncio.current_task()
        except RuntimeError:
            current = None
        if task is not current:
            task.cancel()


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class StreamClient:
    """HTTP client for ``GET /stream``.

    Args:
        config: Base URL and timeouts. Defaults to ClientConfig().
        transport: Optional httpx transport (used for in-process
                   ASGI testing and mocked transports).
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._config = config or ClientConfig()
        self._transport = transport

    @property
    def config(self) -> ClientConfig:
        return self._config

    def _build_client(self) -> httpx.AsyncClient:
        timeout = httpx.Timeout(
            self._config.read_timeout, connect=self._config.connect_timeout
        )
        return httpx.AsyncClient(
            base_url=self._config.base_url,
            timeout=timeout,
            transport=self._transport,
        )

    async def tokens(
        self, words: int = DEFAULT_WORDS, delay: int = DEFAULT_DELAY_MS
    ) -> AsyncIterator[str]:
        """Yield decoded tokens in wire order until the stream ends.

        Raises:
            StreamHTTPError: If the server answers with a non-2xx status.
            StreamTransportError: On network failure or a stalled read.
        """
        decoder = SSEDecoder()
        try:
            async with self._build_client() as client:
                async with client.stream(
                    "GET", STREAM_PATH, params={"words": words, "delay": delay}
                ) as response:
                    if not response.is_success:
                        raise StreamHTTPError(response.status_code)

                    async for data in response.aiter_bytes():
                        contents, done = _decode(decoder.feed(data))
                        for token in contents:
                            yield token
                        if done:
                            return
                    contents, _ = _decode(decoder.finish())
                    for token in contents:
                        yield token
        except httpx.HTTPError as exc:
            raise StreamTransportError(f"Stream request failed: {exc}") from exc

    async def run(
        self,
        cancellation: CancellationHandle,
        on_token: TokenCallback,
        on_done: DoneCallback,
        on_error: ErrorCallback,
        *,
        words: int = DEFAULT_WORDS,
        delay: int = DEFAULT_DELAY_MS,
    ) -> None:
        """Drive one session, delivering through the callbacks.

        Never raises for stream failures; those go to ``on_error``.
        Cancellation through *cancellation* ends quietly.
        """
        if cancellation.cancelled:
            logger.debug("Stream cancelled before the request was opened")
            return
        received = 0
        try:
            async with aclosing(self.tokens(words, delay)) as stream:
                async for token in stream:
                    if cancellation.cancelled:
                        break
                    received += 1
                    await _invoke(on_token, token)
                    if cancellation.cancelled:
                        break
        except asyncio.CancelledError:
            if not cancellation.cancelled:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
        except Exception as exc:
            if cancellation.cancelled:
                return
            logger.warning("Stream failed after %d tokens: %s", received, exc)
            await self._terminal(on_error, exc)
            return

        if cancellation.cancelled:
            logger.info("Stream cancelled after %d tokens", received)
            return
        logger.debug("Stream done after %d tokens", received)
        await self._terminal(on_done)

    @staticmethod
    async def _terminal(callback: Callable[..., Any], *args: Any) -> None:
        """Invoke a terminal callback; its own failures are logged, not raised."""
        try:
            await _invoke(callback, *args)
        except Exception:
            logger.exception("Terminal stream callback failed")


def _decode(messages: list[SSEMessage]) -> tuple[list[str], bool]:
    """Payload contents of *messages* up to the done sentinel, and whether it was seen."""
    contents: list[str] = []
    for message in messages:
        if message.is_done:
            return contents, True
        chunk = parse_chunk(message)
        if chunk is not None:
            contents.append(chunk.content)
    return contents, False


def fetch_stream(
    *,
    on_token: TokenCallback,
    on_done: DoneCallback,
    on_error: ErrorCallback,
    words: int = DEFAULT_WORDS,
    delay: int = DEFAULT_DELAY_MS,
    cancellation: CancellationHandle | None = None,
    config: ClientConfig | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> asyncio.Task:
    """Start one stream session on the running loop and return at once.

    The returned task completes after the terminal callback (or silently
    after cancellation). Must be called from within a running event loop.

    Args:
        on_token: Called with each token's content, in wire order.
        on_done: Called once when the stream completes.
        on_error: Called once with a StreamTransportError on failure.
        words: Requested token budget (the server clamps it).
        delay: Requested inter-token delay in ms (the server clamps it).
        cancellation: Handle to abort the session; one is created if omitted.
        config: Base URL and timeouts.
        transport: Optional httpx transport override.
    """
    cancellation = cancellation or CancellationHandle()
    client = StreamClient(config, transport=transport)
    task = asyncio.get_running_loop().create_task(
        client.run(
            cancellation, on_token, on_done, on_error, words=words, delay=delay
        ),
        name="flowbench-stream",
    )
    cancellation.attach(task)
    return task
