"""Tests for the stream client.

Covers: token delivery order, terminal callback rules, HTTP and network
failures, cancellation from inside and outside the session, and an
end-to-end run against the real server app over ASGI.
"""

from __future__ import annotations

import asyncio

import httpx
import pytest

from flowbench.client.stream import CancellationHandle, StreamClient, fetch_stream
from flowbench.errors import StreamHTTPError, StreamTransportError
from flowbench.schemas.streaming import DONE_FRAME, StreamChunk


def _frames(*contents: str, done: bool = True) -> list[bytes]:
    frames = [StreamChunk(content=c, index=i).to_frame().encode() for i, c in enumerate(contents)]
    if done:
        frames.append(DONE_FRAME.encode())
    return frames


def _transport(chunks: list[bytes], *, hang: bool = False, status: int = 200):
    """MockTransport streaming *chunks*, then optionally never finishing."""
    requests: list[httpx.Request] = []

    async def body():
        for chunk in chunks:
            yield chunk
            await asyncio.sleep(0)
        if hang:
            await asyncio.Event().wait()

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(
            status, headers={"content-type": "text/event-stream"}, content=body()
        )

    transport = httpx.MockTransport(handler)
    transport.requests = requests
    return transport


class _Recorder:
    """Collects callback invocations."""

    def __init__(self) -> None:
        self.tokens: list[str] = []
        self.done = 0
        self.errors: list[Exception] = []

    def on_token(self, token: str) -> None:
        self.tokens.append(token)

    def on_done(self) -> None:
        self.done += 1

    def on_error(self, error: Exception) -> None:
        self.errors.append(error)


async def _run(transport, recorder: _Recorder, handle: CancellationHandle | None = None, **kw):
    task = fetch_stream(
        on_token=recorder.on_token,
        on_done=recorder.on_done,
        on_error=recorder.on_error,
        cancellation=handle,
        transport=transport,
        **kw,
    )
    await asyncio.wait_for(task, timeout=5)
    return task


# ══════════════════════════════════════════════════════════════════
# Delivery
# ══════════════════════════════════════════════════════════════════


class TestDelivery:
    @pytest.mark.asyncio()
    async def test_tokens_in_order_then_done(self):
        rec = _Recorder()
        await _run(_transport(_frames("a ", "b ", "c ")), rec)
        assert rec.tokens == ["a ", "b ", "c "]
        assert rec.done == 1
        assert rec.errors == []

    @pytest.mark.asyncio()
    async def test_request_carries_params(self):
        transport = _transport(_frames("a"))
        await _run(transport, _Recorder(), words=7, delay=3)
        request = transport.requests[0]
        assert request.url.path == "/stream"
        assert request.url.params["words"] == "7"
        assert request.url.params["delay"] == "3"

    @pytest.mark.asyncio()
    async def test_frames_split_across_reads(self):
        wire = b"".join(_frames("héllo ", "wörld "))
        pieces = [wire[i:i + 3] for i in range(0, len(wire), 3)]
        rec = _Recorder()
        await _run(_transport(pieces), rec)
        assert rec.tokens == ["héllo ", "wörld "]
        assert rec.done == 1

    @pytest.mark.asyncio()
    async def test_many_frames_in_one_read(self):
        rec = _Recorder()
        await _run(_transport([b"".join(_frames("1", "2", "3"))]), rec)
        assert rec.tokens == ["1", "2", "3"]

    @pytest.mark.asyncio()
    async def test_nothing_after_done(self):
        chunks = _frames("a") + [StreamChunk(content="late").to_frame().encode()]
        rec = _Recorder()
        await _run(_transport(chunks), rec)
        assert rec.tokens == ["a"]
        assert rec.done == 1

    @pytest.mark.asyncio()
    async def test_malformed_message_skipped(self):
        chunks = [b"data: {oops\n\n", *_frames("ok")]
        rec = _Recorder()
        await _run(_transport(chunks), rec)
        assert rec.tokens == ["ok"]
        assert rec.done == 1

    @pytest.mark.asyncio()
    async def test_eof_without_done_still_completes(self):
        rec = _Recorder()
        chunks = [*_frames("a", done=False), b'data: {"content": "tail"}']
        await _run(_transport(chunks), rec)
        assert rec.tokens == ["a", "tail"]
        assert rec.done == 1

    @pytest.mark.asyncio()
    async def test_async_callbacks_awaited(self):
        seen: list[str] = []
        finished = asyncio.Event()

        async def on_token(token: str) -> None:
            await asyncio.sleep(0)
            seen.append(token)

        async def on_done() -> None:
            finished.set()

        task = fetch_stream(
            on_token=on_token,
            on_done=on_done,
            on_error=lambda e: None,
            transport=_transport(_frames("x", "y")),
        )
        await asyncio.wait_for(task, timeout=5)
        assert seen == ["x", "y"]
        assert finished.is_set()

    @pytest.mark.asyncio()
    async def test_tokens_iterator(self):
        client = StreamClient(transport=_transport(_frames("p", "q")))
        assert [t async for t in client.tokens(2, 1)] == ["p", "q"]


# ══════════════════════════════════════════════════════════════════
# Failures
# ══════════════════════════════════════════════════════════════════


class TestFailures:
    @pytest.mark.asyncio()
    async def test_http_error_status(self):
        rec = _Recorder()
        await _run(_transport([b"boom"], status=500), rec)
        assert rec.tokens == []
        assert rec.done == 0
        assert len(rec.errors) == 1
        error = rec.errors[0]
        assert isinstance(error, StreamHTTPError)
        assert error.status_code == 500
        assert str(error) == "HTTP error! status: 500"

    @pytest.mark.asyncio()
    async def test_not_found_status(self):
        rec = _Recorder()
        await _run(_transport([b'{"error": "Not found"}'], status=404), rec)
        assert rec.errors[0].status_code == 404

    @pytest.mark.asyncio()
    async def test_connect_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        rec = _Recorder()
        await _run(httpx.MockTransport(handler), rec)
        assert rec.done == 0
        assert len(rec.errors) == 1
        assert isinstance(rec.errors[0], StreamTransportError)
        assert not isinstance(rec.errors[0], StreamHTTPError)

    @pytest.mark.asyncio()
    async def test_mid_stream_failure_after_tokens(self):
        async def body():
            yield _frames("a", done=False)[0]
            raise httpx.ReadError("reset by peer")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, content=body())

        rec = _Recorder()
        await _run(httpx.MockTransport(handler), rec)
        assert rec.tokens == ["a"]
        assert rec.done == 0
        assert isinstance(rec.errors[0], StreamTransportError)

    @pytest.mark.asyncio()
    async def test_failing_terminal_callback_does_not_escape(self):
        def on_done() -> None:
            raise RuntimeError("renderer broke")

        task = fetch_stream(
            on_token=lambda t: None,
            on_done=on_done,
            on_error=lambda e: None,
            transport=_transport(_frames("a")),
        )
        await asyncio.wait_for(task, timeout=5)
        assert task.exception() is None


# ══════════════════════════════════════════════════════════════════
# Cancellation
# ══════════════════════════════════════════════════════════════════


class TestCancellation:
    @pytest.mark.asyncio()
    async def test_cancel_from_callback_after_five_tokens(self):
        handle = CancellationHandle()
        rec = _Recorder()

        def on_token(token: str) -> None:
            rec.on_token(token)
            if len(rec.tokens) == 5:
                handle.cancel()

        contents = [f"t{i} " for i in range(100)]
        task = fetch_stream(
            on_token=on_token,
            on_done=rec.on_done,
            on_error=rec.on_error,
            cancellation=handle,
            transport=_transport(_frames(*contents)),
        )
        await asyncio.wait_for(task, timeout=5)
        assert rec.tokens == contents[:5]
        assert rec.done == 0
        assert rec.errors == []
        assert not task.cancelled()

    @pytest.mark.asyncio()
    async def test_cancel_from_outside_aborts_pending_read(self):
        handle = CancellationHandle()
        rec = _Recorder()
        task = fetch_stream(
            on_token=rec.on_token,
            on_done=rec.on_done,
            on_error=rec.on_error,
            cancellation=handle,
            transport=_transport(_frames("a", "b", done=False), hang=True),
        )
        for _ in range(200):
            if len(rec.tokens) == 2:
                break
            await asyncio.sleep(0)
        assert rec.tokens == ["a", "b"]

        handle.cancel()
        await asyncio.wait_for(task, timeout=5)
        assert not task.cancelled()
        assert rec.done == 0
        assert rec.errors == []

    @pytest.mark.asyncio()
    async def test_cancel_before_start(self):
        handle = CancellationHandle()
        handle.cancel()
        rec = _Recorder()
        transport = _transport(_frames("a", "b"))
        await _run(transport, rec, handle)
        assert transport.requests == []
        assert rec.tokens == []
        assert rec.done == 0
        assert rec.errors == []

    @pytest.mark.asyncio()
    async def test_cancel_is_idempotent(self):
        handle = CancellationHandle()
        rec = _Recorder()
        task = fetch_stream(
            on_token=rec.on_token,
            on_done=rec.on_done,
            on_error=rec.on_error,
            cancellation=handle,
            transport=_transport([], hang=True),
        )
        await asyncio.sleep(0)
        handle.cancel()
        handle.cancel()
        await asyncio.wait_for(task, timeout=5)
        assert handle.cancelled
        assert rec.done == 0

    @pytest.mark.asyncio()
    async def test_foreign_cancellation_propagates(self):
        rec = _Recorder()
        task = fetch_stream(
            on_token=rec.on_token,
            on_done=rec.on_done,
            on_error=rec.on_error,
            transport=_transport([], hang=True),
        )
        await asyncio.sleep(0)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert rec.done == 0
        assert rec.errors == []


# ══════════════════════════════════════════════════════════════════
# End to end over ASGI
# ══════════════════════════════════════════════════════════════════


class TestAgainstServer:
    @pytest.mark.asyncio()
    async def test_full_stream(self):
        pytest.importorskip("fastapi")
        from flowbench.server.app import create_app
        from flowbench.server.content import generate_tokens

        rec = _Recorder()
        transport = httpx.ASGITransport(app=create_app())
        await _run(transport, rec, words=25, delay=1)
        assert rec.tokens == list(generate_tokens(25))
        assert rec.done == 1
        assert rec.errors == []

