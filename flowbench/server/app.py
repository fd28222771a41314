"""FastAPI server for the paced token stream.

Serves ``GET /stream`` as a Server-Sent Events response: one JSON token
per message, paced by a fixed inter-token delay, terminated by a
``[DONE]`` sentinel. The generation loop polls for client disconnect
before every token and stops silently when the consumer goes away.

Requires the 'server' optional dependency group:
    pip install flowbench[server]
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Any, Protocol

from flowbench.schemas.config import SegmentMarkup, ServerConfig
from flowbench.schemas.streaming import (
    DONE_FRAME,
    StreamChunk,
    StreamParams,
    StreamSession,
)
from flowbench.server.content import generate_tokens

logger = logging.getLogger(__name__)

STREAM_PATH = "/stream"

SSE_HEADERS: dict[str, str] = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
}

PREFLIGHT_HEADERS: dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, OPTIONS",
    "Access-Control-Allow-Headers": "*",
}

NOT_FOUND_BODY: dict[str, str] = {"error": "Not found"}


class DisconnectProbe(Protocol):
    """The part of a request the generation loop needs."""

    async def is_disconnected(self) -> bool: ...


async def stream_tokens(
    request: DisconnectProbe,
    session: StreamSession,
    markup: SegmentMarkup | None = None,
) -> AsyncIterator[str]:
    """Yield wire frames for *session* until its budget is spent.

    Checks for disconnect before each token. A disconnect (or task
    cancellation by the ASGI server) marks the session cancelled and
    ends the stream without writing anything further.
    """
    delay = session.inter_token_delay_ms / 1000
    logger.info(
        "Stream %s started (%d tokens, %dms delay)",
        session.session_id, session.token_budget, session.inter_token_delay_ms,
    )
    try:
        for token in generate_tokens(session.token_budget, markup):
            if await request.is_disconnected():
                session.cancelled = True
                logger.info(
                    "Stream %s: client disconnected after %d/%d tokens",
                    session.session_id, session.cursor, session.token_budget,
                )
                return
            yield StreamChunk(content=token, index=session.cursor).to_frame()
            session.cursor += 1
            await asyncio.sleep(delay)

        session.completed = True
        yield DONE_FRAME
        logger.info("Stream %s completed (%d tokens)", session.session_id, session.cursor)
    except asyncio.CancelledError:
        session.cancelled = True
        logger.info(
            "Stream %s cancelled after %d/%d tokens",
            session.session_id, session.cursor, session.token_budget,
        )
        raise


def create_app(
    config: ServerConfig | None = None,
    markup: SegmentMarkup | None = None,
) -> Any:
    """Create and configure the FastAPI application.

    Returns the app instance. FastAPI is imported inside this function
    so the module can be imported without server deps installed.
    """
    try:
        from fastapi import FastAPI, Request
        from fastapi.responses import JSONResponse, Response, StreamingResponse
        from starlette.exceptions import HTTPException as StarletteHTTPException
    except ImportError as exc:
        raise ImportError(
            "The stream server requires extra dependencies. "
            "Install with: pip install flowbench[server]"
        ) from exc

    config = config or ServerConfig()
    markup = markup or SegmentMarkup()

    app = FastAPI(
        title="flowbench stream",
        description="Paced token stream for rendering benchmarks",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    # Sessions currently being streamed, keyed by session id
    active_sessions: dict[str, StreamSession] = {}
    app.state.active_sessions = active_sessions

    # ── Errors ───────────────────────────────────────────────────

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> Response:
        """Unknown routes and unsupported methods are both plain not-found."""
        if exc.status_code in (404, 405):
            return JSONResponse(NOT_FOUND_BODY, status_code=404)
        return JSONResponse({"error": str(exc.detail)}, status_code=exc.status_code)

    # ── Stream ───────────────────────────────────────────────────

    @app.options(STREAM_PATH)
    async def stream_preflight() -> Response:
        """Answer cross-origin preflight with an empty success."""
        return Response(status_code=204, headers=PREFLIGHT_HEADERS)

    @app.get(STREAM_PATH)
    async def stream(
        request: Request,
        words: str | None = None,
        delay: str | None = None,
    ) -> StreamingResponse:
        """Open the paced token stream.

        ``words`` and ``delay`` are read as raw strings so malformed
        values are clamped to defaults instead of rejected.
        """
        params = StreamParams.from_query(
            words,
            delay,
            default_words=config.default_words,
            default_delay_ms=config.default_delay_ms,
        )
        session = StreamSession(
            token_budget=params.words,
            inter_token_delay_ms=params.delay_ms,
        )

        async def body() -> AsyncIterator[str]:
            active_sessions[session.session_id] = session
            try:
                async for frame in stream_tokens(request, session, markup):
                    yield frame
            finally:
                active_sessions.pop(session.session_id, None)

        return StreamingResponse(
            body(),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    return app
