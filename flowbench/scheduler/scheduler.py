"""Update scheduler: decides when streamed tokens become visible.

Sits between the stream client and the renderer. Token arrivals call
``push``; the scheduler coalesces them into discrete apply events
according to its policy and notifies registered listeners. Exactly one
writer (the token-arrival path) mutates scheduler state.

State machine per session::

    idle -> accumulating -> flush_scheduled -> idle

At most one flush is ever outstanding. The lag-tolerant policy exposes
two views of one authoritative string: ``text`` (updated on every apply)
and ``display_text`` (a prefix projection that catches up a few ticks
later).
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from flowbench.schemas.config import FrameBatchedPolicy, PolicyKind, SchedulerPolicy
from flowbench.scheduler.ticks import AsyncioFrameTicker, TickSource

logger = logging.getLogger(__name__)


class SchedulerState(StrEnum):
    """Lifecycle state of the scheduler's pending buffer."""

    IDLE = "idle"
    ACCUMULATING = "accumulating"
    FLUSH_SCHEDULED = "flush_scheduled"


class ApplyKind(StrEnum):
    """Why an apply event was emitted."""

    APPLY = "apply"
    CATCH_UP = "catch_up"


class ApplyEvent(BaseModel):
    """One batch of text made visible to the renderer."""

    sequence: int = Field(ge=1, description="1-based event counter for the session")
    kind: ApplyKind = ApplyKind.APPLY
    delta: str = Field(default="", description="Text appended by this apply")
    text: str = Field(description="Immediate view after this event")
    display_text: str = Field(description="View the renderer should draw")
    interruptible: bool = Field(
        default=False, description="True when a host may preempt this render"
    )
    stale: bool = Field(
        default=False, description="True while display_text lags text"
    )


# Type alias for apply listener callbacks
ApplyListener = Callable[[ApplyEvent], Any]


@dataclass
class FlushState:
    """Tokens received but not yet applied."""

    pending_buffer: str = ""
    flush_scheduled: bool = False


class UpdateScheduler:
    """Coalesces per-token arrivals into apply events under one policy.

    Args:
        policy: Which coalescing policy to use. Defaults to frame-batched.
        ticker: Source of frame ticks. Defaults to an asyncio ticker at
                the policy's frame interval.
    """

    def __init__(
        self,
        policy: SchedulerPolicy | None = None,
        ticker: TickSource | None = None,
    ) -> None:
        self._policy = policy or FrameBatchedPolicy()
        self._kind = PolicyKind(self._policy.policy)
        self._ticker = ticker or AsyncioFrameTicker(
            getattr(self._policy, "frame_interval_ms", 16.0)
        )
        self._listeners: list[ApplyListener] = []

        self._state = SchedulerState.IDLE
        self._flush = FlushState()
        self._flush_handle: Any = None

        # Authoritative applied text and the length of its lagging projection
        self._text = ""
        self._visible = 0
        self._catch_up_handle: Any = None
        self._catch_up_remaining = 0

        self._sequence = 0
        self._applying = False

    # ── Introspection ─────────────────────────────────────────────

    @property
    def policy(self) -> SchedulerPolicy:
        return self._policy

    @property
    def kind(self) -> PolicyKind:
        return self._kind

    @property
    def state(self) -> SchedulerState:
        return self._state

    @property
    def flush_state(self) -> FlushState:
        """A snapshot of the pending buffer and flush flag."""
        return FlushState(self._flush.pending_buffer, self._flush.flush_scheduled)

    @property
    def text(self) -> str:
        """Immediate view: everything applied so far."""
        return self._text

    @property
    def display_text(self) -> str:
        """The view a renderer should draw; lags ``text`` only when lag-tolerant."""
        if self._kind != PolicyKind.LAG_TOLERANT:
            return self._text
        return self._text[: self._visible]

    @property
    def is_stale(self) -> bool:
        """True while the lagging view differs from the immediate one."""
        return self._kind == PolicyKind.LAG_TOLERANT and self._visible != len(self._text)

    @property
    def is_pending(self) -> bool:
        """True while an interruptible apply is scheduled or being delivered."""
        if self._kind != PolicyKind.PRIORITY_DEFERRED:
            return False
        return self._flush.flush_scheduled or self._applying

    @property
    def apply_count(self) -> int:
        return self._sequence

    # ── Listeners ─────────────────────────────────────────────────

    def add_listener(self, listener: ApplyListener) -> None:
        """Register a listener to receive apply events."""
        self._listeners.append(listener)

    def remove_listener(self, listener: ApplyListener) -> None:
        """Remove a previously registered listener."""
        # Equality, not identity: bound methods are rebuilt on every access
        self._listeners = [ln for ln in self._listeners if ln != listener]

    # ── Token path ────────────────────────────────────────────────

    def push(self, token: str) -> None:
        """Accept one token from the stream, in arrival order."""
        if not token:
            return
        self._flush.pending_buffer += token
        if self._kind == PolicyKind.IMMEDIATE:
            self._state = SchedulerState.ACCUMULATING
            self.flush()
            return
        if self._flush.flush_scheduled:
            return
        self._state = SchedulerState.ACCUMULATING
        self._flush_handle = self._ticker.request(self._on_flush_tick)
        self._flush.flush_scheduled = True
        self._state = SchedulerState.FLUSH_SCHEDULED

    def flush(self) -> ApplyEvent | None:
        """Apply everything pending as one event.

        A flush with nothing pending is a no-op: no event, no state change.
        """
        if not self._flush.pending_buffer:
            return None
        self._cancel_flush_tick()

        delta = self._flush.pending_buffer
        self._flush.pending_buffer = ""
        self._text += delta
        self._state = SchedulerState.IDLE

        if self._kind == PolicyKind.LAG_TOLERANT:
            self._schedule_catch_up()
        else:
            self._visible = len(self._text)

        return self._emit(ApplyKind.APPLY, delta)

    def end(self) -> ApplyEvent | None:
        """End of stream: apply whatever is still pending right away."""
        return self.flush()

    def settle(self) -> ApplyEvent | None:
        """Apply anything pending and bring the lagging view level with ``text``.

        Used once a stream is over, when no further ticks are guaranteed.
        Emits a catch-up event only if the display view was behind.
        """
        self.flush()
        if self._catch_up_handle is not None:
            self._ticker.cancel(self._catch_up_handle)
            self._catch_up_handle = None
        self._catch_up_remaining = 0
        if self._visible == len(self._text):
            return None
        self._visible = len(self._text)
        return self._emit(ApplyKind.CATCH_UP, "")

    def stop(self) -> str:
        """Cancel the outstanding flush and discard the pending buffer.

        Returns the discarded text. Tokens already received but not yet
        applied are lost; callers that want them should ``end()`` instead.
        """
        self._cancel_flush_tick()
        discarded = self._flush.pending_buffer
        self._flush.pending_buffer = ""
        self._state = SchedulerState.IDLE
        if discarded:
            logger.debug("Discarded %d unflushed characters on stop", len(discarded))
        return discarded

    def reset(self) -> None:
        """Return to idle with an empty buffer and empty text."""
        self.stop()
        if self._catch_up_handle is not None:
            self._ticker.cancel(self._catch_up_handle)
            self._catch_up_handle = None
        self._catch_up_remaining = 0
        self._text = ""
        self._visible = 0
        self._sequence = 0

    # ── Internals ─────────────────────────────────────────────────

    def _on_flush_tick(self) -> None:
        self._flush_handle = None
        self._flush.flush_scheduled = False
        self.flush()

    def _cancel_flush_tick(self) -> None:
        if self._flush_handle is not None:
            self._ticker.cancel(self._flush_handle)
            self._flush_handle = None
        self._flush.flush_scheduled = False

    def _schedule_catch_up(self) -> None:
        if self._catch_up_handle is not None:
            return
        lag_frames = getattr(self._policy, "lag_frames", 1)
        self._catch_up_remaining = lag_frames
        self._catch_up_handle = self._ticker.request(self._on_catch_up_tick)

    def _on_catch_up_tick(self) -> None:
        self._catch_up_remaining -= 1
        if self._catch_up_remaining > 0:
            self._catch_up_handle = self._ticker.request(self._on_catch_up_tick)
            return
        self._catch_up_handle = None
        if self._visible == len(self._text):
            return
        self._visible = len(self._text)
        self._emit(ApplyKind.CATCH_UP, "")

    def _emit(self, kind: ApplyKind, delta: str) -> ApplyEvent:
        """Build an apply event and dispatch it to every listener.

        Listener exceptions are logged but never propagate.
        """
        self._sequence += 1
        event = ApplyEvent(
            sequence=self._sequence,
            kind=kind,
            delta=delta,
            text=self._text,
            display_text=self.display_text,
            interruptible=(
                self._kind == PolicyKind.PRIORITY_DEFERRED or kind == ApplyKind.CATCH_UP
            ),
            stale=self.is_stale,
        )
        self._applying = True
        try:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception("Apply listener error for event %d", event.sequence)
        finally:
            self._applying = False
        return event
