"""Streaming schemas for the token wire protocol and consumer data model.

Defines the StreamChunk payload carried in each wire message, the
server-side StreamSession, the clamped request parameters, and the
typed Segment partition produced by the segment parser.
"""

from __future__ import annotations

import uuid
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

# Bounds for the two request parameters
MIN_WORDS = 1
MAX_WORDS = 1_000_000
MIN_DELAY_MS = 1
MAX_DELAY_MS = 1000

DEFAULT_WORDS = 100
DEFAULT_DELAY_MS = 50

# Wire framing
DATA_PREFIX = "data: "
MESSAGE_DELIMITER = "\n\n"
DONE_SENTINEL = "[DONE]"


def clamp(value: int, lower: int, upper: int) -> int:
    """Clamp *value* into the inclusive range [lower, upper]."""
    return max(lower, min(upper, value))


def _coerce_int(raw: object, default: int) -> int:
    """Parse a loosely-typed query value, falling back to *default*."""
    if raw is None:
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        try:
            return int(float(str(raw).strip()))
        except (ValueError, OverflowError):
            return default


class StreamChunk(BaseModel):
    """A single token payload as carried in one wire message."""

    content: str = Field(description="Token text")
    index: int | None = Field(
        default=None, ge=0, description="0-based position of the token in its session"
    )

    def to_frame(self) -> str:
        """Render this chunk as a complete wire message."""
        return f"{DATA_PREFIX}{self.model_dump_json(exclude_none=True)}{MESSAGE_DELIMITER}"


DONE_FRAME = f"{DATA_PREFIX}{DONE_SENTINEL}{MESSAGE_DELIMITER}"


class StreamParams(BaseModel):
    """Token budget and pacing for one stream request, always in range."""

    words: int = Field(
        default=DEFAULT_WORDS, ge=MIN_WORDS, le=MAX_WORDS, description="Token budget"
    )
    delay_ms: int = Field(
        default=DEFAULT_DELAY_MS,
        ge=MIN_DELAY_MS,
        le=MAX_DELAY_MS,
        description="Pacing wait between token writes in milliseconds",
    )

    @classmethod
    def from_query(
        cls,
        words: object = None,
        delay: object = None,
        *,
        default_words: int = DEFAULT_WORDS,
        default_delay_ms: int = DEFAULT_DELAY_MS,
    ) -> StreamParams:
        """Build params from raw query values.

        Malformed values fall back to the defaults; out-of-range values
        are clamped. Never raises.
        """
        return cls(
            words=clamp(_coerce_int(words, default_words), MIN_WORDS, MAX_WORDS),
            delay_ms=clamp(
                _coerce_int(delay, default_delay_ms), MIN_DELAY_MS, MAX_DELAY_MS
            ),
        )


class StreamSession(BaseModel):
    """Server-side state for one accepted stream request."""

    session_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])
    token_budget: int = Field(ge=MIN_WORDS, le=MAX_WORDS)
    inter_token_delay_ms: int = Field(ge=MIN_DELAY_MS, le=MAX_DELAY_MS)
    cursor: int = Field(default=0, ge=0, description="Tokens emitted so far")
    cancelled: bool = False
    completed: bool = False

    @property
    def remaining(self) -> int:
        return self.token_budget - self.cursor

    @property
    def exhausted(self) -> bool:
        return self.cursor >= self.token_budget


class SegmentKind(StrEnum):
    """Display type of a slice of accumulated text."""

    TEXT = "text"
    MARKDOWN = "markdown"
    TOOL = "tool"


class Segment(BaseModel):
    """A contiguous, typed slice of accumulated text.

    ``start``/``end`` bound ``raw`` in the source text. For tagged kinds
    they bound the region between the delimiters. ``content`` equals
    ``raw`` except for tool segments, whose content is whitespace-trimmed.
    """

    model_config = ConfigDict(frozen=True)

    kind: SegmentKind
    content: str
    start: int = Field(ge=0)
    end: int = Field(ge=0)
    raw: str = ""
    closed: bool = Field(
        default=True,
        description="False while a tagged region still lacks its closing delimiter",
    )

    @property
    def provisional(self) -> bool:
        return not self.closed
