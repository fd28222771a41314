"""Configuration schemas for the server, client, scheduler and parser.

Loaded from defaults.toml by flowbench.config. The scheduler policy is a
discriminated union on ``policy`` so each policy carries only the knobs
it understands.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, model_validator

from flowbench.errors import ConfigError
from flowbench.schemas.streaming import (
    DEFAULT_DELAY_MS,
    DEFAULT_WORDS,
    MAX_DELAY_MS,
    MAX_WORDS,
    MIN_DELAY_MS,
    MIN_WORDS,
)


class PolicyKind(StrEnum):
    """How the update scheduler coalesces token arrivals into apply events."""

    IMMEDIATE = "immediate"
    FRAME_BATCHED = "frame_batched"
    PRIORITY_DEFERRED = "priority_deferred"
    LAG_TOLERANT = "lag_tolerant"


class ImmediatePolicy(BaseModel):
    """Every token triggers an apply event synchronously."""

    policy: Literal["immediate"] = "immediate"


class FrameBatchedPolicy(BaseModel):
    """At most one apply event per frame tick."""

    policy: Literal["frame_batched"] = "frame_batched"
    frame_interval_ms: float = Field(
        default=16.0, gt=0.0, le=1000.0, description="Tick interval for the asyncio ticker"
    )


class PriorityDeferredPolicy(BaseModel):
    """Frame-batched, with apply events marked interruptible."""

    policy: Literal["priority_deferred"] = "priority_deferred"
    frame_interval_ms: float = Field(default=16.0, gt=0.0, le=1000.0)


class LagTolerantPolicy(BaseModel):
    """Frame-batched, with a display view allowed to lag the applied text."""

    policy: Literal["lag_tolerant"] = "lag_tolerant"
    frame_interval_ms: float = Field(default=16.0, gt=0.0, le=1000.0)
    lag_frames: int = Field(
        default=1, ge=1, le=60, description="Ticks before the display view catches up"
    )


SchedulerPolicy = Annotated[
    ImmediatePolicy | FrameBatchedPolicy | PriorityDeferredPolicy | LagTolerantPolicy,
    Field(discriminator="policy"),
]


# Keys any policy section may carry, whichever kind it selects
SHARED_POLICY_FIELDS = frozenset({"frame_interval_ms", "lag_frames"})


def policy_for(kind: PolicyKind | str, **overrides: object) -> SchedulerPolicy:
    """Build the policy model for *kind* with optional field overrides.

    Settings shared across policies are accepted for every kind and
    ignored by kinds that do not use them, so one config section can
    switch policy freely. Any other key raises ConfigError.
    """
    kind = PolicyKind(kind)
    model = {
        PolicyKind.IMMEDIATE: ImmediatePolicy,
        PolicyKind.FRAME_BATCHED: FrameBatchedPolicy,
        PolicyKind.PRIORITY_DEFERRED: PriorityDeferredPolicy,
        PolicyKind.LAG_TOLERANT: LagTolerantPolicy,
    }[kind]
    unknown = sorted(set(overrides) - SHARED_POLICY_FIELDS)
    if unknown:
        raise ConfigError(f"Unknown scheduler setting(s): {', '.join(unknown)}")
    fields = {k: v for k, v in overrides.items() if k in model.model_fields}
    return model(**fields)


class SegmentMarkup(BaseModel):
    """Open/close delimiter pairs for the two tagged segment kinds."""

    markdown_open: str = Field(default="<markdown>", min_length=1)
    markdown_close: str = Field(default="</markdown>", min_length=1)
    tool_open: str = Field(default="<use_tool>", min_length=1)
    tool_close: str = Field(default="</use_tool>", min_length=1)

    @model_validator(mode="after")
    def _distinct_openers(self) -> SegmentMarkup:
        if self.markdown_open == self.tool_open:
            raise ValueError("markdown and tool opening delimiters must differ")
        return self


class ServerConfig(BaseModel):
    """Bind address and request defaults for the token stream server."""

    host: str = "127.0.0.1"
    port: int = Field(default=3000, ge=0, le=65535)
    default_words: int = Field(default=DEFAULT_WORDS, ge=MIN_WORDS, le=MAX_WORDS)
    default_delay_ms: int = Field(
        default=DEFAULT_DELAY_MS, ge=MIN_DELAY_MS, le=MAX_DELAY_MS
    )


class ClientConfig(BaseModel):
    """Connection settings for the stream client."""

    base_url: str = "http://127.0.0.1:3000"
    connect_timeout: float = Field(default=10.0, gt=0.0)
    read_timeout: float = Field(
        default=30.0,
        gt=0.0,
        description="Longest silence tolerated on the connection before it is a transport error",
    )


class FlowbenchConfig(BaseModel):
    """Top-level configuration for every component."""

    server: ServerConfig = Field(default_factory=ServerConfig)
    client: ClientConfig = Field(default_factory=ClientConfig)
    scheduler: SchedulerPolicy = Field(default_factory=FrameBatchedPolicy)
    segments: SegmentMarkup = Field(default_factory=SegmentMarkup)
