"""Update scheduling: coalesce token arrivals into apply events."""

from flowbench.scheduler.scheduler import (
    ApplyEvent,
    ApplyKind,
    ApplyListener,
    FlushState,
    SchedulerState,
    UpdateScheduler,
)
from flowbench.scheduler.ticks import AsyncioFrameTicker, ManualTicker, TickSource

__all__ = [
    "ApplyEvent",
    "ApplyKind",
    "ApplyListener",
    "AsyncioFrameTicker",
    "FlushState",
    "ManualTicker",
    "SchedulerState",
    "TickSource",
    "UpdateScheduler",
]
