"""flowbench schema definitions.

All Pydantic v2 models used across the server, client, scheduler and parser.
"""

from flowbench.schemas.config import (
    ClientConfig,
    FlowbenchConfig,
    FrameBatchedPolicy,
    ImmediatePolicy,
    LagTolerantPolicy,
    PolicyKind,
    PriorityDeferredPolicy,
    SchedulerPolicy,
    SegmentMarkup,
    ServerConfig,
    policy_for,
)
from flowbench.schemas.streaming import (
    DONE_FRAME,
    DONE_SENTINEL,
    Segment,
    SegmentKind,
    StreamChunk,
    StreamParams,
    StreamSession,
)

__all__ = [
    # Config
    "ClientConfig",
    "FlowbenchConfig",
    "FrameBatchedPolicy",
    "ImmediatePolicy",
    "LagTolerantPolicy",
    "PolicyKind",
    "PriorityDeferredPolicy",
    "SchedulerPolicy",
    "SegmentMarkup",
    "ServerConfig",
    "policy_for",
    # Streaming
    "DONE_FRAME",
    "DONE_SENTINEL",
    "Segment",
    "SegmentKind",
    "StreamChunk",
    "StreamParams",
    "StreamSession",
]
