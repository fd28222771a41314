"""Stream client: incremental wire decoding and callback delivery."""

from flowbench.client.sse import SSEDecoder, SSEMessage, parse_chunk
from flowbench.client.stream import CancellationHandle, StreamClient, fetch_stream

__all__ = [
    "CancellationHandle",
    "SSEDecoder",
    "SSEMessage",
    "StreamClient",
    "fetch_stream",
    "parse_chunk",
]
