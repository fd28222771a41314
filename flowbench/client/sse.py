"""Incremental decoder for the ``data: <json>\\n\\n`` wire framing.

Physical reads can split a message (or a multibyte character, or the
blank-line delimiter itself) anywhere. The decoder keeps the
unterminated tail across reads and only hands out a message once its
full delimiter has been seen.
"""

from __future__ import annotations

import codecs
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from flowbench.schemas.streaming import (
    DATA_PREFIX,
    DONE_SENTINEL,
    MESSAGE_DELIMITER,
    StreamChunk,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SSEMessage:
    """The data field of one complete wire message."""

    data: str

    @property
    def is_done(self) -> bool:
        return self.data == DONE_SENTINEL


class SSEDecoder:
    """Turns an arbitrary sequence of byte ranges into complete messages."""

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""

    @property
    def pending(self) -> str:
        """Buffered text that has not yet been terminated by a delimiter."""
        return self._buffer

    def feed(self, data: bytes) -> list[SSEMessage]:
        """Add one physical read and return every message it completes."""
        self._buffer += self._decoder.decode(data)
        if MESSAGE_DELIMITER not in self._buffer:
            return []
        *complete, self._buffer = self._buffer.split(MESSAGE_DELIMITER)
        return _to_messages(complete)

    def finish(self) -> list[SSEMessage]:
        """Flush the tail at end-of-stream.

        A final message that lacks its trailing delimiter is still
        delivered as long as it has the data prefix.
        """
        self._buffer += self._decoder.decode(b"", final=True)
        tail, self._buffer = self._buffer, ""
        if not tail.startswith(DATA_PREFIX):
            return []
        return _to_messages([tail.rstrip("\r\n")])


def _to_messages(raw_messages: list[str]) -> list[SSEMessage]:
    return [
        SSEMessage(data=raw[len(DATA_PREFIX):])
        for raw in raw_messages
        if raw.startswith(DATA_PREFIX)
    ]


def parse_chunk(message: SSEMessage) -> StreamChunk | None:
    """Parse a message payload, or return None if it is malformed."""
    try:
        return StreamChunk.model_validate_json(message.data)
    except ValidationError:
        logger.debug("Skipping malformed stream message: %.80r", message.data)
        return None
