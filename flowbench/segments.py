"""Segment parser: partitions accumulated text into typed segments.

Scans left to right for whichever opening delimiter (markdown or tool)
comes first. Text before it becomes a ``text`` segment; the region up to
the matching closing delimiter becomes a ``markdown`` or ``tool``
segment. A region whose closing delimiter has not streamed in yet runs
provisionally to the end of the text and is recomputed on the next
parse.

SegmentParser is the incremental form: it keeps every segment that can
no longer change and re-scans only the tail, with results identical to
a full parse.
"""

from __future__ import annotations

from flowbench.schemas.config import SegmentMarkup
from flowbench.schemas.streaming import Segment, SegmentKind

_DEFAULT_MARKUP = SegmentMarkup()


def _delimiters(markup: SegmentMarkup, kind: SegmentKind) -> tuple[str, str]:
    if kind == SegmentKind.MARKDOWN:
        return markup.markdown_open, markup.markdown_close
    return markup.tool_open, markup.tool_close


def _find_next_open(
    source: str, cursor: int, markup: SegmentMarkup
) -> tuple[int, SegmentKind | None]:
    """Position and kind of the earliest opening delimiter at or after *cursor*."""
    markdown_index = source.find(markup.markdown_open, cursor)
    tool_index = source.find(markup.tool_open, cursor)

    if markdown_index == -1 and tool_index == -1:
        return -1, None
    if markdown_index == -1:
        return tool_index, SegmentKind.TOOL
    if tool_index == -1:
        return markdown_index, SegmentKind.MARKDOWN
    if markdown_index < tool_index:
        return markdown_index, SegmentKind.MARKDOWN
    return tool_index, SegmentKind.TOOL


def _scan(source: str, cursor: int, markup: SegmentMarkup) -> list[Segment]:
    segments: list[Segment] = []

    def push_text(start: int, end: int) -> None:
        if end <= start:
            return
        chunk = source[start:end]
        segments.append(
            Segment(kind=SegmentKind.TEXT, content=chunk, raw=chunk, start=start, end=end)
        )

    while cursor < len(source):
        index, kind = _find_next_open(source, cursor, markup)
        if kind is None:
            push_text(cursor, len(source))
            break

        push_text(cursor, index)

        open_tag, close_tag = _delimiters(markup, kind)
        content_start = index + len(open_tag)
        close_index = source.find(close_tag, content_start)
        closed = close_index != -1
        content_end = close_index if closed else len(source)

        raw = source[content_start:content_end]
        segments.append(
            Segment(
                kind=kind,
                content=raw.strip() if kind == SegmentKind.TOOL else raw,
                raw=raw,
                start=content_start,
                end=content_end,
                closed=closed,
            )
        )
        cursor = close_index + len(close_tag) if closed else len(source)

    return segments


def parse_segments(source: str, markup: SegmentMarkup | None = None) -> list[Segment]:
    """Partition *source* into ordered, non-overlapping typed segments.

    Args:
        source: The full accumulated text.
        markup: Delimiter pairs. Defaults to ``<markdown>`` and ``<use_tool>``.

    Returns:
        Segments in source order. Reconstructing them with ``reconstruct``
        yields *source* exactly.
    """
    return _scan(source, 0, markup or _DEFAULT_MARKUP)


def reconstruct(segments: list[Segment], markup: SegmentMarkup | None = None) -> str:
    """Re-insert delimiter markup around tagged segments and join everything."""
    markup = markup or _DEFAULT_MARKUP
    parts: list[str] = []
    for segment in segments:
        if segment.kind == SegmentKind.TEXT:
            parts.append(segment.raw)
            continue
        open_tag, close_tag = _delimiters(markup, segment.kind)
        parts.append(open_tag)
        parts.append(segment.raw)
        if segment.closed:
            parts.append(close_tag)
    return "".join(parts)


def merge_adjacent(segments: list[Segment]) -> list[Segment]:
    """Merge runs of same-kind segments for display grouping.

    Never merges across a kind boundary. Merged tagged segments lose
    their individual delimiters, so only use the result for display.
    """
    merged: list[Segment] = []
    for segment in segments:
        if not segment.content and not segment.raw:
            continue
        last = merged[-1] if merged else None
        if last is not None and last.kind == segment.kind:
            merged[-1] = Segment(
                kind=last.kind,
                content=last.content + segment.content,
                raw=last.raw + segment.raw,
                start=last.start,
                end=segment.end,
                closed=segment.closed,
            )
        else:
            merged.append(segment)
    return merged


class SegmentParser:
    """Incremental parser over append-only text.

    Segments that end far enough before the end of the text are
    committed and never re-scanned. If a call passes text that does not
    extend the previous text, the parser starts over.
    """

    def __init__(self, markup: SegmentMarkup | None = None) -> None:
        self._markup = markup or _DEFAULT_MARKUP
        # No delimiter can straddle a boundary this far from the end
        self._horizon = max(
            len(self._markup.markdown_open),
            len(self._markup.markdown_close),
            len(self._markup.tool_open),
            len(self._markup.tool_close),
        )
        self.reset()

    @property
    def markup(self) -> SegmentMarkup:
        return self._markup

    @property
    def committed_offset(self) -> int:
        """Source offset up to which segments are final."""
        return self._cursor

    def reset(self) -> None:
        self._source = ""
        self._cursor = 0
        self._committed: list[Segment] = []
        self._tail_committed = 0

    def parse(self, source: str) -> list[Segment]:
        """Return the full segment partition of *source*."""
        if not source.startswith(self._source):
            self.reset()
        self._source = source

        tail = _scan(source, self._cursor, self._markup)
        self._commit(tail, len(source) - self._horizon)
        return self._committed + tail[self._tail_committed:]

    def _commit(self, tail: list[Segment], safe_end: int) -> None:
        """Move every finished segment at the head of *tail* into the committed list."""
        self._tail_committed = 0
        pending_text: Segment | None = None
        for position, segment in enumerate(tail):
            if segment.kind == SegmentKind.TEXT:
                pending_text = segment
                continue
            if not segment.closed:
                break
            _, close_tag = _delimiters(self._markup, segment.kind)
            outer_end = segment.end + len(close_tag)
            if outer_end > safe_end:
                break
            if pending_text is not None:
                self._committed.append(pending_text)
                pending_text = None
            self._committed.append(segment)
            self._cursor = outer_end
            self._tail_committed = position + 1
