"""Rich terminal renderer for a streaming session.

Stands in for the browser renderer: subscribes to apply events, parses
the displayed text into segments and draws each kind differently.
Plain text renders as-is, markdown through Rich's Markdown, and tool
payloads as highlighted JSON.
"""

from __future__ import annotations

import json
import time

from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.markdown import Markdown
from rich.panel import Panel
from rich.syntax import Syntax
from rich.text import Text

from flowbench.scheduler.scheduler import ApplyEvent
from flowbench.schemas.streaming import Segment, SegmentKind
from flowbench.segments import merge_adjacent
from flowbench.session import StreamingSession

# Only the last N segments are drawn; older output has scrolled away
_MAX_VISIBLE_SEGMENTS = 24


def _format_tool(content: str) -> str:
    """Pretty-print a tool payload when it is complete JSON."""
    try:
        return json.dumps(json.loads(content), indent=2)
    except ValueError:
        return content


def render_segment(segment: Segment) -> RenderableType:
    """Renderable for one (merged) segment."""
    if segment.kind == SegmentKind.MARKDOWN:
        return Panel(
            Markdown(segment.content),
            border_style="cyan" if segment.closed else "dim cyan",
            title="markdown",
            title_align="left",
        )
    if segment.kind == SegmentKind.TOOL:
        title = "tool call" if segment.closed else "tool call [dim](streaming)[/dim]"
        return Panel(
            Syntax(_format_tool(segment.content), "json", word_wrap=True),
            border_style="magenta" if segment.closed else "dim magenta",
            title=title,
            title_align="left",
        )
    return Text(segment.content)


def render_segments(segments: list[Segment]) -> Group:
    """Group renderable for the tail of a segment list."""
    merged = merge_adjacent(segments)[-_MAX_VISIBLE_SEGMENTS:]
    return Group(*(render_segment(seg) for seg in merged))


class StreamDisplay:
    """Live view of a StreamingSession.

    Use as a context manager around the session's lifetime and register
    ``on_apply`` as an apply listener.
    """

    def __init__(self, console: Console, session: StreamingSession) -> None:
        self._console = console
        self._session = session
        self._live: Live | None = None
        self._start_time = time.monotonic()
        self._applies = 0

    def __enter__(self) -> StreamDisplay:
        """Start the Rich Live display."""
        self._start_time = time.monotonic()
        self._live = Live(
            self._build(),
            console=self._console,
            refresh_per_second=30,
            transient=False,
        )
        self._live.__enter__()
        return self

    def __exit__(self, *args: object) -> None:
        """Draw the final state and stop the Rich Live display."""
        if self._live:
            self._live.update(self._build(), refresh=True)
            self._live.__exit__(*args)
            self._live = None

    def on_apply(self, event: ApplyEvent) -> None:
        """Apply listener: redraw with the newly visible text."""
        self._applies = event.sequence
        if self._live:
            self._live.update(self._build())

    def status_line(self) -> Text:
        """One-line summary of the session state."""
        s = self._session
        elapsed = time.monotonic() - self._start_time
        line = Text()
        line.append(f"{s.scheduler.kind}", style="bold")
        line.append(f"  tokens {s.token_count}")
        line.append(f"  chars {s.char_count}")
        line.append(f"  applies {self._applies}")
        line.append(f"  {elapsed:.1f}s", style="dim")
        if s.is_pending:
            line.append("  pending", style="yellow")
        if s.is_stale:
            line.append("  stale", style="yellow")
        if s.is_streaming:
            line.append("  ● streaming", style="green")
        if s.error is not None:
            line.append(f"  error: {s.error}", style="bold red")
        return line

    def _build(self) -> RenderableType:
        return Group(render_segments(self._session.segments()), Text(), self.status_line())
