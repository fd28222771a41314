"""Benchmark content cycle and whitespace tokenizer.

The stream replays a small fixed cycle of sections (prose, a markdown
block, a tool-call payload) until the token budget is met. Everything
here is a lazy generator so a budget of a million tokens never builds
an intermediate list.
"""

from __future__ import annotations

import itertools
import re
from collections.abc import Iterator
from dataclasses import dataclass

from flowbench.schemas.config import SegmentMarkup
from flowbench.schemas.streaming import SegmentKind

# A word with its trailing whitespace, or a leading whitespace run
_TOKEN_RE = re.compile(r"\S+\s*|\s+")

_PASS_LABEL = " (pass {n})"


@dataclass(frozen=True)
class Section:
    """One entry of the content cycle."""

    kind: SegmentKind
    body: str
    labelled: bool = False

    def render(self, pass_number: int, markup: SegmentMarkup) -> str:
        """Render this section for the given 1-based pass."""
        body = self.body
        if self.labelled and pass_number > 1:
            body = body + _PASS_LABEL.format(n=pass_number)
        if self.kind == SegmentKind.MARKDOWN:
            body = f"{markup.markdown_open}\n{body}\n{markup.markdown_close}"
        elif self.kind == SegmentKind.TOOL:
            body = f"{markup.tool_open}\n{body}\n{markup.tool_close}"
        return body + "\n\n"


CONTENT_CYCLE: tuple[Section, ...] = (
    Section(
        kind=SegmentKind.TEXT,
        body=(
            "Streaming output arrives one token at a time, and every token is a "
            "chance to re-render the whole transcript. At sixty frames per second "
            "the browser has roughly sixteen milliseconds per frame, so the cost "
            "of each update decides whether scrolling stays smooth."
        ),
        labelled=True,
    ),
    Section(
        kind=SegmentKind.MARKDOWN,
        body=(
            "## Batching updates\n"
            "\n"
            "- Buffer incoming tokens outside of render state\n"
            "- Flush the buffer **once per animation frame**\n"
            "- Mark large re-renders as *non-urgent* so input stays responsive\n"
            "\n"
            "```python\n"
            "buffer += token\n"
            "if not scheduled:\n"
            "    scheduled = request_frame(flush)\n"
            "```"
        ),
    ),
    Section(
        kind=SegmentKind.TOOL,
        body=(
            '{"name": "measure_frame_rate", '
            '"arguments": {"window_ms": 1000, "target_fps": 60, "report": "summary"}}'
        ),
    ),
    Section(
        kind=SegmentKind.TEXT,
        body=(
            "Deferring the expensive view lets the cheap view keep up with the "
            "stream while the heavy renderer catches up in the background. The "
            "text never changes order; only the moment it becomes visible does."
        ),
    ),
)


def tokenize(text: str) -> Iterator[str]:
    """Split *text* on whitespace boundaries.

    Each token is a run of non-whitespace plus its trailing whitespace,
    or a leading whitespace run. Joining the tokens reproduces *text*.
    """
    for match in _TOKEN_RE.finditer(text):
        yield match.group(0)


def iter_sections(
    markup: SegmentMarkup | None = None,
    cycle: tuple[Section, ...] = CONTENT_CYCLE,
) -> Iterator[str]:
    """Yield rendered sections forever, replaying *cycle* pass after pass."""
    markup = markup or SegmentMarkup()
    for pass_number in itertools.count(1):
        for section in cycle:
            yield section.render(pass_number, markup)


def generate_tokens(
    budget: int,
    markup: SegmentMarkup | None = None,
    cycle: tuple[Section, ...] = CONTENT_CYCLE,
) -> Iterator[str]:
    """Yield exactly *budget* tokens from the replayed content cycle."""
    if budget <= 0:
        return
    tokens = (tok for section in iter_sections(markup, cycle) for tok in tokenize(section))
    yield from itertools.islice(tokens, budget)
