"""Tests for the segment parser."""

from __future__ import annotations

import pytest

from flowbench.schemas.config import SegmentMarkup
from flowbench.schemas.streaming import Segment, SegmentKind
from flowbench.segments import SegmentParser, merge_adjacent, parse_segments, reconstruct
from flowbench.server.content import generate_tokens


def _kinds(segments: list[Segment]) -> list[str]:
    return [str(seg.kind) for seg in segments]


@pytest.fixture(scope="module")
def streamed_text() -> str:
    """Enough of the benchmark stream to cover two passes of the cycle."""
    return "".join(generate_tokens(260))


# ══════════════════════════════════════════════════════════════════
# Full parse
# ══════════════════════════════════════════════════════════════════


class TestParseSegments:
    def test_empty(self):
        assert parse_segments("") == []

    def test_plain_text(self):
        segments = parse_segments("just prose")
        assert len(segments) == 1
        assert segments[0].kind == SegmentKind.TEXT
        assert segments[0].content == "just prose"
        assert (segments[0].start, segments[0].end) == (0, 10)

    def test_markdown_region(self):
        segments = parse_segments("a <markdown># T</markdown> b")
        assert _kinds(segments) == ["text", "markdown", "text"]
        assert segments[1].content == "# T"
        assert segments[1].closed
        assert segments[2].content == " b"

    def test_offsets_bound_raw(self):
        source = "x<markdown>**y**</markdown>z"
        for seg in parse_segments(source):
            assert source[seg.start:seg.end] == seg.raw

    def test_tool_content_trimmed(self):
        segments = parse_segments('<use_tool>\n  {"name": "f"}\n</use_tool>')
        assert len(segments) == 1
        assert segments[0].kind == SegmentKind.TOOL
        assert segments[0].content == '{"name": "f"}'
        assert segments[0].raw == '\n  {"name": "f"}\n'

    def test_markdown_content_not_trimmed(self):
        segments = parse_segments("<markdown>\n# T\n</markdown>")
        assert segments[0].content == "\n# T\n"

    def test_unclosed_tool_is_provisional_then_closes(self):
        partial = 'Hello <use_tool>{"a": 1'
        segments = parse_segments(partial)
        assert _kinds(segments) == ["text", "tool"]
        assert segments[1].provisional
        assert segments[1].end == len(partial)

        complete = partial + "}</use_tool> after"
        segments = parse_segments(complete)
        assert _kinds(segments) == ["text", "tool", "text"]
        assert segments[1].closed
        assert segments[1].content == '{"a": 1}'
        assert segments[1].end == complete.index("</use_tool>")
        assert segments[2].content == " after"

    def test_earliest_opener_wins(self):
        segments = parse_segments("<use_tool>t</use_tool><markdown>m</markdown>")
        assert _kinds(segments) == ["tool", "markdown"]

    def test_markdown_opener_inside_tool_is_content(self):
        segments = parse_segments("<use_tool>a <markdown> b</use_tool>")
        assert _kinds(segments) == ["tool"]
        assert segments[0].content == "a <markdown> b"

    def test_partial_opener_stays_text(self):
        segments = parse_segments("Hello <use_t")
        assert _kinds(segments) == ["text"]
        assert segments[0].content == "Hello <use_t"

    def test_empty_region(self):
        segments = parse_segments("<markdown></markdown>")
        assert len(segments) == 1
        assert segments[0].content == ""
        assert segments[0].closed

    def test_stray_closer_is_text(self):
        segments = parse_segments("a </markdown> b")
        assert _kinds(segments) == ["text"]

    def test_custom_markup(self):
        markup = SegmentMarkup(
            markdown_open="{{md}}", markdown_close="{{/md}}",
            tool_open="[[", tool_close="]]",
        )
        segments = parse_segments("p {{md}}*x*{{/md}} [[ call ]]", markup)
        assert _kinds(segments) == ["text", "markdown", "text", "tool"]
        assert segments[3].content == "call"

    def test_no_adjacent_text_segments(self, streamed_text):
        segments = parse_segments(streamed_text)
        for left, right in zip(segments, segments[1:]):
            assert not (left.kind == SegmentKind.TEXT and right.kind == SegmentKind.TEXT)


# ══════════════════════════════════════════════════════════════════
# Reconstruction
# ══════════════════════════════════════════════════════════════════


class TestReconstruct:
    def test_round_trip(self):
        source = 'a<markdown>b</markdown>c<use_tool> {"d": 1} </use_tool>e'
        assert reconstruct(parse_segments(source)) == source

    def test_every_prefix_of_the_stream(self, streamed_text):
        for end in range(len(streamed_text) + 1):
            prefix = streamed_text[:end]
            assert reconstruct(parse_segments(prefix)) == prefix, f"prefix length {end}"

    def test_segments_are_ordered_and_disjoint(self, streamed_text):
        segments = parse_segments(streamed_text)
        for left, right in zip(segments, segments[1:]):
            assert left.end <= right.start

    def test_custom_markup_round_trip(self):
        markup = SegmentMarkup(tool_open="<<", tool_close=">>")
        source = "x << y >> z <markdown>m"
        assert reconstruct(parse_segments(source, markup), markup) == source


# ══════════════════════════════════════════════════════════════════
# Merging
# ══════════════════════════════════════════════════════════════════


class TestMergeAdjacent:
    def test_merges_same_kind_runs(self):
        segments = parse_segments("<markdown>a</markdown><markdown>b</markdown>c")
        merged = merge_adjacent(segments)
        assert _kinds(merged) == ["markdown", "text"]
        assert merged[0].content == "ab"
        assert merged[0].start == segments[0].start
        assert merged[0].end == segments[1].end

    def test_never_merges_across_kinds(self):
        segments = parse_segments("a<markdown>b</markdown>c<use_tool>d</use_tool>")
        assert _kinds(merge_adjacent(segments)) == ["text", "markdown", "text", "tool"]

    def test_drops_empty_segments(self):
        segments = parse_segments("a<markdown></markdown>b")
        assert _kinds(merge_adjacent(segments)) == ["text"]
        assert merge_adjacent(segments)[0].content == "ab"

    def test_empty(self):
        assert merge_adjacent([]) == []


# ══════════════════════════════════════════════════════════════════
# Incremental parser
# ══════════════════════════════════════════════════════════════════


class TestSegmentParser:
    def test_matches_full_parse_on_every_prefix(self, streamed_text):
        parser = SegmentParser()
        for end in range(len(streamed_text) + 1):
            prefix = streamed_text[:end]
            assert parser.parse(prefix) == parse_segments(prefix), f"prefix length {end}"

    def test_matches_full_parse_token_by_token(self):
        parser = SegmentParser()
        text = ""
        for token in generate_tokens(400):
            text += token
            assert parser.parse(text) == parse_segments(text)

    def test_commits_closed_regions(self, streamed_text):
        parser = SegmentParser()
        parser.parse(streamed_text)
        assert parser.committed_offset > 0
        assert parser.committed_offset <= len(streamed_text)

    def test_provisional_region_not_committed(self):
        parser = SegmentParser()
        text = "intro <use_tool>" + "x" * 50
        parser.parse(text)
        assert parser.committed_offset == 0
        segments = parser.parse(text + "</use_tool>" + " tail " * 5)
        assert segments[1].closed
        assert parser.committed_offset == len(text) + len("</use_tool>")

    def test_non_extending_text_restarts(self):
        parser = SegmentParser()
        parser.parse("<markdown>a</markdown>" + "x" * 30)
        assert parser.committed_offset > 0
        segments = parser.parse("different")
        assert segments == parse_segments("different")
        assert parser.committed_offset == 0

    def test_reset(self):
        parser = SegmentParser()
        parser.parse("<markdown>a</markdown>" + "x" * 30)
        parser.reset()
        assert parser.committed_offset == 0
        assert parser.parse("y") == parse_segments("y")

    def test_custom_markup(self):
        markup = SegmentMarkup(tool_open="<<", tool_close=">>")
        parser = SegmentParser(markup)
        text = "a << b >> c << d"
        for end in range(len(text) + 1):
            assert parser.parse(text[:end]) == parse_segments(text[:end], markup)
