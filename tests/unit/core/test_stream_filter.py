"""
Unit tests for StreamTagFilter.

Tests verify:
- Tool call and thinking spans are hidden
- Output does not depend on how the input is chunked
- Partial tags at a chunk boundary are held back, not leaked
- flush() drops an unterminated span and emits plain leftovers
"""

import pytest

from workforce.core.domain.stream_filter import (
    StreamTagFilter,
    TagPair,
    filter_stream,
    filter_text,
)

SAMPLE = (
    "Hello <thinking>private plan</thinking>world. "
    "<tool_call><name>read_file</name></tool_call>Done <b>bold</b> a < b."
)
EXPECTED = "Hello world. Done <b>bold</b> a < b."


def run_chunks(chunks: list[str]) -> str:
    stream_filter = StreamTagFilter()
    out = "".join(stream_filter.process(c) for c in chunks)
    return out + stream_filter.flush()


class TestStreamTagFilter:
    def test_filters_whole_text(self):
        assert filter_text(SAMPLE) == EXPECTED

    @pytest.mark.parametrize("size", [1, 2, 3, 5, 8, 13])
    def test_chunking_does_not_change_output(self, size):
        chunks = [SAMPLE[i : i + size] for i in range(0, len(SAMPLE), size)]

        assert run_chunks(chunks) == EXPECTED

    def test_partial_open_tag_is_held_back(self):
        stream_filter = StreamTagFilter()

        assert stream_filter.process("Hi <tool_") == "Hi "
        assert stream_filter.process("call>secret</tool_call> there") == " there"
        assert stream_filter.flush() == ""

    def test_partial_prefix_that_is_not_a_tag_is_released(self):
        stream_filter = StreamTagFilter()

        assert stream_filter.process("x <too") == "x "
        assert stream_filter.process("lbox") == "<toolbox"

    def test_unterminated_span_is_dropped_on_flush(self):
        stream_filter = StreamTagFilter()

        assert stream_filter.process("answer <thinking>never closed") == "answer "
        assert stream_filter.inside_tag
        assert stream_filter.flush() == ""
        assert not stream_filter.inside_tag

    def test_trailing_prefix_emitted_on_flush(self):
        stream_filter = StreamTagFilter()

        assert stream_filter.process("ends with <thi") == "ends with "
        assert stream_filter.flush() == "<thi"

    def test_custom_tag_pairs(self):
        pairs = [TagPair("[[", "]]")]

        assert filter_text("a [[hidden]] b", pairs) == "a  b"

    def test_requires_tag_pairs(self):
        with pytest.raises(ValueError):
            StreamTagFilter([])


class TestFilterStream:
    @pytest.mark.asyncio
    async def test_async_stream(self):
        async def chunks():
            for i in range(0, len(SAMPLE), 4):
                yield SAMPLE[i : i + 4]

        out = [part async for part in filter_stream(chunks())]

        assert "".join(out) == EXPECTED
        assert all(out)
