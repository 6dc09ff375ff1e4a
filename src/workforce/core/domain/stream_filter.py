"""
Stream Tag Filter

Hides tag-delimited spans (tool calls, private thinking) from a live token
stream so only the human-visible remainder is forwarded. Tag boundaries may
be split across chunks: a trailing piece of the buffer that could still grow
into a tag is held back until the next chunk decides it.

The visible output is chunk-invariant: any split of the same input yields
the same concatenated output.
"""

from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class TagPair:
    start: str
    end: str


DEFAULT_TAG_PAIRS: tuple[TagPair, ...] = (
    TagPair("<tool_call>", "</tool_call>"),
    TagPair("<thinking>", "</thinking>"),
)


class StreamTagFilter:
    """
    Stateful scanner over a chunk stream.

    State is a rolling buffer plus the tag pair currently being hidden (or
    None). Call ``process()`` for every chunk and ``flush()`` once at the end.
    """

    def __init__(self, tag_pairs: Iterable[TagPair] = DEFAULT_TAG_PAIRS):
        self.tag_pairs = tuple(tag_pairs)
        if not self.tag_pairs:
            raise ValueError("StreamTagFilter needs at least one tag pair")
        self._tag_strings = tuple(
            s for pair in self.tag_pairs for s in (pair.start, pair.end)
        )
        self._max_tag_len = max(len(s) for s in self._tag_strings)
        self.buffer = ""
        self.current: TagPair | None = None

    @property
    def inside_tag(self) -> bool:
        return self.current is not None

    def reset(self) -> None:
        self.buffer = ""
        self.current = None

    def _is_tag_prefix(self, text: str) -> bool:
        return bool(text) and any(tag.startswith(text) for tag in self._tag_strings)

    def _find_first_open(self, text: str) -> tuple[int, TagPair] | None:
        earliest: tuple[int, TagPair] | None = None
        for pair in self.tag_pairs:
            idx = text.find(pair.start)
            if idx != -1 and (earliest is None or idx < earliest[0]):
                earliest = (idx, pair)
        return earliest

    def _safe_length(self) -> int:
        """Length of the buffer prefix that can no longer become part of a tag."""
        for i in range(max(0, len(self.buffer) - self._max_tag_len), len(self.buffer)):
            if self._is_tag_prefix(self.buffer[i:]):
                return i
        return len(self.buffer)

    def process(self, chunk: str) -> str:
        """
        Feed one chunk.

        Returns:
            Visible text that is safe to forward now (may be empty)
        """
        self.buffer += chunk
        visible: list[str] = []

        while self.buffer:
            if self.current is not None:
                end_idx = self.buffer.find(self.current.end)
                if end_idx == -1:
                    break
                self.buffer = self.buffer[end_idx + len(self.current.end) :]
                self.current = None
                continue

            found = self._find_first_open(self.buffer)
            if found is not None:
                idx, pair = found
                visible.append(self.buffer[:idx])
                self.buffer = self.buffer[idx + len(pair.start) :]
                self.current = pair
                continue

            safe = self._safe_length()
            visible.append(self.buffer[:safe])
            self.buffer = self.buffer[safe:]
            break

        return "".join(visible)

    def flush(self) -> str:
        """
        End of stream.

        A span still open is treated as truncated and dropped; otherwise the
        held-back remainder is emitted verbatim.
        """
        remaining = "" if self.current is not None else self.buffer
        self.reset()
        return remaining


def filter_text(text: str, tag_pairs: Iterable[TagPair] = DEFAULT_TAG_PAIRS) -> str:
    """Filter a complete string in one go."""
    stream_filter = StreamTagFilter(tag_pairs)
    return stream_filter.process(text) + stream_filter.flush()


async def filter_stream(
    chunks: AsyncIterator[str],
    stream_filter: StreamTagFilter | None = None,
) -> AsyncIterator[str]:
    """Yield the visible parts of an async chunk stream."""
    stream_filter = stream_filter or StreamTagFilter()
    async for chunk in chunks:
        visible = stream_filter.process(chunk)
        if visible:
            yield visible
    tail = stream_filter.flush()
    if tail:
        yield tail
