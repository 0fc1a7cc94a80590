"""Split field text into stable blocks for incremental analysis.

Blocks are produced top-down: paragraphs first, sentences for paragraphs
longer than ``max_block_size``, and fixed-size chunks for sentences that are
still too long. The output always partitions the input: blocks are
contiguous, never overlap, and concatenate back to the original text.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Sequence

from ..core.ranges import TextSpan
from .hasher import hash_block

__all__ = ["RawBlock", "SplitConfig", "split_text", "block_context"]

# A newline followed by at least one blank (or whitespace-only) line.
_PARAGRAPH_BREAK = re.compile(r"\n(?:[ \t\r\f\v]*\n)+")
_SENTENCE_END = re.compile(r"[.!?]+(?:\s+|\Z)")


@dataclass(slots=True, frozen=True)
class SplitConfig:
    """Size thresholds for block segmentation."""

    max_block_size: int = 500
    min_block_size: int = 50

    def __post_init__(self) -> None:
        if self.max_block_size <= 0:
            raise ValueError("max_block_size must be positive")
        if not 0 <= self.min_block_size < self.max_block_size:
            raise ValueError("min_block_size must be in [0, max_block_size)")


@dataclass(slots=True, frozen=True)
class RawBlock:
    """A segment of text as produced by :func:`split_text`."""

    start_offset: int
    end_offset: int
    text: str
    hash: str

    @property
    def span(self) -> TextSpan:
        return TextSpan(self.start_offset, self.end_offset)


def split_text(text: str, config: SplitConfig | None = None) -> list[RawBlock]:
    """Partition ``text`` into ordered blocks.

    An empty string yields no blocks; whitespace-only text yields one block.
    """

    if not text:
        return []
    config = config or SplitConfig()
    spans: list[TextSpan] = []
    for paragraph in _split_paragraphs(text):
        if paragraph.length <= config.max_block_size:
            spans.append(paragraph)
            continue
        for sentence in _split_sentences(text, paragraph):
            if sentence.length <= config.max_block_size:
                spans.append(sentence)
            else:
                spans.extend(_split_by_size(text, sentence, config))
    return [RawBlock(span.start, span.end, span.slice(text), hash_block(span.slice(text))) for span in spans]


def block_context(
    blocks: Sequence[RawBlock], index: int, max_chars: int = 200
) -> tuple[str | None, str | None]:
    """Return short excerpts of the blocks surrounding ``blocks[index]``."""

    previous = blocks[index - 1].text if index > 0 else None
    following = blocks[index + 1].text if index < len(blocks) - 1 else None
    return _tail(previous, max_chars), _head(following, max_chars)


def _split_paragraphs(text: str) -> list[TextSpan]:
    pieces: list[TextSpan] = []
    cursor = 0
    for match in _PARAGRAPH_BREAK.finditer(text):
        if match.end() > cursor:
            pieces.append(TextSpan(cursor, match.end()))
            cursor = match.end()
    if cursor < len(text):
        pieces.append(TextSpan(cursor, len(text)))
    return _absorb_blank_pieces(text, pieces)


def _absorb_blank_pieces(text: str, pieces: list[TextSpan]) -> list[TextSpan]:
    """Fold whitespace-only pieces into a neighbouring paragraph."""

    merged: list[TextSpan] = []
    pending_start: int | None = None
    for piece in pieces:
        blank = not piece.slice(text).strip()
        if blank and merged:
            last = merged.pop()
            merged.append(TextSpan(last.start, piece.end))
            continue
        if blank:
            # Leading whitespace: carry it into the first real paragraph.
            pending_start = piece.start if pending_start is None else pending_start
            continue
        start = pending_start if pending_start is not None else piece.start
        pending_start = None
        merged.append(TextSpan(start, piece.end))
    if pending_start is not None:
        merged.append(TextSpan(pending_start, len(text)))
    return merged


def _split_sentences(text: str, paragraph: TextSpan) -> list[TextSpan]:
    body = paragraph.slice(text)
    sentences: list[TextSpan] = []
    cursor = 0
    for match in _SENTENCE_END.finditer(body):
        if match.end() > cursor:
            sentences.append(TextSpan(paragraph.start + cursor, paragraph.start + match.end()))
            cursor = match.end()
    if cursor < len(body):
        sentences.append(TextSpan(paragraph.start + cursor, paragraph.end))
    return sentences


def _split_by_size(text: str, sentence: TextSpan, config: SplitConfig) -> list[TextSpan]:
    chunks: list[TextSpan] = []
    start = sentence.start
    while start < sentence.end:
        end = min(start + config.max_block_size, sentence.end)
        if end < sentence.end:
            boundary = _last_whitespace(text, start + config.min_block_size, end)
            if boundary is not None:
                end = boundary + 1
        chunks.append(TextSpan(start, end))
        start = end
    return chunks


def _last_whitespace(text: str, lower: int, upper: int) -> int | None:
    for index in range(upper - 1, lower - 1, -1):
        if text[index].isspace():
            return index
    return None


def _tail(text: str | None, max_chars: int) -> str | None:
    if text is None:
        return None
    return text[-max_chars:] if max_chars > 0 else ""


def _head(text: str | None, max_chars: int) -> str | None:
    if text is None:
        return None
    return text[:max_chars] if max_chars > 0 else ""
