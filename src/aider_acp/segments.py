"""Tokenizer and segmenter for raw aider output.

The grammar is small and regular: a line is either a fence delimiter
(optional indentation followed by three backticks and an optional label)
or an ordinary line. Segmentation is a two-state scanner that groups
fence-delimited runs into code segments.
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum

from aider_acp.data_models import CodeSegment, IncompleteSegment, LineSegment, Segment

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r"^[ \t]*```")


class TokenKind(Enum):
    FENCE = "fence"
    LINE = "line"


@dataclass
class Token:
    kind: TokenKind
    text: str


class SegmentationError(ValueError):
    """Raised when a token stream cannot be grouped into segments."""


def split_preserving_newlines(value: str) -> list[str]:
    """Split text into lines, keeping each line's terminator.

    Only a line feed terminates a line; a lone carriage return stays inside it.
    """
    parts: list[str] = []
    start = 0
    for index, char in enumerate(value):
        if char == "\n":
            parts.append(value[start : index + 1])
            start = index + 1
    if start < len(value):
        parts.append(value[start:])
    return parts


def trim_trailing_newline(value: str) -> str:
    """Strip a single trailing ``\\r\\n``, ``\\n`` or ``\\r``."""
    if value.endswith("\r\n"):
        return value[:-2]
    if value.endswith("\n") or value.endswith("\r"):
        return value[:-1]
    return value


def is_fence_line(line: str) -> bool:
    return FENCE_PATTERN.match(line) is not None


def tokenize(text: str) -> list[Token]:
    """Split text into fence and line tokens."""
    tokens = []
    for line in split_preserving_newlines(text):
        kind = TokenKind.FENCE if is_fence_line(line) else TokenKind.LINE
        tokens.append(Token(kind=kind, text=line))
    return tokens


def segment(tokens: list[Token]) -> list[Segment]:
    """Group tokens into line, code and incomplete segments."""
    segments: list[Segment] = []
    open_fence: str | None = None
    body: list[str] = []

    for token in tokens:
        if token.kind is TokenKind.LINE:
            if open_fence is None:
                segments.append(LineSegment(text=token.text))
            else:
                body.append(token.text)
        elif token.kind is TokenKind.FENCE:
            if open_fence is None:
                open_fence = token.text
                body = []
            else:
                segments.append(CodeSegment(open=open_fence, lines=body, close=token.text))
                open_fence = None
                body = []
        else:
            raise SegmentationError(f"Unknown token kind: {token.kind!r}")

    if open_fence is not None:
        segments.append(IncompleteSegment(open=open_fence, lines=body))

    return segments


def fallback_line_segments(text: str) -> list[Segment]:
    """Treat every line as an individual plain-line segment."""
    return [LineSegment(text=line) for line in split_preserving_newlines(text)]


def parse_segments(text: str) -> list[Segment]:
    """Segment raw output, degrading to line segments on failure.

    The concatenation of the returned segments' raw text always equals
    the input.
    """
    if not text:
        return []

    try:
        segments = segment(tokenize(text))
        if "".join(s.raw for s in segments) != text:
            raise SegmentationError("Segments do not cover the input")
        return segments
    except SegmentationError as e:
        logger.debug(f"Falling back to line segmentation: {e}")
        return fallback_line_segments(text)

