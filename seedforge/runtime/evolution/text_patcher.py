# SPDX-License-Identifier: Apache-2.0
"""
Fuzzy location of oracle-proposed ``search`` snippets inside live source.

Oracles routinely echo code back with altered indentation, collapsed
whitespace, dropped blank lines, or the ``/*L<n>*/`` line annotations that
were added to the context they were shown. ``TextPatcher.locate`` tries four
progressively looser strategies and always reports the *original* source
range, so the replacement is applied to text that really exists.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Sequence, Tuple

LINE_MARKER_RE = re.compile(r"/\*L\d+\*/ ?")
_WS_RE = re.compile(r"[ \t]+")

DEFAULT_ANCHOR_MIN_LENGTH = 15


class MatchStrategy(str, Enum):
    EXACT = "exact"
    LINE_MARKERS_STRIPPED = "line_markers_stripped"
    NORMALIZED_WINDOW = "normalized_window"
    FIRST_LINE_ANCHOR = "first_line_anchor"


@dataclass(frozen=True)
class MatchResult:
    found: bool
    offset: int = -1
    length: int = 0
    byte_offset: int = -1
    byte_length: int = 0
    exact_text: str = ""
    strategy: MatchStrategy | None = None

    @classmethod
    def not_found(cls) -> "MatchResult":
        return cls(found=False)

    def apply(self, source: str, replacement: str) -> str:
        """Substitute ``replacement`` for the matched range of ``source``."""
        if not self.found:
            raise ValueError("cannot apply an unmatched result")
        end = self.offset + self.length
        if source[self.offset:end] != self.exact_text:
            raise ValueError("source no longer contains the matched text")
        return source[: self.offset] + replacement + source[end:]

    def to_dict(self) -> dict:
        return {
            "found": self.found,
            "offset": self.offset,
            "length": self.length,
            "byte_offset": self.byte_offset,
            "byte_length": self.byte_length,
            "strategy": self.strategy.value if self.strategy else None,
        }


def normalize_line(line: str) -> str:
    return _WS_RE.sub(" ", line).strip()


def strip_line_markers(text: str) -> str:
    return LINE_MARKER_RE.sub("", text)


def annotate_lines(lines: Iterable[str], start_line: int = 1) -> str:
    """Prefix each line with a ``/*L<n>*/`` marker, numbering from ``start_line``."""
    return "\n".join(f"/*L{number}*/ {line}" for number, line in enumerate(lines, start=start_line))


def _split_lines(source: str) -> Tuple[List[str], List[int]]:
    lines = source.split("\n")
    starts: List[int] = []
    position = 0
    for line in lines:
        starts.append(position)
        position += len(line) + 1
    return lines, starts


def _normalized_target(snippet: str) -> List[str]:
    target = [normalize_line(line) for line in snippet.split("\n")]
    while target and not target[0]:
        target.pop(0)
    while target and not target[-1]:
        target.pop()
    return target


class TextPatcher:
    def __init__(self, anchor_min_length: int = DEFAULT_ANCHOR_MIN_LENGTH) -> None:
        self.anchor_min_length = anchor_min_length

    def locate(self, source: str, snippet: str) -> MatchResult:
        if not snippet:
            return MatchResult.not_found()

        # Verbatim text always matches, even when it is only whitespace.
        index = source.find(snippet)
        if index >= 0:
            return self._result(source, index, len(snippet), MatchStrategy.EXACT)

        cleaned = strip_line_markers(snippet)
        if cleaned != snippet and cleaned.strip():
            index = source.find(cleaned)
            if index >= 0:
                return self._result(source, index, len(cleaned), MatchStrategy.LINE_MARKERS_STRIPPED)

        target = _normalized_target(cleaned)
        if not target:
            return MatchResult.not_found()
        lines, starts = _split_lines(source)
        normalized = [normalize_line(line) for line in lines]

        span = self._normalized_window(normalized, target)
        if span is not None:
            return self._line_span_result(source, lines, starts, span, MatchStrategy.NORMALIZED_WINDOW)

        span = self._first_line_anchor(normalized, target)
        if span is not None:
            return self._line_span_result(source, lines, starts, span, MatchStrategy.FIRST_LINE_ANCHOR)

        return MatchResult.not_found()

    @staticmethod
    def _normalized_window(normalized: Sequence[str], target: Sequence[str]) -> Tuple[int, int] | None:
        size = len(target)
        for start in range(len(normalized) - size + 1):
            if normalized[start] == target[0] and list(normalized[start : start + size]) == list(target):
                return start, start + size - 1
        return None

    def _first_line_anchor(self, normalized: Sequence[str], target: Sequence[str]) -> Tuple[int, int] | None:
        anchor = target[0]
        if len(anchor) <= self.anchor_min_length:
            return None
        remaining = [line for line in target[1:] if line]
        for start, line in enumerate(normalized):
            if line != anchor:
                continue
            cursor = start
            aligned = True
            for expected in remaining:
                cursor += 1
                while cursor < len(normalized) and not normalized[cursor]:
                    cursor += 1
                if cursor >= len(normalized) or normalized[cursor] != expected:
                    aligned = False
                    break
            if aligned:
                return start, cursor
        return None

    def _line_span_result(
        self,
        source: str,
        lines: Sequence[str],
        starts: Sequence[int],
        span: Tuple[int, int],
        strategy: MatchStrategy,
    ) -> MatchResult:
        first, last = span
        end = starts[last] + len(lines[last])
        if lines[last].endswith("\r"):
            end -= 1
        return self._result(source, starts[first], end - starts[first], strategy)

    @staticmethod
    def _result(source: str, offset: int, length: int, strategy: MatchStrategy) -> MatchResult:
        exact_text = source[offset : offset + length]
        byte_offset = len(source[:offset].encode("utf-8"))
        return MatchResult(
            found=True,
            offset=offset,
            length=length,
            byte_offset=byte_offset,
            byte_length=len(exact_text.encode("utf-8")),
            exact_text=exact_text,
            strategy=strategy,
        )


def locate(source: str, snippet: str, anchor_min_length: int = DEFAULT_ANCHOR_MIN_LENGTH) -> MatchResult:
    return TextPatcher(anchor_min_length=anchor_min_length).locate(source, snippet)


__all__ = [
    "LINE_MARKER_RE",
    "MatchResult",
    "MatchStrategy",
    "TextPatcher",
    "annotate_lines",
    "locate",
    "normalize_line",
    "strip_line_markers",
]
