"""
Progressive JSON parsing for sanitized model output.

Strategies run in a fixed order and stop at the first success:

1) direct              - `json.loads` on the whole text
2) extracted/streaming - decode the first balanced `{...}` found by `ObjectScanner`
3) repaired            - structural repair, then direct
4) extracted-repaired  - structural repair, then extraction

A decoded value only counts as a success when it is a JSON object carrying at
least one of the expected keys, so stray objects in chatter around the payload
are not mistaken for it.

Texts above the streaming threshold are scanned chunk by chunk; the scanner
carries its state across chunk boundaries, so the span it finds is the same
as for a single pass.
"""

from __future__ import annotations

import json
from collections.abc import Collection
from dataclasses import dataclass
from enum import Enum
from typing import Any, Literal

from .memory import MAX_STREAMING_SIZE, STREAMING_CHUNK_SIZE, STREAMING_THRESHOLD, iter_chunks
from .models import REQUIRED_FIELDS


ParseMethod = Literal["direct", "extracted", "repaired", "extracted-repaired", "streaming", "failed"]


@dataclass(frozen=True)
class ParseResult:
    """Outcome of one `parse` call; created fresh per attempt."""

    success: bool
    data: dict[str, Any] | None
    method: ParseMethod
    error: str | None = None


class ScanState(Enum):
    NORMAL = "normal"
    IN_STRING = "in_string"
    ESCAPED = "escaped"


# ---------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------


class ObjectScanner:
    """Incremental tracker for the first top-level `{...}` span.

    Feed it consecutive chunks with their absolute offsets. Before the first
    `{` is seen nothing else is tracked; afterwards brace depth only changes
    in the `NORMAL` state.
    """

    def __init__(self) -> None:
        self.state = ScanState.NORMAL
        self.depth = 0
        self.start = -1
        self.end = -1

    @property
    def complete(self) -> bool:
        return self.end >= 0

    def feed(self, chunk: str, offset: int = 0) -> bool:
        """Consume one chunk; return True once the object has closed."""
        if self.complete:
            return True

        for index, char in enumerate(chunk):
            if self.state is ScanState.ESCAPED:
                self.state = ScanState.IN_STRING
                continue
            if self.state is ScanState.IN_STRING:
                if char == "\\":
                    self.state = ScanState.ESCAPED
                elif char == '"':
                    self.state = ScanState.NORMAL
                continue

            if self.start < 0:
                if char == "{":
                    self.start = offset + index
                    self.depth = 1
                continue

            if char == '"':
                self.state = ScanState.IN_STRING
            elif char == "{":
                self.depth += 1
            elif char == "}":
                self.depth -= 1
                if self.depth == 0:
                    self.end = offset + index
                    return True
        return False

    def span(self) -> tuple[int, int] | None:
        if self.start < 0 or self.end < 0:
            return None
        return self.start, self.end


def find_object_span(text: str, chunk_size: int | None = None) -> tuple[int, int] | None:
    """Locate the first balanced object, optionally scanning in chunks."""
    scanner = ObjectScanner()
    if chunk_size is None:
        scanner.feed(text, 0)
    else:
        for offset, chunk in iter_chunks(text, chunk_size):
            if scanner.feed(chunk, offset):
                break
    return scanner.span()


# ---------------------------------------------------------------------
# Primitive strategies
# ---------------------------------------------------------------------


def direct_parse(text: str) -> Any | None:
    """`json.loads` that returns None instead of raising."""
    if not isinstance(text, str) or not text:
        return None
    try:
        return json.loads(text)
    except (ValueError, RecursionError):
        return None


def extract_first_object(text: str, *, chunk_size: int | None = None) -> dict[str, Any] | None:
    """Decode the first balanced `{...}` substring, or return None."""
    if not isinstance(text, str) or not text:
        return None
    span = find_object_span(text, chunk_size)
    if span is None:
        return None
    start, end = span
    value = direct_parse(text[start : end + 1])
    return value if isinstance(value, dict) else None


# ---------------------------------------------------------------------
# Structural repair
# ---------------------------------------------------------------------

_IDENT_START = frozenset("abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ_$")
_IDENT_CHARS = _IDENT_START | frozenset("0123456789")
_KEY_OPENERS = frozenset("{,")
_VALUE_OPENERS = frozenset("{[,:")
_VALID_ESCAPES = frozenset('"\\/bfnrt')
_HEX = frozenset("0123456789abcdefABCDEF")
_CONTROL_ESCAPES = {"\n": "\\n", "\r": "\\r", "\t": "\\t", "\b": "\\b", "\f": "\\f"}


def _escape_control(char: str) -> str:
    return _CONTROL_ESCAPES.get(char, f"\\u{ord(char):04x}")


def _skip_whitespace(text: str, index: int) -> int:
    while index < len(text) and text[index].isspace():
        index += 1
    return index


def _is_unicode_escape(text: str, index: int) -> bool:
    """True when `text[index]` is `u` followed by four hex digits."""
    digits = text[index + 1 : index + 5]
    return len(digits) == 4 and all(char in _HEX for char in digits)


def _normalize_tokens(text: str) -> str:
    """Token-level fixes in one pass.

    Drops trailing commas, quotes bare keys, rewrites single-quoted literals
    as double-quoted ones and escapes raw control characters and stray
    backslashes inside strings. Single quotes only open a string where a
    value or key may start, so apostrophes in surrounding prose are left
    alone.
    """
    out: list[str] = []
    length = len(text)
    index = 0
    in_string = False
    quote = '"'
    last_significant = ""

    while index < length:
        char = text[index]

        if in_string:
            if char == "\\":
                following = text[index + 1] if index + 1 < length else ""
                if quote == "'" and following == "'":
                    out.append("'")
                elif following and following < " ":
                    out.append(_escape_control(following))
                elif following in _VALID_ESCAPES or (following == "u" and _is_unicode_escape(text, index + 1)):
                    out.append(char + following)
                elif following:
                    out.append("\\\\" + following)
                else:
                    out.append("\\\\")
                index += 2
                continue
            if char == quote:
                out.append('"')
                in_string = False
                last_significant = '"'
            elif char == '"':
                out.append('\\"')
            elif char < " ":
                out.append(_escape_control(char))
            else:
                out.append(char)
            index += 1
            continue

        if char == '"' or (char == "'" and last_significant in _VALUE_OPENERS):
            out.append('"')
            in_string = True
            quote = char
            index += 1
            continue

        if char == ",":
            lookahead = _skip_whitespace(text, index + 1)
            if lookahead >= length or text[lookahead] in "}]":
                index += 1
                continue

        if char in _IDENT_START and last_significant in _KEY_OPENERS:
            end = index
            while end < length and text[end] in _IDENT_CHARS:
                end += 1
            word = text[index:end]
            lookahead = _skip_whitespace(text, end)
            if lookahead < length and text[lookahead] == ":":
                out.append(f'"{word}"')
                last_significant = '"'
            else:
                out.append(word)
                last_significant = word[-1]
            index = end
            continue

        out.append(char)
        if not char.isspace():
            last_significant = char
        index += 1

    # An unterminated literal is closed by `_close_open_structures`.
    return "".join(out)


def _close_open_structures(text: str) -> str:
    """Terminate a dangling string and append closers for open `{`/`[`."""
    stack: list[str] = []
    state = ScanState.NORMAL
    for char in text:
        if state is ScanState.ESCAPED:
            state = ScanState.IN_STRING
        elif state is ScanState.IN_STRING:
            if char == "\\":
                state = ScanState.ESCAPED
            elif char == '"':
                state = ScanState.NORMAL
        elif char == '"':
            state = ScanState.IN_STRING
        elif char in "{[":
            stack.append(char)
        elif char in "}]" and stack:
            stack.pop()

    if state is ScanState.NORMAL and not stack:
        return text

    body = text
    if state is ScanState.ESCAPED:
        body = body[:-1]
    if state is not ScanState.NORMAL:
        body += '"'

    body = body.rstrip()
    if body.endswith(":"):
        body += " null"
    elif body.endswith(","):
        body = body[:-1]

    closers = "".join("}" if opener == "{" else "]" for opener in reversed(stack))
    return body + closers


def repair_common_issues(text: str) -> str:
    """Apply the structural repairs; applying it twice changes nothing."""
    if not isinstance(text, str) or not text:
        return ""
    return _close_open_structures(_normalize_tokens(text))


# ---------------------------------------------------------------------
# Progressive parse
# ---------------------------------------------------------------------


def _matches_shape(value: Any, required_keys: Collection[str]) -> bool:
    if not isinstance(value, dict):
        return False
    return not required_keys or any(key in value for key in required_keys)


def parse(
    text: str,
    *,
    required_keys: Collection[str] = REQUIRED_FIELDS,
    streaming_threshold: int = STREAMING_THRESHOLD,
    chunk_size: int = STREAMING_CHUNK_SIZE,
) -> ParseResult:
    """Try each strategy in order and return the first success."""
    if not isinstance(text, str) or not text.strip():
        return ParseResult(success=False, data=None, method="failed", error="Invalid input text")

    streaming = len(text) > streaming_threshold
    if streaming and len(text) > MAX_STREAMING_SIZE:
        return ParseResult(
            success=False,
            data=None,
            method="failed",
            error=f"Text of {len(text)} chars exceeds streaming limit of {MAX_STREAMING_SIZE}",
        )
    scan_chunk = chunk_size if streaming else None

    value = direct_parse(text)
    if _matches_shape(value, required_keys):
        return ParseResult(success=True, data=value, method="direct")

    value = extract_first_object(text, chunk_size=scan_chunk)
    if _matches_shape(value, required_keys):
        return ParseResult(success=True, data=value, method="streaming" if streaming else "extracted")

    repaired = repair_common_issues(text)
    value = direct_parse(repaired)
    if _matches_shape(value, required_keys):
        return ParseResult(success=True, data=value, method="repaired")

    value = extract_first_object(repaired, chunk_size=scan_chunk)
    if _matches_shape(value, required_keys):
        return ParseResult(success=True, data=value, method="extracted-repaired")

    return ParseResult(success=False, data=None, method="failed", error="All parsing strategies failed")
