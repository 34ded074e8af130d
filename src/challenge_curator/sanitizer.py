"""Text normalization applied to raw model output before parsing.

`sanitize` is total: it never raises and returns `""` for anything that is not
a non-empty string. It only touches noise around the JSON (fences, typographic
characters, mojibake, line endings); braces, colons and commas survive as-is.
"""

from __future__ import annotations

import re

from .memory import LARGE_RESPONSE_THRESHOLD, clean_large_string


_FENCED_BLOCK_RE = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*[ \t]*\n?(.*?)\n?[ \t]*```", re.DOTALL)
_ORPHAN_FENCE_RE = re.compile(r"```[ \t]*[A-Za-z0-9_+-]*")
_INLINE_CODE_RE = re.compile(r"`([^`]*)`")
_BLANK_RUN_RE = re.compile(r"\n\s*\n")

LEFT_DOUBLE = "\u201c"
RIGHT_DOUBLE = "\u201d"
RIGHT_SINGLE = "\u2019"

# Longest sequences first: the double-encoded forms contain the single ones.
# Quote-like artifacts map back to their typographic originals so `fix_quotes`
# decides per context whether they delimit a string or sit inside one.
_MOJIBAKE: tuple[tuple[str, str], ...] = (
    ("\u00c3\u00a2\u00e2\u201a\u00ac\u00e2\u201e\u00a2", RIGHT_SINGLE),
    ("\u00c3\u00a2\u00e2\u201a\u00ac\u00c5\u201c", LEFT_DOUBLE),
    ("\u00c3\u00a2\u00e2\u201a\u00ac\u009d", RIGHT_DOUBLE),
    ("\u00c3\u00a2\u00e2\u201a\u00ac\u00e2\u20ac\u0153", "-"),
    ("\u00e2\u20ac\u2122", RIGHT_SINGLE),
    ("\u00e2\u20ac\u02dc", "\u2018"),
    ("\u00e2\u20ac\u0153", LEFT_DOUBLE),
    ("\u00e2\u20ac\u009d", RIGHT_DOUBLE),
    ("\u00e2\u20ac\u201c", "-"),
    ("\u00e2\u20ac\u201d", "-"),
    ("\u00e2\u20ac\u00a6", "..."),
    ("\u00c2\u00a0", " "),
)

_SMART_DOUBLE_QUOTES = frozenset((LEFT_DOUBLE, RIGHT_DOUBLE, "\u201e", "\u201f"))
_CHAR_MAP = str.maketrans(
    {
        "\u2018": "'",
        RIGHT_SINGLE: "'",
        "\u201a": "'",
        "\u201b": "'",
        "\u2013": "-",
        "\u2014": "-",
        "\u2212": "-",
        "\u2026": "...",
        "\u00a0": " ",
        "\u200b": "",
        "\u200c": "",
        "\u200d": "",
        "\u2060": "",
        "\ufeff": "",
    }
)


def remove_markdown_blocks(text: str) -> str:
    """Drop code fences (keeping their body) and inline backticks."""
    if not isinstance(text, str) or not text:
        return ""
    cleaned = _FENCED_BLOCK_RE.sub(r"\1", text)
    cleaned = _ORPHAN_FENCE_RE.sub("", cleaned)
    cleaned = _INLINE_CODE_RE.sub(r"\1", cleaned)
    return cleaned.strip()


def fix_character_encoding(text: str) -> str:
    """Undo the usual UTF-8-read-as-cp1252 artifacts for quotes and dashes."""
    if not isinstance(text, str) or not text:
        return ""
    for broken, fixed in _MOJIBAKE:
        if broken in text:
            text = text.replace(broken, fixed)
    return text


def fix_quotes(text: str) -> str:
    """Map typographic characters to ASCII.

    Smart double quotes are context dependent. A string opened by a smart
    quote is closed by the next one, so both become `"`. Inside a string opened
    by an ASCII quote they become `\\"` so the string is not cut in two.
    """
    if not isinstance(text, str) or not text:
        return ""
    text = text.translate(_CHAR_MAP)
    if not any(char in _SMART_DOUBLE_QUOTES for char in text):
        return text

    out: list[str] = []
    in_string = False
    smart_opened = False
    escaped = False
    for char in text:
        if escaped:
            out.append(char)
            escaped = False
        elif char in _SMART_DOUBLE_QUOTES:
            if not in_string:
                out.append('"')
                in_string, smart_opened = True, True
            elif smart_opened:
                out.append('"')
                in_string, smart_opened = False, False
            else:
                out.append('\\"')
        elif char == "\\" and in_string:
            out.append(char)
            escaped = True
        elif char == '"':
            out.append(char)
            in_string = not in_string
            smart_opened = False
        else:
            out.append(char)
    return "".join(out)


def normalize_line_breaks(text: str) -> str:
    """Use `\\n` everywhere and collapse runs of blank lines."""
    if not isinstance(text, str) or not text:
        return ""
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return _BLANK_RUN_RE.sub("\n", text).strip()


def sanitize(raw: str) -> str:
    """Run the full cleaning pipeline; large inputs take the single-pass path."""
    if not isinstance(raw, str) or not raw:
        return ""
    if len(raw) > LARGE_RESPONSE_THRESHOLD:
        return clean_large_string(raw)

    cleaned = remove_markdown_blocks(raw)
    cleaned = fix_character_encoding(cleaned)
    cleaned = fix_quotes(cleaned)
    return normalize_line_breaks(cleaned)
