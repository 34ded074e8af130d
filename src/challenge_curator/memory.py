"""Resource guards for oversized model responses.

Three pieces live here:

- size thresholds shared by the sanitizer, the parser and the orchestrator;
- `clean_large_string`, the single-pass sanitizer used above 1 MiB;
- `MemoryMonitor`, a psutil-backed view of process memory with a
  `gc.collect()` escape hatch when the process is under pressure.
"""

from __future__ import annotations

import gc
import logging
import re
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import psutil


LARGE_RESPONSE_THRESHOLD = 1024 * 1024
STREAMING_THRESHOLD = 64 * 1024
STREAMING_CHUNK_SIZE = 64 * 1024
MAX_STREAMING_SIZE = 10 * 1024 * 1024

_MB = 1024 * 1024


class ResponseTooLargeError(ValueError):
    """Raised when a response exceeds the configured size limit."""

    def __init__(self, size: int, limit: int) -> None:
        super().__init__(f"Response too large: {size} bytes (limit: {limit})")
        self.size = size
        self.limit = limit


def check_response_size(text: str, limit: int = LARGE_RESPONSE_THRESHOLD) -> None:
    """Raise `ResponseTooLargeError` when `text` is longer than `limit`."""
    if limit and len(text) > limit:
        raise ResponseTooLargeError(len(text), limit)


def iter_chunks(text: str, chunk_size: int = STREAMING_CHUNK_SIZE) -> Iterator[tuple[int, str]]:
    """Yield `(offset, chunk)` pairs covering `text` in order."""
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    for offset in range(0, len(text), chunk_size):
        yield offset, text[offset : offset + chunk_size]


# ---------------------------------------------------------------------
# Single-pass sanitization for very large inputs
# ---------------------------------------------------------------------

_LARGE_FENCE_RE = re.compile(r"```[A-Za-z0-9_+-]*[ \t]*")
_LARGE_REPLACEMENTS: dict[str, str] = {
    "\u201c": '"',
    "\u201d": '"',
    "\u201e": '"',
    "\u2018": "'",
    "\u2019": "'",
    "\u2013": "-",
    "\u2014": "-",
    "\u2026": "...",
    "\u00a0": " ",
    "\u200b": "",
    "\u200c": "",
    "\u200d": "",
    "\u2060": "",
    "\ufeff": "",
    "\r\n": "\n",
    "\r": "\n",
}
_LARGE_CHARS_RE = re.compile("|".join(re.escape(key) for key in sorted(_LARGE_REPLACEMENTS, key=len, reverse=True)))


def clean_large_string(text: str) -> str:
    """Cheap sanitization for responses above `LARGE_RESPONSE_THRESHOLD`.

    Fence markers are dropped (their content kept) and typographic characters
    are mapped in one regex pass. No per-step copies of the buffer are made
    beyond the two substitutions.
    """
    if not isinstance(text, str) or not text:
        return ""
    without_fences = _LARGE_FENCE_RE.sub("", text)
    return _LARGE_CHARS_RE.sub(lambda match: _LARGE_REPLACEMENTS[match.group(0)], without_fences).strip()


# ---------------------------------------------------------------------
# Process memory monitoring
# ---------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class MemoryUsage:
    rss: int
    vms: int

    @property
    def rss_mb(self) -> float:
        return round(self.rss / _MB, 2)


class MemoryMonitor:
    """Tracks resident memory and triggers collection under pressure."""

    def __init__(
        self,
        *,
        max_memory_bytes: int = 512 * _MB,
        pressure_ratio: float = 0.8,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_memory_bytes = max_memory_bytes
        self.pressure_ratio = pressure_ratio
        self.logger = logger or logging.getLogger("challenge_curator.memory")
        self._process = psutil.Process()
        self.peak_rss = 0
        self.gc_count = 0
        self.last_gc: datetime | None = None

    def usage(self) -> MemoryUsage:
        try:
            info = self._process.memory_info()
        except psutil.Error as err:
            self.logger.warning("memory_read_failed", extra={"error": str(err)})
            return MemoryUsage(rss=0, vms=0)
        self.peak_rss = max(self.peak_rss, info.rss)
        return MemoryUsage(rss=info.rss, vms=info.vms)

    def is_memory_pressure(self) -> bool:
        return self.usage().rss > self.max_memory_bytes * self.pressure_ratio

    def collect(self) -> int:
        """Run a full garbage collection and return the number of objects freed."""
        freed = gc.collect()
        self.gc_count += 1
        self.last_gc = datetime.now(timezone.utc)
        self.logger.info("memory_gc", extra={"freed_objects": freed})
        return freed

    def relieve_pressure(self) -> bool:
        """Collect garbage if the process is above the pressure threshold."""
        if not self.is_memory_pressure():
            return False
        self.collect()
        return True

    def stats(self) -> dict[str, Any]:
        current = self.usage()
        return {
            "rss_mb": current.rss_mb,
            "peak_rss_mb": round(self.peak_rss / _MB, 2),
            "gc_count": self.gc_count,
            "last_gc": self.last_gc.isoformat() if self.last_gc else None,
            "thresholds": {
                "max_bytes": self.max_memory_bytes,
                "gc_trigger_bytes": int(self.max_memory_bytes * self.pressure_ratio),
            },
        }
