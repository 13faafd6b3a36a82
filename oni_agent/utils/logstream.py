from __future__ import annotations

import codecs
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable


_NS_PER_SECOND = 1_000_000_000


def format_timestamp(ts_ns: int) -> str:
    """RFC 3339 UTC timestamp with exactly nine fractional digits."""
    seconds, nanos = divmod(int(ts_ns), _NS_PER_SECOND)
    base = datetime.fromtimestamp(seconds, tz=timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")
    return f"{base}.{nanos:09d}Z"


@dataclass(frozen=True)
class LogEntry:
    timestamp_ns: int
    value: str

    def __str__(self) -> str:
        return f"[{format_timestamp(self.timestamp_ns)}] {self.value}"


class LogStream:
    """Write sink that stamps each line of captured output with the time it arrived.

    Lines split out of a single write get the same clock reading plus one
    nanosecond per line, so ordering survives a coarse clock. Any trailing
    text without a newline is held until the next write completes it.
    """

    def __init__(self, *, clock: Callable[[], int] | None = None) -> None:
        self._clock = clock or time.time_ns
        self._lock = threading.Lock()
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._entries: list[LogEntry] = []
        self._unprocessed = ""
        self._last_write_ns = 0

    def write(self, data: bytes) -> int:
        n = len(data)
        if n == 0:
            return 0

        with self._lock:
            text = self._decoder.decode(bytes(data))
            lines = text.split("\n")
            lines[0] = self._unprocessed + lines[0]
            # Whatever follows the final newline (possibly "") is still an open line.
            self._unprocessed = lines.pop()

            ts = max(int(self._clock()), self._last_write_ns)
            for line in lines:
                self._entries.append(LogEntry(timestamp_ns=ts, value=line))
                ts += 1
            self._last_write_ns = ts
        return n

    def close(self) -> None:
        """Flush the decoder; a truncated multi-byte sequence becomes U+FFFD."""
        with self._lock:
            tail = self._decoder.decode(b"", final=True)
            if tail:
                self._unprocessed += tail

    @property
    def entries(self) -> list[LogEntry]:
        with self._lock:
            return list(self._entries)

    def lines(self) -> list[str]:
        with self._lock:
            out = [e.value for e in self._entries]
            if self._unprocessed:
                out.append(self._unprocessed)
            return out

    def timestamped(self) -> list[str]:
        """Captured output as "[timestamp] line" strings.

        The unterminated final line, if any, is stamped with the time of the
        last write.
        """
        with self._lock:
            out = [str(e) for e in self._entries]
            if self._unprocessed:
                out.append(str(LogEntry(timestamp_ns=self._last_write_ns, value=self._unprocessed)))
            return out
