"""Regex-based secret redaction for run logs and daemon logs.

Masks the value of ``api_key=``, ``api-key=``, ``token=`` and ``secret=``
assignments (case-insensitive) before text reaches run.log, an interactive
terminal, or the daemon's own log files. The key name is preserved so the
transcript still shows which setting was involved.

Subprocess output goes through RedactingLineWriter, which only redacts whole
lines: bytes are buffered until a newline arrives, so a secret split across
two pipe reads is still caught.
"""

import logging
import re
import threading
from typing import IO, Iterable, List

logger = logging.getLogger(__name__)

REDACTED = "<redacted>"

_KEY_VALUE_RE = re.compile(r"(api[_-]?key|token|secret)=\S+", re.IGNORECASE)


def redact_sensitive_text(text: str) -> str:
    """Apply the redaction pattern to a block of text.

    Safe to call on any string -- non-matching text passes through unchanged.
    """
    if not text:
        return text
    return _KEY_VALUE_RE.sub(lambda m: f"{m.group(1)}={REDACTED}", text)


class RedactingLineWriter:
    """Line-buffered redaction stage between a byte stream and text sinks.

    ``write()`` accepts raw bytes (as read from a subprocess pipe), and every
    completed line is redacted and written, newline-terminated, to each sink.
    ``close()`` flushes an unterminated trailing line. Writes are serialised
    with a lock so a reader thread and the caller can share one instance.
    """

    def __init__(self, sinks: Iterable[IO[str]], encoding: str = "utf-8"):
        self._sinks: List[IO[str]] = [s for s in sinks if s is not None]
        self._encoding = encoding
        self._buf = bytearray()
        self._lock = threading.Lock()
        self._closed = False

    def write(self, data: bytes) -> int:
        with self._lock:
            if self._closed:
                raise ValueError("write to closed RedactingLineWriter")
            self._buf.extend(data)
            while True:
                idx = self._buf.find(b"\n")
                if idx < 0:
                    break
                line = bytes(self._buf[:idx])
                del self._buf[:idx + 1]
                self._emit(line)
        return len(data)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._buf:
                tail = bytes(self._buf).rstrip(b"\n")
                self._buf.clear()
                self._emit(tail)
            for sink in self._sinks:
                sink.flush()

    def _emit(self, raw: bytes) -> None:
        line = raw.decode(self._encoding, errors="replace")
        text = redact_sensitive_text(line) + "\n"
        for sink in self._sinks:
            sink.write(text)

    def __enter__(self) -> "RedactingLineWriter":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class RedactingFormatter(logging.Formatter):
    """Log formatter that redacts secrets from all log messages."""

    def __init__(self, fmt=None, datefmt=None, style='%', **kwargs):
        super().__init__(fmt, datefmt, style, **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        original = super().format(record)
        return redact_sensitive_text(original)
