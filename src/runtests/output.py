"""Per-invocation output collection.

Fixtures receive an :class:`OutputHelper` through their constructor and write
diagnostic lines to it. The runner creates one :class:`OutputCollector`
per invocation and flushes it to the shared log once the invocation has
finished.
"""

from __future__ import annotations

import io
import re
from typing import Any, Protocol, TextIO, runtime_checkable


# Literal "\r\n" text, doubled carriage returns and real CRLF all become "\n".
_LINE_BREAKS = re.compile(r"\\r\\n|\r+\n")


def normalize_line_breaks(text: str) -> str:
    return _LINE_BREAKS.sub("\n", text)


@runtime_checkable
class OutputHelper(Protocol):
    """What fixtures can write diagnostic output to."""

    def write_line(self, message: str = "", *args: Any) -> None: ...


class OutputCollector:
    """Buffers the output of one invocation."""

    def __init__(self, fixture_name: str, method_name: str, suffix: str = "") -> None:
        self.fixture_name = fixture_name
        self.method_name = method_name
        self.suffix = suffix
        self._buffer = io.StringIO()
        self._written = False
        self._collected = False

    @property
    def has_written(self) -> bool:
        return self._written

    @property
    def header(self) -> str:
        return f"{self.fixture_name}.{self.method_name}{self.suffix}:"

    def write_line(self, message: Any = "", *args: Any) -> None:
        """Append a line; with ``args`` the message is a ``str.format`` template."""
        text = str(message)
        if args:
            text = text.format(*args)
        self._buffer.write(text)
        self._buffer.write("\n")
        self._written = True

    def getvalue(self) -> str:
        return self._buffer.getvalue()

    def collect(self, sink: TextIO) -> bool:
        """Write the buffered output to ``sink`` as one block.

        Does nothing if nothing was written, the text is blank after
        normalization, or the collector was already collected. Returns
        True when a block was written.
        """
        if self._collected or not self._written:
            return False
        self._collected = True
        body = normalize_line_breaks(self._buffer.getvalue())
        if not body.strip():
            return False
        sink.write(f"{self.header}\n\n\n{body}\n")
        return True

    def close(self) -> None:
        self._buffer.close()
