"""
Server-sent-event decoding shared by every provider.

Bytes arrive in arbitrary chunks; :class:`SSEDecoder` carries incomplete UTF-8
sequences and partial lines across chunk boundaries so the decoded items do
not depend on how the transport split the stream.
"""

from __future__ import annotations

import codecs
import json
from typing import Iterable, Iterator

from ..errors import ProviderError, ProviderErrorKind
from .base import StreamItem

DONE_SENTINEL = "[DONE]"


class SSEDecoder:
    """Incremental ``data:`` line decoder bound to one dialect."""

    def __init__(self, dialect):
        self.dialect = dialect
        self.done = False
        self._decoder = codecs.getincrementaldecoder("utf-8")()
        self._buffer = ""

    def feed(self, chunk: bytes) -> Iterator[StreamItem]:
        """Yield the items completed by ``chunk``.

        A generator, so items decoded before a malformed event still reach
        the consumer ahead of the error.
        """
        if self.done:
            return
        self._buffer += self._decode(chunk, final=False)
        while not self.done:
            newline = self._buffer.find("\n")
            if newline == -1:
                break
            line = self._buffer[:newline]
            self._buffer = self._buffer[newline + 1:]
            item = self._decode_line(line)
            if item is not None:
                yield item

    def flush(self) -> Iterator[StreamItem]:
        """Decode a final line that was not newline-terminated."""
        if self.done:
            return
        line = self._buffer + self._decode(b"", final=True)
        self._buffer = ""
        if line:
            item = self._decode_line(line)
            if item is not None:
                yield item
        if not self.done:
            item = self.dialect.end_of_stream()
            if item is not None:
                yield item

    def _decode(self, data: bytes, final: bool) -> str:
        try:
            return self._decoder.decode(data, final)
        except UnicodeDecodeError as exc:
            raise ProviderError(ProviderErrorKind.SERIALIZATION,
                                f"Invalid UTF-8 in event stream: {exc.reason}") from exc

    def _decode_line(self, line: str) -> StreamItem | None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            # comments, event:, id:, retry: and blank separators
            return None
        data = line[5:]
        if data.startswith(" "):
            data = data[1:]
        if data.strip() == DONE_SENTINEL:
            self.done = True
            return self.dialect.end_of_stream()
        if not data.strip():
            return None
        try:
            event = json.loads(data)
        except json.JSONDecodeError as exc:
            raise ProviderError(ProviderErrorKind.SERIALIZATION,
                                f"Malformed event JSON: {exc.msg}: {data[:200]!r}") from exc
        if not isinstance(event, dict):
            raise ProviderError(ProviderErrorKind.SERIALIZATION,
                                f"Event is not a JSON object: {data[:200]!r}")
        return self.dialect.decode_event(event)


def iter_stream_items(chunks: Iterable[bytes], dialect) -> Iterator[StreamItem]:
    """Decode ``chunks`` into stream items.

    Finite and lazy: stops after the first complete item or the ``[DONE]``
    sentinel.  A ``ProviderError`` raised by the decoder ends the sequence.
    """
    decoder = SSEDecoder(dialect)
    for chunk in chunks:
        for item in decoder.feed(chunk):
            yield item
            if item.is_complete:
                return
        if decoder.done:
            return
    for item in decoder.flush():
        yield item
        if item.is_complete:
            return
