"""
Incremental decoder for chat-completion server-sent events.

Input is whatever the network hands over: arbitrary byte chunks that may end
in the middle of a line, a JSON object or a multi-byte character. Output is
the text deltas (``choices[0].delta.content``) in arrival order.

    decoder = SSEDecoder()
    for chunk in response.iter_content(chunk_size=None):
        for delta in decoder.feed(chunk):
            render(delta)
        if decoder.done:
            break
    decoder.close()
"""
import codecs
import json
import logging
from typing import Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"


def _delta_content(event) -> Optional[str]:
    try:
        content = event["choices"][0]["delta"].get("content")
    except (KeyError, IndexError, TypeError, AttributeError):
        return None
    return content if isinstance(content, str) else None


class SSEDecoder:
    """Single-consumer line buffer over an SSE byte stream."""

    def __init__(self):
        self._utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self.done = False
        self.skipped = 0

    @property
    def pending(self) -> str:
        """Data received but not yet consumed."""
        return self._buffer

    def feed(self, chunk: Union[bytes, str]) -> List[str]:
        """Consume one network chunk and return the complete deltas it unlocked."""
        if self.done:
            return []
        if isinstance(chunk, bytes):
            chunk = self._utf8.decode(chunk)
        self._buffer += chunk

        deltas: List[str] = []
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            if line.endswith("\r"):
                line = line[:-1]
            if line.startswith(":") or not line.strip():
                continue
            if not line.startswith(DATA_PREFIX):
                continue

            payload = line[len(DATA_PREFIX):].strip()
            if payload == DONE_SENTINEL:
                self.done = True
                break

            # Only newline-terminated lines get here; a split event is still
            # sitting unterminated in the buffer.
            try:
                event = json.loads(payload)
            except json.JSONDecodeError as e:
                self.skipped += 1
                logger.warning("Skipping malformed stream event (%s): %r", e.msg, payload[:80])
                continue

            delta = _delta_content(event)
            if delta:
                deltas.append(delta)
        return deltas

    def close(self) -> List[str]:
        """End of stream: flush a final unterminated line, report anything unusable."""
        if self.done:
            return []
        tail = self._utf8.decode(b"", final=True)
        if tail:
            self._buffer += tail
        deltas: List[str] = []
        if self._buffer.strip() and not self._buffer.endswith("\n"):
            deltas = self.feed("\n")
        if self._buffer.strip():
            logger.warning("Discarding %d bytes of unparsed stream data", len(self._buffer))
        self._buffer = ""
        return deltas


def assemble(chunks: Iterable[Union[bytes, str]]) -> str:
    """Decode a whole stream into the final assistant text."""
    decoder = SSEDecoder()
    parts: List[str] = []
    for chunk in chunks:
        parts.extend(decoder.feed(chunk))
        if decoder.done:
            break
    parts.extend(decoder.close())
    return "".join(parts)
