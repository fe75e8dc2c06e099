from __future__ import annotations

import codecs
import http.client
import json
import logging
import typing as t

logger = logging.getLogger(__name__)

DATA_PREFIX = "data: "
DONE_SENTINEL = "[DONE]"
READ_ERROR_MESSAGE = "Error reading stream. Please try again."

ProgressCallback = t.Callable[[str], None]
CompleteCallback = t.Callable[[str], None]


def extract_content(line: str) -> str | None:
    """Return the text increment carried by one event-stream line, if any."""
    if not line or not line.strip():
        return None
    if line.strip() == DATA_PREFIX + DONE_SENTINEL:
        return None
    if not line.startswith(DATA_PREFIX):
        return None

    content = line[len(DATA_PREFIX):]
    try:
        parsed = json.loads(content)
    except (json.JSONDecodeError, ValueError):
        return content

    # Only the delta and message envelopes carry text; usage chunks and other
    # JSON payloads are dropped.
    if not isinstance(parsed, dict):
        return None
    choices = parsed.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    delta = choices[0].get("delta")
    if isinstance(delta, dict) and "content" in delta:
        return str(delta.get("content") or "")
    message = choices[0].get("message")
    if isinstance(message, dict) and "content" in message:
        return str(message.get("content") or "")
    return None


class StreamDecoder:
    """Incrementally decode `data: ...` frames into a running text total.

    Bytes are decoded with a stateful UTF-8 decoder so a multi-byte character
    split across two chunks is held back until it is complete, and the last
    line of every chunk is buffered until its newline arrives.
    """

    def __init__(
        self,
        *,
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
    ) -> None:
        self.on_progress = on_progress
        self.on_complete = on_complete
        self.text = ""
        self.completed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._increments = 0

    @property
    def increments(self) -> int:
        return self._increments

    def _process_line(self, line: str) -> None:
        content = extract_content(line.rstrip("\r"))
        if content is None:
            return
        self.text += content
        self._increments += 1
        if self.on_progress is not None:
            self.on_progress(self.text)

    def _flush(self) -> None:
        self._buffer += self._decoder.decode(b"", final=True)
        if self._buffer.strip():
            for line in self._buffer.split("\n"):
                self._process_line(line)
        self._buffer = ""

    def _complete(self) -> str:
        self.completed = True
        if self.on_complete is not None:
            self.on_complete(self.text)
        return self.text

    def feed(self, chunk: bytes | str) -> None:
        if self.completed:
            return
        if isinstance(chunk, bytes):
            self._buffer += self._decoder.decode(chunk)
        else:
            self._buffer += chunk
        lines = self._buffer.split("\n")
        self._buffer = lines.pop()
        for line in lines:
            self._process_line(line)

    def finish(self) -> str:
        if self.completed:
            return self.text
        self._flush()
        return self._complete()

    def fail(self, exc: BaseException) -> str:
        logger.error("Stream reading error: %s", exc)
        if self.completed:
            return self.text
        self._flush()
        if not self._increments:
            self.text = READ_ERROR_MESSAGE
        return self._complete()


def consume_stream(
    chunks: t.Iterable[bytes | str],
    *,
    on_progress: ProgressCallback | None = None,
    on_complete: CompleteCallback | None = None,
) -> str:
    """Pull every chunk from `chunks` and return the final cumulative text.

    A read error ends the stream instead of propagating: whatever arrived so
    far is completed, or the fixed error message when nothing did.
    """
    decoder = StreamDecoder(on_progress=on_progress, on_complete=on_complete)
    try:
        for chunk in chunks:
            decoder.feed(chunk)
    except (OSError, ValueError, RuntimeError, http.client.HTTPException) as exc:
        return decoder.fail(exc)
    return decoder.finish()
