"""
Daemon status stream decoding and rendering.

The daemon answers build and push requests with a stream of JSON objects.
Each object is decoded into a StatusEvent as soon as it is complete and
rendered to the build log sink in arrival order.
"""

import codecs
import json
import logging
from contextlib import aclosing
from typing import IO, Any, AsyncIterable, AsyncIterator, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.utils.terminal import CLEAR_LINE, cursor_down, cursor_up, is_terminal
from ..exceptions import StreamError

log = logging.getLogger(__name__)


class ProgressDetail(BaseModel):
    current: Optional[int] = None
    total: Optional[int] = None

    def has_progress(self) -> bool:
        return (self.current or 0) > 0 or (self.total or 0) > 0


class ErrorDetail(BaseModel):
    code: Optional[int] = None
    message: str = ""


class StatusEvent(BaseModel):
    """One decoded message from the daemon's event stream."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    stream: Optional[str] = None
    status: Optional[str] = None
    id: Optional[str] = None
    progress: Optional[str] = None
    progress_detail: Optional[ProgressDetail] = Field(None, alias="progressDetail")
    error: Optional[str] = None
    error_detail: Optional[ErrorDetail] = Field(None, alias="errorDetail")
    aux: Optional[Any] = None

    @property
    def is_error(self) -> bool:
        return self.error_detail is not None or bool(self.error)

    @property
    def error_message(self) -> str:
        if self.error_detail is not None and self.error_detail.message:
            return self.error_detail.message
        return self.error or ""

    @property
    def error_code(self) -> Optional[int]:
        return self.error_detail.code if self.error_detail is not None else None


async def decode_events(chunks: AsyncIterable[bytes], step: str) -> AsyncIterator[StatusEvent]:
    """
    Decode a byte stream of concatenated JSON objects into StatusEvents.

    Objects may be split across chunks or share a chunk; each is yielded as
    soon as it is complete. The daemon ends every object with a newline, so
    a line that does not decode is corrupt rather than incomplete. Events
    already received after a corrupt line are still yielded, so a daemon
    error reported in the same read wins over the decoding error.

    Args:
        chunks: Raw response body chunks
        step: Operation name used for errors

    Raises:
        StreamError: If the stream holds invalid JSON or ends mid-object
    """
    decoder = json.JSONDecoder()
    text = codecs.getincrementaldecoder("utf-8")()
    buffer = ""

    async for chunk in chunks:
        try:
            buffer += text.decode(chunk)
        except UnicodeDecodeError as e:
            raise StreamError(step, f"invalid daemon stream: {e}") from e

        corrupt = None
        while True:
            buffer = buffer.lstrip()
            if not buffer:
                break
            if not buffer.startswith("{"):
                corrupt = corrupt or f"unexpected data {buffer[:40]!r}"
                buffer = _skip_corrupt(buffer)
                continue
            try:
                data, end = decoder.raw_decode(buffer)
            except json.JSONDecodeError as e:
                if "\n" not in buffer:
                    # Incomplete object, wait for the next chunk
                    break
                corrupt = corrupt or str(e)
                buffer = _skip_corrupt(buffer)
                continue
            buffer = buffer[end:]
            yield _to_event(data, step)

        if corrupt is not None:
            log.debug(f"{step}: corrupt daemon stream, {corrupt}")
            raise StreamError(step, f"invalid daemon stream: {corrupt}")

    buffer = (buffer + text.decode(b"", final=True)).strip()
    if buffer:
        try:
            data, end = decoder.raw_decode(buffer)
        except json.JSONDecodeError as e:
            raise StreamError(step, f"invalid daemon stream: {e}") from e
        if buffer[end:].strip():
            raise StreamError(step, "invalid daemon stream: trailing data")
        yield _to_event(data, step)


def _skip_corrupt(buffer: str) -> str:
    """Drop data up to the next line, or the next object when there is no line."""
    newline = buffer.find("\n")
    if newline >= 0:
        return buffer[newline + 1 :]
    start = buffer.find("{", 1)
    return buffer[start:] if start > 0 else ""


def _to_event(data: Any, step: str) -> StatusEvent:
    try:
        return StatusEvent.model_validate(data)
    except ValidationError as e:
        raise StreamError(step, f"unexpected daemon message: {data!r}") from e


class StatusRelay:
    """
    Render daemon status events to an output sink.

    Terminal sinks get in-place progress lines per layer id. Any other sink
    gets plain lines and progress bar updates are dropped.
    """

    def __init__(self, sink: IO[str], step: str):
        """
        Initialize relay.

        Args:
            sink: Writable text stream for the build or push log
            step: Operation name attached to errors
        """
        self.sink = sink
        self.step = step
        self.terminal = is_terminal(sink)
        self.aux: Optional[Any] = None
        self._lines: Dict[str, int] = {}

    async def relay(self, events: AsyncIterator[StatusEvent]) -> None:
        """
        Consume events until the stream ends or reports an error.

        Output already written stays in the sink when an error is raised.

        Raises:
            StreamError: On the first error event
        """
        async with aclosing(events):
            async for event in events:
                if event.is_error:
                    log.debug(f"{self.step} failed: {event.error_message}")
                    raise StreamError(self.step, event.error_message, event.error_code)
                if event.aux is not None:
                    self.aux = event.aux
                    continue
                self.render(event)

    async def relay_bytes(self, chunks: AsyncIterable[bytes]) -> None:
        """Decode a raw daemon stream and relay it."""
        await self.relay(decode_events(chunks, self.step))

    def render(self, event: StatusEvent) -> None:
        diff = 0
        if event.id and (event.progress_detail is not None or event.progress):
            line = self._lines.get(event.id)
            if line is None:
                line = len(self._lines)
                self._lines[event.id] = line
                if self.terminal:
                    self.sink.write("\n")
            diff = len(self._lines) - line
            if self.terminal:
                self.sink.write(cursor_up(diff))
        else:
            # Non-progress output ends the block of in-place lines
            self._lines = {}

        self.sink.write(self.format(event))
        if event.id and self.terminal:
            self.sink.write(cursor_down(diff))
        self.sink.flush()

    def format(self, event: StatusEvent) -> str:
        """Format one event the way the docker CLI prints it."""
        prefix = ""
        endl = ""
        detail = event.progress_detail
        if self.terminal and not event.stream and detail is not None:
            prefix = "\r" + CLEAR_LINE + "\r"
            endl = "\r"
        elif detail is not None and detail.has_progress() and not self.terminal:
            return ""

        text = prefix
        if event.id:
            text += f"{event.id}: "

        status = event.status or ""
        if detail is not None and self.terminal:
            text += f"{status} {event.progress or ''}{endl}"
        elif event.progress:
            text += f"{status} {event.progress}{endl}"
        elif event.stream:
            text += f"{event.stream}{endl}"
        else:
            text += f"{status}{endl}\n"
        return text
