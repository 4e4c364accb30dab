"""One client's interest in an export.

An ExportRequest wraps the client's sink. It notices when the sink closes
(the client went away), which can happen before or during its turn in the
queue, and streams the baked artifact into the sink when its turn comes.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import IO, Any, AsyncIterator, Awaitable, Callable, List, Optional, Protocol, Union

from ogrexport.core.metrics import export_transfers_total
from ogrexport.services.export_errors import SinkClosedError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024

CompletionCallback = Callable[[Optional[BaseException]], Union[None, Awaitable[Any]]]


class ExportSink(Protocol):
    """Write-only byte destination for one client."""

    closed: bool

    async def write(self, data: bytes) -> None: ...

    async def end(self) -> None: ...

    def add_close_listener(self, listener: Callable[[], None]) -> None: ...


class QueueSink:
    """
    ExportSink feeding an async iterator (e.g. a streaming HTTP body).

    `close()` is the client-gone signal: listeners fire once and further
    writes fail. Writes block while `maxsize` chunks are unread; a write that
    stays blocked for `write_timeout` seconds closes the sink.
    """

    def __init__(self, maxsize: int = 16, write_timeout: Optional[float] = None):
        self._queue: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=maxsize)
        self._listeners: List[Callable[[], None]] = []
        self.write_timeout = write_timeout
        self.closed = False
        self.ended = False
        self.bytes_written = 0

    def add_close_listener(self, listener: Callable[[], None]) -> None:
        if self.closed:
            listener()
            return
        self._listeners.append(listener)

    async def write(self, data: bytes) -> None:
        if self.closed:
            raise SinkClosedError("client disconnected")
        try:
            await asyncio.wait_for(self._queue.put(data), timeout=self.write_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Sink stalled for {self.write_timeout}s; closing")
            self.close()
            raise SinkClosedError("client stopped reading")
        self.bytes_written += len(data)

    async def end(self) -> None:
        if self.closed or self.ended:
            return
        self.ended = True
        await self._queue.put(None)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener()

    async def iter_chunks(self) -> AsyncIterator[bytes]:
        try:
            while True:
                chunk = await self._queue.get()
                if chunk is None:
                    return
                yield chunk
        finally:
            self.close()


class RequestState(str, Enum):
    PENDING = "pending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    ERRORED = "errored"


async def invoke_callback(callback: CompletionCallback, error: Optional[BaseException]) -> None:
    """Call a completion callback, awaiting it if it is a coroutine function."""
    try:
        result = callback(error)
        if inspect.isawaitable(result):
            await result
    except Exception:
        logger.exception("Export completion callback failed")


class ExportRequest:
    """Request handle: a sink plus completion signalling and cancellation."""

    def __init__(
        self,
        sink: ExportSink,
        callback: CompletionCallback,
        before_sink: Optional[Callable[[], None]] = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.sink = sink
        self.callback = callback
        self.before_sink = before_sink
        self.chunk_size = chunk_size
        self.state = RequestState.PENDING
        self.canceled = False
        self._transfer: Optional[asyncio.Task] = None

        sink.add_close_listener(self._on_sink_closed)

    def _on_sink_closed(self) -> None:
        self.canceled = True
        if self._transfer is not None and not self._transfer.done():
            self._transfer.cancel()

    async def send_file(self, error: Optional[BaseException], filename: Optional[str]) -> None:
        """
        Deliver the job outcome to this client.

        Returns once the transfer is over and the callback has returned.
        A canceled request is skipped without calling its callback, both
        before and during its transfer.
        """
        if error is not None:
            self.state = RequestState.ERRORED
            await invoke_callback(self.callback, error)
            return

        if self.canceled:
            logger.info("Skipping export request; client already gone")
            export_transfers_total.labels(outcome="skipped").inc()
            return

        try:
            fh = open(filename, "rb")
        except OSError as exc:
            logger.error(f"Can't send response: {exc}")
            self.state = RequestState.ERRORED
            export_transfers_total.labels(outcome="errored").inc()
            await self.sink.end()
            await invoke_callback(self.callback, exc)
            return

        self.state = RequestState.STREAMING
        with fh:
            transfer = self._transfer = asyncio.ensure_future(self._pipe(fh))
            try:
                await asyncio.wait({transfer})
            except asyncio.CancelledError:
                transfer.cancel()
                raise
            finally:
                self._transfer = None

        # A write failing because the sink closed is a cancellation too.
        if transfer.cancelled() or (self.canceled and transfer.exception() is not None):
            logger.info("Export request canceled mid-transfer")
            export_transfers_total.labels(outcome="canceled").inc()
            return

        exc = transfer.exception()
        if exc is not None:
            logger.warning(f"Export transfer failed: {exc}")
            self.state = RequestState.ERRORED
            export_transfers_total.labels(outcome="errored").inc()
        else:
            self.state = RequestState.COMPLETED
            export_transfers_total.labels(outcome="completed").inc()
        await invoke_callback(self.callback, exc)

    async def _pipe(self, fh: IO[bytes]) -> None:
        if self.before_sink is not None:
            self.before_sink()
        while True:
            chunk = await asyncio.to_thread(fh.read, self.chunk_size)
            if not chunk:
                break
            await self.sink.write(chunk)
        await self.sink.end()
