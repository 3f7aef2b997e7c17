"""Output streams and the completion primitive shared by logs and exec.

The Docker SDK hands out blocking iterators of byte chunks. OutputStream pumps
one of those on the default executor and delivers every chunk on the event
loop, in order, to its data listeners. Completion is a single future created
before the pump starts, so the end (or error) can never be missed.
"""

import asyncio
import inspect
import logging
from typing import Callable, Iterable, Optional

from buildbox.errors import StreamError, StreamTimeout

logger = logging.getLogger(__name__)

_END = object()

DataListener = Callable[[bytes], None]


class OutputStream:
    """Append-only chunk sequence with a terminal end signal."""

    def __init__(
        self,
        chunks: Iterable[bytes],
        label: str = "stream",
        container_id: Optional[str] = None,
    ):
        self.label = label
        self.container_id = container_id
        self._source = chunks
        self._chunks = iter(chunks)
        self._listeners: list[DataListener] = []
        self._finished: Optional[asyncio.Future] = None
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    def on_data(self, listener: DataListener) -> "OutputStream":
        """Subscribe to chunks. Listeners added after begin() miss earlier chunks."""
        self._listeners.append(listener)
        return self

    @property
    def started(self) -> bool:
        return self._finished is not None

    @property
    def ended(self) -> bool:
        return self._finished is not None and self._finished.done()

    def begin(self) -> asyncio.Future:
        """Start pumping chunks; returns the completion future.

        Calling begin() again returns the same future.
        """
        if self._finished is not None:
            return self._finished

        loop = asyncio.get_running_loop()
        self._finished = loop.create_future()
        self._task = loop.create_task(self._pump(loop))
        return self._finished

    async def _pump(self, loop: asyncio.AbstractEventLoop) -> None:
        try:
            while not self._closed:
                chunk = await loop.run_in_executor(None, next, self._chunks, _END)
                if chunk is _END or self._closed:
                    break
                for listener in list(self._listeners):
                    listener(chunk)
        except asyncio.CancelledError:
            self._settle(StreamError(
                f"{self.label} cancelled before end",
                container_id=self.container_id,
            ))
            raise
        except Exception as e:
            if self._closed:
                # Closing the socket under a blocked read surfaces as an error
                self._settle(None)
                return
            logger.error(f"Stream {self.label} failed: {e}")
            error = StreamError(
                f"{self.label} failed before end: {e}",
                container_id=self.container_id,
            )
            error.__cause__ = e
            self._settle(error)
            return

        self._settle(None)

    def _settle(self, error: Optional[BaseException]) -> None:
        """Resolve the completion future exactly once."""
        if self._finished is None or self._finished.done():
            return
        if error is None:
            self._finished.set_result(None)
        else:
            self._finished.set_exception(error)
            # Nobody may be awaiting a background stream; keep asyncio quiet
            self._finished.exception()

    def close(self) -> None:
        """Stop delivering chunks and release the underlying connection.

        Sources with a ``close()`` (the SDK's log stream) are closed, which
        unblocks a pending read. Generator sources, such as the SDK's exec
        output, cannot be closed while another thread is reading them, so
        their read thread stays blocked until the container stops or the exec
        ends. Listeners still receive nothing after close() either way.
        """
        if self._closed:
            return
        self._closed = True
        close = getattr(self._source, "close", None)
        # A running generator cannot be closed from another thread
        if close is not None and not inspect.isgenerator(self._source):
            try:
                close()
            except OSError as e:
                logger.warning(f"Error closing stream {self.label}: {e}")
        if self._finished is not None and not self._finished.done():
            self._settle(None)


async def wait_for_end(stream: OutputStream, timeout: Optional[float] = None) -> None:
    """Wait until ``stream`` signals end.

    Raises StreamError if the stream failed first, or StreamTimeout if
    ``timeout`` seconds pass without an end. ``None`` waits forever.

    On timeout the stream is closed (see OutputStream.close). For an exec
    stream that leaves one executor thread parked on the socket until the
    command or its container finishes, so callers that time out should stop
    the container as well.
    """
    finished = stream.begin()
    try:
        await asyncio.wait_for(asyncio.shield(finished), timeout)
    except asyncio.TimeoutError as e:
        stream.close()
        raise StreamTimeout(
            f"{stream.label} did not end within {timeout}s",
            container_id=stream.container_id,
        ) from e
