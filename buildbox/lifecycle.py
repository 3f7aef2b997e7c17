"""Lifecycle controller for the one container an invocation owns.

States move Created -> Running -> Stopped -> Removed. An interrupt while the
container is running forces it to Stopped. An interrupt before it started
makes start() refuse, and the container is removed on exit. The controller is
the only thing that changes the container's state.
"""

import asyncio
import logging
import signal
from typing import Callable, Optional, Sequence

from buildbox.errors import BuildboxError, StartError, StreamError
from buildbox.models import ContainerState
from buildbox.runtime import ContainerHandle
from buildbox.streams import DataListener, OutputStream, wait_for_end

logger = logging.getLogger(__name__)

DEFAULT_SIGNALS = (signal.SIGINT, signal.SIGTERM)

# How long stop() waits for the log stream to flush its last chunks
LOG_DRAIN_TIMEOUT = 5.0


def log_chunk(chunk: bytes) -> None:
    """Default sink: echo container output through the logger."""
    text = chunk.decode("utf-8", errors="replace").rstrip()
    if text:
        logger.info(text)


class InterruptGuard:
    """Routes termination signals to a callback for as long as it is installed.

    Uses the running loop's signal handlers so the callback runs on the loop,
    and puts back whatever handlers were there before on uninstall. Every
    signal is also recorded in ``received``, so a guard installed before its
    callback exists can hand earlier signals over through ``route()``.
    """

    def __init__(
        self,
        callback: Optional[Callable[[signal.Signals], None]] = None,
        signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
    ):
        self._callback = callback
        self.signals = tuple(signals)
        self.received: list[signal.Signals] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._previous: dict[signal.Signals, object] = {}
        self._uses_loop_handlers = True

    @property
    def installed(self) -> bool:
        return self._loop is not None

    def route(self, callback: Callable[[signal.Signals], None]) -> None:
        """Send future signals to ``callback``."""
        self._callback = callback

    def install(self) -> None:
        if self.installed:
            return
        loop = asyncio.get_running_loop()
        try:
            for sig in self.signals:
                loop.add_signal_handler(sig, self._fire, sig)
        except NotImplementedError:
            # Loops without add_signal_handler (e.g. Windows)
            self._uses_loop_handlers = False
            for sig in self.signals:
                self._previous[sig] = signal.signal(
                    sig, lambda s, _frame: loop.call_soon_threadsafe(self._fire, signal.Signals(s))
                )
        self._loop = loop

    def uninstall(self) -> None:
        if not self.installed:
            return
        if self._uses_loop_handlers:
            for sig in self.signals:
                self._loop.remove_signal_handler(sig)
        else:
            for sig, previous in self._previous.items():
                signal.signal(sig, previous)
            self._previous.clear()
        self._loop = None

    def _fire(self, sig: signal.Signals) -> None:
        self.received.append(sig)
        if self._callback is None:
            logger.warning(f"Caught interrupt signal {sig.name}, cleaning up once ready")
            return
        self._callback(sig)


class LifecycleController:
    """Starts, stops and removes a container, and cleans up on interrupt.

    The interrupt guard is installed on ``async with`` entry (or by ``start()``
    when the controller is used without one). A guard that was already
    installed while the container was being created can be handed over with
    ``guard=``; signals it caught before the handover count as an interrupt.
    """

    def __init__(
        self,
        handle: ContainerHandle,
        log_sink: Optional[DataListener] = None,
        signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
        log_drain_timeout: Optional[float] = LOG_DRAIN_TIMEOUT,
        guard: Optional[InterruptGuard] = None,
    ):
        self.handle = handle
        self.state = ContainerState.CREATED
        self.log_drain_timeout = log_drain_timeout
        self._log_sink = log_sink or log_chunk
        if guard is None:
            guard = InterruptGuard(signals=signals)
        guard.route(self._on_interrupt)
        self._guard = guard
        self.interrupted = bool(guard.received)
        self._log_stream: Optional[OutputStream] = None
        self._forced_stop: Optional[asyncio.Task] = None

    @property
    def guard(self) -> InterruptGuard:
        return self._guard

    @property
    def log_stream(self) -> Optional[OutputStream]:
        return self._log_stream

    async def __aenter__(self) -> "LifecycleController":
        self._guard.install()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    async def start(self) -> None:
        """Start the container and follow its logs in the background."""
        if self.state is not ContainerState.CREATED:
            raise StartError(
                f"Container cannot be started while {self.state.value}",
                container_id=self.handle.short_id,
                operation="start",
            )

        # No-op when the guard is already in from __aenter__
        self._guard.install()
        if self.interrupted:
            raise StartError(
                "Interrupted before the container was started",
                container_id=self.handle.short_id,
                operation="start",
            )

        await self.handle.start()
        self.state = ContainerState.RUNNING
        logger.info(f"Container {self.handle.short_id} started")

        if self.interrupted:
            # The signal arrived while the start call was in flight
            await self._force_stop()
            raise StartError(
                "Interrupted while the container was starting",
                container_id=self.handle.short_id,
                operation="start",
            )

        stream = await self.handle.logs(follow=True, stdout=True, stderr=True)
        stream.on_data(self._log_sink)
        stream.begin()
        self._log_stream = stream

    async def stop(self) -> None:
        """Stop the container; stopping a stopped container is a no-op."""
        await self._settle_forced_stop()
        if self.state in (ContainerState.STOPPED, ContainerState.REMOVED):
            return

        await self.handle.stop()
        self.state = ContainerState.STOPPED
        logger.info(f"Container {self.handle.short_id} stopped")
        await self._drain_logs()

    async def remove(self, force: bool = False) -> None:
        """Remove the container and release the interrupt guard."""
        await self._settle_forced_stop()
        if self.state is ContainerState.REMOVED:
            return

        await self.handle.remove(force=force)
        self.state = ContainerState.REMOVED
        logger.info(f"Container {self.handle.short_id} removed")
        self._release()

    async def close(self) -> None:
        """Best-effort stop and remove, used on every exit path."""
        try:
            if self.state in (ContainerState.CREATED, ContainerState.RUNNING):
                try:
                    await self.stop()
                except BuildboxError as e:
                    logger.error(f"Cleanup could not stop container: {e}")
            if self.state is not ContainerState.REMOVED:
                try:
                    await self.remove(force=True)
                except BuildboxError as e:
                    logger.error(f"Cleanup could not remove container: {e}")
        finally:
            self._release()

    def _on_interrupt(self, sig: signal.Signals) -> None:
        self.interrupted = True
        logger.warning(f"Caught interrupt signal {sig.name}")

        if self.state is not ContainerState.RUNNING:
            logger.info(
                f"Container {self.handle.short_id} is {self.state.value}, nothing to stop"
            )
            return
        if self._forced_stop is not None and not self._forced_stop.done():
            logger.info(f"Forced stop of {self.handle.short_id} already in progress")
            return

        self._forced_stop = asyncio.ensure_future(self._force_stop())

    async def _force_stop(self) -> None:
        try:
            await self.handle.stop(force=True)
        except BuildboxError as e:
            logger.error(f"Forced stop of container {self.handle.short_id} failed: {e}")
            return
        self.state = ContainerState.STOPPED
        logger.info(f"Container {self.handle.short_id} force-stopped")

    async def _settle_forced_stop(self) -> None:
        if self._forced_stop is not None:
            await self._forced_stop

    async def _drain_logs(self) -> None:
        if self._log_stream is None:
            return
        try:
            await wait_for_end(self._log_stream, timeout=self.log_drain_timeout)
        except StreamError as e:
            logger.warning(f"Log stream did not finish cleanly: {e}")

    def _release(self) -> None:
        if self._log_stream is not None:
            self._log_stream.close()
        self._guard.uninstall()
