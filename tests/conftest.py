"""Shared fakes standing in for a Docker container."""

import threading
import time

import pytest

from buildbox.errors import BuildboxError, ExecError, TransferError
from buildbox.streams import OutputStream

# Upper bound on how long a fake blocking stream waits, so no executor
# thread outlives a failing test for long
RELEASE_TIMEOUT = 5.0


def delayed_chunks(chunks, delay):
    """Yield ``chunks`` with ``delay`` seconds before each one."""
    for chunk in chunks:
        time.sleep(delay)
        yield chunk


class FakeSession:
    def __init__(self, handle, command, chunks, exit_code):
        self.handle = handle
        self.command = command
        self._chunks = chunks
        self._exit_code = exit_code

    async def start(self):
        self.handle.calls.append(("exec_start", self.command))
        return OutputStream(
            self._chunks,
            label=f"exec:{self.command[0]}",
            container_id=self.handle.short_id,
        )

    async def exit_code(self):
        return self._exit_code


class FakeHandle:
    """In-memory container handle recording every call made on it.

    The log stream yields ``log_chunks`` and then, like a followed Docker log,
    blocks until the container stops. ``exec_outputs`` maps a command tuple to
    a callable returning that command's chunk iterator.
    """

    def __init__(self, log_chunks=(b"container booted\n",), exec_outputs=None, exit_codes=None):
        self.id = "f" * 64
        self.short_id = "f" * 12
        self.calls = []
        self.running = False
        self.removed = False
        self.archives = []
        self.log_chunks = list(log_chunks)
        self.exec_outputs = exec_outputs or {}
        self.exit_codes = exit_codes or {}
        self.fail_force_stop = False
        self.reject_archives = False
        self.stopped_event = threading.Event()

    async def start(self):
        self.calls.append("start")
        self.running = True

    async def stop(self, force=False):
        self.calls.append(("stop", force))
        if force and self.fail_force_stop:
            raise BuildboxError("daemon went away", container_id=self.short_id, operation="stop")
        self.running = False
        self.stopped_event.set()

    async def remove(self, force=False):
        self.calls.append(("remove", force))
        self.running = False
        self.removed = True
        self.stopped_event.set()

    async def is_running(self):
        return self.running

    async def logs(self, follow=True, stdout=True, stderr=True):
        self.calls.append("logs")
        return OutputStream(self._follow_logs(), label="logs", container_id=self.short_id)

    def _follow_logs(self):
        yield from self.log_chunks
        self.stopped_event.wait(RELEASE_TIMEOUT)

    async def exec(self, command):
        cmd = list(command)
        if not self.running:
            raise ExecError("Container is not running", container_id=self.short_id, operation="exec")
        self.calls.append(("exec", cmd))
        factory = self.exec_outputs.get(tuple(cmd))
        chunks = factory() if factory else iter([b"ok\n"])
        return FakeSession(self, cmd, chunks, self.exit_codes.get(tuple(cmd), 0))

    async def put_archive(self, archive, dest_path):
        data = b"".join(archive)
        self.calls.append(("put_archive", dest_path))
        if self.reject_archives:
            raise TransferError(
                f"Could not extract archive at {dest_path}",
                container_id=self.short_id,
                operation="put_archive",
            )
        self.archives.append((dest_path, data))

    def block_until_stopped(self, chunks=()):
        """Chunk factory for a command that only ends when the container stops."""
        def factory():
            yield from chunks
            self.stopped_event.wait(RELEASE_TIMEOUT)
        return factory


class FakeRuntime:
    def __init__(self, handle):
        self.handle = handle
        self.specs = []

    async def create(self, spec):
        self.specs.append(spec)
        return self.handle


@pytest.fixture
def handle():
    fake = FakeHandle()
    yield fake
    # Release any blocked executor threads
    fake.stopped_event.set()


@pytest.fixture
def runtime(handle):
    return FakeRuntime(handle)
