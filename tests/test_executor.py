"""Tests for running commands inside the container."""

import asyncio
import os
import signal
import time

import pytest

from buildbox.errors import ExecError, StreamTimeout
from buildbox.executor import ExecRunner
from buildbox.lifecycle import LifecycleController
from buildbox.models import ContainerState
from conftest import delayed_chunks

TEST_SIGNALS = (signal.SIGUSR1,)


@pytest.fixture
def running(handle):
    handle.running = True
    return handle


class TestExecRunner:

    @pytest.mark.asyncio
    async def test_collects_output_and_exit_code(self, running):
        running.exec_outputs[("echo", "hi")] = lambda: iter([b"hi", b"\n"])
        seen = []

        result = await ExecRunner(output_sink=seen.append).run(running, ["echo", "hi"])

        assert result.command == ["echo", "hi"]
        assert result.output == b"hi\n"
        assert result.text == "hi\n"
        assert result.exit_code == 0
        assert seen == [b"hi", b"\n"]
        assert running.calls == [("exec", ["echo", "hi"]), ("exec_start", ["echo", "hi"])]

    @pytest.mark.asyncio
    async def test_does_not_return_before_stream_ends(self, running):
        delay = 0.1
        running.exec_outputs[("slow",)] = lambda: delayed_chunks([b"a", b"b", b"c"], delay)

        started = time.monotonic()
        result = await ExecRunner(output_sink=lambda chunk: None).run(running, ["slow"])

        assert time.monotonic() - started >= 3 * delay
        assert result.chunks == 3

    @pytest.mark.asyncio
    async def test_empty_command_rejected(self, running):
        with pytest.raises(ExecError):
            await ExecRunner().run(running, [])

    @pytest.mark.asyncio
    async def test_stopped_container_rejects_exec(self, handle):
        with pytest.raises(ExecError) as exc_info:
            await ExecRunner().run(handle, ["true"])

        assert exc_info.value.operation == "exec"

    @pytest.mark.asyncio
    async def test_timeout_raises_stream_timeout(self, running):
        running.exec_outputs[("sleep", "100")] = running.block_until_stopped()

        with pytest.raises(StreamTimeout) as exc_info:
            await ExecRunner(timeout=0.1).run(running, ["sleep", "100"])

        assert exc_info.value.operation == "exec"
        assert exc_info.value.container_id == running.short_id

    @pytest.mark.asyncio
    async def test_nonzero_exit_is_reported(self, running):
        running.exit_codes[("false",)] = 1

        result = await ExecRunner().run(running, ["false"])
        assert result.exit_code == 1

        with pytest.raises(ExecError):
            await ExecRunner().run(running, ["false"], check=True)


class TestInterruptDuringExec:

    @pytest.mark.asyncio
    async def test_interrupt_mid_exec_stops_container(self, handle):
        handle.exec_outputs[("bash", "/app/build.sh")] = handle.block_until_stopped([b"building\n"])
        controller = LifecycleController(handle, signals=TEST_SIGNALS)
        await controller.start()

        loop = asyncio.get_running_loop()
        loop.call_later(0.1, os.kill, os.getpid(), signal.SIGUSR1)

        with pytest.raises(ExecError) as exc_info:
            await ExecRunner().run(handle, ["bash", "/app/build.sh"])

        await controller.close()

        assert "stopped" in str(exc_info.value)
        assert ("stop", True) in handle.calls
        assert controller.interrupted
        assert controller.state is ContainerState.REMOVED
