"""Run commands inside a running container and wait for them to finish."""

import logging
from typing import Iterable, Optional

from buildbox.errors import ExecError, StreamError
from buildbox.models import ExecResult
from buildbox.runtime import ContainerHandle
from buildbox.streams import DataListener, wait_for_end

logger = logging.getLogger(__name__)


def log_output(chunk: bytes) -> None:
    """Default sink: echo command output through the logger."""
    text = chunk.decode("utf-8", errors="replace").rstrip()
    if text:
        logger.info(f"Command output: {text}")


class ExecRunner:
    """Executes command vectors in a container, one at a time.

    Output is surfaced chunk by chunk to ``output_sink`` and also collected
    into the returned ExecResult. ``timeout`` bounds the wait for the output
    stream to end; None (the default) waits forever.
    """

    def __init__(
        self,
        output_sink: Optional[DataListener] = None,
        timeout: Optional[float] = None,
    ):
        self._output_sink = output_sink or log_output
        self.timeout = timeout

    async def run(
        self,
        handle: ContainerHandle,
        command: Iterable[str],
        timeout: Optional[float] = None,
        check: bool = False,
    ) -> ExecResult:
        """Run ``command`` and return once its output stream has ended.

        Raises ExecError if the command cannot be started, if the container
        stopped underneath it, or (with ``check``) if it exits non-zero.
        """
        cmd = list(command)
        if not cmd:
            raise ExecError(
                "Cannot run an empty command",
                container_id=handle.short_id,
                operation="exec",
            )

        logger.info(f"Running {cmd} in container {handle.short_id}")
        session = await handle.exec(cmd)
        stream = await session.start()

        collected: list[bytes] = []
        stream.on_data(collected.append)
        stream.on_data(self._output_sink)

        try:
            await wait_for_end(stream, timeout=timeout if timeout is not None else self.timeout)
        except StreamError as e:
            if e.operation is None:
                e.operation = "exec"
            raise

        if not await handle.is_running():
            raise ExecError(
                f"Container stopped while {cmd} was running",
                container_id=handle.short_id,
                operation="exec",
            )

        result = ExecResult(
            command=cmd,
            exit_code=await session.exit_code(),
            output=b"".join(collected),
            chunks=len(collected),
        )

        if result.exit_code:
            logger.warning(f"Command {cmd} exited with code {result.exit_code}")
            if check:
                raise ExecError(
                    f"Command {cmd} exited with code {result.exit_code}",
                    container_id=handle.short_id,
                    operation="exec",
                )
        else:
            logger.info(f"Command {cmd} finished")

        return result
