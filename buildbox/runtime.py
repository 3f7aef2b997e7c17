"""Docker-backed container factory and handle.

All Docker SDK calls are blocking, so they run on the default executor and
the event loop stays free to react to signals while a call is in flight.
Docker SDK exceptions are translated into buildbox errors here and nowhere
else.
"""

import asyncio
import logging
from dataclasses import dataclass
from functools import partial
from typing import Iterable, Optional

import docker
import requests
from docker.errors import APIError, DockerException, ImageNotFound, NotFound
from docker.models.containers import Container

from buildbox.errors import (
    BuildboxError,
    CreationError,
    ExecError,
    StartError,
    StreamError,
    TransferError,
)
from buildbox.models import ContainerSpec
from buildbox.streams import OutputStream

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 10


async def _run_blocking(func, *args, **kwargs):
    return await asyncio.get_running_loop().run_in_executor(
        None, partial(func, *args, **kwargs)
    )


@dataclass
class ExecSession:
    """One command instance inside a running container."""

    exec_id: str
    command: list[str]
    handle: "ContainerHandle"

    async def start(self) -> OutputStream:
        """Start the session on a hijacked connection and return its output."""
        return await self.handle._start_exec(self)

    async def exit_code(self) -> Optional[int]:
        return await self.handle._exec_exit_code(self)


class ContainerHandle:
    """Lifecycle and I/O capabilities of one Docker container."""

    def __init__(self, container: Container, stop_timeout: int = DEFAULT_STOP_TIMEOUT):
        self._container = container
        self.stop_timeout = stop_timeout

    @property
    def id(self) -> str:
        return self._container.id

    @property
    def short_id(self) -> str:
        return self._container.short_id

    @property
    def _api(self):
        return self._container.client.api

    async def start(self) -> None:
        try:
            await _run_blocking(self._container.start)
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise StartError(
                f"Container failed to start: {e}",
                container_id=self.short_id,
                operation="start",
            ) from e

    async def stop(self, force: bool = False) -> None:
        """Stop the container. An already stopped or missing container is fine."""
        # A zero grace period sends SIGKILL right after SIGTERM
        timeout = 0 if force else self.stop_timeout
        try:
            await _run_blocking(self._container.stop, timeout=timeout)
        except NotFound:
            logger.warning(f"Container {self.short_id} already gone, nothing to stop")
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise BuildboxError(
                f"Container failed to stop: {e}",
                container_id=self.short_id,
                operation="stop",
            ) from e

    async def remove(self, force: bool = False) -> None:
        """Remove the container. A container that is already gone is fine."""
        try:
            await _run_blocking(self._container.remove, force=force)
        except NotFound:
            logger.warning(f"Container {self.short_id} already gone, nothing to remove")
        except APIError as e:
            if e.status_code == 409 and "already in progress" in str(e.explanation):
                logger.warning(f"Removal of container {self.short_id} already in progress")
                return
            raise BuildboxError(
                f"Container failed to be removed: {e}",
                container_id=self.short_id,
                operation="remove",
            ) from e
        except requests.exceptions.ConnectionError as e:
            raise BuildboxError(
                f"Container failed to be removed: {e}",
                container_id=self.short_id,
                operation="remove",
            ) from e

    async def is_running(self) -> bool:
        def check():
            self._container.reload()
            return self._container.status == "running"

        try:
            return await _run_blocking(check)
        except NotFound:
            return False
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise ExecError(
                f"Could not inspect container state: {e}",
                container_id=self.short_id,
                operation="exec",
            ) from e

    async def logs(
        self, follow: bool = True, stdout: bool = True, stderr: bool = True
    ) -> OutputStream:
        """Open the container's log stream."""
        try:
            chunks = await _run_blocking(
                self._container.logs,
                stream=True,
                follow=follow,
                stdout=stdout,
                stderr=stderr,
            )
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise StreamError(
                f"Could not attach to container logs: {e}",
                container_id=self.short_id,
                operation="logs",
            ) from e
        return OutputStream(chunks, label=f"logs:{self.short_id}", container_id=self.short_id)

    async def exec(self, command: Iterable[str]) -> ExecSession:
        """Create an exec session with stdout and stderr attached."""
        cmd = list(command)
        try:
            created = await _run_blocking(
                self._api.exec_create,
                self.id,
                cmd,
                stdout=True,
                stderr=True,
                stdin=False,
                tty=False,
            )
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise ExecError(
                f"Could not create exec for {cmd}: {e}",
                container_id=self.short_id,
                operation="exec",
            ) from e
        return ExecSession(exec_id=created["Id"], command=cmd, handle=self)

    async def _start_exec(self, session: ExecSession) -> OutputStream:
        try:
            chunks = await _run_blocking(
                self._api.exec_start, session.exec_id, stream=True, tty=False
            )
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise ExecError(
                f"Could not start exec for {session.command}: {e}",
                container_id=self.short_id,
                operation="exec",
            ) from e
        return OutputStream(
            chunks,
            label=f"exec:{session.exec_id[:12]}",
            container_id=self.short_id,
        )

    async def _exec_exit_code(self, session: ExecSession) -> Optional[int]:
        try:
            info = await _run_blocking(self._api.exec_inspect, session.exec_id)
        except NotFound:
            return None
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise ExecError(
                f"Could not inspect exec for {session.command}: {e}",
                container_id=self.short_id,
                operation="exec",
            ) from e
        return info.get("ExitCode")

    async def put_archive(self, archive: Iterable[bytes], dest_path: str) -> None:
        """Extract a tar stream at ``dest_path`` inside the container."""
        try:
            ok = await _run_blocking(self._container.put_archive, dest_path, archive)
        except (APIError, requests.exceptions.ConnectionError) as e:
            raise TransferError(
                f"Could not extract archive at {dest_path}: {e}",
                container_id=self.short_id,
                operation="put_archive",
            ) from e
        if not ok:
            raise TransferError(
                f"Archive extraction at {dest_path} was rejected",
                container_id=self.short_id,
                operation="put_archive",
            )


class DockerRuntime:
    """Creates containers through a Docker daemon."""

    def __init__(
        self,
        client: Optional[docker.DockerClient] = None,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        labels: Optional[dict[str, str]] = None,
    ):
        self._client = client
        self.stop_timeout = stop_timeout
        self.labels = labels if labels is not None else {"buildbox": "true"}

    @property
    def client(self) -> docker.DockerClient:
        if self._client is None:
            try:
                self._client = docker.from_env()
            except DockerException as e:
                raise CreationError(
                    f"Docker daemon is not reachable: {e}", operation="create"
                ) from e
        return self._client

    async def create(self, spec: ContainerSpec) -> ContainerHandle:
        """Create (but do not start) a container for ``spec``."""
        try:
            container = await _run_blocking(self._create_container, spec)
        except ImageNotFound as e:
            raise CreationError(
                f"Image {spec.image} is not available: {e}",
                operation="create",
            ) from e
        except (DockerException, requests.exceptions.ConnectionError) as e:
            raise CreationError(
                f"Could not create container from {spec.image}: {e}",
                operation="create",
            ) from e

        logger.info(f"Container {container.short_id} created from {spec.image}")
        return ContainerHandle(container, stop_timeout=self.stop_timeout)

    def _create_container(self, spec: ContainerSpec) -> Container:
        """Create the container (sync, runs in executor)."""
        return self.client.containers.create(
            spec.image,
            command=list(spec.command),
            environment=list(spec.environment),
            tty=spec.interactive,
            stdin_open=spec.interactive,
            labels=self.labels,
        )
