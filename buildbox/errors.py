"""Errors raised by the container core.

Every error carries the container identifier (when one exists) and the name
of the operation that failed, so a report says which stage broke.
"""

from typing import Optional


class BuildboxError(Exception):
    """Base class for all buildbox failures."""

    def __init__(
        self,
        message: str,
        *,
        container_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.message = message
        self.container_id = container_id
        self.operation = operation
        super().__init__(str(self))

    def __str__(self) -> str:
        context = []
        if self.operation:
            context.append(f"operation={self.operation}")
        if self.container_id:
            context.append(f"container={self.container_id}")
        if not context:
            return self.message
        return f"{self.message} ({', '.join(context)})"


class CreationError(BuildboxError):
    """The image or the container runtime is unavailable."""


class StartError(BuildboxError):
    """The container did not transition to running."""


class ExecError(BuildboxError):
    """A command could not be started or its container went away."""


class TransferError(BuildboxError):
    """A local file is missing or the destination rejected the archive."""


class StreamError(BuildboxError):
    """An output stream failed before signalling its end."""


class StreamTimeout(StreamError):
    """An output stream did not end within the allowed deadline."""
