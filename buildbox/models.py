"""Internal models for the container core."""

from dataclasses import dataclass, field
from enum import Enum


@dataclass(frozen=True)
class ContainerSpec:
    """What to create: image, environment and the shell command it idles in."""
    image: str
    environment: tuple[str, ...] = ()
    interactive: bool = True
    command: tuple[str, ...] = ("/bin/sh",)

    def __post_init__(self):
        # Accept lists from callers but keep the spec immutable
        object.__setattr__(self, "environment", tuple(self.environment))
        object.__setattr__(self, "command", tuple(self.command))
        for entry in self.environment:
            if "=" not in entry:
                raise ValueError(f"Environment entry must be KEY=VALUE: {entry!r}")


@dataclass
class ExecResult:
    """Result of a command run inside the container."""
    command: list[str]
    exit_code: int | None
    output: bytes = b""
    chunks: int = field(default=0, repr=False)

    @property
    def text(self) -> str:
        return self.output.decode("utf-8", errors="replace")


class ContainerState(str, Enum):
    """Lifecycle state of the one container an invocation owns."""
    CREATED = "created"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"
