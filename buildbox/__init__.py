# buildbox - run a generated build script in a throwaway container
"""
buildbox - Ephemeral containers for one-shot build scripts.

Create a container, stream its logs, run commands and copy files into it,
and always tear it down, even on Ctrl-C.
"""

from buildbox.errors import (
    BuildboxError,
    CreationError,
    ExecError,
    StartError,
    StreamError,
    StreamTimeout,
    TransferError,
)
from buildbox.executor import ExecRunner
from buildbox.lifecycle import LifecycleController
from buildbox.models import ContainerSpec, ContainerState, ExecResult
from buildbox.runtime import ContainerHandle, DockerRuntime
from buildbox.transfer import copy_file

__all__ = [
    "DockerRuntime",
    "ContainerHandle",
    "LifecycleController",
    "ExecRunner",
    "copy_file",
    "ContainerSpec",
    "ContainerState",
    "ExecResult",
    "BuildboxError",
    "CreationError",
    "StartError",
    "ExecError",
    "TransferError",
    "StreamError",
    "StreamTimeout",
]

__version__ = "0.1.0"
