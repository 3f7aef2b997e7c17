"""The one-shot build: create a container, run the scripts, tear it down."""

import logging
import os
import signal
from pathlib import Path
from typing import Mapping, Optional, Sequence

from buildbox.config import Settings
from buildbox.errors import BuildboxError
from buildbox.executor import ExecRunner
from buildbox.lifecycle import DEFAULT_SIGNALS, InterruptGuard, LifecycleController
from buildbox.models import ContainerSpec, ExecResult
from buildbox.runtime import DockerRuntime
from buildbox.streams import DataListener
from buildbox.transfer import copy_file

logger = logging.getLogger(__name__)

# Host variables passed through to the build, in this order
PASSTHROUGH_VARIABLES = [
    "GIT_AUTHOR_EMAIL",
    "GIT_AUTHOR_NAME",
    "GITHUB_USERNAME",
    "GITHUB_TOKEN",
]


def build_environment(
    name: str,
    description: str,
    version: str = "",
    environ: Optional[Mapping[str, str]] = None,
) -> list[str]:
    """Assemble the KEY=VALUE sequence injected into the build container."""
    env = os.environ if environ is None else environ
    environment = [
        f"REPO_NAME={name}",
        f"REPO_DESCRIPTION={description}",
    ]
    environment += [f"{key}={env.get(key, '')}" for key in PASSTHROUGH_VARIABLES]
    environment.append(f"GITWIT_VERSION={version}")
    return environment


def write_env_file(path: str, environment: Sequence[str]) -> Path:
    """Write the environment as a docker --env-file for manual debugging."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text("\n".join(environment))
    logger.info(f"Wrote {target}.")
    return target


def debug_instructions(settings: Settings) -> list[str]:
    helper = os.path.basename(settings.helper_script)
    return [
        f"docker run --rm -it --env-file {settings.env_file} --entrypoint bash {settings.image}",
        f"source {settings.container_home.rstrip('/')}/{helper}",
    ]


async def run_build(
    settings: Settings,
    environment: Sequence[str],
    runtime: Optional[DockerRuntime] = None,
    build_script: Optional[str] = None,
    helper_script: Optional[str] = None,
    log_sink: Optional[DataListener] = None,
    output_sink: Optional[DataListener] = None,
    dry_run: bool = False,
    signals: Sequence[signal.Signals] = DEFAULT_SIGNALS,
) -> list[ExecResult]:
    """Run the build scripts in a fresh container and remove it afterwards.

    The container is stopped and removed on every path out of this function,
    including failures and interrupts. Errors are logged with the failing
    operation and re-raised. The interrupt guard is in place from before the
    create call, so a signal that arrives while the container is being
    created still ends with it removed.
    """
    runtime = runtime or DockerRuntime(stop_timeout=settings.stop_timeout)
    build_script = build_script or settings.build_script
    helper_script = helper_script or settings.helper_script
    home = settings.container_home.rstrip("/") or "/"

    spec = ContainerSpec(image=settings.image, environment=tuple(environment))
    guard = InterruptGuard(signals=signals)
    guard.install()
    try:
        handle = await runtime.create(spec)
    except BaseException:
        guard.uninstall()
        raise

    results: list[ExecResult] = []
    async with LifecycleController(handle, log_sink=log_sink, guard=guard) as controller:
        if dry_run:
            logger.info("Dry run, not starting container. To debug, run:")
            for line in debug_instructions(settings):
                logger.info(line)
            return results

        runner = ExecRunner(output_sink=output_sink, timeout=settings.exec_timeout)
        try:
            await controller.start()
            results.append(await runner.run(handle, ["mkdir", home]))
            await copy_file(handle, build_script, home)
            await copy_file(handle, helper_script, home)
            helper_in_container = f"{home.rstrip('/')}/{os.path.basename(helper_script)}"
            results.append(await runner.run(handle, ["bash", helper_in_container]))

            await controller.stop()
            await controller.remove()
        except BuildboxError as e:
            logger.error(f"Build failed: {e}")
            raise

    return results
