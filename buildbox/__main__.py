"""Run a build script in an ephemeral container.

Usage:
    python -m buildbox --name my-repo --description "A thing" [--dry-run]

Scripts default to ./build/build.sh and ./create_github_repo.sh; see
buildbox.config for the environment variables that change them.
"""

import argparse
import asyncio
import logging
import sys

from buildbox.config import Settings
from buildbox.errors import BuildboxError
from buildbox.workflow import build_environment, run_build, write_env_file

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Run a build script in an ephemeral container")
    parser.add_argument("--name", required=True, help="Repository name")
    parser.add_argument("--description", required=True, help="Project description")
    parser.add_argument("--build-script", default=None, help="Local build script to copy in")
    parser.add_argument("--helper-script", default=None, help="Local helper script to copy in and run")
    parser.add_argument("--image", default=None, help="Image to build in")
    parser.add_argument(
        "--exec-timeout",
        type=float,
        default=None,
        help="Seconds to wait for each command (default: no limit)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Create the container but print debug instructions instead of building",
    )
    args = parser.parse_args(argv)

    settings = Settings.from_env()
    if args.image:
        settings.image = args.image
    if args.exec_timeout is not None:
        settings.exec_timeout = args.exec_timeout

    environment = build_environment(args.name, args.description, version=settings.version)
    write_env_file(settings.env_file, environment)

    try:
        asyncio.run(
            run_build(
                settings,
                environment,
                build_script=args.build_script,
                helper_script=args.helper_script,
                dry_run=args.dry_run,
            )
        )
    except BuildboxError as e:
        logger.error(str(e))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
