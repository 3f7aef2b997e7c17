"""Settings read from the process environment."""

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from buildbox.runtime import DEFAULT_STOP_TIMEOUT


def _optional_float(value: Optional[str]) -> Optional[float]:
    if value is None or value.strip() == "":
        return None
    return float(value)


@dataclass
class Settings:
    """Where scripts live, which image to use and how long to wait."""
    image: str = "node:latest"
    container_home: str = "/app/"
    build_dir: str = "./build/"
    helper_script: str = "./create_github_repo.sh"
    exec_timeout: Optional[float] = None
    stop_timeout: int = DEFAULT_STOP_TIMEOUT
    version: str = ""

    @property
    def build_script(self) -> str:
        return os.path.join(self.build_dir, "build.sh")

    @property
    def env_file(self) -> str:
        return os.path.join(self.build_dir, "build.env")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        env = os.environ if environ is None else environ
        return cls(
            image=env.get("BUILDBOX_IMAGE", "node:latest"),
            container_home=env.get("BUILDBOX_HOME", "/app/"),
            build_dir=env.get("BUILDBOX_BUILD_DIR", "./build/"),
            helper_script=env.get("BUILDBOX_HELPER_SCRIPT", "./create_github_repo.sh"),
            exec_timeout=_optional_float(env.get("BUILDBOX_EXEC_TIMEOUT")),
            stop_timeout=int(env.get("BUILDBOX_STOP_TIMEOUT", str(DEFAULT_STOP_TIMEOUT))),
            version=env.get("GITWIT_VERSION", ""),
        )
