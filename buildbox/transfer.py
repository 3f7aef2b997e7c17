"""Copy local files into a running container."""

import logging
import os
from pathlib import Path
from typing import Union

from buildbox.archive import build_archive
from buildbox.errors import TransferError
from buildbox.runtime import ContainerHandle

logger = logging.getLogger(__name__)


async def copy_file(
    handle: ContainerHandle,
    local_path: Union[str, os.PathLike],
    dest_path: str,
) -> None:
    """Stream ``local_path`` into the directory ``dest_path`` in the container.

    The file lands as ``dest_path/<basename>``. A missing local file fails
    before anything is sent to the container.
    """
    path = Path(local_path)
    try:
        archive = build_archive(path)
    except OSError as e:
        raise TransferError(
            f"Cannot read {path}: {e}",
            container_id=handle.short_id,
            operation="copy",
        ) from e

    try:
        await handle.put_archive(archive, dest_path)
    except OSError as e:
        # Raised while the archive is read lazily during the upload
        raise TransferError(
            f"Failed reading {path} during upload: {e}",
            container_id=handle.short_id,
            operation="copy",
        ) from e
    logger.info(f"Copied {path} to {handle.short_id}:{dest_path}")
