"""Lazy single-file tar archives for put_archive."""

import logging
import os
import stat
import tarfile
from pathlib import Path
from typing import Iterator, Union

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 64 * 1024


def build_archive(
    local_path: Union[str, os.PathLike],
    chunk_size: int = DEFAULT_CHUNK_SIZE,
) -> Iterator[bytes]:
    """Package one file as an uncompressed, portable tar stream.

    The only entry is named after the file's base name, so the archive is
    rooted at the file's parent directory. Ownership is zeroed and user and
    group names are dropped so the entry looks the same on every host.

    The file is stat'ed now (a missing file raises FileNotFoundError here)
    but read lazily as the returned iterator is consumed.
    """
    path = Path(local_path)
    st = path.stat()
    if not stat.S_ISREG(st.st_mode):
        raise IsADirectoryError(f"Not a regular file: {path}")

    info = tarfile.TarInfo(name=path.name)
    info.size = st.st_size
    info.mode = stat.S_IMODE(st.st_mode)
    info.mtime = int(st.st_mtime)
    info.uid = 0
    info.gid = 0
    info.uname = ""
    info.gname = ""

    return _archive_blocks(path, info, chunk_size)


def _archive_blocks(path: Path, info: tarfile.TarInfo, chunk_size: int) -> Iterator[bytes]:
    header = info.tobuf(format=tarfile.PAX_FORMAT, encoding="utf-8", errors="surrogateescape")
    yield header

    remaining = info.size
    with path.open("rb") as f:
        while remaining > 0:
            chunk = f.read(min(chunk_size, remaining))
            if not chunk:
                raise OSError(f"{path} shrank while being archived")
            remaining -= len(chunk)
            yield chunk

    # Pad the member to a whole block, then two zero blocks end the archive
    tail = -info.size % tarfile.BLOCKSIZE + 2 * tarfile.BLOCKSIZE
    # tarfile also rounds the whole archive up to a full record
    tail += -(len(header) + info.size + tail) % tarfile.RECORDSIZE
    yield b"\0" * tail

    logger.debug(f"Archived {path} ({info.size} bytes)")
