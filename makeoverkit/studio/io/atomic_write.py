from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Union

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def _fsync_dir(dirpath: Path) -> None:
    """
    Best-effort directory fsync so the rename survives a crash.
    """
    try:
        fd = os.open(str(dirpath), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_bytes(path: PathLike, data: bytes) -> Path:
    """
    Replace `path` with `data` so readers see either the old file or the new one:
      - write a temp file next to the destination
      - fsync it
      - os.replace into place
      - fsync the directory (best-effort)

    The temp file is removed if anything fails before the replace.
    """
    dst = Path(path)
    dst.parent.mkdir(parents=True, exist_ok=True)

    with tempfile.NamedTemporaryFile(dir=str(dst.parent), prefix=dst.name + ".", suffix=".tmp", delete=False) as f:
        tmp_path = Path(f.name)
        try:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        except OSError:
            f.close()
            tmp_path.unlink(missing_ok=True)
            raise

    try:
        os.replace(tmp_path, dst)
    except OSError:
        logger.warning("could not move %s into place at %s", tmp_path, dst)
        tmp_path.unlink(missing_ok=True)
        raise
    _fsync_dir(dst.parent)
    return dst
