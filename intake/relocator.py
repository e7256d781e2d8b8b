"""Move stable files from the source directory into staging.

This module exposes ``relocate`` which moves a file into the temporary
directory under its own basename and returns the new absolute path.

- Creates the temporary directory if needed.
- Never overwrites: if a file with the same name is already staged, that file
  wins and the move fails with ``RelocationFailed``. The staged name is
  created with ``os.link``, which fails if the name exists, so a racing
  writer cannot be clobbered.
- Cross-device moves copy to a unique hidden ``.partial`` file first, so a
  crash never leaves a half-copied file under the final name.
"""
from __future__ import annotations

import errno
import logging
import os
import shutil
import tempfile
from typing import Optional

from .errors import RelocationFailed


def relocate(path: str, tmp_dir: str, logger: Optional[logging.Logger] = None) -> str:
    """Move ``path`` into ``tmp_dir`` and return the staged path."""
    tmp_dir = os.path.abspath(tmp_dir)
    dest = os.path.join(tmp_dir, os.path.basename(path))

    try:
        os.makedirs(tmp_dir, exist_ok=True)
    except OSError as exc:
        raise RelocationFailed(f"Cannot create {tmp_dir}: {exc}") from exc

    try:
        os.link(path, dest)
    except FileExistsError:
        raise RelocationFailed(f"{dest} already exists, not overwriting") from None
    except OSError as exc:
        if exc.errno != errno.EXDEV:
            raise RelocationFailed(f"Cannot move {path} to {tmp_dir}: {exc}") from exc
        _copy_across_devices(path, dest)

    _remove_source(path, dest)

    if logger:
        logger.info("mv %s %s", path, dest)

    return dest


def _copy_across_devices(path: str, dest: str) -> None:
    fd, partial = tempfile.mkstemp(dir=os.path.dirname(dest), prefix=".", suffix=".partial")
    os.close(fd)
    try:
        shutil.copy2(path, partial)
        os.link(partial, dest)
    except FileExistsError:
        raise RelocationFailed(f"{dest} already exists, not overwriting") from None
    except OSError as exc:
        raise RelocationFailed(f"Cannot copy {path} to {dest}: {exc}") from exc
    finally:
        os.remove(partial)


def _remove_source(path: str, dest: str) -> None:
    # the file must end up under exactly one name
    try:
        os.unlink(path)
    except OSError as exc:
        os.remove(dest)
        raise RelocationFailed(f"Staged {path} but could not remove the original: {exc}") from exc
