"""Single-instance lease for intake sessions.

The lock is a marker file: if it exists, some intake run owns the source
tree. Nothing is ever read from it. A stale marker left behind by a killed
process is not cleared automatically; callers see ``AlreadyLocked`` and are
expected to try again later.
"""
from __future__ import annotations

import contextlib
import os
from dataclasses import dataclass
from typing import Iterator

from .errors import AlreadyLocked

DEFAULT_LOCK_FILE = "/var/run/hardcode.lock"


@dataclass(frozen=True)
class LockHandle:
    path: str


class LockGuard:
    def __init__(self, path: str = DEFAULT_LOCK_FILE) -> None:
        self.path = path

    def acquire(self) -> LockHandle:
        """Create the marker, or raise ``AlreadyLocked`` if it is present.

        ``O_EXCL`` makes the existence check and the creation one step, so two
        invocations racing each other cannot both succeed.
        """
        try:
            fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
        except FileExistsError:
            raise AlreadyLocked(self.path) from None
        os.close(fd)
        return LockHandle(self.path)

    def release(self, handle: LockHandle | None = None) -> None:
        path = handle.path if handle is not None else self.path
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def is_held(self) -> bool:
        return os.path.exists(self.path)

    @contextlib.contextmanager
    def held(self) -> Iterator[LockHandle]:
        handle = self.acquire()
        try:
            yield handle
        finally:
            self.release(handle)
