"""Write-completion detection.

A file is stable once no process holds it open. Uploads and copies into the
source directory keep a handle open until they finish, so polling for open
handles tells us when the file is safe to move.
"""
from __future__ import annotations

import os
import subprocess
import threading
from typing import Callable, Optional

from .errors import IntakeCancelled, StabilityProbeFailed

DEFAULT_POLL_INTERVAL = 1.0


class StabilityDetector:
    """Blocks until ``is_open`` reports the file closed.

    There is no timeout: a file that is written forever is never moved. The
    only way out of a wait is ``cancel()``, which the watch mode calls on
    shutdown. Subclasses implement ``is_open``.
    """

    def __init__(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.interval = interval
        self._cancelled = threading.Event()
        self._sleep = sleep or self._cancelled.wait

    def is_open(self, path: str) -> bool:
        raise NotImplementedError

    def cancel(self) -> None:
        self._cancelled.set()

    def wait_until_stable(self, path: str) -> None:
        while True:
            if self._cancelled.is_set():
                raise IntakeCancelled(f"Stopped waiting for {path}")
            if not self.is_open(path):
                return
            self._sleep(self.interval)


class LsofStabilityDetector(StabilityDetector):
    def __init__(
        self,
        interval: float = DEFAULT_POLL_INTERVAL,
        sleep: Optional[Callable[[float], object]] = None,
        lsof: str = "lsof",
    ) -> None:
        super().__init__(interval=interval, sleep=sleep)
        self.lsof = lsof

    def is_open(self, path: str) -> bool:
        # lsof exits 1 both for "not open" and "no such file", so check first
        if not os.path.isfile(path):
            raise StabilityProbeFailed(f"{path} no longer exists")
        try:
            result = subprocess.run(
                [self.lsof, "--", path],
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise StabilityProbeFailed(f"Could not run {self.lsof} for {path}: {exc}") from exc
        return result.returncode == 0 and bool(result.stdout.strip())
