"""Deferred re-runs.

When a scan finds the lock taken it does not wait around; it asks the system
scheduler to run the same command again later and exits.
"""
from __future__ import annotations

import logging
import math
import shlex
import subprocess
from datetime import timedelta
from typing import Optional, Sequence

from .errors import SchedulingFailed

RETRY_DELAY = timedelta(minutes=2)


class RetryScheduler:
    def schedule_retry(self, after: timedelta, payload: Sequence[str]) -> None:
        raise NotImplementedError


class AtScheduler(RetryScheduler):
    """Hands the command line to ``at``, rounded up to whole minutes."""

    def __init__(self, at: str = "at", logger: Optional[logging.Logger] = None) -> None:
        self.at = at
        self.logger = logger or logging.getLogger("hardcode")

    def schedule_retry(self, after: timedelta, payload: Sequence[str]) -> None:
        minutes = max(1, math.ceil(after.total_seconds() / 60))
        command = shlex.join(payload)
        try:
            result = subprocess.run(
                [self.at, "now", "+", str(minutes), "minutes"],
                input=command + "\n",
                check=False,
                text=True,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
            )
        except OSError as exc:
            raise SchedulingFailed(f"Could not run {self.at}: {exc}") from exc
        if result.returncode != 0:
            raise SchedulingFailed(
                f"{self.at} exited with {result.returncode}: {result.stderr.strip()}"
            )
        self.logger.info("Scheduled %r to run in %d minutes", command, minutes)
