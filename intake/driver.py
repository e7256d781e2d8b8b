"""Intake of a single candidate file: wait, move, publish."""
from __future__ import annotations

import logging
from typing import Optional

from .errors import PublishFailed
from .publisher import JobDescriptor, JobPublisher
from .relocator import relocate
from .stability import StabilityDetector


class IntakeDriver:
    """Runs the intake steps for one file, in order.

    The move always happens before the publish, so every published ``source``
    already exists on disk when a worker picks the job up. If the publish
    fails the file stays staged without a job; that case is logged loudly
    because nothing will pick the file up again on its own.
    """

    def __init__(
        self,
        detector: StabilityDetector,
        publisher: JobPublisher,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.detector = detector
        self.publisher = publisher
        self.logger = logger or logging.getLogger("hardcode")

    def intake(self, candidate_path: str, tmp_dir: str, dest_dir: str) -> JobDescriptor:
        self.detector.wait_until_stable(candidate_path)
        staged = relocate(candidate_path, tmp_dir, logger=self.logger)
        descriptor = JobDescriptor(source=staged, dest_dir=dest_dir)
        try:
            self.publisher.publish(descriptor)
        except PublishFailed:
            self.logger.error(
                "File staged at %s but no job was published; enqueue it manually", staged
            )
            raise
        self.logger.info("Enqueued %s -> %s", staged, dest_dir)
        return descriptor
