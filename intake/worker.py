"""Queue consumer behind the ``work`` command.

Transcoding itself is done by an external program. The worker pulls one job
at a time from the queue, runs the configured command for it and acks the
message only after the command succeeds. Failed and malformed jobs are
rejected without requeue so they cannot loop; route them to a dead-letter
exchange on the broker if they need keeping.
"""
from __future__ import annotations

import logging
import os
import shlex
import subprocess
from typing import Optional

from kombu import Connection
from kombu.mixins import ConsumerMixin

from .publisher import DEFAULT_QUEUE, JobDescriptor, job_queue

DEFAULT_COMMAND = "ffmpeg -nostdin -y -i {source} {dest}"
DEFAULT_OUTPUT_EXT = ".mp4"


def build_command(template: str, descriptor: JobDescriptor, output_ext: str = DEFAULT_OUTPUT_EXT) -> list[str]:
    """Expand ``template`` for one job and split it into argv.

    Placeholders: ``{source}``, ``{dest_dir}``, ``{stem}`` and ``{dest}``
    (``dest_dir/stem + output_ext``). Values are substituted after splitting
    so paths with spaces stay one argument.
    """
    stem = os.path.splitext(os.path.basename(descriptor.source))[0]
    values = {
        "source": descriptor.source,
        "dest_dir": descriptor.dest_dir,
        "stem": stem,
        "dest": os.path.join(descriptor.dest_dir, stem + output_ext),
    }
    return [part.format(**values) for part in shlex.split(template)]


class TranscodeWorker(ConsumerMixin):
    def __init__(
        self,
        connection: Connection,
        command: str = DEFAULT_COMMAND,
        queue_name: str = DEFAULT_QUEUE,
        output_ext: str = DEFAULT_OUTPUT_EXT,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.connection = connection
        self.command = command
        self.queue = job_queue(queue_name)
        self.output_ext = output_ext
        self.logger = logger or logging.getLogger("hardcode")

    def get_consumers(self, Consumer, channel):
        return [
            Consumer(
                queues=[self.queue],
                callbacks=[self.on_message],
                accept=["json"],
                prefetch_count=1,
            )
        ]

    def on_message(self, body, message) -> None:
        try:
            descriptor = JobDescriptor.from_payload(body)
        except ValueError as exc:
            self.logger.error("Rejecting malformed job %r: %s", body, exc)
            message.reject(requeue=False)
            return

        if self.transcode(descriptor):
            message.ack()
        else:
            message.reject(requeue=False)

    def transcode(self, descriptor: JobDescriptor) -> bool:
        argv = build_command(self.command, descriptor, self.output_ext)
        self.logger.info("[CMD] %s", shlex.join(argv))
        try:
            os.makedirs(descriptor.dest_dir, exist_ok=True)
            result = subprocess.run(argv, check=False, stdout=subprocess.PIPE, stderr=subprocess.PIPE, text=True)
        except OSError as exc:
            self.logger.error("Transcode of %s could not start: %s", descriptor.source, exc)
            return False
        if result.returncode != 0:
            self.logger.error(
                "Transcode of %s failed with exit code %d: %s",
                descriptor.source, result.returncode, result.stderr.strip()[-2000:],
            )
            return False
        self.logger.info("Transcoded %s into %s", descriptor.source, descriptor.dest_dir)
        return True
