"""Shared fixtures and test doubles"""
import logging
import os
import shutil
import tempfile
import time
import uuid
from unittest.mock import Mock

import pytest
from kombu import Connection

from intake.errors import PublishFailed
from intake.publisher import job_queue
from intake.stability import StabilityDetector


class ScriptedStabilityDetector(StabilityDetector):
    """Answers ``is_open`` from a programmed sequence per path.

    Paths without a script are closed. Once a script runs out the last
    answer repeats; an exception in the script is raised instead.
    """

    def __init__(self, scripts=None, gates=None):
        super().__init__(interval=0, sleep=self._record_sleep)
        self.scripts = {path: list(seq) for path, seq in (scripts or {}).items()}
        self.gates = gates or {}
        self.probes = []
        self.sleeps = 0

    def _record_sleep(self, interval):
        self.sleeps += 1
        time.sleep(0.001)

    def is_open(self, path):
        self.probes.append(path)
        gate = self.gates.get(path)
        if gate is not None:
            # open until the test sets the event
            gate.wait(0.01)
            return not gate.is_set()
        script = self.scripts.get(path)
        if not script:
            return False
        answer = script.pop(0) if len(script) > 1 else script[0]
        if isinstance(answer, BaseException):
            raise answer
        return answer


class RecordingPublisher:
    """Keeps published descriptors in memory, optionally failing on some sources.

    With ``down=True`` the broker is unreachable and ``connect`` fails.
    """

    def __init__(self, fail_for=(), down=False):
        self.published = []
        self.fail_for = set(fail_for)
        self.down = down
        self.connected = False
        self.closed = False

    def connect(self):
        if self.down:
            raise PublishFailed("Cannot reach broker at memory://: connection refused")
        self.connected = True

    def publish(self, descriptor):
        if os.path.basename(descriptor.source) in self.fail_for:
            raise PublishFailed(f"broker down for {descriptor.source}")
        self.published.append(descriptor)

    def close(self):
        self.closed = True


@pytest.fixture
def temp_dirs():
    """Create source, staging and lock directories for testing"""
    source_dir = tempfile.mkdtemp()
    tmp_dir = tempfile.mkdtemp()
    run_dir = tempfile.mkdtemp()
    yield source_dir, tmp_dir, run_dir
    # Cleanup
    for path in (source_dir, tmp_dir, run_dir):
        shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def mock_logger():
    """Create a mock logger"""
    return Mock(spec=logging.Logger)


@pytest.fixture
def queue_name():
    """A memory-transport queue nobody else publishes to"""
    return f"stack_encode_{uuid.uuid4().hex}"


def drain_queue(name):
    """Pull every message currently on a memory-transport queue"""
    messages = []
    with Connection("memory://") as conn:
        bound = job_queue(name)(conn.default_channel)
        while True:
            message = bound.get(no_ack=True, accept=["json"])
            if message is None:
                break
            messages.append(message)
    return messages


def write_file(directory, name, content="data"):
    path = os.path.join(directory, name)
    with open(path, "w") as f:
        f.write(content)
    return path


def wait_for(predicate, timeout=5.0, interval=0.01):
    """Poll ``predicate`` until it is truthy or ``timeout`` passes"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return bool(predicate())
