"""Tests for the ResourceSampler class."""

import os
import subprocess
import sys
import threading
import time

import pytest

from fakes import FakeProcessTable, failing_factory

from extperf.models import ResourceReading
from extperf.sampler import ResourceSampler


@pytest.fixture
def table() -> FakeProcessTable:
    table = FakeProcessTable()
    table.add(10, cpu=12.5, rss=50 * 1024 * 1024)
    table.add(11, cpu=3.0, rss=1024 * 1024)
    table.add(12, cpu=0.0, rss=0)
    return table


class TestSample:
    """Normal sampling."""

    def test_readings_for_each_pid(self, table):
        """Test every live pid gets a reading."""
        sampler = ResourceSampler(process_factory=table.factory)
        try:
            readings = sampler.sample({10, 11, 12})
        finally:
            sampler.close()

        assert set(readings) == {10, 11, 12}
        assert readings[10] == ResourceReading(pid=10, cpu_percent=12.5, memory_bytes=50 * 1024 * 1024)
        assert readings[10].memory_mb == pytest.approx(50.0)

    def test_empty_input(self, table):
        """Test no pids means no readings and no work."""
        sampler = ResourceSampler(process_factory=table.factory)
        try:
            assert sampler.sample([]) == {}
        finally:
            sampler.close()
        assert table.created == []

    def test_exited_pid_is_absent(self, table):
        """Test a pid that vanished before sampling is silently left out."""
        table.entries[11]["gone"] = True
        sampler = ResourceSampler(process_factory=table.factory)
        try:
            readings = sampler.sample({10, 11, 99})
        finally:
            sampler.close()

        assert set(readings) == {10}

    def test_handles_reused_between_rounds(self, table):
        """Test a pid's Process handle is created once across rounds."""
        sampler = ResourceSampler(process_factory=table.factory)
        try:
            sampler.sample({10})
            sampler.sample({10})
        finally:
            sampler.close()

        assert table.created.count(10) == 1

    def test_stale_handles_dropped(self, table):
        """Test handles for pids no longer requested are forgotten."""
        sampler = ResourceSampler(process_factory=table.factory)
        try:
            sampler.sample({10, 11})
            sampler.sample({10})
            sampler.sample({10, 11})
        finally:
            sampler.close()

        assert table.created.count(11) == 2


    def test_new_pid_primed_before_reading(self, table):
        """Test a first-seen pid gets a baseline call before the reading."""
        sampler = ResourceSampler(process_factory=table.factory, prime_interval=0.0)
        try:
            sampler.sample({10})
            assert table.entries[10]["cpu_calls"] == 2

            sampler.sample({10})
            assert table.entries[10]["cpu_calls"] == 3
        finally:
            sampler.close()


class TestSampleFailures:
    """Batch failures degrade to an empty mapping."""

    def test_batch_failure_returns_empty(self):
        """Test a failing primitive yields no readings instead of raising."""
        sampler = ResourceSampler(process_factory=failing_factory(OSError("boom")))
        try:
            assert sampler.sample({1, 2, 3}) == {}
        finally:
            sampler.close()

    def test_timeout_returns_empty(self, table):
        """Test a hung sample abandons the whole batch."""
        release = threading.Event()
        table.entries[11]["block"] = release
        sampler = ResourceSampler(timeout=0.2, process_factory=table.factory)
        try:
            assert sampler.sample({10, 11}) == {}
        finally:
            release.set()
            sampler.close()


class TestSampleRealProcesses:
    """Sampling real processes."""

    def test_samples_current_process(self):
        """Test the current process reports non-zero memory."""
        sampler = ResourceSampler()
        try:
            readings = sampler.sample({os.getpid()})
        finally:
            sampler.close()

        reading = readings[os.getpid()]
        assert reading.memory_bytes > 0
        assert reading.cpu_percent >= 0.0

    def test_busy_child_reports_cpu_on_first_sample(self, workers):
        """Test a single sample of a spinning child is not 0%."""
        (child,) = workers.spawn(1, busy=True)
        time.sleep(0.3)
        sampler = ResourceSampler(prime_interval=0.2)
        try:
            readings = sampler.sample({child.pid})
        finally:
            sampler.close()

        assert readings[child.pid].cpu_percent > 0.0

    def test_exited_child_is_absent(self):
        """Test a child that has exited is not reported."""
        child = subprocess.Popen([sys.executable, "-c", "pass"])
        child.wait(timeout=10)
        sampler = ResourceSampler()
        try:
            readings = sampler.sample({child.pid, os.getpid()})
        finally:
            sampler.close()

        assert child.pid not in readings
        assert os.getpid() in readings
