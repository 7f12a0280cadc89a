"""Shared test fixtures."""

import subprocess
import sys
from pathlib import Path

import pytest
import structlog

from extperf.models import Component

WORKER_SOURCE = "import sys, time\ntime.sleep(float(sys.argv[1]))\n"
BUSY_SOURCE = "import sys, time\nend = time.time() + float(sys.argv[1])\nwhile time.time() < end:\n    pass\n"


class WorkerPool:
    """Spawns child processes whose command lines sit under a fake extension."""

    def __init__(self, root: Path) -> None:
        self.install_path = root / "acme.worker"
        self.install_path.mkdir(parents=True, exist_ok=True)
        self.script = self.install_path / "worker.py"
        self.script.write_text(WORKER_SOURCE)
        self.busy_script = self.install_path / "busy.py"
        self.busy_script.write_text(BUSY_SOURCE)
        self.processes: list[subprocess.Popen] = []

    @property
    def component(self) -> Component:
        return Component(
            id="acme.worker",
            display_name="Worker",
            install_path=str(self.install_path),
            is_active=True,
        )

    def spawn(self, count: int, duration: float = 60.0, busy: bool = False) -> list[subprocess.Popen]:
        """Start count children that sleep, or spin when busy is set, for duration seconds."""
        script = self.busy_script if busy else self.script
        spawned = [
            subprocess.Popen([sys.executable, str(script), str(duration)])
            for _ in range(count)
        ]
        self.processes.extend(spawned)
        return spawned

    def alive(self) -> list[subprocess.Popen]:
        return [p for p in self.processes if p.poll() is None]

    def terminate_all(self) -> None:
        for p in self.processes:
            if p.poll() is None:
                p.terminate()
        for p in self.processes:
            try:
                p.wait(timeout=2.0)
            except subprocess.TimeoutExpired:
                p.kill()


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def workers(tmp_path):
    pool = WorkerPool(tmp_path / "extensions")
    try:
        yield pool
    finally:
        pool.terminate_all()
