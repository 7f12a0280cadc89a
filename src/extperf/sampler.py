"""CPU and memory sampling for extperf."""

from collections.abc import Iterable
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait

import psutil
import structlog

from extperf.errors import SamplingError
from extperf.models import ResourceReading

log = structlog.get_logger()


class ResourceSampler:
    """
    Sample CPU percentage and resident memory for a batch of pids.

    psutil computes cpu_percent relative to the previous call on the same
    Process object, so handles are cached between rounds. A pid seen for
    the first time is primed and measured over a short window instead,
    so even a one-shot sample reports real CPU usage.

    Per-pid sampling runs on a small thread pool. A pid that exits before it
    is sampled is simply missing from the result; a failure or timeout of
    the batch as a whole yields an empty result.
    """

    def __init__(
        self,
        timeout: float = 5.0,
        max_workers: int = 4,
        process_factory=psutil.Process,
        prime_interval: float = 0.1,
    ) -> None:
        """
        Initialize the ResourceSampler.

        Args:
            timeout: Seconds the whole batch may take before it is abandoned.
            max_workers: Size of the sampling thread pool.
            process_factory: Callable building a psutil.Process from a pid.
            prime_interval: Measurement window for newly seen pids (seconds).
        """
        self._timeout = timeout
        self._prime_interval = prime_interval
        self._process_factory = process_factory
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="ResourceSampler"
        )
        self._handles: dict[int, psutil.Process] = {}

    @property
    def timeout(self) -> float:
        """Seconds a whole batch may take."""
        return self._timeout

    def sample(self, pids: Iterable[int]) -> dict[int, ResourceReading]:
        """Return a reading for every pid still alive, keyed by pid."""
        wanted = {pid for pid in pids if pid > 0}
        if not wanted:
            return {}

        try:
            return self._sample_batch(wanted)
        except SamplingError as exc:
            log.warning("sample_failed", pids=len(wanted), error=str(exc))
        except Exception as exc:
            log.warning("sample_failed", pids=len(wanted), error=repr(exc))
        return {}

    def close(self) -> None:
        """Release the thread pool. Pending samples are cancelled."""
        self._executor.shutdown(wait=False, cancel_futures=True)
        self._handles.clear()

    def _sample_batch(self, pids: set[int]) -> dict[int, ResourceReading]:
        deadline = time.monotonic() + self._timeout

        # Forget handles for processes no longer in the tree
        for stale in set(self._handles) - pids:
            del self._handles[stale]

        handles: dict[int, psutil.Process] = {}
        fresh: list[psutil.Process] = []
        for pid in pids:
            previous = self._handles.get(pid)
            proc = self._handle_for(pid)
            if proc is None:
                continue
            handles[pid] = proc
            if proc is not previous:
                fresh.append(proc)

        if not handles:
            return {}

        if fresh:
            self._wait_all(
                [self._executor.submit(self._prime, proc) for proc in fresh], deadline
            )
            time.sleep(min(self._prime_interval, max(0.0, deadline - time.monotonic())))

        futures: dict[Future, int] = {
            self._executor.submit(self._read, proc): pid for pid, proc in handles.items()
        }
        done = self._wait_all(list(futures), deadline)

        readings: dict[int, ResourceReading] = {}
        for future in done:
            pid = futures[future]
            reading = future.result()
            if reading is None:
                self._handles.pop(pid, None)
                continue
            readings[pid] = reading
        return readings

    def _wait_all(self, futures: list[Future], deadline: float) -> set[Future]:
        done, not_done = wait(futures, timeout=max(0.0, deadline - time.monotonic()))
        if not_done:
            for future in not_done:
                future.cancel()
            raise SamplingError(
                f"sampling {len(not_done)} of {len(futures)} processes "
                f"exceeded {self._timeout:.1f}s"
            )
        return done

    def _handle_for(self, pid: int) -> psutil.Process | None:
        """Cached handle for pid, or a new one if it is unknown or was reused."""
        proc = self._handles.get(pid)
        # is_running() also detects pid reuse via create_time
        if proc is not None and proc.is_running():
            return proc
        try:
            proc = self._process_factory(pid)
        except psutil.NoSuchProcess:
            self._handles.pop(pid, None)
            return None
        self._handles[pid] = proc
        return proc

    @staticmethod
    def _prime(proc: psutil.Process) -> None:
        # The first cpu_percent call on a handle only records a baseline
        try:
            proc.cpu_percent(interval=None)
        except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
            pass

    @staticmethod
    def _read(proc: psutil.Process) -> ResourceReading | None:
        try:
            with proc.oneshot():
                cpu = proc.cpu_percent(interval=None)
                rss = proc.memory_info().rss
        except (psutil.NoSuchProcess, psutil.ZombieProcess, psutil.AccessDenied):
            return None
        return ResourceReading(pid=proc.pid, cpu_percent=cpu or 0.0, memory_bytes=rss or 0)
