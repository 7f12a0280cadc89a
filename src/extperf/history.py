"""Bounded per-component metric history."""

import threading
import time
from collections import deque
from itertools import islice

import structlog

from extperf.errors import PersistenceError
from extperf.models import Averages, HistoryRecord, MetricPoint, PeakValue, Peaks
from extperf.storage import HistoryStore, MemoryHistoryStore

log = structlog.get_logger()

MAX_POINTS = 1000
AVERAGE_WINDOW = 100
MS_PER_DAY = 24 * 60 * 60 * 1000


class _HistoryEntry:
    """Mutable per-component state. Never handed out; see HistoryLedger.get()."""

    __slots__ = ("component_id", "points", "average", "peak")

    def __init__(self, component_id: str) -> None:
        self.component_id = component_id
        self.points: deque[MetricPoint] = deque(maxlen=MAX_POINTS)
        self.average = Averages()
        self.peak = Peaks()

    @classmethod
    def from_record(cls, record: HistoryRecord) -> "_HistoryEntry":
        entry = cls(record.component_id)
        entry.points.extend(record.points)  # deque keeps the newest MAX_POINTS
        entry.peak = record.peak
        entry.recompute_average()
        return entry

    def append(self, point: MetricPoint) -> None:
        self.points.append(point)
        self.recompute_average()

        # Strictly greater: ties keep the earliest timestamp
        cpu_peak, memory_peak = self.peak.cpu, self.peak.memory
        if point.cpu_usage > cpu_peak.value:
            cpu_peak = PeakValue(point.cpu_usage, point.timestamp_ms)
        if point.memory_usage_mb > memory_peak.value:
            memory_peak = PeakValue(point.memory_usage_mb, point.timestamp_ms)
        self.peak = Peaks(cpu=cpu_peak, memory=memory_peak)

    def recompute_average(self) -> None:
        recent = list(islice(reversed(self.points), AVERAGE_WINDOW))
        if not recent:
            self.average = Averages()
            return
        self.average = Averages(
            cpu=sum(p.cpu_usage for p in recent) / len(recent),
            memory=sum(p.memory_usage_mb for p in recent) / len(recent),
        )

    def evict_before(self, cutoff_ms: int) -> int:
        kept = [p for p in self.points if p.timestamp_ms >= cutoff_ms]
        removed = len(self.points) - len(kept)
        if removed:
            self.points = deque(kept, maxlen=MAX_POINTS)
            self.recompute_average()
        return removed

    def snapshot(self) -> HistoryRecord:
        return HistoryRecord(
            component_id=self.component_id,
            points=tuple(self.points),
            rolling_average=self.average,
            peak=self.peak,
        )


class HistoryLedger:
    """
    Rolling history, averages and peaks for every component.

    Only the active sampling round writes; readers may call get() and
    snapshot() from any thread and always receive immutable copies.
    """

    def __init__(self, store: HistoryStore | None = None) -> None:
        self._store = store if store is not None else MemoryHistoryStore()
        self._entries: dict[str, _HistoryEntry] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, component_id: str) -> bool:
        return component_id in self._entries

    def record(self, point: MetricPoint) -> None:
        """Append a point, evicting the oldest beyond the size cap."""
        with self._lock:
            entry = self._entries.get(point.component_id)
            if entry is None:
                entry = _HistoryEntry(point.component_id)
                self._entries[point.component_id] = entry
            entry.append(point)

    def get(self, component_id: str) -> HistoryRecord | None:
        """Return a snapshot of one component's history, if any."""
        with self._lock:
            entry = self._entries.get(component_id)
            return entry.snapshot() if entry is not None else None

    def snapshot(self) -> dict[str, HistoryRecord]:
        """Return snapshots of every component's history."""
        with self._lock:
            return {cid: entry.snapshot() for cid, entry in self._entries.items()}

    def component_ids(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def clear_all(self) -> None:
        """Forget every record, in memory and in the store."""
        with self._lock:
            self._entries.clear()
        try:
            self._store.clear()
        except PersistenceError as exc:
            log.warning("history_clear_failed", error=str(exc))
        log.info("history_cleared")

    def evict_older_than(self, retention_days: float, now_ms: int | None = None) -> int:
        """
        Drop points older than the retention window.

        Averages are recomputed from the surviving points; peaks are
        all-time values and are left alone. Records emptied this way stay
        in the ledger with an empty series.

        Returns:
            Number of points removed across all components.
        """
        if now_ms is None:
            now_ms = int(time.time() * 1000)
        cutoff_ms = now_ms - int(retention_days * MS_PER_DAY)

        with self._lock:
            removed = sum(entry.evict_before(cutoff_ms) for entry in self._entries.values())
        if removed:
            log.info("history_evicted", removed=removed, retention_days=retention_days)
        return removed

    def load(self) -> int:
        """
        Replace in-memory history with the store's contents.

        A failing store is logged and leaves the ledger untouched.

        Returns:
            Number of component records loaded.
        """
        try:
            records = self._store.load()
        except PersistenceError as exc:
            log.warning("history_load_failed", error=str(exc))
            return 0

        with self._lock:
            self._entries = {
                cid: _HistoryEntry.from_record(record) for cid, record in records.items()
            }
        if records:
            log.info("history_loaded", components=len(records))
        return len(records)

    def save(self) -> bool:
        """Persist the current history. Failures are logged, never raised."""
        records = self.snapshot()
        try:
            self._store.save(records)
        except PersistenceError as exc:
            log.warning("history_save_failed", error=str(exc))
            return False
        return True
