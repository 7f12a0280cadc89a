"""Periodic performance monitoring engine for extperf."""

import os
import threading
import time
from collections.abc import Callable, Sequence
from enum import Enum
from queue import Queue

import structlog

from extperf.alerts import evaluate, format_alert
from extperf.attribution import AttributionEngine
from extperf.config import MonitorConfig
from extperf.estimate import estimate_cpu_usage, estimate_memory_usage
from extperf.history import HistoryLedger
from extperf.models import (
    AlertEvent,
    Component,
    ComponentMetrics,
    ComponentUsage,
    HistoryRecord,
    PerformanceSummary,
    RoundResult,
)
from extperf.sampler import ResourceSampler

log = structlog.get_logger()

ComponentSource = Callable[[], Sequence[Component]]
AlertListener = Callable[[AlertEvent], None]


def now_ms() -> int:
    """Current wall-clock time in milliseconds."""
    return int(time.time() * 1000)


class MonitorState(Enum):
    """Scheduler states."""

    STOPPED = "stopped"
    RUNNING = "running"


class PerformanceMonitor:
    """
    Runs attribution, history and alerting on a fixed interval.

    Rounds execute on a daemon thread so OS calls never block the caller.
    A non-blocking lock guarantees at most one round at a time: a tick or a
    manual collect_now() that finds a round in flight is skipped. stop()
    lets an in-flight round finish before returning.
    """

    def __init__(
        self,
        component_source: ComponentSource,
        root_pid: int | None = None,
        config: MonitorConfig | None = None,
        engine: AttributionEngine | None = None,
        ledger: HistoryLedger | None = None,
        update_queue: "Queue[RoundResult] | None" = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        """
        Initialize the PerformanceMonitor.

        Args:
            component_source: Returns the host's current component list.
            root_pid: Ancestor of the processes to attribute. Defaults to this process.
            config: Monitor configuration.
            engine: Attribution engine, built from config when omitted.
            ledger: History ledger. Its stored history is loaded here.
            update_queue: Optional queue receiving every RoundResult.
            clock: Millisecond wall clock.
        """
        self._config = config or MonitorConfig()
        self._component_source = component_source
        self._root_pid = root_pid if root_pid is not None else os.getpid()
        self._engine = engine or AttributionEngine(
            sampler=ResourceSampler(timeout=self._config.sample_timeout)
        )
        self._ledger = ledger if ledger is not None else HistoryLedger()
        self._queue = update_queue
        self._clock = clock

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._state_lock = threading.Lock()
        self._round_lock = threading.Lock()
        self._alert_listeners: list[AlertListener] = []

        self._current_metrics: list[ComponentMetrics] = []
        self._usage: dict[str, ComponentUsage] = {}
        self._last_cleanup_ms = self._clock()
        self.rounds_completed = 0
        self.rounds_skipped = 0

        self._ledger.load()

    @property
    def config(self) -> MonitorConfig:
        """The active configuration."""
        return self._config

    @property
    def ledger(self) -> HistoryLedger:
        """The history ledger."""
        return self._ledger

    @property
    def engine(self) -> AttributionEngine:
        """The attribution engine."""
        return self._engine

    @property
    def update_queue(self) -> "Queue[RoundResult] | None":
        """Queue receiving every RoundResult, if any."""
        return self._queue

    @update_queue.setter
    def update_queue(self, queue: "Queue[RoundResult] | None") -> None:
        """Set the queue that receives every RoundResult."""
        self._queue = queue

    @property
    def root_pid(self) -> int:
        """Ancestor of the attributed processes."""
        return self._root_pid

    @property
    def state(self) -> MonitorState:
        """RUNNING while the polling thread is alive and no stop was requested."""
        if (
            self._thread is not None
            and self._thread.is_alive()
            and not self._stop_event.is_set()
        ):
            return MonitorState.RUNNING
        return MonitorState.STOPPED

    @property
    def is_monitoring(self) -> bool:
        """True while the monitor is RUNNING."""
        return self.state is MonitorState.RUNNING

    def add_alert_listener(self, listener: AlertListener) -> None:
        """Register a callback invoked for every alert raised by a round."""
        self._alert_listeners.append(listener)

    def start(self) -> None:
        """Start monitoring: one round immediately, then one per interval."""
        with self._state_lock:
            if self.is_monitoring:
                return

            previous = self._thread
            if previous is not None and previous is not threading.current_thread():
                # A round from before the last stop() may still be draining
                previous.join()

            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._poll_loop,
                daemon=True,
                name="PerformanceMonitor",
            )
            self._thread.start()
        log.info(
            "monitoring_started",
            interval_ms=self._config.monitoring_interval_ms,
            root_pid=self._root_pid,
        )

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop monitoring.

        The thread reference is kept until the thread has exited, so a
        later start() waits for a round still in flight.

        Args:
            timeout: How long to wait for an in-flight round to finish (seconds).
        """
        with self._state_lock:
            thread = self._thread
            if thread is None:
                return
            self._stop_event.set()
            if thread is not threading.current_thread():
                thread.join(timeout=timeout)
            if thread.is_alive():
                log.warning("monitor_stop_timed_out", timeout=timeout)
            else:
                self._thread = None
        log.info("monitoring_stopped")

    def collect_now(self) -> RoundResult | None:
        """Run one round on the calling thread. Returns None if one is already running."""
        return self._run_round()

    def current_metrics(self) -> list[ComponentMetrics]:
        """Metrics from the latest completed round."""
        return list(self._current_metrics)

    def usage(self, component_id: str) -> ComponentUsage | None:
        """Subprocess usage attributed to a component in the latest round."""
        return self._usage.get(component_id)

    def history(self, component_id: str) -> HistoryRecord | None:
        """Snapshot of a component's history, or None if it has none."""
        return self._ledger.get(component_id)

    def summary(self) -> PerformanceSummary:
        """Summarize the latest round."""
        return PerformanceSummary.from_metrics(self._current_metrics, self._clock())

    def clear_history(self) -> None:
        """Drop all recorded history, in memory and on disk."""
        self._ledger.clear_all()

    def _poll_loop(self) -> None:
        """Main polling loop running in the background thread."""
        while not self._stop_event.is_set():
            self._run_round()
            self._stop_event.wait(timeout=self._config.interval_seconds)

    def _run_round(self) -> RoundResult | None:
        """Run one round unless another is in flight."""
        if not self._round_lock.acquire(blocking=False):
            self.rounds_skipped += 1
            log.debug("round_skipped_in_flight")
            return None
        try:
            return self._collect()
        except Exception as exc:
            # A broken round must never take the scheduler down
            log.exception("round_failed", error=str(exc))
            return None
        finally:
            self._round_lock.release()

    def _collect(self) -> RoundResult:
        """Collect, record and dispatch one round."""
        timestamp = self._clock()
        errors: list[str] = []

        # Excluded components still join matching; only their metrics are skipped
        all_components = list(self._component_source())
        components = [
            c for c in all_components if not c.id.startswith(self._config.excluded_prefixes)
        ]

        try:
            usage = self._engine.attribute(all_components, self._root_pid)
        except Exception as exc:
            log.warning("attribution_failed", error=str(exc))
            errors.append(f"attribution: {exc}")
            usage = {}

        metrics: list[ComponentMetrics] = []
        alerts: list[AlertEvent] = []
        for component in components:
            try:
                metric = self._build_metrics(component, usage.get(component.id), timestamp)
                point = metric.to_point()
                self._ledger.record(point)
                alerts.extend(
                    evaluate(
                        point,
                        self._config.cpu_alert_threshold,
                        self._config.memory_alert_threshold,
                        display_name=component.display_name,
                    )
                )
            except Exception as exc:
                log.warning("component_round_failed", component=component.id, error=str(exc))
                errors.append(f"{component.id}: {exc}")
                continue
            metrics.append(metric)

        self._current_metrics = metrics
        self._usage = usage

        if timestamp - self._last_cleanup_ms >= self._config.cleanup_interval * 1000:
            self._ledger.evict_older_than(self._config.history_retention_days, now_ms=timestamp)
            self._last_cleanup_ms = timestamp

        if not self._ledger.save():
            errors.append("history save failed")

        result = RoundResult(
            metrics=metrics,
            usage=usage,
            alerts=alerts,
            summary=PerformanceSummary.from_metrics(metrics, timestamp),
            timestamp_ms=timestamp,
            errors=errors,
        )
        self.rounds_completed += 1
        self._dispatch(result)
        log.debug(
            "round_completed",
            components=len(metrics),
            alerts=len(alerts),
            total_cpu=round(result.summary.total_cpu, 2),
        )
        return result

    def _build_metrics(
        self, component: Component, usage: ComponentUsage | None, timestamp: int
    ) -> ComponentMetrics:
        process_cpu = usage.total_cpu_percent if usage else 0.0
        process_memory = usage.total_memory_mb if usage else 0.0
        process_count = usage.process_count if usage else 0
        estimated_cpu = estimate_cpu_usage(component)
        estimated_memory = estimate_memory_usage(component)
        measured = process_count > 0

        return ComponentMetrics(
            id=component.id,
            display_name=component.display_name or component.id,
            version=component.version,
            is_active=component.is_active,
            cpu_usage=process_cpu if measured else estimated_cpu,
            memory_usage_mb=process_memory if measured else estimated_memory,
            timestamp_ms=timestamp,
            estimated_cpu_usage=estimated_cpu,
            estimated_memory_usage_mb=estimated_memory,
            process_cpu_usage=process_cpu,
            process_memory_usage_mb=process_memory,
            subprocess_count=process_count,
        )

    def _dispatch(self, result: RoundResult) -> None:
        """Deliver alerts to listeners and the round to the queue."""
        for alert in result.alerts:
            log.warning("alert", message=format_alert(alert), component=alert.component_id)
            for listener in self._alert_listeners:
                try:
                    listener(alert)
                except Exception as exc:
                    log.warning("alert_listener_failed", error=str(exc))

        if self._queue is not None:
            self._queue.put(result)
