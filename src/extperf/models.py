"""Data models for extperf."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

BYTES_PER_MB = 1024 * 1024


@dataclass(slots=True, frozen=True)
class Component:
    """An installed extension as reported by the host."""

    id: str
    display_name: str
    install_path: str
    is_active: bool
    version: str = "unknown"
    contributions: frozenset[str] = frozenset()  # Feature flags, see estimate.py


@dataclass(slots=True, frozen=True)
class ProcessSample:
    """A descendant process discovered by the tree walker."""

    pid: int
    parent_pid: int
    command_line: str


@dataclass(slots=True, frozen=True)
class ResourceReading:
    """Instantaneous resource usage of one process."""

    pid: int
    cpu_percent: float  # Single-core relative, may exceed 100.0
    memory_bytes: int  # RSS

    @property
    def memory_mb(self) -> float:
        return self.memory_bytes / BYTES_PER_MB


@dataclass(slots=True, frozen=True)
class ProcessUsage:
    """Per-process detail attached to a ComponentUsage."""

    pid: int
    parent_pid: int
    command_line: str
    cpu_percent: float
    memory_mb: float


@dataclass(slots=True, frozen=True)
class ComponentUsage:
    """Aggregated process usage of one component for one round."""

    component_id: str
    total_cpu_percent: float = 0.0
    total_memory_mb: float = 0.0
    process_count: int = 0
    processes: tuple[ProcessUsage, ...] = ()  # Sorted by descending cpu


@dataclass(slots=True, frozen=True)
class MetricPoint:
    """One stored history sample."""

    component_id: str
    cpu_usage: float
    memory_usage_mb: float
    timestamp_ms: int
    is_active: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "component_id": self.component_id,
            "cpu_usage": self.cpu_usage,
            "memory_usage_mb": self.memory_usage_mb,
            "timestamp_ms": self.timestamp_ms,
            "is_active": self.is_active,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MetricPoint":
        return cls(
            component_id=str(data["component_id"]),
            cpu_usage=float(data.get("cpu_usage", 0.0)),
            memory_usage_mb=float(data.get("memory_usage_mb", 0.0)),
            timestamp_ms=int(data.get("timestamp_ms", 0)),
            is_active=bool(data.get("is_active", False)),
        )


@dataclass(slots=True, frozen=True)
class PeakValue:
    """Highest observed value and when it was first seen."""

    value: float = 0.0
    timestamp_ms: int = 0


@dataclass(slots=True, frozen=True)
class Averages:
    """Rolling averages over the most recent points."""

    cpu: float = 0.0
    memory: float = 0.0


@dataclass(slots=True, frozen=True)
class Peaks:
    """All-time peaks since the last clear."""

    cpu: PeakValue = PeakValue()
    memory: PeakValue = PeakValue()


@dataclass(slots=True, frozen=True)
class HistoryRecord:
    """
    Read-only snapshot of one component's history.

    Produced by HistoryLedger.get(); mutating the ledger afterwards never
    changes an already returned record.
    """

    component_id: str
    points: tuple[MetricPoint, ...] = ()
    rolling_average: Averages = Averages()
    peak: Peaks = Peaks()

    def to_dict(self) -> dict[str, Any]:
        """Serialize for persistence and report export."""
        return {
            "component_id": self.component_id,
            "points": [point.to_dict() for point in self.points],
            "rolling_average": {
                "cpu": self.rolling_average.cpu,
                "memory": self.rolling_average.memory,
            },
            "peak": {
                "cpu": {
                    "value": self.peak.cpu.value,
                    "timestamp_ms": self.peak.cpu.timestamp_ms,
                },
                "memory": {
                    "value": self.peak.memory.value,
                    "timestamp_ms": self.peak.memory.timestamp_ms,
                },
            },
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "HistoryRecord":
        """Rebuild a record from to_dict() output."""
        average = data.get("rolling_average") or {}
        peak = data.get("peak") or {}
        cpu_peak = peak.get("cpu") or {}
        memory_peak = peak.get("memory") or {}
        return cls(
            component_id=str(data["component_id"]),
            points=tuple(MetricPoint.from_dict(p) for p in data.get("points") or []),
            rolling_average=Averages(
                cpu=float(average.get("cpu", 0.0)),
                memory=float(average.get("memory", 0.0)),
            ),
            peak=Peaks(
                cpu=PeakValue(
                    value=float(cpu_peak.get("value", 0.0)),
                    timestamp_ms=int(cpu_peak.get("timestamp_ms", 0)),
                ),
                memory=PeakValue(
                    value=float(memory_peak.get("value", 0.0)),
                    timestamp_ms=int(memory_peak.get("timestamp_ms", 0)),
                ),
            ),
        )


class AlertKind(Enum):
    """Resource an alert was raised for."""

    CPU = "cpu"
    MEMORY = "memory"


@dataclass(slots=True, frozen=True)
class AlertEvent:
    """A threshold crossing for one metric point."""

    kind: AlertKind
    component_id: str
    value: float
    threshold: float
    timestamp_ms: int
    display_name: str = ""


@dataclass(slots=True, frozen=True)
class ComponentMetrics:
    """Current metrics of one component, as shown to presentation layers."""

    id: str
    display_name: str
    version: str
    is_active: bool
    cpu_usage: float  # Percent
    memory_usage_mb: float
    timestamp_ms: int
    estimated_cpu_usage: float = 0.0
    estimated_memory_usage_mb: float = 0.0
    process_cpu_usage: float = 0.0
    process_memory_usage_mb: float = 0.0
    subprocess_count: int = 0

    @property
    def from_process_data(self) -> bool:
        """True when cpu/memory come from measured processes, not estimates."""
        return self.subprocess_count > 0

    def to_point(self) -> MetricPoint:
        return MetricPoint(
            component_id=self.id,
            cpu_usage=self.cpu_usage,
            memory_usage_mb=self.memory_usage_mb,
            timestamp_ms=self.timestamp_ms,
            is_active=self.is_active,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "display_name": self.display_name,
            "version": self.version,
            "is_active": self.is_active,
            "cpu_usage": self.cpu_usage,
            "memory_usage_mb": self.memory_usage_mb,
            "timestamp_ms": self.timestamp_ms,
            "estimated_cpu_usage": self.estimated_cpu_usage,
            "estimated_memory_usage_mb": self.estimated_memory_usage_mb,
            "process_cpu_usage": self.process_cpu_usage,
            "process_memory_usage_mb": self.process_memory_usage_mb,
            "subprocess_count": self.subprocess_count,
        }


@dataclass(slots=True, frozen=True)
class PerformanceSummary:
    """Totals and top consumers across all components."""

    total_components: int
    active_components: int
    total_cpu: float
    total_memory: float
    top_cpu_consumers: tuple[ComponentMetrics, ...]
    top_memory_consumers: tuple[ComponentMetrics, ...]
    timestamp_ms: int

    @classmethod
    def from_metrics(
        cls, metrics: list[ComponentMetrics], timestamp_ms: int, top: int = 5
    ) -> "PerformanceSummary":
        """Build a summary from the current per-component metrics."""
        by_cpu = sorted(metrics, key=lambda m: m.cpu_usage, reverse=True)
        by_memory = sorted(metrics, key=lambda m: m.memory_usage_mb, reverse=True)
        return cls(
            total_components=len(metrics),
            active_components=sum(1 for m in metrics if m.is_active),
            total_cpu=sum(m.cpu_usage for m in metrics),
            total_memory=sum(m.memory_usage_mb for m in metrics),
            top_cpu_consumers=tuple(by_cpu[:top]),
            top_memory_consumers=tuple(by_memory[:top]),
            timestamp_ms=timestamp_ms,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_components": self.total_components,
            "active_components": self.active_components,
            "total_cpu": self.total_cpu,
            "total_memory": self.total_memory,
            "top_cpu_consumers": [m.to_dict() for m in self.top_cpu_consumers],
            "top_memory_consumers": [m.to_dict() for m in self.top_memory_consumers],
            "timestamp_ms": self.timestamp_ms,
        }


@dataclass(slots=True)
class RoundResult:
    """Everything one sampling round produced."""

    metrics: list[ComponentMetrics]
    usage: dict[str, ComponentUsage]
    alerts: list[AlertEvent]
    summary: PerformanceSummary
    timestamp_ms: int
    errors: list[str] = field(default_factory=list)
