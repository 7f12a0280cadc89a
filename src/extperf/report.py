"""Performance report generation and export."""

import csv
import io
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from extperf import __version__
from extperf.models import ComponentMetrics, HistoryRecord, PerformanceSummary

HIGH_CPU_PERCENT = 10.0
HIGH_MEMORY_MB = 50.0
MANY_ACTIVE_COMPONENTS = 20
INACTIVE_MEMORY_MB = 5.0

CSV_HEADER = [
    "Extension ID",
    "Display Name",
    "Version",
    "Is Active",
    "CPU Usage (%)",
    "Memory Usage (MB)",
    "Average CPU",
    "Average Memory",
    "Peak CPU",
    "Peak Memory",
]


def generate_recommendations(metrics: list[ComponentMetrics]) -> list[str]:
    """Textual advice derived from fixed thresholds."""
    recommendations: list[str] = []

    high_cpu = [m.display_name for m in metrics if m.cpu_usage > HIGH_CPU_PERCENT]
    if high_cpu:
        recommendations.append(
            f"Consider reviewing extensions with high CPU usage: {', '.join(high_cpu)}"
        )

    high_memory = [m.display_name for m in metrics if m.memory_usage_mb > HIGH_MEMORY_MB]
    if high_memory:
        recommendations.append(
            f"Consider reviewing extensions with high memory usage: {', '.join(high_memory)}"
        )

    active_count = sum(1 for m in metrics if m.is_active)
    if active_count > MANY_ACTIVE_COMPONENTS:
        recommendations.append(
            f"You have {active_count} active extensions. Consider disabling unused "
            "extensions to improve performance."
        )

    idle_holders = [
        m.display_name for m in metrics if not m.is_active and m.memory_usage_mb > INACTIVE_MEMORY_MB
    ]
    if idle_holders:
        recommendations.append(
            f"Some inactive extensions are still using memory: {', '.join(idle_holders)}"
        )

    return recommendations


def generate_insights(metrics: list[ComponentMetrics], top: int = 5) -> dict[str, Any]:
    """Best and worst performers among active components, plus recommendations."""
    active = [m for m in metrics if m.is_active]
    by_cpu = sorted(active, key=lambda m: m.cpu_usage)
    by_memory = sorted(active, key=lambda m: m.memory_usage_mb)
    return {
        "top_performers": {
            "cpu": by_cpu[:top],
            "memory": by_memory[:top],
        },
        "worst_performers": {
            "cpu": list(reversed(by_cpu))[:top],
            "memory": list(reversed(by_memory))[:top],
        },
        "recommendations": generate_recommendations(metrics),
    }


def generate_report_data(
    metrics: list[ComponentMetrics],
    summary: PerformanceSummary,
    history: dict[str, HistoryRecord],
) -> dict[str, Any]:
    """Assemble everything a report contains, as plain Python objects."""
    ordered = sorted(metrics, key=lambda m: m.cpu_usage + m.memory_usage_mb, reverse=True)
    return {
        "report_metadata": {
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "extperf_version": __version__,
        },
        "summary": summary,
        "current_metrics": ordered,
        "historical_data": {m.id: history[m.id] for m in ordered if m.id in history},
        "insights": generate_insights(ordered),
    }


def _jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def format_as_json(data: dict[str, Any]) -> str:
    return json.dumps(_jsonable(data), indent=2)


def format_as_csv(data: dict[str, Any]) -> str:
    """One row per component with current, average and peak values."""

    def fmt(value: float | None) -> str:
        return "N/A" if value is None else f"{value:.2f}"

    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for metric in data["current_metrics"]:
        record: HistoryRecord | None = data["historical_data"].get(metric.id)
        writer.writerow(
            [
                metric.id,
                metric.display_name,
                metric.version,
                str(metric.is_active).lower(),
                fmt(metric.cpu_usage),
                fmt(metric.memory_usage_mb),
                fmt(record.rolling_average.cpu if record else None),
                fmt(record.rolling_average.memory if record else None),
                fmt(record.peak.cpu.value if record else None),
                fmt(record.peak.memory.value if record else None),
            ]
        )
    return buffer.getvalue()


def default_report_name(today: datetime | None = None) -> str:
    today = today or datetime.now()
    return f"extension-performance-report-{today.strftime('%Y-%m-%d')}.json"


def export_report(
    path: Path | str,
    metrics: list[ComponentMetrics],
    summary: PerformanceSummary,
    history: dict[str, HistoryRecord],
) -> Path:
    """Write a report to path; CSV for a .csv suffix, JSON otherwise."""
    path = Path(path)
    data = generate_report_data(metrics, summary, history)
    content = format_as_csv(data) if path.suffix.lower() == ".csv" else format_as_json(data)
    path.write_text(content, encoding="utf-8")
    return path
