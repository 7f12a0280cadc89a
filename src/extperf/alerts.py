"""Threshold alerts for metric points."""

from extperf.models import AlertEvent, AlertKind, MetricPoint


def evaluate(
    point: MetricPoint,
    cpu_threshold: float,
    memory_threshold: float,
    display_name: str | None = None,
) -> list[AlertEvent]:
    """
    Compare a point against the thresholds.

    Each resource is checked independently with a strict greater-than, so a
    point can raise zero, one or two alerts. No state is kept between calls.
    """
    name = display_name or point.component_id
    alerts: list[AlertEvent] = []

    if point.cpu_usage > cpu_threshold:
        alerts.append(
            AlertEvent(
                kind=AlertKind.CPU,
                component_id=point.component_id,
                value=point.cpu_usage,
                threshold=cpu_threshold,
                timestamp_ms=point.timestamp_ms,
                display_name=name,
            )
        )

    if point.memory_usage_mb > memory_threshold:
        alerts.append(
            AlertEvent(
                kind=AlertKind.MEMORY,
                component_id=point.component_id,
                value=point.memory_usage_mb,
                threshold=memory_threshold,
                timestamp_ms=point.timestamp_ms,
                display_name=name,
            )
        )

    return alerts


def format_alert(alert: AlertEvent) -> str:
    """Human readable alert message."""
    unit = "%" if alert.kind is AlertKind.CPU else "MB"
    name = alert.display_name or alert.component_id
    return f"High {alert.kind.value.upper()} usage detected: {name} ({alert.value:.1f}{unit})"
