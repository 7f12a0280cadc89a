"""extperf - Textual application and command line entry point."""

import argparse
import sys
from enum import Enum
from queue import Empty, Queue

import structlog
from textual.app import App, ComposeResult
from textual.containers import Horizontal
from textual.widgets import DataTable, Footer, Static

from extperf.attribution import AttributionEngine
from extperf.config import MonitorConfig, load_config
from extperf.discovery import discover_extensions, is_builtin
from extperf.history import HistoryLedger
from extperf.log import configure_logging
from extperf.models import Component, ComponentMetrics, PerformanceSummary, RoundResult
from extperf.monitor import PerformanceMonitor
from extperf.report import default_report_name, export_report
from extperf.sampler import ResourceSampler
from extperf.storage import JsonHistoryStore

log = structlog.get_logger()


class SortKey(Enum):
    """Sort keys for the component table."""

    CPU = "cpu"
    MEM = "mem"
    NAME = "name"


def format_mb(value: float) -> str:
    """Format megabytes as a human-readable string."""
    if value >= 1024:
        return f"{value / 1024:5.1f}G"
    return f"{value:5.1f}M"


class HeaderStats(Static):
    """Header widget showing the performance summary."""

    DEFAULT_CSS = """
    HeaderStats {
        height: auto;
        min-height: 5;
        padding: 1;
        background: $surface;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize HeaderStats."""
        super().__init__(*args, **kwargs)
        self._summary: PerformanceSummary | None = None
        self._monitoring = False

    def compose(self) -> ComposeResult:
        """Compose the header stats layout."""
        yield Horizontal(
            Static(self._get_totals(), id="totals-info"),
            Static(self._get_top_consumers(), id="top-info"),
        )

    def update_summary(self, summary: PerformanceSummary, monitoring: bool) -> None:
        """Update the header from a fresh summary."""
        self._summary = summary
        self._monitoring = monitoring
        try:
            self.query_one("#totals-info", Static).update(self._get_totals())
            self.query_one("#top-info", Static).update(self._get_top_consumers())
        except Exception:
            pass  # Widgets may not be mounted yet

    def _get_totals(self) -> str:
        """Get totals display."""
        if self._summary is None:
            return "Waiting for first sample..."
        s = self._summary
        status = "running" if self._monitoring else "stopped"
        return (
            f"CPU: {s.total_cpu:5.1f}%   RAM: {format_mb(s.total_memory)}\n"
            f"Active: {s.active_components}/{s.total_components}   Monitor: {status}"
        )

    def _get_top_consumers(self) -> str:
        """Get top CPU consumers display."""
        if self._summary is None or not self._summary.top_cpu_consumers:
            return ""
        lines = ["Top CPU:"]
        for metric in self._summary.top_cpu_consumers[:3]:
            lines.append(f"  {metric.display_name[:24]}: {metric.cpu_usage:.1f}%")
        return "\n".join(lines)


class ComponentTable(Static):
    """Table of per-component metrics."""

    DEFAULT_CSS = """
    ComponentTable {
        height: 1fr;
    }
    """

    def __init__(self, *args, **kwargs) -> None:
        """Initialize ComponentTable."""
        super().__init__(*args, **kwargs)
        self._sort_key: SortKey = SortKey.CPU

    @property
    def sort_key(self) -> SortKey:
        """Get current sort key."""
        return self._sort_key

    def cycle_sort(self) -> SortKey:
        """Cycle to the next sort key and return it."""
        keys = list(SortKey)
        self._sort_key = keys[(keys.index(self._sort_key) + 1) % len(keys)]
        return self._sort_key

    def compose(self) -> ComposeResult:
        """Compose the component table."""
        yield DataTable(id="component-table")

    def on_mount(self) -> None:
        """Initialize the data table when mounted."""
        table = self.query_one("#component-table", DataTable)
        table.cursor_type = "row"
        table.add_column("Extension", key="name", width=32)
        table.add_column("Active", key="active", width=7)
        table.add_column("CPU%", key="cpu", width=8)
        table.add_column("MEM", key="mem", width=8)
        table.add_column("Procs", key="procs", width=6)
        table.add_column("Source", key="source", width=9)

    def update_metrics(self, metrics: list[ComponentMetrics]) -> None:
        """Replace the table contents, keeping the current sort."""
        table = self.query_one("#component-table", DataTable)
        table.clear()
        for metric in self._sort_metrics(metrics):
            table.add_row(
                metric.display_name[:32],
                "yes" if metric.is_active else "no",
                f"{metric.cpu_usage:5.1f}",
                format_mb(metric.memory_usage_mb),
                str(metric.subprocess_count),
                "process" if metric.from_process_data else "estimate",
                key=metric.id,
            )

    def _sort_metrics(self, metrics: list[ComponentMetrics]) -> list[ComponentMetrics]:
        """Sort metrics based on the current sort key."""
        if self._sort_key is SortKey.NAME:
            return sorted(metrics, key=lambda m: m.display_name.lower())
        if self._sort_key is SortKey.MEM:
            return sorted(metrics, key=lambda m: m.memory_usage_mb, reverse=True)
        return sorted(metrics, key=lambda m: m.cpu_usage, reverse=True)


class ExtperfApp(App):
    """Main extperf application."""

    TITLE = "extperf"
    SUB_TITLE = "Extension Performance Monitor"

    CSS = """
    Screen {
        layout: vertical;
    }

    #header-stats {
        dock: top;
        height: auto;
        min-height: 6;
    }

    Horizontal {
        height: auto;
    }

    #totals-info {
        width: 1fr;
        padding-right: 2;
    }

    #top-info {
        width: 1fr;
        padding-left: 2;
    }
    """

    BINDINGS = [
        ("q", "quit", "Quit"),
        ("f6", "sort", "Sort"),
        ("r", "refresh", "Refresh"),
        ("c", "clear_history", "Clear history"),
        ("e", "export", "Export report"),
    ]

    def __init__(self, monitor: PerformanceMonitor | None = None) -> None:
        """Initialize the ExtperfApp."""
        super().__init__()
        self._update_queue: Queue[RoundResult] = Queue()
        if monitor is None:
            monitor = build_monitor(load_config(), find_user_extensions())
        self._monitor = monitor
        self._monitor.update_queue = self._update_queue

    @property
    def monitor(self) -> PerformanceMonitor:
        """The monitor feeding this app."""
        return self._monitor

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderStats(id="header-stats")
        yield ComponentTable()
        yield Footer()

    def on_mount(self) -> None:
        """Start the monitor when the app is mounted."""
        if self._monitor.config.enable_auto_monitoring:
            self._monitor.start()
        self.set_interval(0.5, self._check_for_updates)

    def _check_for_updates(self) -> None:
        """Drain the queue and render the most recent round."""
        result = None
        while True:
            try:
                result = self._update_queue.get_nowait()
            except Empty:
                break
        if result is not None:
            self._update_ui(result)

    def _update_ui(self, result: RoundResult) -> None:
        """Update the UI with the latest round."""
        try:
            self.query_one("#header-stats", HeaderStats).update_summary(
                result.summary, self._monitor.is_monitoring
            )
            self.query_one(ComponentTable).update_metrics(result.metrics)
        except Exception as exc:
            log.debug("ui_update_failed", error=str(exc))
        for alert in result.alerts:
            self.notify(
                f"High {alert.kind.value.upper()} usage: {alert.display_name}",
                severity="warning",
            )

    def action_sort(self) -> None:
        """Handle sort action - cycle through sort keys."""
        table = self.query_one(ComponentTable)
        key = table.cycle_sort()
        table.update_metrics(self._monitor.current_metrics())
        self.notify(f"Sort: {key.value.upper()}")

    def action_refresh(self) -> None:
        """Run a round now on a worker thread."""
        self.run_worker(self._monitor.collect_now, thread=True, exclusive=True)

    def action_clear_history(self) -> None:
        """Drop all recorded history."""
        self._monitor.clear_history()
        self.notify("Performance history cleared")

    def action_export(self) -> None:
        """Export a JSON report to the working directory."""
        path = export_report(
            default_report_name(),
            self._monitor.current_metrics(),
            self._monitor.summary(),
            self._monitor.ledger.snapshot(),
        )
        self.notify(f"Report exported to {path}")

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self._monitor.stop()
        self.exit()


def find_user_extensions(extension_dirs: list[str] | None = None) -> list[Component]:
    """Installed extensions, without the ones bundled with the editor."""
    return [c for c in discover_extensions(extension_dirs) if not is_builtin(c)]


def build_monitor(
    config: MonitorConfig,
    components: list[Component],
    root_pid: int | None = None,
    update_queue: "Queue[RoundResult] | None" = None,
) -> PerformanceMonitor:
    """Wire sampling, persistence and the scheduler together."""

    def component_source() -> list[Component]:
        return components

    engine = AttributionEngine(sampler=ResourceSampler(timeout=config.sample_timeout))
    ledger = HistoryLedger(JsonHistoryStore(config.history_path))
    return PerformanceMonitor(
        component_source,
        root_pid=root_pid,
        config=config,
        engine=engine,
        ledger=ledger,
        update_queue=update_queue,
    )


def print_usage_report(monitor: PerformanceMonitor, out=None) -> int:
    """Run one round and print per-extension subprocess usage. Returns an exit code."""
    out = out or sys.stdout
    result = monitor.collect_now()
    if result is None:
        print("Sampling round did not complete.", file=out)
        return 1

    measured = [m for m in result.metrics if m.from_process_data]
    if not measured:
        print("No subprocess metrics found for extensions.", file=out)
        return 0

    print("Extension subprocess metrics:\n", file=out)
    for metric in measured:
        usage = monitor.usage(metric.id)
        print(metric.id, file=out)
        print(f"  CPU: {metric.process_cpu_usage:.2f}%", file=out)
        print(f"  Memory: {metric.process_memory_usage_mb:.2f} MB", file=out)
        print(f"  Processes: {metric.subprocess_count}", file=out)
        if usage is not None and usage.processes:
            print("  Details:", file=out)
            for proc in usage.processes:
                print(
                    f"    PID {proc.pid}: CPU {proc.cpu_percent:.2f}%, "
                    f"Memory {proc.memory_mb:.2f} MB",
                    file=out,
                )
                print(f"      Command: {proc.command_line}", file=out)
        print("", file=out)
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        prog="extperf",
        description="Attribute process CPU and memory usage to editor extensions.",
    )
    parser.add_argument(
        "--root-pid",
        type=int,
        default=None,
        help="PID of the extension host; its descendants are attributed (default: this process)",
    )
    parser.add_argument("--config", default=None, help="Path to a config.toml")
    parser.add_argument(
        "--extensions-dir",
        action="append",
        default=None,
        help="Extension directory to scan (repeatable; default: standard editor locations)",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Collect one round, print subprocess usage and exit",
    )
    args = parser.parse_args(argv)
    if args.root_pid is not None and args.root_pid <= 0:
        parser.error(f"invalid PID: {args.root_pid}")
    return args


def main(argv: list[str] | None = None) -> int:
    """Entry point for the extperf command."""
    args = parse_args(argv)
    config = load_config(args.config)

    components = find_user_extensions(args.extensions_dir)
    if not components:
        print("No user extensions found. Check the extensions directory.", file=sys.stderr)
        return 1

    if args.once:
        configure_logging(config.log_level)
        monitor = build_monitor(config, components, root_pid=args.root_pid)
        try:
            return print_usage_report(monitor)
        finally:
            monitor.engine.sampler.close()

    # Console output would corrupt the TUI, so the app logs to a file
    config.history_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config.history_path.parent / "extperf.log", "a", encoding="utf-8") as log_file:
        configure_logging(config.log_level, stream=log_file)
        app = ExtperfApp(build_monitor(config, components, root_pid=args.root_pid))
        app.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
