"""Tests for the extperf application and command line."""

import io
import json
import os
import time

import pytest
from textual.widgets import DataTable

from extperf.app import (
    ComponentTable,
    ExtperfApp,
    HeaderStats,
    SortKey,
    build_monitor,
    format_mb,
    main,
    parse_args,
    print_usage_report,
)
from extperf.config import MonitorConfig
from extperf.history import HistoryLedger
from extperf.models import Component, ComponentMetrics, ComponentUsage, PerformanceSummary, ProcessUsage
from extperf.monitor import PerformanceMonitor
from extperf.storage import JsonHistoryStore, MemoryHistoryStore

COMPONENTS = [
    Component(id="acme.alpha", display_name="Alpha", install_path="/ext/a", is_active=True),
    Component(id="acme.beta", display_name="Beta", install_path="/ext/b", is_active=True),
]


class StaticEngine:
    """Attribution engine with fixed results."""

    def __init__(self, usage=None):
        self.usage = usage or {}

    def attribute(self, components, root_pid, overrides=None):
        return {c.id: self.usage.get(c.id, ComponentUsage(component_id=c.id)) for c in components}


def make_monitor(usage=None, auto: bool = False) -> PerformanceMonitor:
    return PerformanceMonitor(
        lambda: COMPONENTS,
        root_pid=1,
        config=MonitorConfig(enable_auto_monitoring=auto, monitoring_interval_ms=60000),
        engine=StaticEngine(usage),
        ledger=HistoryLedger(MemoryHistoryStore()),
    )


def metric(cid: str, name: str, cpu: float, mem: float) -> ComponentMetrics:
    return ComponentMetrics(
        id=cid,
        display_name=name,
        version="1.0.0",
        is_active=True,
        cpu_usage=cpu,
        memory_usage_mb=mem,
        timestamp_ms=1,
    )


def alpha_usage() -> ComponentUsage:
    return ComponentUsage(
        component_id="acme.alpha",
        total_cpu_percent=4.0,
        total_memory_mb=12.5,
        process_count=1,
        processes=(ProcessUsage(321, 1, "/ext/a/server --stdio", 4.0, 12.5),),
    )


def test_format_mb():
    assert format_mb(12.34).strip() == "12.3M"
    assert format_mb(2048).strip() == "2.0G"


def test_sort_key_values():
    """Test SortKey enum has expected values."""
    assert [k.value for k in SortKey] == ["cpu", "mem", "name"]


@pytest.mark.asyncio
async def test_app_creation():
    """Test ExtperfApp wires its queue into the monitor."""
    monitor = make_monitor()
    app = ExtperfApp(monitor)

    assert app.title == "extperf"
    assert app.sub_title == "Extension Performance Monitor"
    assert monitor.update_queue is app._update_queue


@pytest.mark.asyncio
async def test_app_compose():
    """Test ExtperfApp composes correctly."""
    app = ExtperfApp(make_monitor())
    async with app.run_test() as pilot:
        assert pilot.app.query_one("#header-stats") is not None
        assert pilot.app.query_one("#component-table") is not None


@pytest.mark.asyncio
async def test_app_quit_binding():
    """Test that 'q' binding stops the monitor and quits."""
    monitor = make_monitor(auto=True)
    app = ExtperfApp(monitor)
    async with app.run_test() as pilot:
        assert monitor.is_monitoring
        await pilot.press("q")
        assert pilot.app._exit

    assert not monitor.is_monitoring


@pytest.mark.asyncio
async def test_component_table_cycle_sort():
    """Test ComponentTable sort key cycling."""
    app = ExtperfApp(make_monitor())
    async with app.run_test() as pilot:
        table = pilot.app.query_one(ComponentTable)

        assert table.sort_key == SortKey.CPU
        assert table.cycle_sort() == SortKey.MEM
        assert table.cycle_sort() == SortKey.NAME
        assert table.cycle_sort() == SortKey.CPU


@pytest.mark.asyncio
async def test_sort_binding():
    """Test that F6 binding cycles sort key."""
    app = ExtperfApp(make_monitor())
    async with app.run_test() as pilot:
        table = pilot.app.query_one(ComponentTable)

        await pilot.press("f6")

        assert table.sort_key == SortKey.MEM


@pytest.mark.asyncio
async def test_update_metrics_sorted_rows():
    """Test rows are keyed by component id and ordered by the sort key."""
    app = ExtperfApp(make_monitor())
    async with app.run_test() as pilot:
        table = pilot.app.query_one(ComponentTable)
        metrics = [metric("acme.alpha", "Alpha", 1.0, 90.0), metric("acme.beta", "Beta", 9.0, 10.0)]

        table.update_metrics(metrics)
        data = pilot.app.query_one("#component-table", DataTable)
        assert data.row_count == 2
        assert data.get_row_at(0)[0] == "Beta"

        table.cycle_sort()
        table.update_metrics(metrics)
        assert data.row_count == 2
        assert data.get_row_at(0)[0] == "Alpha"


@pytest.mark.asyncio
async def test_app_renders_round_results():
    """Test rounds pushed by the monitor reach the table."""
    monitor = make_monitor({"acme.alpha": alpha_usage()})
    app = ExtperfApp(monitor)
    async with app.run_test() as pilot:
        monitor.collect_now()
        await pilot.pause(1.0)

        data = pilot.app.query_one("#component-table", DataTable)
        assert data.row_count == 2


@pytest.mark.asyncio
async def test_clear_history_binding():
    monitor = make_monitor()
    monitor.collect_now()
    app = ExtperfApp(monitor)
    async with app.run_test() as pilot:
        await pilot.press("c")

    assert monitor.history("acme.alpha") is None


@pytest.mark.asyncio
async def test_export_binding(tmp_path, monkeypatch):
    """Test 'e' writes a JSON report to the working directory."""
    monkeypatch.chdir(tmp_path)
    monitor = make_monitor()
    monitor.collect_now()
    app = ExtperfApp(monitor)
    async with app.run_test() as pilot:
        await pilot.press("e")

    reports = list(tmp_path.glob("*.json"))
    assert len(reports) == 1
    assert len(json.loads(reports[0].read_text())["current_metrics"]) == 2


@pytest.mark.asyncio
async def test_header_stats_update():
    """Test that header stats can be updated."""
    app = ExtperfApp(make_monitor())
    async with app.run_test() as pilot:
        header = pilot.app.query_one("#header-stats", HeaderStats)
        summary = PerformanceSummary.from_metrics([metric("acme.alpha", "Alpha", 3.0, 4.0)], 1)

        header.update_summary(summary, monitoring=True)

        assert header._summary is summary
        assert "Monitor: running" in header._get_totals()
        assert "Alpha" in header._get_top_consumers()


class TestCommandLine:
    def test_parse_args_defaults(self):
        args = parse_args([])

        assert args.root_pid is None
        assert args.extensions_dir is None
        assert not args.once

    def test_parse_args_repeatable_dirs(self):
        args = parse_args(["--extensions-dir", "/a", "--extensions-dir", "/b", "--root-pid", "42"])

        assert args.extensions_dir == ["/a", "/b"]
        assert args.root_pid == 42

    def test_parse_args_rejects_bad_pid(self):
        with pytest.raises(SystemExit):
            parse_args(["--root-pid", "0"])

    def test_no_extensions_exits_with_error(self, tmp_path, capsys):
        """Test an empty extension directory is reported."""
        rc = main(["--extensions-dir", str(tmp_path), "--config", str(tmp_path / "none.toml")])

        assert rc == 1
        assert "No user extensions found" in capsys.readouterr().err

    def test_once_prints_report(self, tmp_path, monkeypatch, capsys):
        """Test --once runs a single round against this process and exits."""
        ext = tmp_path / "extensions" / "acme.alpha"
        ext.mkdir(parents=True)
        (ext / "package.json").write_text(json.dumps({"name": "alpha", "publisher": "acme"}))
        monkeypatch.setenv("EXTPERF_HISTORY_PATH", str(tmp_path / "state" / "history.json"))

        rc = main(
            [
                "--once",
                "--extensions-dir",
                str(tmp_path / "extensions"),
                "--config",
                str(tmp_path / "none.toml"),
                "--root-pid",
                str(os.getpid()),
            ]
        )

        assert rc == 0
        assert "subprocess metrics" in capsys.readouterr().out
        assert (tmp_path / "state" / "history.json").exists()


class TestUsageReport:
    def test_prints_process_details(self):
        monitor = make_monitor({"acme.alpha": alpha_usage()})
        out = io.StringIO()

        assert print_usage_report(monitor, out) == 0

        text = out.getvalue()
        assert "acme.alpha" in text
        assert "CPU: 4.00%" in text
        assert "Memory: 12.50 MB" in text
        assert "PID 321" in text
        assert "Command: /ext/a/server --stdio" in text
        assert "acme.beta" not in text

    def test_one_shot_reports_real_cpu(self, workers, tmp_path):
        """Test a single round already measures a spinning child."""
        (child,) = workers.spawn(1, busy=True)
        time.sleep(0.3)
        config = MonitorConfig(history_path=tmp_path / "history.json")
        monitor = build_monitor(config, [workers.component], root_pid=os.getpid())
        out = io.StringIO()
        try:
            assert print_usage_report(monitor, out) == 0
        finally:
            monitor.engine.sampler.close()

        text = out.getvalue()
        assert f"PID {child.pid}" in text
        assert "CPU 0.00%" not in text

    def test_nothing_measured(self):
        out = io.StringIO()

        assert print_usage_report(make_monitor(), out) == 0
        assert "No subprocess metrics found" in out.getvalue()


def test_build_monitor_uses_json_store(tmp_path):
    config = MonitorConfig(history_path=tmp_path / "history.json")

    monitor = build_monitor(config, COMPONENTS, root_pid=os.getpid())
    try:
        store = monitor.ledger._store
        assert isinstance(store, JsonHistoryStore)
        assert store.path == tmp_path / "history.json"
        assert monitor.root_pid == os.getpid()
    finally:
        monitor.engine.sampler.close()
