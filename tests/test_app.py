"""Tests for the nvglances application."""

from dataclasses import replace

import pytest
from textual import events
from textual.containers import Horizontal
from textual.widgets import Sparkline

from conftest import FakeGpuBackend, FakeTelemetry, make_gpu_snapshot
from nvglances.actions import ActionWorkflow, SignalOutcome
from nvglances.app import NvglancesApp, normalize_key
from nvglances.config import Settings
from nvglances.history import HistoryBuffers
from nvglances.models import GpuBackendKind
from nvglances.monitor import SnapshotAggregator
from nvglances.table import CpuSort, Panel
from nvglances.widgets import (
    GpuHistoryGraph,
    format_bytes,
    format_duration,
    gpu_graph_series,
    make_bar,
    truncate,
)


class NoopControl:
    def __init__(self):
        self.sent = []

    def send(self, pid, kind):
        self.sent.append((pid, kind))
        return SignalOutcome.SENT


def _make_app(gpu_backend=None, control=None):
    aggregator = SnapshotAggregator(telemetry=FakeTelemetry(), gpu_backend=gpu_backend)
    return NvglancesApp(
        settings=Settings(refresh_ms=5000),
        aggregator=aggregator,
        workflow=ActionWorkflow(control or NoopControl()),
    )


def test_format_bytes():
    """Test format_bytes across units."""
    assert format_bytes(500) == "500 B"
    assert format_bytes(2048) == "2.0 KiB"
    assert "MiB" in format_bytes(5242880)
    assert "GiB" in format_bytes(1073741824)


def test_format_duration():
    """Test uptime formatting."""
    assert format_duration(90061) == "1d 01h 01m"
    assert format_duration(3660) == "01h 01m"
    assert format_duration(59) == "00m"


def test_make_bar():
    """Test text bars fill proportionally."""
    assert make_bar(50, 4) == "[██░░]"
    assert make_bar(150, 4) == "[████]"


def test_truncate():
    """Test truncation adds an ellipsis."""
    assert truncate("short", 10) == "short"
    assert truncate("a-very-long-name", 8) == "a-ver..."


def test_normalize_key():
    """Test Textual key events map to plain keys."""
    assert normalize_key(events.Key("question_mark", "?")) == ("?", False)
    assert normalize_key(events.Key("ctrl+k", None)) == ("k", True)
    assert normalize_key(events.Key("tab", "\t")) == ("tab", False)
    assert normalize_key(events.Key("delete", None)) == ("delete", False)


class TestGpuGraphSeries:
    """Tests for the per-device GPU history series."""

    def test_one_series_per_gpu(self):
        """Every recorded GPU gets its own labelled series."""
        history = HistoryBuffers()
        history.push_gpu(0, 10.0, 20.0)
        history.push_gpu(1, 30.0, 40.0)

        series = gpu_graph_series(history, make_gpu_snapshot(gpu_count=2))

        assert [s.label for s in series] == ["GPU0", "GPU1"]
        assert [s.utilization[-1] for s in series] == [10.0, 30.0]
        assert [s.memory[-1] for s in series] == [20.0, 40.0]

    def test_capped_at_four(self):
        """At most four devices are graphed."""
        history = HistoryBuffers()
        history.push_gpu(5, 1.0, 1.0)

        series = gpu_graph_series(history, make_gpu_snapshot(gpu_count=6))

        assert [s.label for s in series] == ["GPU0", "GPU1", "GPU2", "GPU3"]

    def test_metal_is_memory_only(self):
        """Metal reports no utilization, so only memory is graphed."""
        history = HistoryBuffers()
        history.push_gpu(0, 0.0, 35.0)
        gpu = replace(make_gpu_snapshot(), backend=GpuBackendKind.METAL)

        series = gpu_graph_series(history, gpu)

        assert series[0].utilization is None
        assert series[0].memory[-1] == 35.0


def test_app_creation():
    """Test NvglancesApp can be instantiated."""
    app = _make_app()
    assert app.title == "nvglances"
    assert app.ctx.clock.interval_ms == 5000


@pytest.mark.asyncio
async def test_app_compose():
    """Test NvglancesApp composes and takes a first snapshot."""
    app = _make_app()
    async with app.run_test(size=(160, 48)) as pilot:
        assert pilot.app.query_one("#header") is not None
        assert pilot.app.query_one("#cpu-processes") is not None
        assert pilot.app.ctx.snapshot is not None
        assert pilot.app.query_one("#no-gpu").display
        assert not pilot.app.query_one("#gpu-cards").display


@pytest.mark.asyncio
async def test_app_with_gpu(gpu_backend):
    """Test the GPU column is shown when a backend reports devices."""
    app = _make_app(gpu_backend=gpu_backend)
    async with app.run_test(size=(160, 48)) as pilot:
        assert pilot.app.query_one("#gpu-cards").display
        assert not pilot.app.query_one("#no-gpu").display
        assert len(pilot.app.ctx.gpu_table.view) == 1


@pytest.mark.asyncio
async def test_app_quit_binding():
    """Test that 'q' quits and shuts down the GPU backend."""
    backend = FakeGpuBackend()
    app = _make_app(gpu_backend=backend)
    async with app.run_test() as pilot:
        await pilot.press("q")
        assert pilot.app._exit
        assert backend.shutdown_calls == 1


@pytest.mark.asyncio
async def test_app_sort_binding():
    """Test that number keys change the active panel's sort column."""
    app = _make_app()
    async with app.run_test() as pilot:
        assert app.ctx.cpu_table.state.sort is CpuSort.CPU
        await pilot.press("1")
        assert app.ctx.cpu_table.state.sort is CpuSort.PID
        await pilot.press("tab")
        assert app.ctx.active_panel is Panel.GPU


@pytest.mark.asyncio
async def test_app_kill_dialog():
    """Test the kill confirmation overlay and its answer."""
    control = NoopControl()
    app = _make_app(control=control)
    async with app.run_test(size=(160, 48)) as pilot:
        await pilot.press("delete")
        assert app.ctx.workflow.is_pending
        assert pilot.app.query_one("#overlay").display
        assert not pilot.app.query_one("#main").display

        await pilot.press("y")

        assert not app.ctx.workflow.is_pending
        assert control.sent and control.sent[0][0] == 100
        assert pilot.app.query_one("#status").display


@pytest.mark.asyncio
async def test_app_help_overlay():
    """Test ? opens help and the next key closes it."""
    app = _make_app()
    async with app.run_test() as pilot:
        await pilot.press("question_mark")
        assert app.ctx.show_help
        await pilot.press("q")
        assert not app.ctx.show_help
        assert not pilot.app._exit


@pytest.mark.asyncio
async def test_app_graphs_every_gpu():
    """Test each reporting GPU gets its own history row."""
    app = _make_app(gpu_backend=FakeGpuBackend(make_gpu_snapshot(gpu_count=2)))
    async with app.run_test(size=(160, 48)) as pilot:
        await pilot.pause()
        graph = pilot.app.query_one("#gpu-graphs", GpuHistoryGraph)
        rows = list(graph.query(".gpu-row").results(Horizontal))

        assert [row.display for row in rows] == [True, True, False, False]
        for row in rows[:2]:
            assert row.query_one(".util", Sparkline).data[-1] == 50.0
            assert row.query_one(".mem", Sparkline).data[-1] == 50.0
