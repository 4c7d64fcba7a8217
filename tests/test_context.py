"""Tests for the session context: key handling, refresh cadence and mouse input."""

from dataclasses import replace

import pytest

from conftest import FakeGpuBackend, make_gpu_process, make_gpu_snapshot
from nvglances.actions import ActionWorkflow, SignalKind, SignalOutcome
from nvglances.config import Settings
from nvglances.context import (
    MonitorContext,
    MouseInput,
    MouseKind,
    TickClock,
    apply_key,
    apply_mouse,
    expire_status,
    plan_layout,
    refresh,
    refresh_if_due,
)
from nvglances.history import CPU
from nvglances.layout import SlotKind
from nvglances.monitor import SnapshotAggregator
from nvglances.table import CpuSort, GpuSort, Panel, Rect


class FakeClock:
    def __init__(self):
        self.t = 0.0

    def __call__(self):
        return self.t


class RecordingControl:
    def __init__(self):
        self.sent = []

    def send(self, pid, kind):
        self.sent.append((pid, kind))
        return SignalOutcome.SENT


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def control():
    return RecordingControl()


@pytest.fixture
def ctx(telemetry, clock, control):
    backend = FakeGpuBackend(
        make_gpu_snapshot([make_gpu_process(100, memory=10), make_gpu_process(300, memory=20)])
    )
    context = MonitorContext(
        aggregator=SnapshotAggregator(telemetry=telemetry, gpu_backend=backend),
        clock=TickClock(1000, clock=clock),
        workflow=ActionWorkflow(control),
        now=clock,
    )
    refresh(context)
    return context


class TestTickClock:
    """Tests for refresh scheduling."""

    def test_interval_is_clamped(self, clock):
        """Intervals stay inside 100-5000 ms."""
        assert TickClock(50, clock=clock).interval_ms == 100
        assert TickClock(9000, clock=clock).interval_ms == 5000

    def test_timeout_counts_down(self, clock):
        """The wait shrinks as time passes and never goes negative."""
        tick = TickClock(1000, clock=clock)
        clock.t = 0.3
        assert tick.timeout() == pytest.approx(0.7)
        assert not tick.due()
        clock.t = 1.5
        assert tick.timeout() == 0.0
        assert tick.due()

    def test_mark_returns_elapsed(self, clock):
        """Marking starts a new interval and reports the time since the last one."""
        tick = TickClock(1000, clock=clock)
        clock.t = 1.25
        assert tick.mark() == pytest.approx(1.25)
        assert tick.since_last() == 0.0

    def test_interval_change_applies_next_decision(self, clock):
        """A new interval is used by the next timeout computation."""
        tick = TickClock(1000, clock=clock)
        clock.t = 0.3
        tick.interval_ms = 500
        assert tick.timeout() == pytest.approx(0.2)


class TestRefresh:
    """Tests for the refresh phase."""

    def test_refresh_only_when_due(self, ctx, clock):
        """A refresh happens once the interval has elapsed."""
        first = ctx.snapshot
        clock.t = 0.5
        assert not refresh_if_due(ctx)
        assert ctx.snapshot is first

        clock.t = 1.0
        assert refresh_if_due(ctx)
        assert ctx.snapshot is not first

    def test_refresh_records_history(self, ctx):
        """Each refresh appends to the history."""
        assert ctx.history.series(CPU)[-1] == 25.0
        assert ctx.history.gpu_count == 1

    def test_from_settings(self, telemetry):
        """Settings seed the context."""
        settings = Settings(refresh_ms=250, compact=True, show_graphs=False, show_all=True)
        context = MonitorContext.from_settings(settings, SnapshotAggregator(telemetry=telemetry))

        assert context.clock.interval_ms == 250
        assert context.compact
        assert not context.show_graphs
        assert context.cpu_table.state.show_all

    def test_status_expires(self, ctx, clock):
        """Status messages disappear after three seconds."""
        ctx.set_status("hello")
        clock.t = 2.0
        expire_status(ctx)
        assert ctx.status is not None
        clock.t = 3.5
        expire_status(ctx)
        assert ctx.status is None

    def test_plan_layout(self, ctx):
        """The layout sees the GPU from the current snapshot."""
        result = plan_layout(ctx, 200, 50)
        assert result.has(SlotKind.GPU_CARDS)
        assert ctx.plan is result


class TestApplyKey:
    """Tests for key handling."""

    def test_quit_keys(self, ctx):
        """q, Escape and Ctrl-C stop the session."""
        for key, ctrl in (("q", False), ("escape", False), ("c", True)):
            ctx.running = True
            apply_key(ctx, key, ctrl)
            assert not ctx.running

    def test_refresh_interval_bounds(self, ctx):
        """+ and - step by 100 ms and stay inside the bounds."""
        apply_key(ctx, "+")
        assert ctx.clock.interval_ms == 900
        apply_key(ctx, "-")
        apply_key(ctx, "-")
        assert ctx.clock.interval_ms == 1100

        ctx.clock.interval_ms = 100
        apply_key(ctx, "+")
        assert ctx.clock.interval_ms == 100
        ctx.clock.interval_ms = 5000
        apply_key(ctx, "-")
        assert ctx.clock.interval_ms == 5000

    def test_toggles(self, ctx):
        """Display toggles flip their flags."""
        apply_key(ctx, "g")
        apply_key(ctx, "c")
        assert not ctx.show_graphs
        assert ctx.compact

    def test_show_all(self, ctx):
        """a reveals idle processes in the CPU table."""
        assert len(ctx.cpu_table.view) == 1
        apply_key(ctx, "a")
        assert len(ctx.cpu_table.view) == 2

    def test_sort_is_per_panel(self, ctx):
        """Sort keys change only the active panel."""
        apply_key(ctx, "1")
        apply_key(ctx, "tab")
        apply_key(ctx, "4")

        assert ctx.active_panel is Panel.GPU
        assert ctx.cpu_table.state.sort is CpuSort.PID
        assert ctx.gpu_table.state.sort is GpuSort.DEVICE

    def test_reverse(self, ctx):
        """r flips the active panel's direction."""
        apply_key(ctx, "r")
        assert not ctx.cpu_table.state.descending
        assert ctx.gpu_table.state.descending

    def test_navigation(self, ctx):
        """Arrow keys, j/k and Home/End move the selection."""
        apply_key(ctx, "tab")
        apply_key(ctx, "j")
        assert ctx.gpu_table.state.selected == 1
        apply_key(ctx, "up")
        assert ctx.gpu_table.state.selected == 0
        apply_key(ctx, "end")
        assert ctx.gpu_table.state.selected == 1
        apply_key(ctx, "home")
        assert ctx.gpu_table.state.selected == 0

    def test_help_swallows_next_key(self, ctx):
        """While help is shown, any key only closes it."""
        apply_key(ctx, "?")
        assert ctx.show_help

        apply_key(ctx, "q")

        assert not ctx.show_help
        assert ctx.running

    def test_filter_editing(self, ctx):
        """/ starts editing; typed keys go to the filter, not the key map."""
        apply_key(ctx, "a")
        apply_key(ctx, "/")
        for key in "ssh":
            apply_key(ctx, key)

        assert ctx.editing_filter
        assert ctx.cpu_table.state.filter_text == "ssh"
        assert [p.pid for p in ctx.cpu_table.view] == [200]

        apply_key(ctx, "backspace")
        apply_key(ctx, "enter")
        assert not ctx.editing_filter
        assert ctx.cpu_table.state.filter_text == "ss"

    def test_filter_escape_clears(self, ctx):
        """Escape while editing clears the filter without quitting."""
        apply_key(ctx, "/")
        apply_key(ctx, "x")
        apply_key(ctx, "escape")

        assert ctx.running
        assert not ctx.editing_filter
        assert ctx.cpu_table.state.filter_text == ""


class TestKillFlow:
    """Tests for kill requests through the key map."""

    def test_delete_then_confirm(self, ctx, control):
        """Delete asks for confirmation; y sends SIGTERM to the frozen pid."""
        apply_key(ctx, "delete")
        assert ctx.workflow.pending.pid == 100

        apply_key(ctx, "y")

        assert control.sent == [(100, SignalKind.TERMINATE)]
        assert ctx.status.text == "Sent SIGTERM to PID 100"

    def test_confirm_after_reorder_targets_frozen_pid(self, ctx, telemetry, control):
        """A refresh that reorders the table does not change the kill target."""
        second = replace(telemetry.raw_processes[0], pid=300, cpu_percent=40.0)
        telemetry.raw_processes.append(second)
        refresh(ctx)
        assert [p.pid for p in ctx.cpu_table.view] == [100, 300]

        apply_key(ctx, "delete")
        telemetry.raw_processes[-1] = replace(telemetry.raw_processes[-1], cpu_percent=390.0)
        refresh(ctx)
        assert [p.pid for p in ctx.cpu_table.view] == [300, 100]
        assert ctx.cpu_table.selected_record().pid == 300

        apply_key(ctx, "y")

        assert control.sent == [(100, SignalKind.TERMINATE)]
        assert ctx.status.text == "Sent SIGTERM to PID 100"

    def test_pending_swallows_keys(self, ctx, control):
        """While a confirmation is pending, other keys do nothing."""
        apply_key(ctx, "k", ctrl=True)
        apply_key(ctx, "q")
        apply_key(ctx, "tab")

        assert ctx.running
        assert ctx.active_panel is Panel.CPU
        assert ctx.workflow.pending.signal is SignalKind.KILL

        apply_key(ctx, "n")
        assert control.sent == []
        assert ctx.status.text == "Kill cancelled"

    def test_gpu_panel_kill(self, ctx, control):
        """Kills from the GPU panel target the selected GPU process."""
        apply_key(ctx, "tab")
        apply_key(ctx, "i", ctrl=True)
        apply_key(ctx, "Y")

        assert control.sent == [(300, SignalKind.INTERRUPT)]

    def test_empty_view_no_request(self, ctx):
        """With nothing selected, a kill key does nothing."""
        apply_key(ctx, "/")
        apply_key(ctx, "z")
        apply_key(ctx, "enter")
        apply_key(ctx, "delete")

        assert not ctx.workflow.is_pending


class TestApplyMouse:
    """Tests for mouse handling."""

    def test_scroll_moves_selection(self, ctx):
        """Scrolling moves the active table's selection."""
        apply_key(ctx, "tab")
        apply_mouse(ctx, MouseInput(MouseKind.SCROLL_DOWN))
        assert ctx.gpu_table.state.selected == 1
        apply_mouse(ctx, MouseInput(MouseKind.SCROLL_UP))
        assert ctx.gpu_table.state.selected == 0

    def test_click_activates_panel(self, ctx):
        """Clicking a table row selects it and activates its panel."""
        ctx.cpu_table.table_rect = Rect(0, 1, 50, 10)
        ctx.gpu_table.table_rect = Rect(50, 1, 50, 10)

        apply_mouse(ctx, MouseInput(MouseKind.DOWN, 60, 4))

        assert ctx.active_panel is Panel.GPU
        assert ctx.gpu_table.state.selected == 1

    def test_ignored_while_pending(self, ctx):
        """Mouse input is ignored during a kill confirmation."""
        apply_key(ctx, "tab")
        apply_key(ctx, "delete")
        apply_mouse(ctx, MouseInput(MouseKind.SCROLL_DOWN))

        assert ctx.gpu_table.state.selected == 0

    def test_ignored_while_help_shown(self, ctx):
        """Mouse input does not reach the tables behind the help overlay."""
        ctx.cpu_table.table_rect = Rect(0, 1, 50, 10)
        ctx.gpu_table.table_rect = Rect(50, 1, 50, 10)
        apply_key(ctx, "?")

        apply_mouse(ctx, MouseInput(MouseKind.DOWN, 60, 4))
        apply_mouse(ctx, MouseInput(MouseKind.SCROLL_DOWN))

        assert ctx.show_help
        assert ctx.active_panel is Panel.CPU
        assert ctx.gpu_table.state.selected == 0
        assert ctx.cpu_table.state.selected == 0
