"""nvglances - Main Textual application."""

import logging

from textual import events
from textual.app import App, ComposeResult
from textual.containers import Container, Horizontal, Vertical
from textual.timer import Timer

from nvglances.actions import ActionWorkflow
from nvglances.config import Settings, configure_logging, parse_args
from nvglances.context import (
    MonitorContext,
    MouseInput,
    MouseKind,
    apply_key,
    apply_mouse,
    expire_status,
    plan_layout,
    refresh,
    refresh_if_due,
)
from nvglances.gpu import probe_gpu_backend
from nvglances.layout import LayoutPlan, SlotKind
from nvglances.monitor import SnapshotAggregator
from nvglances.table import Panel, Rect
from nvglances.widgets import (
    DialogBox,
    DiskTable,
    FooterBar,
    Gauge,
    GpuCards,
    GpuHistoryGraph,
    HeaderBar,
    HistoryGraph,
    NetworkTable,
    NoGpuPanel,
    ProcessTableView,
    StatusBar,
    SummaryLines,
    format_bytes,
    show_gpu_graphs,
    show_system_graphs,
)

logger = logging.getLogger(__name__)

# Minimum timer delay; a zero-length timer would spin the event loop
_MIN_TIMER_DELAY = 0.01

# Bordered table: top border, header row, bottom border
_TABLE_CHROME_ROWS = 3

SLOT_WIDGETS: dict[SlotKind, str] = {
    SlotKind.SUMMARY: "summary",
    SlotKind.CPU_GAUGE: "cpu-gauge",
    SlotKind.MEMORY_GAUGE: "mem-gauge",
    SlotKind.SWAP_GAUGE: "swap-gauge",
    SlotKind.SYSTEM_GRAPHS: "system-graphs",
    SlotKind.NETWORK: "network",
    SlotKind.DISK: "disk",
    SlotKind.CPU_PROCESSES: "cpu-processes",
    SlotKind.GPU_CARDS: "gpu-cards",
    SlotKind.GPU_GRAPHS: "gpu-graphs",
    SlotKind.GPU_PROCESSES: "gpu-processes",
    SlotKind.NO_GPU: "no-gpu",
}


def normalize_key(event: events.Key) -> tuple[str, bool]:
    """Map a Textual key event to (key, ctrl) as understood by apply_key."""
    if event.key.startswith("ctrl+"):
        return event.key.removeprefix("ctrl+"), True
    if event.is_printable and event.character:
        return event.character, False
    return event.key, False


class NvglancesApp(App):
    """Main nvglances application."""

    TITLE = "nvglances"
    SUB_TITLE = "System and GPU Monitor"
    ENABLE_COMMAND_PALETTE = False

    CSS = """
    Screen {
        layout: vertical;
    }

    #header, #status, #footer {
        height: 1;
    }

    #status {
        display: none;
    }

    #main {
        height: 1fr;
    }

    #system-column, #gpu-column {
        width: 1fr;
    }

    #overlay {
        display: none;
        height: 1fr;
        align: center middle;
    }

    #dialog {
        width: 64;
        height: auto;
        max-height: 100%;
        padding: 0 1;
        border: round $error;
    }

    #dialog.-help {
        border: round $accent;
    }

    Gauge, NetworkTable, DiskTable, HistoryGraph, GpuHistoryGraph, ProcessTableView,
    NoGpuPanel {
        border: round $primary-darken-2;
    }

    ProcessTableView.-active {
        border: round $accent;
    }

    Sparkline {
        height: 1fr;
    }

    .gpu-row {
        height: 1fr;
    }

    .gpu-label {
        width: 5;
    }

    .gpu-row Sparkline {
        width: 1fr;
        margin-right: 1;
    }
    """

    def __init__(
        self,
        settings: Settings | None = None,
        aggregator: SnapshotAggregator | None = None,
        workflow: ActionWorkflow | None = None,
    ) -> None:
        """
        Initialize the NvglancesApp.

        Args:
            settings: Parsed command line settings. Default Settings().
            aggregator: Snapshot source. Default probes for a GPU backend.
            workflow: Kill confirmation workflow. Default uses psutil.
        """
        super().__init__()
        self._settings = settings or Settings()
        if aggregator is None:
            aggregator = SnapshotAggregator(gpu_backend=probe_gpu_backend())
        self.ctx = MonitorContext.from_settings(self._settings, aggregator, workflow)
        self._tick_timer: Timer | None = None

    def compose(self) -> ComposeResult:
        """Compose the application layout."""
        yield HeaderBar(id="header")
        with Horizontal(id="main"):
            with Vertical(id="system-column"):
                yield SummaryLines(id="summary")
                yield Gauge(id="cpu-gauge")
                yield Gauge(id="mem-gauge")
                yield Gauge(id="swap-gauge")
                yield HistoryGraph(id="system-graphs")
                yield NetworkTable(id="network")
                yield DiskTable(id="disk")
                yield ProcessTableView(id="cpu-processes")
            with Vertical(id="gpu-column"):
                yield GpuCards(id="gpu-cards")
                yield GpuHistoryGraph(id="gpu-graphs")
                yield ProcessTableView(id="gpu-processes")
                yield NoGpuPanel(id="no-gpu")
        with Container(id="overlay"):
            yield DialogBox(id="dialog")
        yield StatusBar(id="status")
        yield FooterBar(id="footer")

    def on_mount(self) -> None:
        """Take the first snapshot and start the tick timer."""
        self.query_one("#cpu-gauge").border_title = "CPU"
        self.query_one("#mem-gauge").border_title = "Memory"
        self.query_one("#swap-gauge").border_title = "Swap"
        self.query_one("#network").border_title = "Network"
        self.query_one("#disk").border_title = "Disk"
        refresh(self.ctx)
        self.render_frame()
        self._schedule_tick()

    def _schedule_tick(self) -> None:
        delay = max(self.ctx.clock.timeout(), _MIN_TIMER_DELAY)
        self._tick_timer = self.set_timer(delay, self._on_tick)

    def _on_tick(self) -> None:
        """One scheduled tick: refresh when due, then draw."""
        if refresh_if_due(self.ctx):
            logger.debug("Refreshed snapshot")
        self.render_frame()
        self._schedule_tick()

    def on_resize(self, event: events.Resize) -> None:
        """Redraw with a plan for the new terminal size."""
        self.render_frame()

    def on_key(self, event: events.Key) -> None:
        """Route every key through the context before Textual's own bindings."""
        event.prevent_default()
        event.stop()
        key, ctrl = normalize_key(event)
        apply_key(self.ctx, key, ctrl)
        self._after_input()

    def on_click(self, event: events.Click) -> None:
        """Forward a click to the process tables."""
        apply_mouse(self.ctx, MouseInput(MouseKind.DOWN, event.screen_x, event.screen_y))
        self._after_input()

    def on_mouse_scroll_down(self, event: events.MouseScrollDown) -> None:
        """Scroll the active table down."""
        apply_mouse(self.ctx, MouseInput(MouseKind.SCROLL_DOWN))
        self._after_input()

    def on_mouse_scroll_up(self, event: events.MouseScrollUp) -> None:
        """Scroll the active table up."""
        apply_mouse(self.ctx, MouseInput(MouseKind.SCROLL_UP))
        self._after_input()

    def _after_input(self) -> None:
        if not self.ctx.running:
            self.action_quit()
            return
        self.render_frame()

    def action_quit(self) -> None:
        """Handle quit action with graceful cleanup."""
        self.ctx.running = False
        if self._tick_timer is not None:
            self._tick_timer.stop()
        self.ctx.aggregator.gpu_backend.shutdown()
        self.exit()

    def render_frame(self) -> None:
        """Draw one frame from the current context."""
        ctx = self.ctx
        expire_status(ctx)
        plan = plan_layout(ctx, self.size.width, self.size.height)
        ctx.derive_views()

        self.query_one("#header", HeaderBar).show(ctx.snapshot)
        filter_text = ctx.active_table.state.filter_text if ctx.editing_filter else None
        self.query_one("#footer", FooterBar).show(ctx.clock.interval_ms, filter_text)
        status = self.query_one("#status", StatusBar)
        status.display = ctx.status is not None
        if ctx.status is not None:
            status.show(ctx.status.text)

        modal = ctx.workflow.is_pending or ctx.show_help
        self.query_one("#main").display = not modal
        self.query_one("#overlay").display = modal
        if modal:
            self._render_dialog()
            return

        self._apply_plan(plan)
        self._render_system(plan)
        self._render_gpu(plan)

    def _render_dialog(self) -> None:
        dialog = self.query_one("#dialog", DialogBox)
        pending = self.ctx.workflow.pending
        if pending is not None:
            dialog.show_kill(pending)
        else:
            dialog.show_help()

    def _apply_plan(self, plan: LayoutPlan) -> None:
        heights = {slot.kind: slot.height for slot in plan.slots}
        for kind, widget_id in SLOT_WIDGETS.items():
            widget = self.query_one(f"#{widget_id}")
            widget.display = kind in heights
            if kind in heights:
                widget.styles.height = heights[kind]

    def _render_system(self, plan: LayoutPlan) -> None:
        ctx = self.ctx
        snapshot = ctx.snapshot
        if snapshot is None:
            return
        if plan.has(SlotKind.SUMMARY):
            self.query_one("#summary", SummaryLines).show(snapshot)
        if plan.has(SlotKind.CPU_GAUGE):
            freq = f" @ {snapshot.cpu_frequency} MHz" if snapshot.cpu_frequency else ""
            self.query_one("#cpu-gauge", Gauge).show(
                snapshot.cpu_percent,
                f"{snapshot.cpu_percent:.1f}% | {len(snapshot.cpu_percent_per_core)} cores{freq}"
                f" | Procs: {snapshot.process_count} | Threads: {snapshot.thread_count}",
            )
        if plan.has(SlotKind.MEMORY_GAUGE):
            self.query_one("#mem-gauge", Gauge).show(
                snapshot.memory_percent,
                f"{format_bytes(snapshot.memory_used)} / {format_bytes(snapshot.memory_total)}"
                f" ({snapshot.memory_percent:.1f}%)",
            )
        if plan.has(SlotKind.SWAP_GAUGE):
            self.query_one("#swap-gauge", Gauge).show(
                snapshot.swap_percent,
                f"{format_bytes(snapshot.swap_used)} / {format_bytes(snapshot.swap_total)}"
                f" ({snapshot.swap_percent:.1f}%)",
            )
        if plan.has(SlotKind.SYSTEM_GRAPHS):
            show_system_graphs(self.query_one("#system-graphs", HistoryGraph), ctx.history)
        if plan.has(SlotKind.NETWORK):
            self.query_one("#network", NetworkTable).show(snapshot)
        if plan.has(SlotKind.DISK):
            self.query_one("#disk", DiskTable).show(snapshot)
        self._render_table(plan, SlotKind.CPU_PROCESSES, Panel.CPU)

    def _render_gpu(self, plan: LayoutPlan) -> None:
        ctx = self.ctx
        gpu = ctx.snapshot.gpu if ctx.snapshot is not None else None
        if gpu is None:
            ctx.gpu_table.table_rect = None
            return
        if plan.has(SlotKind.GPU_CARDS):
            self.query_one("#gpu-cards", GpuCards).show(
                gpu, plan.gpu_card_height, plan.gpu_cards_shown
            )
        if plan.has(SlotKind.GPU_GRAPHS):
            show_gpu_graphs(self.query_one("#gpu-graphs", GpuHistoryGraph), ctx.history, gpu)
        self._render_table(plan, SlotKind.GPU_PROCESSES, Panel.GPU)

    def _render_table(self, plan: LayoutPlan, kind: SlotKind, panel: Panel) -> None:
        ctx = self.ctx
        controller = ctx.cpu_table if panel is Panel.CPU else ctx.gpu_table
        view = self.query_one(f"#{SLOT_WIDGETS[kind]}", ProcessTableView)
        rows = max(plan.height_of(kind) - _TABLE_CHROME_ROWS, 0)
        view.show(controller, rows, active=ctx.active_panel is panel)
        # Geometry from the last layout pass, used to map mouse clicks to rows
        region = view.region
        controller.table_rect = Rect(region.x, region.y, region.width, region.height)


def main(argv: list[str] | None = None) -> None:
    """Entry point for nvglances application."""
    settings = parse_args(argv)
    configure_logging(settings)
    app = NvglancesApp(settings)
    app.run()


if __name__ == "__main__":
    main()
