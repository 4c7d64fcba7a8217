"""Explicit state of one nvglances session and the phases that mutate it.

Each phase (input, refresh, layout) takes the context as an argument; nothing
is stored in module globals.
"""

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from nvglances import layout
from nvglances.actions import ActionWorkflow, SignalKind
from nvglances.config import MAX_REFRESH_MS, MIN_REFRESH_MS, Settings, clamp_refresh_ms
from nvglances.history import HistoryBuffers
from nvglances.models import Snapshot
from nvglances.monitor import SnapshotAggregator
from nvglances.table import Panel, ProcessTableController

STATUS_TTL_SECONDS = 3.0
REFRESH_STEP_MS = 100
PAGE_SIZE = 10
SCROLL_STEP = 3

KILL_KEYS: dict[tuple[str, bool], SignalKind] = {
    ("delete", False): SignalKind.TERMINATE,
    ("t", True): SignalKind.TERMINATE,
    ("k", True): SignalKind.KILL,
    ("i", True): SignalKind.INTERRUPT,
}


class TickClock:
    """
    Refresh scheduling for the single-threaded loop.

    The input wait is bounded by ``timeout()``, so refreshes keep their cadence
    however irregularly input arrives. Interval changes apply from the next
    scheduling decision.
    """

    def __init__(self, interval_ms: int, clock: Callable[[], float] = time.monotonic) -> None:
        """
        Initialize the TickClock.

        Args:
            interval_ms: Refresh interval, clamped to 100-5000 ms.
            clock: Monotonic time source in seconds. Default time.monotonic.
        """
        self._clock = clock
        self._interval_ms = clamp_refresh_ms(interval_ms)
        self._last = clock()

    @property
    def interval_ms(self) -> int:
        """Get the current refresh interval in milliseconds."""
        return self._interval_ms

    @interval_ms.setter
    def interval_ms(self, value: int) -> None:
        self._interval_ms = clamp_refresh_ms(value)

    @property
    def interval(self) -> float:
        """Refresh interval in seconds."""
        return self._interval_ms / 1000.0

    def since_last(self) -> float:
        """Seconds since the last mark."""
        return self._clock() - self._last

    def timeout(self) -> float:
        """Seconds to wait for input before the next refresh is due."""
        return max(0.0, self.interval - self.since_last())

    def due(self) -> bool:
        """Whether a full interval has passed since the last mark."""
        return self.since_last() >= self.interval

    def mark(self) -> float:
        """Start a new interval; returns the seconds since the previous mark."""
        now = self._clock()
        elapsed = now - self._last
        self._last = now
        return elapsed


class MouseKind(Enum):
    DOWN = "down"
    SCROLL_UP = "scroll_up"
    SCROLL_DOWN = "scroll_down"


@dataclass(slots=True, frozen=True)
class MouseInput:
    kind: MouseKind
    column: int = 0
    row: int = 0


@dataclass(slots=True)
class StatusMessage:
    text: str
    created: float


@dataclass
class MonitorContext:
    """Everything one session owns, handed to each phase in turn."""

    aggregator: SnapshotAggregator
    clock: TickClock
    history: HistoryBuffers = field(default_factory=HistoryBuffers)
    workflow: ActionWorkflow = field(default_factory=ActionWorkflow)
    cpu_table: ProcessTableController = field(
        default_factory=lambda: ProcessTableController(Panel.CPU)
    )
    gpu_table: ProcessTableController = field(
        default_factory=lambda: ProcessTableController(Panel.GPU)
    )
    snapshot: Snapshot | None = None
    active_panel: Panel = Panel.CPU
    compact: bool = False
    show_graphs: bool = True
    show_help: bool = False
    editing_filter: bool = False
    running: bool = True
    status: StatusMessage | None = None
    plan: layout.LayoutPlan | None = None
    now: Callable[[], float] = time.monotonic

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        aggregator: SnapshotAggregator,
        workflow: ActionWorkflow | None = None,
    ) -> "MonitorContext":
        """
        Build a context seeded from command line settings.

        Args:
            settings: Parsed command line settings.
            aggregator: Snapshot source for every refresh.
            workflow: Kill confirmation workflow. Default uses psutil.
        """
        ctx = cls(
            aggregator=aggregator,
            clock=TickClock(settings.refresh_ms),
            workflow=workflow or ActionWorkflow(),
            compact=settings.compact,
            show_graphs=settings.show_graphs,
        )
        ctx.cpu_table.state.show_all = settings.show_all
        return ctx

    @property
    def active_table(self) -> ProcessTableController:
        """The table that receives navigation, sort and kill keys."""
        return self.cpu_table if self.active_panel is Panel.CPU else self.gpu_table

    def set_status(self, text: str) -> None:
        """Show ``text`` in the status line for a few seconds."""
        self.status = StatusMessage(text, self.now())

    def derive_views(self) -> None:
        """Re-derive both table views from the current snapshot."""
        self.cpu_table.derive_view(self.snapshot)
        self.gpu_table.derive_view(self.snapshot)


def refresh(ctx: MonitorContext) -> Snapshot:
    """Take a new snapshot and append it to the history."""
    elapsed = ctx.clock.mark()
    ctx.snapshot = ctx.aggregator.refresh(elapsed)
    ctx.history.record(ctx.snapshot)
    ctx.derive_views()
    return ctx.snapshot


def refresh_if_due(ctx: MonitorContext) -> bool:
    """Refresh if the interval has elapsed; returns whether it did."""
    if not ctx.clock.due():
        return False
    refresh(ctx)
    return True


def expire_status(ctx: MonitorContext) -> None:
    """Drop the status message once it is older than three seconds."""
    if ctx.status is not None and ctx.now() - ctx.status.created > STATUS_TTL_SECONDS:
        ctx.status = None


def plan_layout(ctx: MonitorContext, width: int, height: int) -> layout.LayoutPlan:
    """Plan the frame for a terminal of ``width`` x ``height`` and keep it on the context."""
    gpu = ctx.snapshot.gpu if ctx.snapshot is not None else None
    ctx.plan = layout.plan(
        width,
        height,
        compact=ctx.compact,
        show_graphs=ctx.show_graphs,
        gpu_present=gpu is not None,
        gpu_count=len(gpu.gpus) if gpu is not None else 0,
        has_status=ctx.status is not None,
    )
    return ctx.plan


def request_kill(ctx: MonitorContext, kind: SignalKind) -> bool:
    """Freeze the active panel's selected process into a kill confirmation."""
    table = ctx.active_table
    table.derive_view(ctx.snapshot)
    return ctx.workflow.request(table.selected_record(), kind)


def _apply_filter_key(ctx: MonitorContext, key: str) -> None:
    state = ctx.active_table.state
    if key == "enter":
        ctx.editing_filter = False
    elif key == "escape":
        state.filter_text = ""
        ctx.editing_filter = False
    elif key == "backspace":
        state.filter_text = state.filter_text[:-1]
    elif len(key) == 1 and key.isprintable():
        state.filter_text += key
    else:
        return
    ctx.active_table.derive_view(ctx.snapshot)


def apply_key(ctx: MonitorContext, key: str, ctrl: bool = False) -> None:
    """
    Apply one key press.

    A pending kill confirmation sees every key first and swallows anything
    that is not an answer; then the help overlay, then filter editing.
    """
    if ctx.workflow.is_pending:
        message = ctx.workflow.answer(key)
        if message is not None:
            ctx.set_status(message)
        return

    if ctx.show_help:
        ctx.show_help = False
        return

    if ctx.editing_filter and not ctrl:
        _apply_filter_key(ctx, key)
        return

    if ctrl:
        if key == "c":
            ctx.running = False
            return
        kind = KILL_KEYS.get((key, True))
        if kind is not None:
            request_kill(ctx, kind)
        return

    table = ctx.active_table
    if key in ("q", "escape"):
        ctx.running = False
    elif key in ("?", "f1"):
        ctx.show_help = True
    elif key == "tab":
        ctx.active_panel = Panel.GPU if ctx.active_panel is Panel.CPU else Panel.CPU
    elif key == "a":
        ctx.cpu_table.state.show_all = not ctx.cpu_table.state.show_all
        ctx.cpu_table.derive_view(ctx.snapshot)
    elif key == "g":
        ctx.show_graphs = not ctx.show_graphs
    elif key == "c":
        ctx.compact = not ctx.compact
    elif table.select_sort_key(key):
        table.derive_view(ctx.snapshot)
    elif key == "r":
        table.state.reverse()
        table.derive_view(ctx.snapshot)
    elif key == "/":
        table.state.filter_text = ""
        ctx.editing_filter = True
        table.derive_view(ctx.snapshot)
    elif key in ("down", "j"):
        table.move(1)
    elif key in ("up", "k"):
        table.move(-1)
    elif key == "pagedown":
        table.move(PAGE_SIZE)
    elif key == "pageup":
        table.move(-PAGE_SIZE)
    elif key == "home":
        table.move_to_start()
    elif key == "end":
        table.move_to_end()
    elif key in ("+", "="):
        ctx.clock.interval_ms = max(ctx.clock.interval_ms - REFRESH_STEP_MS, MIN_REFRESH_MS)
    elif key == "-":
        ctx.clock.interval_ms = min(ctx.clock.interval_ms + REFRESH_STEP_MS, MAX_REFRESH_MS)
    elif (key, False) in KILL_KEYS:
        request_kill(ctx, KILL_KEYS[(key, False)])


def apply_mouse(ctx: MonitorContext, event: MouseInput) -> None:
    """Apply one mouse event; ignored while a kill confirmation or help is shown."""
    if ctx.workflow.is_pending or ctx.show_help:
        return
    if event.kind is MouseKind.SCROLL_DOWN:
        ctx.active_table.move(SCROLL_STEP)
    elif event.kind is MouseKind.SCROLL_UP:
        ctx.active_table.move(-SCROLL_STEP)
    else:
        for panel, table in ((Panel.CPU, ctx.cpu_table), (Panel.GPU, ctx.gpu_table)):
            if table.hit(event.column, event.row):
                ctx.active_panel = panel
                table.click(event.column, event.row)
                return
