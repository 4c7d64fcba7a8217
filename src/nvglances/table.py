"""Sort, filter and selection state for the CPU and GPU process tables."""

import math
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from functools import cmp_to_key
from typing import Any, NamedTuple

from nvglances.models import GpuProcessRecord, ProcessRecord, Snapshot, merge_gpu_processes

# Rows between the top of the table rectangle and the first data row:
# border line plus column header.
HEADER_OFFSET = 2

ACTIVE_CPU_THRESHOLD = 0.0
ACTIVE_MEMORY_THRESHOLD = 0.1


class Panel(Enum):
    """Which process table a controller drives."""

    CPU = "cpu"
    GPU = "gpu"


class CpuSort(Enum):
    """Sort columns of the CPU process table."""

    PID = "pid"
    NAME = "name"
    USER = "user"
    CPU = "cpu"
    MEMORY = "mem"


class GpuSort(Enum):
    """Sort columns of the GPU process table."""

    PID = "pid"
    NAME = "name"
    USER = "user"
    DEVICE = "gpu"
    GPU_MEMORY = "gpu_mem"


# Number keys 1-6 keep the same positions on both panels; each panel maps
# them onto its own columns.
SORT_KEYS: dict[Panel, dict[str, Enum]] = {
    Panel.CPU: {
        "1": CpuSort.PID,
        "2": CpuSort.NAME,
        "3": CpuSort.USER,
        "4": CpuSort.CPU,
        "5": CpuSort.MEMORY,
        "6": CpuSort.MEMORY,
    },
    Panel.GPU: {
        "1": GpuSort.PID,
        "2": GpuSort.NAME,
        "3": GpuSort.USER,
        "4": GpuSort.DEVICE,
        "5": GpuSort.GPU_MEMORY,
        "6": GpuSort.GPU_MEMORY,
    },
}

DEFAULT_SORT: dict[Panel, Enum] = {
    Panel.CPU: CpuSort.CPU,
    Panel.GPU: GpuSort.GPU_MEMORY,
}


class Rect(NamedTuple):
    """Screen rectangle in cells."""

    x: int
    y: int
    width: int
    height: int

    def contains(self, column: int, row: int) -> bool:
        """Whether the cell at ``column``, ``row`` lies inside the rectangle."""
        return self.x <= column < self.x + self.width and self.y <= row < self.y + self.height


@dataclass(slots=True)
class TableState:
    """User-controlled view state of one process table."""

    sort: Enum
    descending: bool = True
    filter_text: str = ""
    selected: int = 0
    show_all: bool = False
    scroll_offset: int = 0

    def select_sort(self, column: Enum) -> None:
        """Re-selecting the active column flips direction; a new column sorts descending."""
        if column == self.sort:
            self.descending = not self.descending
        else:
            self.sort = column
            self.descending = True

    def reverse(self) -> None:
        """Flip the sort direction."""
        self.descending = not self.descending


def _compare_floats(a: float, b: float) -> int:
    """Three-way compare where NaN is equal to everything."""
    if math.isnan(a) or math.isnan(b):
        return 0
    return (a > b) - (a < b)


def _float_key(attr: str) -> Callable[[Any], Any]:
    compare = cmp_to_key(_compare_floats)
    return lambda record: compare(getattr(record, attr))


_CPU_KEYS: dict[CpuSort, Callable[[ProcessRecord], Any]] = {
    CpuSort.PID: lambda p: p.pid,
    CpuSort.NAME: lambda p: p.name.lower(),
    CpuSort.USER: lambda p: p.user.lower(),
    CpuSort.CPU: _float_key("cpu_percent"),
    CpuSort.MEMORY: _float_key("memory_percent"),
}

_GPU_KEYS: dict[GpuSort, Callable[[GpuProcessRecord], Any]] = {
    GpuSort.PID: lambda p: p.pid,
    GpuSort.NAME: lambda p: p.name.lower(),
    GpuSort.USER: lambda p: p.user.lower(),
    GpuSort.DEVICE: lambda p: p.gpu_index,
    GpuSort.GPU_MEMORY: lambda p: p.gpu_memory,
}


def is_active(record: ProcessRecord) -> bool:
    """Whether a process passes the default activity filter."""
    return (
        record.cpu_percent > ACTIVE_CPU_THRESHOLD
        or record.memory_percent > ACTIVE_MEMORY_THRESHOLD
    )


def matches_filter(record: ProcessRecord | GpuProcessRecord, text: str) -> bool:
    """Case-insensitive substring match on name, user or command."""
    needle = text.lower()
    return (
        needle in record.name.lower()
        or needle in record.user.lower()
        or needle in record.command.lower()
    )


def derive_cpu_view(snapshot: Snapshot | None, state: TableState) -> list[ProcessRecord]:
    """Filtered, sorted CPU processes for one frame."""
    if snapshot is None:
        return []
    records = list(snapshot.processes)
    if not state.show_all:
        records = [p for p in records if is_active(p)]
    if state.filter_text:
        records = [p for p in records if matches_filter(p, state.filter_text)]
    # sorted() is stable in both directions, so ties keep their input order
    return sorted(records, key=_CPU_KEYS[state.sort], reverse=state.descending)


def derive_gpu_view(snapshot: Snapshot | None, state: TableState) -> list[GpuProcessRecord]:
    """Filtered, sorted GPU processes for one frame."""
    if snapshot is None or snapshot.gpu is None:
        return []
    records = merge_gpu_processes(snapshot.gpu.processes)
    if state.filter_text:
        records = [p for p in records if matches_filter(p, state.filter_text)]
    return sorted(records, key=_GPU_KEYS[state.sort], reverse=state.descending)


_DERIVERS: dict[Panel, Callable[[Snapshot | None, TableState], Sequence[Any]]] = {
    Panel.CPU: derive_cpu_view,
    Panel.GPU: derive_gpu_view,
}


class ProcessTableController:
    """
    Owns one panel's TableState and its most recently derived view.

    The selection is an ordinal into the derived view ("the Nth visible
    row"), not a pid. It is clamped whenever the view shrinks, and every
    selection-dependent operation is a no-op on an empty view.
    """

    def __init__(self, panel: Panel, show_all: bool = False) -> None:
        """
        Initialize the ProcessTableController.

        Args:
            panel: Which process table this controller drives.
            show_all: Whether idle processes are listed. Only used by the CPU panel.
        """
        self.panel = panel
        self.state = TableState(sort=DEFAULT_SORT[panel], show_all=show_all)
        self.view: Sequence[Any] = []
        self.table_rect: Rect | None = None

    def derive_view(self, snapshot: Snapshot | None) -> Sequence[Any]:
        """Recompute the view from ``snapshot`` and clamp the selection to it."""
        self.view = _DERIVERS[self.panel](snapshot, self.state)
        self._clamp()
        return self.view

    def _clamp(self) -> None:
        self.state.selected = max(min(self.state.selected, len(self.view) - 1), 0)

    def select_sort_key(self, key: str) -> bool:
        """Apply a number-key sort binding; returns False for unknown keys."""
        column = SORT_KEYS[self.panel].get(key)
        if column is None:
            return False
        self.state.select_sort(column)
        return True

    def move(self, delta: int) -> None:
        """Move the selection by ``delta`` rows, clamped to the view."""
        if not self.view:
            return
        self.state.selected = max(0, min(self.state.selected + delta, len(self.view) - 1))

    def move_to_start(self) -> None:
        """Select the first row."""
        if self.view:
            self.state.selected = 0

    def move_to_end(self) -> None:
        """Select the last row."""
        if self.view:
            self.state.selected = len(self.view) - 1

    def selected_record(self) -> Any | None:
        """The record under the selection, or None for an empty view."""
        if not self.view:
            return None
        return self.view[self.state.selected]

    def hit(self, column: int, row: int) -> bool:
        """Whether a screen cell lies inside the last drawn table."""
        return self.table_rect is not None and self.table_rect.contains(column, row)

    def click(self, column: int, row: int) -> bool:
        """Select the row under a mouse click; returns False if nothing was selected."""
        if not self.hit(column, row):
            return False
        relative = row - (self.table_rect.y + HEADER_OFFSET)
        if relative < 0:
            return False
        ordinal = self.state.scroll_offset + relative
        if ordinal >= len(self.view):
            return False
        self.state.selected = ordinal
        return True

    def visible_window(self, rows: int) -> Sequence[Any]:
        """
        Slice of the view that fits in ``rows`` lines.

        The scroll offset only moves when the selection would otherwise fall
        outside the window.
        """
        if rows <= 0 or not self.view:
            self.state.scroll_offset = 0
            return []
        offset = min(self.state.scroll_offset, max(len(self.view) - rows, 0))
        selected = self.state.selected
        if selected < offset:
            offset = selected
        elif selected >= offset + rows:
            offset = selected - rows + 1
        self.state.scroll_offset = offset
        return self.view[offset : offset + rows]
