"""Maps terminal geometry and display toggles to a panel composition plan."""

from dataclasses import dataclass
from enum import Enum

HEADER_HEIGHT = 1
FOOTER_HEIGHT = 1
STATUS_HEIGHT = 1

MIN_TABLE_HEIGHT = 3

SYSTEM_COMPACT_HEIGHT = 15
SYSTEM_COMPACT_WIDTH = 60
GPU_COMPACT_HEIGHT = 15
GPU_COMPACT_WIDTH = 50

GRAPH_MIN_HEIGHT = 12
GRAPH_HEIGHT = 4
GRAPH_TALL_HEIGHT = 6
SYSTEM_GRAPH_TALL_AT = 28
GPU_GRAPH_TALL_AT = 25

GAUGE_HEIGHT = 3
SUMMARY_HEIGHT = 2
SWAP_MIN_HEIGHT = 14
NETWORK_MIN_HEIGHT = 18
NETWORK_HEIGHT = 4
DISK_MIN_HEIGHT = 22
DISK_HEIGHT = 4

GPU_CARD_FULL = 5
GPU_CARD_BORDERED = 3
GPU_CARD_LINE = 1
GPU_CARD_FULL_MIN_HEIGHT = 20
# Rows of the GPU column kept free for the process table when sizing cards
GPU_RESERVED_ROWS = 5


class SlotKind(Enum):
    """Sub-panels the render surface knows how to draw."""

    SUMMARY = "summary"
    CPU_GAUGE = "cpu_gauge"
    MEMORY_GAUGE = "memory_gauge"
    SWAP_GAUGE = "swap_gauge"
    SYSTEM_GRAPHS = "system_graphs"
    NETWORK = "network"
    DISK = "disk"
    CPU_PROCESSES = "cpu_processes"
    GPU_CARDS = "gpu_cards"
    GPU_GRAPHS = "gpu_graphs"
    GPU_PROCESSES = "gpu_processes"
    NO_GPU = "no_gpu"


@dataclass(slots=True, frozen=True)
class Slot:
    kind: SlotKind
    height: int


@dataclass(slots=True, frozen=True)
class LayoutPlan:
    """Concrete panel composition for one frame."""

    width: int
    height: int
    content_height: int
    has_status: bool
    system: tuple[Slot, ...]
    gpu: tuple[Slot, ...]
    system_compact: bool
    gpu_compact: bool
    gpu_card_height: int = 0
    gpu_cards_shown: int = 0

    @property
    def compact(self) -> bool:
        """Whether either column fell back to compact mode."""
        return self.system_compact or self.gpu_compact

    @property
    def slots(self) -> tuple[Slot, ...]:
        return self.system + self.gpu

    def has(self, kind: SlotKind) -> bool:
        """Whether a slot of ``kind`` is in the plan."""
        return any(slot.kind is kind for slot in self.slots)

    def height_of(self, kind: SlotKind) -> int:
        """Height of the slot of ``kind``, or 0 when it is absent."""
        for slot in self.slots:
            if slot.kind is kind:
                return slot.height
        return 0


def _fill(slots: list[Slot], kind: SlotKind, column_height: int) -> tuple[Slot, ...]:
    used = sum(slot.height for slot in slots)
    slots.append(Slot(kind, max(column_height - used, MIN_TABLE_HEIGHT)))
    return tuple(slots)


def _graph_height(column_height: int, show_graphs: bool, tall_at: int) -> int:
    if not show_graphs or column_height < GRAPH_MIN_HEIGHT:
        return 0
    return GRAPH_TALL_HEIGHT if column_height >= tall_at else GRAPH_HEIGHT


def plan_system_column(
    width: int, height: int, compact: bool, show_graphs: bool
) -> tuple[tuple[Slot, ...], bool]:
    """Slots of the system column and whether it is compact."""
    compact = compact or height < SYSTEM_COMPACT_HEIGHT or width < SYSTEM_COMPACT_WIDTH
    graph_height = _graph_height(height, show_graphs, SYSTEM_GRAPH_TALL_AT)

    slots: list[Slot] = []
    if compact:
        slots.append(Slot(SlotKind.SUMMARY, SUMMARY_HEIGHT))
        if graph_height:
            slots.append(Slot(SlotKind.SYSTEM_GRAPHS, graph_height))
        return _fill(slots, SlotKind.CPU_PROCESSES, height), True

    slots.append(Slot(SlotKind.CPU_GAUGE, GAUGE_HEIGHT))
    slots.append(Slot(SlotKind.MEMORY_GAUGE, GAUGE_HEIGHT))
    if height >= SWAP_MIN_HEIGHT:
        slots.append(Slot(SlotKind.SWAP_GAUGE, GAUGE_HEIGHT))
    if graph_height:
        slots.append(Slot(SlotKind.SYSTEM_GRAPHS, graph_height))
    if height >= NETWORK_MIN_HEIGHT:
        slots.append(Slot(SlotKind.NETWORK, NETWORK_HEIGHT))
    if height >= DISK_MIN_HEIGHT:
        slots.append(Slot(SlotKind.DISK, DISK_HEIGHT))
    return _fill(slots, SlotKind.CPU_PROCESSES, height), False


def gpu_card_size(height: int, gpu_count: int, compact: bool, graph_height: int) -> tuple[int, int]:
    """
    (card height, cards shown) for the GPU column.

    Cards step down full -> bordered -> single line as the rows per device
    shrink; devices that would not fit even as single lines are not shown.
    """
    if gpu_count <= 0:
        return 0, 0
    if compact:
        card = GPU_CARD_LINE
    elif height < GPU_CARD_FULL_MIN_HEIGHT:
        card = GPU_CARD_BORDERED
    else:
        card = GPU_CARD_FULL

    available = max(height - GPU_RESERVED_ROWS - graph_height, GPU_CARD_LINE)
    per_device = available // gpu_count
    while card > GPU_CARD_LINE and per_device < card:
        card = GPU_CARD_BORDERED if card == GPU_CARD_FULL else GPU_CARD_LINE

    shown = min(gpu_count, max(available // card, 1))
    return card, shown


def plan_gpu_column(
    width: int,
    height: int,
    compact: bool,
    show_graphs: bool,
    gpu_present: bool,
    gpu_count: int,
) -> tuple[tuple[Slot, ...], bool, int, int]:
    """Slots of the GPU column, compactness, card height and cards shown."""
    if not gpu_present:
        return (Slot(SlotKind.NO_GPU, height),), compact, 0, 0

    compact = compact or height < GPU_COMPACT_HEIGHT or width < GPU_COMPACT_WIDTH
    graph_height = _graph_height(height, show_graphs, GPU_GRAPH_TALL_AT)
    card, shown = gpu_card_size(height, gpu_count, compact, graph_height)

    slots: list[Slot] = []
    if shown:
        slots.append(Slot(SlotKind.GPU_CARDS, card * shown))
    if graph_height:
        slots.append(Slot(SlotKind.GPU_GRAPHS, graph_height))
    return _fill(slots, SlotKind.GPU_PROCESSES, height), compact, card, shown


def plan(
    width: int,
    height: int,
    *,
    compact: bool = False,
    show_graphs: bool = True,
    gpu_present: bool = False,
    gpu_count: int = 1,
    has_status: bool = False,
) -> LayoutPlan:
    """
    Compute the panel plan for a terminal of ``width`` x ``height`` cells.

    Pure: the same inputs always give the same plan, so it is recomputed
    every frame.
    """
    width = max(width, 0)
    height = max(height, 0)
    chrome = HEADER_HEIGHT + FOOTER_HEIGHT + (STATUS_HEIGHT if has_status else 0)
    content_height = max(height - chrome, 0)
    system_width = width // 2
    gpu_width = width - system_width

    system, system_compact = plan_system_column(system_width, content_height, compact, show_graphs)
    gpu, gpu_compact, card, shown = plan_gpu_column(
        gpu_width,
        content_height,
        compact,
        show_graphs,
        gpu_present,
        gpu_count if gpu_present else 0,
    )
    return LayoutPlan(
        width=width,
        height=height,
        content_height=content_height,
        has_status=has_status,
        system=system,
        gpu=gpu,
        system_compact=system_compact,
        gpu_compact=gpu_compact,
        gpu_card_height=card,
        gpu_cards_shown=shown,
    )
