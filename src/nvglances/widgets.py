"""Textual widgets that draw one nvglances frame."""

from dataclasses import dataclass
from datetime import datetime

from rich.console import Group
from rich.table import Table
from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Horizontal, Vertical
from textual.widgets import Sparkline, Static

from nvglances.actions import KillConfirmation
from nvglances.history import CPU, MEMORY, HistoryBuffers, gpu_mem_channel, gpu_util_channel
from nvglances.models import GpuBackendKind, GpuRecord, GpuSnapshot, ProcessStatus, Snapshot
from nvglances.table import CpuSort, GpuSort, Panel, ProcessTableController


def format_bytes(size: float) -> str:
    """Format bytes as human-readable string."""
    for unit in ["B", "KiB", "MiB", "GiB", "TiB"]:
        if size < 1024:
            return f"{size:.0f} {unit}" if unit == "B" else f"{size:.1f} {unit}"
        size = size / 1024
    return f"{size:.1f} PiB"


def format_duration(seconds: float) -> str:
    """Uptime as '3d 04h 12m', '04h 12m' or '12m'."""
    seconds = int(seconds)
    days = seconds // 86400
    hours = (seconds % 86400) // 3600
    minutes = (seconds % 3600) // 60
    if days > 0:
        return f"{days}d {hours:02d}h {minutes:02d}m"
    if hours > 0:
        return f"{hours:02d}h {minutes:02d}m"
    return f"{minutes:02d}m"


def truncate(text: str, max_len: int) -> str:
    """Cut ``text`` to ``max_len`` characters, ending with '...' when cut."""
    if len(text) <= max_len:
        return text
    return text[: max(max_len - 3, 0)] + "..."


def usage_color(pct: float) -> str:
    """Color for a usage percentage."""
    if pct >= 90:
        return "red"
    if pct >= 70:
        return "yellow"
    if pct >= 50:
        return "cyan"
    return "green"


def temp_color(celsius: float) -> str:
    if celsius >= 85:
        return "red"
    if celsius >= 70:
        return "yellow"
    if celsius >= 50:
        return "cyan"
    return "green"


def make_bar(pct: float, width: int) -> str:
    """Text progress bar like '[████░░░░]'."""
    width = max(width, 0)
    filled = min(round(pct / 100 * width), width)
    return "[" + "█" * filled + "░" * (width - filled) + "]"


def bar_text(pct: float, width: int) -> Text:
    """Colored text bar for ``pct``."""
    return Text(make_bar(pct, width), style=usage_color(pct))


class HeaderBar(Static):
    """Host, OS, uptime, load, GPU driver and clock on one line."""

    def show(self, snapshot: Snapshot | None) -> None:
        """Draw the header; a placeholder until the first snapshot."""
        if snapshot is None:
            self.update(Text("nvglances | collecting...", style="bold cyan"))
            return
        load = snapshot.load_avg
        text = Text.assemble(
            ("nvglances", "bold cyan"),
            " | ",
            (snapshot.hostname, "green"),
            " | ",
            (snapshot.os_name, "blue"),
            " | ",
            (f"up {format_duration(snapshot.uptime_seconds)}", "yellow"),
            " | ",
            (f"Load: {load[0]:.2f} {load[1]:.2f} {load[2]:.2f}", "magenta"),
        )
        if snapshot.gpu is not None:
            gpu = snapshot.gpu
            text.append(
                f" | Driver: {gpu.driver_version} | {gpu.api_label}: {gpu.api_version}",
                style="cyan",
            )
        text.append(" | ")
        text.append(datetime.now().strftime("%H:%M:%S"))
        self.update(text)


class FooterBar(Static):
    """Key hints and the current refresh interval."""

    def show(self, refresh_ms: int, filter_text: str | None = None) -> None:
        """Draw the key hints, plus the filter being edited when there is one."""
        text = Text()
        hints = [
            ("?", ":Help "),
            ("Del", ":Kill "),
            ("Tab", ":Switch "),
            ("1-6", ":Sort "),
            ("/", ":Filter "),
            ("a", ":All "),
            ("g", ":Graphs "),
            ("c", ":Compact "),
            ("+/-", f":{refresh_ms}ms "),
            ("q", ":Quit"),
        ]
        for key, label in hints:
            style = "bold red" if key in ("Del", "q") else "bold cyan"
            text.append(f" {key}" if key == "?" else key, style=style)
            text.append(label)
        if filter_text is not None:
            text.append("  Filter: ", style="bold yellow")
            text.append(filter_text + "_")
        self.update(text)


class StatusBar(Static):
    def show(self, message: str) -> None:
        """Draw ``message`` on the highlighted status line."""
        self.update(
            Text.assemble((" STATUS: ", "bold black on yellow"), (f" {message} ", "yellow"))
        )


class Gauge(Static):
    """Bordered single-line bar with a label."""

    def show(self, pct: float, label: str) -> None:
        """Draw a bar filling the width left over by ``label``."""
        width = max(self.size.width - len(label) - 3, 10)
        self.update(Text.assemble(bar_text(pct, width), " ", label))


class SummaryLines(Static):
    """Two-line CPU/memory and network summary used in compact mode."""

    def show(self, snapshot: Snapshot) -> None:
        """Draw the compact CPU, memory and network lines."""
        cpu = snapshot.cpu_percent
        mem = snapshot.memory_percent
        line1 = Text.assemble(
            ("CPU ", "cyan"),
            bar_text(cpu, 10),
            f" {cpu:5.1f}%  ",
            ("MEM ", "magenta"),
            bar_text(mem, 10),
            f" {mem:5.1f}%",
        )
        line2 = Text.assemble(
            ("NET ", "green"),
            f"↓ {format_bytes(snapshot.total_rx_rate)}/s  ",
            f"↑ {format_bytes(snapshot.total_tx_rate)}/s",
        )
        self.update(Group(line1, line2))


class HistoryGraph(Vertical):
    """Two stacked sparklines over a 60-sample history."""

    def compose(self) -> ComposeResult:
        yield Sparkline([], summary_function=max, classes="upper")
        yield Sparkline([], summary_function=max, classes="lower")

    def show(self, upper: list[float], lower: list[float]) -> None:
        """Set the data of the upper and lower sparklines."""
        self.query_one(".upper", Sparkline).data = upper
        self.query_one(".lower", Sparkline).data = lower


def show_system_graphs(graph: HistoryGraph, history: HistoryBuffers) -> None:
    """CPU history on top, memory history below."""
    graph.border_title = "CPU History (CPU=top, MEM=bottom)"
    graph.show(history.series(CPU), history.series(MEMORY))


MAX_GRAPHED_GPUS = 4
GRAPH_COLORS = ("cyan", "magenta", "green", "yellow")


@dataclass(slots=True, frozen=True)
class GpuSeries:
    """History of one device; ``utilization`` is None when the backend has none."""

    label: str
    utilization: list[float] | None
    memory: list[float]


def gpu_graph_series(history: HistoryBuffers, gpu: GpuSnapshot) -> list[GpuSeries]:
    """One labelled series per recorded device, at most four."""
    has_util = gpu.backend is not GpuBackendKind.METAL
    return [
        GpuSeries(
            label=f"GPU{index}",
            utilization=history.series(gpu_util_channel(index)) if has_util else None,
            memory=history.series(gpu_mem_channel(index)),
        )
        for index in range(min(history.gpu_count, MAX_GRAPHED_GPUS))
    ]


class GpuHistoryGraph(Vertical):
    """One row per GPU: a colored label, then utilization and memory sparklines."""

    def compose(self) -> ComposeResult:
        for index in range(MAX_GRAPHED_GPUS):
            with Horizontal(classes=f"gpu-row row-{index}"):
                yield Static(classes="gpu-label")
                yield Sparkline([], summary_function=max, classes="util")
                yield Sparkline([], summary_function=max, classes="mem")

    def show(self, series: list[GpuSeries]) -> None:
        """
        Show the given series and hide the rows of absent devices.

        Args:
            series: Output of gpu_graph_series, one entry per device.
        """
        memory_only = any(s.utilization is None for s in series)
        if memory_only:
            self.border_title = "GPU Memory History"
        else:
            self.border_title = "GPU History (UTIL=left, MEM=right)"
        for index, row in enumerate(self.query(".gpu-row").results(Horizontal)):
            row.display = index < len(series)
            if not row.display:
                continue
            entry = series[index]
            row.query_one(".gpu-label", Static).update(
                Text(entry.label, style=f"bold {GRAPH_COLORS[index]}")
            )
            util = row.query_one(".util", Sparkline)
            util.display = entry.utilization is not None
            if entry.utilization is not None:
                util.data = entry.utilization
            row.query_one(".mem", Sparkline).data = entry.memory


def show_gpu_graphs(graph: GpuHistoryGraph, history: HistoryBuffers, gpu: GpuSnapshot) -> None:
    """Draw the per-device history rows for ``gpu``."""
    graph.show(gpu_graph_series(history, gpu))


class NetworkTable(Static):
    def show(self, snapshot: Snapshot) -> None:
        """Draw rates for every non-loopback interface."""
        table = Table(box=None, expand=True, header_style="bold yellow", padding=(0, 1))
        table.add_column("Interface")
        table.add_column("Download", justify="right")
        table.add_column("Upload", justify="right")
        table.add_column("Total", justify="right")
        for net in snapshot.networks:
            table.add_row(
                Text(truncate(net.interface, 12), style="cyan"),
                f"{format_bytes(net.rx_rate)}/s",
                f"{format_bytes(net.tx_rate)}/s",
                f"↓{format_bytes(net.rx_bytes)} ↑{format_bytes(net.tx_bytes)}",
            )
        self.update(table)


class DiskTable(Static):
    def show(self, snapshot: Snapshot) -> None:
        """Draw usage for every mounted filesystem."""
        table = Table(box=None, expand=True, header_style="bold yellow", padding=(0, 1))
        table.add_column("Mount")
        table.add_column("FS")
        table.add_column("Used/Total")
        table.add_column("Usage")
        table.add_column("%", justify="right")
        for disk in snapshot.disks:
            if disk.total == 0:
                continue
            table.add_row(
                Text(truncate(disk.mount_point, 15), style="cyan"),
                disk.fs_type,
                f"{format_bytes(disk.used)} / {format_bytes(disk.total)}",
                bar_text(disk.percent, 10),
                f"{disk.percent:.1f}%",
            )
        self.update(table)


_STATUS_STYLE = {
    ProcessStatus.RUNNING: "green",
    ProcessStatus.ZOMBIE: "red",
    ProcessStatus.STOPPED: "yellow",
}


class ProcessTableView(Static):
    """Draws the visible window of a ProcessTableController."""

    def show(self, controller: ProcessTableController, rows: int, active: bool) -> None:
        """
        Draw the visible rows of ``controller``'s view.

        Args:
            controller: Table whose view, sort and selection are drawn.
            rows: Number of data rows that fit.
            active: Whether this panel receives keys; highlights its border.
        """
        state = controller.state
        arrow = " ▼" if state.descending else " ▲"

        def title(label: str, column: object) -> str:
            return label + (arrow if state.sort == column else "")

        table = Table(box=None, expand=True, header_style="bold yellow", padding=(0, 1))
        visible = controller.visible_window(rows)
        offset = state.scroll_offset
        if controller.panel is Panel.CPU:
            table.add_column(title("PID", CpuSort.PID), justify="right")
            table.add_column(title("USER", CpuSort.USER))
            table.add_column(title("CPU%", CpuSort.CPU), justify="right")
            table.add_column(title("MEM%", CpuSort.MEMORY), justify="right")
            table.add_column("RES", justify="right")
            table.add_column("S")
            table.add_column(title("NAME", CpuSort.NAME), ratio=1, no_wrap=True)
            for position, proc in enumerate(visible, start=offset):
                table.add_row(
                    str(proc.pid),
                    truncate(proc.user, 10),
                    Text(f"{proc.cpu_percent:.1f}", style=usage_color(proc.cpu_percent)),
                    Text(f"{proc.memory_percent:.1f}", style=usage_color(proc.memory_percent)),
                    format_bytes(proc.memory_bytes),
                    Text(proc.status.value[:1], style=_STATUS_STYLE.get(proc.status, "")),
                    proc.name,
                    style="reverse" if active and position == state.selected else None,
                )
            label = "CPU Processes"
        else:
            table.add_column(title("PID", GpuSort.PID), justify="right")
            table.add_column(title("GPU", GpuSort.DEVICE), justify="right")
            table.add_column("T")
            table.add_column(title("USER", GpuSort.USER))
            table.add_column(title("GPU_MEM", GpuSort.GPU_MEMORY), justify="right")
            table.add_column(title("NAME", GpuSort.NAME), ratio=1, no_wrap=True)
            for position, proc in enumerate(visible, start=offset):
                table.add_row(
                    str(proc.pid),
                    str(proc.gpu_index),
                    proc.kind.value,
                    truncate(proc.user, 10),
                    format_bytes(proc.gpu_memory),
                    proc.name,
                    style="reverse" if active and position == state.selected else None,
                )
            label = "GPU Processes"

        extra = "" if state.show_all or controller.panel is Panel.GPU else " active"
        filt = f" filter: '{state.filter_text}'" if state.filter_text else ""
        self.border_title = f"{label} ({len(controller.view)}{extra}){filt}"
        self.set_class(active, "-active")
        self.update(table)


def gpu_card(gpu: GpuRecord, height: int) -> Group | Text:
    """One GPU drawn in the style that fits ``height`` rows."""
    util = gpu.utilization
    mem = gpu.memory_percent
    if height <= 1:
        return Text.assemble(
            (f"GPU{gpu.index} ", "cyan"),
            bar_text(util, 10),
            f" {util:3.0f}% ",
            ("MEM ", "magenta"),
            bar_text(mem, 10),
            f" {mem:3.0f}%",
            f" {gpu.temperature}°C {gpu.power_usage}W",
        )
    title = Text(f"GPU {gpu.index} - {gpu.name} [{gpu.pstate}]", style="bold")
    if height <= 3:
        line = Text.assemble(
            bar_text(util, 12),
            f" {util:3.0f}% ",
            bar_text(mem, 12),
            f" {mem:3.0f}% ",
            (f"{gpu.temperature}°C ", temp_color(gpu.temperature)),
            f"{gpu.power_usage}W",
        )
        return Group(title, line)
    return Group(
        title,
        Text.assemble(
            ("GPU  ", "cyan"),
            bar_text(util, 20),
            f" {util:3.0f}%  ",
            ("Temp: ", "yellow"),
            (f"{gpu.temperature}°C", temp_color(gpu.temperature)),
            ("  Fan: ", "yellow"),
            f"{gpu.fan_speed}%",
        ),
        Text.assemble(
            ("MEM  ", "magenta"),
            bar_text(mem, 20),
            f" {mem:3.0f}%  ",
            f"{format_bytes(gpu.memory_used)} / {format_bytes(gpu.memory_total)}",
        ),
        Text.assemble(
            ("Power: ", "yellow"),
            f"{gpu.power_usage}W / {gpu.power_limit}W  ",
            ("Clocks: ", "yellow"),
            f"{gpu.sm_clock} MHz / {gpu.mem_clock} MHz  ",
            ("Enc/Dec: ", "yellow"),
            f"{gpu.encoder_utilization}% / {gpu.decoder_utilization}%",
        ),
    )


class GpuCards(Static):
    def show(self, gpu: GpuSnapshot, card_height: int, shown: int) -> None:
        """Draw one card per device, at most ``shown``."""
        self.update(Group(*(gpu_card(g, card_height) for g in gpu.gpus[:shown])))


NO_GPU_TEXT = """
[bold yellow]No GPU Detected[/]

[cyan]Possible reasons:[/]
  • No NVIDIA GPU installed
  • NVIDIA drivers not installed
  • NVML library not available
  • GPU in use by another process exclusively

[green]System monitoring is fully functional.[/]
"""


class NoGpuPanel(Static):
    def on_mount(self) -> None:
        """Show the fixed no-GPU notice."""
        self.border_title = "GPU Panel"
        self.update(NO_GPU_TEXT)


def kill_dialog_text(confirm: KillConfirmation) -> Text:
    """Confirmation text naming the frozen pid, name and signal."""
    return Text.assemble(
        ("Kill process?\n\n", "bold red"),
        "  PID: ",
        (f"{confirm.pid}\n", "yellow"),
        "  Name: ",
        (f"{confirm.name}\n", "cyan"),
        "  Signal: ",
        (f"{confirm.signal.description}\n\n", "magenta"),
        ("  [Y]", "bold green"),
        " Yes, kill it   ",
        ("[N]", "bold red"),
        " No, cancel",
    )


HELP_TEXT = """[bold cyan]nvglances[/] - System and GPU Monitor

[bold]Navigation:[/]
  Tab          Switch between CPU and GPU process panels
  j/↓  k/↑     Move selection
  PgDn/PgUp    Move selection by page
  Home/End     Jump to first/last item
  Mouse        Click to select, scroll to navigate

[bold red]Process Control:[/]
  Del/Ctrl-T   Send SIGTERM (graceful termination)
  Ctrl-K       Send SIGKILL (force kill)
  Ctrl-I       Send SIGINT (interrupt)

[bold]Sorting:[/]
  1-6          PID, Name, User, CPU% / GPU, Memory%, GPU Memory
  r            Reverse sort order

[bold]Display:[/]
  /            Filter by name, user or command (Enter to keep, Esc to clear)
  a            Toggle show all processes
  g            Toggle graphs
  c            Toggle compact mode
  +/-          Adjust refresh rate

[bold]Other:[/]
  ?/F1         Show this help
  q/Esc        Quit

[dim]Press any key to close[/]"""


class DialogBox(Static):
    """Modal content: the kill confirmation or the help text."""

    def show_kill(self, confirm: KillConfirmation) -> None:
        """Show the kill confirmation."""
        self.remove_class("-help")
        self.border_title = "Confirm Kill"
        self.update(kill_dialog_text(confirm))

    def show_help(self) -> None:
        """Show the key reference."""
        self.add_class("-help")
        self.border_title = "Help"
        self.update(HELP_TEXT)
