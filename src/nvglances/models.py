"""Data models for nvglances."""

import math
from collections.abc import Iterable
from dataclasses import dataclass
from enum import Enum


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100], mapping NaN to 0."""
    if math.isnan(value):
        return 0.0
    return min(max(value, 0.0), 100.0)


def percent_of(part: float, total: float) -> float:
    """Return part/total as a percentage, or 0 when the total is zero."""
    if total <= 0:
        return 0.0
    return clamp_percent(part / total * 100.0)


class ProcessStatus(Enum):
    """Scheduler state of a process."""

    RUNNING = "Running"
    SLEEPING = "Sleeping"
    IDLE = "Idle"
    ZOMBIE = "Zombie"
    STOPPED = "Stopped"
    UNKNOWN = "Unknown"


class GpuProcessKind(Enum):
    """How a process uses a GPU."""

    COMPUTE = "C"
    GRAPHICS = "G"


class GpuBackendKind(Enum):
    """Which telemetry backend produced a GPU snapshot."""

    NVML = "nvml"
    METAL = "metal"
    NONE = "none"


@dataclass(slots=True, frozen=True)
class ProcessRecord:
    """Immutable snapshot of a process state."""

    pid: int
    name: str
    user: str
    cpu_percent: float  # 0.0 - 100.0, normalised by core count
    memory_percent: float
    memory_bytes: int  # Resident set size
    status: ProcessStatus
    command: str


@dataclass(slots=True, frozen=True)
class DiskRecord:
    """Usage of one mounted filesystem."""

    name: str
    mount_point: str
    total: int
    free: int
    fs_type: str

    @property
    def used(self) -> int:
        return max(self.total - self.free, 0)

    @property
    def percent(self) -> float:
        return percent_of(self.used, self.total)


@dataclass(slots=True, frozen=True)
class NetworkRecord:
    """Cumulative counters and current rates (bytes/s) of one interface."""

    interface: str
    rx_bytes: int
    tx_bytes: int
    rx_rate: float
    tx_rate: float


@dataclass(slots=True, frozen=True)
class GpuRecord:
    """
    State of one GPU device.

    Backends that cannot report a field fill it with zero (numbers) or
    "N/A" (labels), so consumers never need to branch on the backend.
    """

    index: int
    name: str
    utilization: float = 0.0
    memory_utilization: float = 0.0
    memory_used: int = 0
    memory_total: int = 0
    temperature: int = 0  # Celsius
    fan_speed: int = 0  # Percent
    power_usage: int = 0  # Watts
    power_limit: int = 0  # Watts
    sm_clock: int = 0  # MHz
    mem_clock: int = 0  # MHz
    encoder_utilization: int = 0
    decoder_utilization: int = 0
    pcie_rx: int = 0  # Bytes/s
    pcie_tx: int = 0  # Bytes/s
    pstate: str = "N/A"

    @property
    def memory_percent(self) -> float:
        return percent_of(self.memory_used, self.memory_total)


@dataclass(slots=True, frozen=True)
class GpuProcessRecord:
    """A process holding a context on a GPU device."""

    pid: int
    gpu_index: int
    gpu_memory: int  # Bytes, 0 when the driver does not report it
    kind: GpuProcessKind
    name: str = "?"
    user: str = "?"
    command: str = "?"


def merge_gpu_processes(records: Iterable[GpuProcessRecord]) -> list[GpuProcessRecord]:
    """Drop repeated (pid, device) entries, keeping the first one observed."""
    seen: set[tuple[int, int]] = set()
    merged: list[GpuProcessRecord] = []
    for record in records:
        key = (record.pid, record.gpu_index)
        if key in seen:
            continue
        seen.add(key)
        merged.append(record)
    return merged


@dataclass(slots=True, frozen=True)
class GpuSnapshot:
    """All GPU devices and GPU processes seen in one tick."""

    gpus: tuple[GpuRecord, ...]
    processes: tuple[GpuProcessRecord, ...]
    backend: GpuBackendKind
    driver_version: str = "N/A"
    api_version: str = "N/A"

    @property
    def api_label(self) -> str:
        """Header label for the API version."""
        return {
            GpuBackendKind.NVML: "CUDA",
            GpuBackendKind.METAL: "API",
        }.get(self.backend, "GPU")


@dataclass(slots=True, frozen=True)
class Snapshot:
    """One immutable reading of every monitored metric."""

    hostname: str = "unknown"
    os_name: str = "Unknown OS"
    kernel_version: str = "?"
    uptime_seconds: float = 0.0
    load_avg: tuple[float, float, float] = (0.0, 0.0, 0.0)
    cpu_percent_per_core: tuple[float, ...] = ()
    cpu_percent: float = 0.0
    cpu_frequency: int = 0  # MHz
    memory_total: int = 0
    memory_used: int = 0
    swap_total: int = 0
    swap_used: int = 0
    disks: tuple[DiskRecord, ...] = ()
    networks: tuple[NetworkRecord, ...] = ()
    temperatures: tuple[tuple[str, float], ...] = ()
    processes: tuple[ProcessRecord, ...] = ()
    thread_count: int = 0
    gpu: GpuSnapshot | None = None

    @property
    def memory_percent(self) -> float:
        return percent_of(self.memory_used, self.memory_total)

    @property
    def swap_percent(self) -> float:
        return percent_of(self.swap_used, self.swap_total)

    @property
    def process_count(self) -> int:
        return len(self.processes)

    @property
    def total_rx_rate(self) -> float:
        return sum(n.rx_rate for n in self.networks)

    @property
    def total_tx_rate(self) -> float:
        return sum(n.tx_rate for n in self.networks)
