"""Snapshot collection for nvglances."""

import logging
import os
import platform
import socket
import time
from dataclasses import dataclass, replace

import psutil

from nvglances.gpu import GpuBackend, NullBackend
from nvglances.models import (
    DiskRecord,
    GpuSnapshot,
    NetworkRecord,
    ProcessRecord,
    ProcessStatus,
    Snapshot,
    clamp_percent,
    percent_of,
)

logger = logging.getLogger(__name__)

MIN_ELAPSED_SECONDS = 0.001
LOOPBACK_PREFIX = "lo"

_STATUS_MAP = {
    psutil.STATUS_RUNNING: ProcessStatus.RUNNING,
    psutil.STATUS_SLEEPING: ProcessStatus.SLEEPING,
    psutil.STATUS_DISK_SLEEP: ProcessStatus.SLEEPING,
    psutil.STATUS_IDLE: ProcessStatus.IDLE,
    psutil.STATUS_ZOMBIE: ProcessStatus.ZOMBIE,
    psutil.STATUS_STOPPED: ProcessStatus.STOPPED,
    psutil.STATUS_TRACING_STOP: ProcessStatus.STOPPED,
}


@dataclass(slots=True, frozen=True)
class RawProcess:
    """A process as reported by the telemetry provider, before normalisation."""

    pid: int
    name: str
    username: str
    cpu_percent: float  # 0.0 - 100.0 * core_count
    memory_rss: int
    status: str
    cmdline: tuple[str, ...]
    threads: int = 1


@dataclass(slots=True, frozen=True)
class HostInfo:
    hostname: str
    os_name: str
    kernel_version: str
    uptime_seconds: float
    load_avg: tuple[float, float, float]


class PsutilTelemetry:
    """
    System telemetry provider backed by psutil.

    Every reading is best-effort: a reading that fails is replaced by an
    empty or zero value so a single gap never aborts the tick.
    """

    _PROCESS_ATTRS = [
        "pid",
        "name",
        "username",
        "status",
        "cpu_percent",
        "memory_info",
        "num_threads",
        "cmdline",
    ]

    def __init__(self) -> None:
        # First call primes the counters and returns 0.0
        psutil.cpu_percent(percpu=True)
        self._os_name = self._read_os_name()

    @staticmethod
    def _read_os_name() -> str:
        try:
            release = platform.freedesktop_os_release()
            return release.get("PRETTY_NAME") or release.get("NAME", "Linux")
        except OSError:
            return f"{platform.system()} {platform.release()}".strip() or "Unknown OS"

    def host_info(self) -> HostInfo:
        """Hostname, OS, kernel, uptime and load averages."""
        try:
            load_avg = tuple(psutil.getloadavg())
        except (OSError, AttributeError):
            load_avg = (0.0, 0.0, 0.0)
        return HostInfo(
            hostname=socket.gethostname() or "unknown",
            os_name=self._os_name,
            kernel_version=platform.release() or "?",
            uptime_seconds=max(time.time() - psutil.boot_time(), 0.0),
            load_avg=load_avg,
        )

    def cpu_count(self) -> int:
        """Number of logical CPUs, at least 1."""
        return psutil.cpu_count(logical=True) or os.cpu_count() or 1

    def cpu_percent_per_core(self) -> list[float]:
        """Per-core usage since the previous call."""
        return psutil.cpu_percent(percpu=True)

    def cpu_frequency(self) -> int:
        """Current CPU frequency in MHz, or 0 when unknown."""
        try:
            freq = psutil.cpu_freq()
        except (OSError, NotImplementedError):
            return 0
        return int(freq.current) if freq else 0

    def memory(self) -> tuple[int, int, int, int]:
        """(total, used, swap_total, swap_used) in bytes."""
        mem = psutil.virtual_memory()
        try:
            swap = psutil.swap_memory()
            swap_total, swap_used = swap.total, swap.used
        except (OSError, RuntimeError):
            swap_total, swap_used = 0, 0
        return mem.total, mem.used, swap_total, swap_used

    def disks(self) -> list[DiskRecord]:
        """Usage of every physical partition that can be read."""
        records: list[DiskRecord] = []
        for part in psutil.disk_partitions(all=False):
            try:
                usage = psutil.disk_usage(part.mountpoint)
            except OSError:
                continue
            records.append(
                DiskRecord(
                    name=part.device,
                    mount_point=part.mountpoint,
                    total=usage.total,
                    free=usage.free,
                    fs_type=part.fstype,
                )
            )
        return records

    def network_counters(self) -> dict[str, tuple[int, int]]:
        """Cumulative (rx, tx) bytes keyed by interface name."""
        try:
            counters = psutil.net_io_counters(pernic=True) or {}
        except OSError:
            return {}
        return {name: (c.bytes_recv, c.bytes_sent) for name, c in counters.items()}

    def temperatures(self) -> list[tuple[str, float]]:
        """(label, celsius) for every sensor with a positive reading."""
        sensors = getattr(psutil, "sensors_temperatures", None)
        if sensors is None:
            return []
        try:
            readings = sensors()
        except (OSError, RuntimeError):
            return []
        temps: list[tuple[str, float]] = []
        for chip, entries in readings.items():
            for entry in entries:
                if entry.current and entry.current > 0:
                    temps.append((entry.label or chip, float(entry.current)))
        return temps

    def processes(self) -> list[RawProcess]:
        """
        Collect all running processes.

        Processes that exit mid-iteration, deny access or are zombies are
        skipped or filled with safe defaults.
        """
        processes: list[RawProcess] = []
        for proc in psutil.process_iter(attrs=self._PROCESS_ATTRS, ad_value=None):
            try:
                info = proc.info
                mem_info = info.get("memory_info")
                processes.append(
                    RawProcess(
                        pid=info.get("pid") or proc.pid,
                        name=info.get("name") or "",
                        username=info.get("username") or "?",
                        cpu_percent=info.get("cpu_percent") or 0.0,
                        memory_rss=mem_info.rss if mem_info else 0,
                        status=info.get("status") or "?",
                        cmdline=tuple(info.get("cmdline") or ()),
                        threads=info.get("num_threads") or 1,
                    )
                )
            except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
                continue
        return processes


class SnapshotAggregator:
    """
    Builds one immutable Snapshot per tick from the telemetry providers.

    The only state kept between ticks is the previous cumulative network
    counters, needed to turn them into rates.
    """

    def __init__(
        self,
        telemetry: PsutilTelemetry | None = None,
        gpu_backend: GpuBackend | None = None,
    ) -> None:
        """
        Initialize the SnapshotAggregator.

        Args:
            telemetry: System telemetry provider. Default PsutilTelemetry.
            gpu_backend: GPU backend. Default NullBackend (no GPU column).
        """
        self._telemetry = telemetry or PsutilTelemetry()
        self._gpu_backend = gpu_backend or NullBackend()
        self._last_network: dict[str, tuple[int, int]] = {}

    @property
    def gpu_backend(self) -> GpuBackend:
        """Get the GPU backend."""
        return self._gpu_backend

    def refresh(self, elapsed: float) -> Snapshot:
        """Collect a snapshot; ``elapsed`` is the time since the last refresh."""
        elapsed = max(elapsed, MIN_ELAPSED_SECONDS)
        telemetry = self._telemetry

        host = telemetry.host_info()
        per_core = [clamp_percent(p) for p in telemetry.cpu_percent_per_core()]
        cpu_global = sum(per_core) / len(per_core) if per_core else 0.0
        memory_total, memory_used, swap_total, swap_used = telemetry.memory()

        raw_processes = telemetry.processes()
        processes = self._normalise_processes(raw_processes, memory_total)

        return Snapshot(
            hostname=host.hostname,
            os_name=host.os_name,
            kernel_version=host.kernel_version,
            uptime_seconds=host.uptime_seconds,
            load_avg=host.load_avg,
            cpu_percent_per_core=tuple(per_core),
            cpu_percent=clamp_percent(cpu_global),
            cpu_frequency=telemetry.cpu_frequency(),
            memory_total=memory_total,
            memory_used=memory_used,
            swap_total=swap_total,
            swap_used=swap_used,
            disks=tuple(telemetry.disks()),
            networks=tuple(self._network_rates(telemetry.network_counters(), elapsed)),
            temperatures=tuple(telemetry.temperatures()),
            processes=tuple(processes),
            thread_count=sum(p.threads for p in raw_processes),
            gpu=self._collect_gpu(processes),
        )

    def _normalise_processes(
        self, raw_processes: list[RawProcess], memory_total: int
    ) -> list[ProcessRecord]:
        cores = self._telemetry.cpu_count()
        records = []
        for raw in raw_processes:
            command = " ".join(raw.cmdline) if raw.cmdline else raw.name
            records.append(
                ProcessRecord(
                    pid=raw.pid,
                    name=raw.name,
                    user=raw.username,
                    cpu_percent=clamp_percent(raw.cpu_percent / cores),
                    memory_percent=percent_of(raw.memory_rss, memory_total),
                    memory_bytes=raw.memory_rss,
                    status=_STATUS_MAP.get(raw.status, ProcessStatus.UNKNOWN),
                    command=command,
                )
            )
        return records

    def _network_rates(
        self, counters: dict[str, tuple[int, int]], elapsed: float
    ) -> list[NetworkRecord]:
        records = []
        for name, (rx, tx) in counters.items():
            if name.startswith(LOOPBACK_PREFIX):
                continue
            prev_rx, prev_tx = self._last_network.get(name, (rx, tx))
            # Counters can reset (driver reload, wrap); never report a negative rate
            rx_rate = max(rx - prev_rx, 0) / elapsed
            tx_rate = max(tx - prev_tx, 0) / elapsed
            self._last_network[name] = (rx, tx)
            records.append(
                NetworkRecord(
                    interface=name,
                    rx_bytes=rx,
                    tx_bytes=tx,
                    rx_rate=rx_rate,
                    tx_rate=tx_rate,
                )
            )
        return records

    def _collect_gpu(self, processes: list[ProcessRecord]) -> GpuSnapshot | None:
        try:
            gpu = self._gpu_backend.collect()
        except Exception:
            logger.debug("GPU collection failed, continuing without GPU data", exc_info=True)
            return None
        if gpu is None:
            return None

        by_pid = {p.pid: p for p in processes}
        enriched = []
        for record in gpu.processes:
            owner = by_pid.get(record.pid)
            if owner is None:
                enriched.append(record)
            else:
                enriched.append(
                    replace(record, name=owner.name, user=owner.user, command=owner.command)
                )
        return replace(gpu, processes=tuple(enriched))
