"""Shared fakes for nvglances tests."""

import pytest

from nvglances.gpu import GpuBackend
from nvglances.models import (
    DiskRecord,
    GpuBackendKind,
    GpuProcessKind,
    GpuProcessRecord,
    GpuRecord,
    GpuSnapshot,
    ProcessRecord,
    ProcessStatus,
)
from nvglances.monitor import HostInfo, RawProcess


class FakeTelemetry:
    """Deterministic stand-in for PsutilTelemetry."""

    def __init__(self):
        self.cores = 4
        self.per_core = [10.0, 20.0, 30.0, 40.0]
        self.memory_values = (16 * 1024**3, 8 * 1024**3, 4 * 1024**3, 1024**3)
        self.counters = {"eth0": (1000, 2000), "lo": (50, 50)}
        self.raw_processes = [
            RawProcess(
                pid=100,
                name="python",
                username="alice",
                cpu_percent=200.0,
                memory_rss=1024**3,
                status="running",
                cmdline=("python", "train.py"),
                threads=8,
            ),
            RawProcess(
                pid=200,
                name="sshd",
                username="root",
                cpu_percent=0.0,
                memory_rss=0,
                status="sleeping",
                cmdline=(),
                threads=1,
            ),
        ]

    def host_info(self):
        return HostInfo(
            hostname="testhost",
            os_name="Test OS",
            kernel_version="6.0.0",
            uptime_seconds=3600.0,
            load_avg=(1.0, 0.5, 0.25),
        )

    def cpu_count(self):
        return self.cores

    def cpu_percent_per_core(self):
        return list(self.per_core)

    def cpu_frequency(self):
        return 2400

    def memory(self):
        return self.memory_values

    def disks(self):
        return [DiskRecord("/dev/sda1", "/", 100 * 1024**3, 40 * 1024**3, "ext4")]

    def network_counters(self):
        return dict(self.counters)

    def temperatures(self):
        return [("Package id 0", 55.0)]

    def processes(self):
        return list(self.raw_processes)


class FakeGpuBackend(GpuBackend):
    """GPU backend returning a fixed snapshot, or raising on demand."""

    kind = GpuBackendKind.NVML

    def __init__(self, snapshot=None, error=None):
        self.snapshot = snapshot
        self.error = error
        self.shutdown_calls = 0

    def collect(self):
        if self.error is not None:
            raise self.error
        return self.snapshot

    def shutdown(self):
        self.shutdown_calls += 1


def make_process(pid, name="proc", user="user", cpu=0.0, mem=0.0, command=None):
    return ProcessRecord(
        pid=pid,
        name=name,
        user=user,
        cpu_percent=cpu,
        memory_percent=mem,
        memory_bytes=0,
        status=ProcessStatus.RUNNING,
        command=command if command is not None else name,
    )


def make_gpu_snapshot(processes=(), gpu_count=1):
    gpus = tuple(
        GpuRecord(
            index=i,
            name=f"Test GPU {i}",
            utilization=50.0,
            memory_used=4 * 1024**3,
            memory_total=8 * 1024**3,
            temperature=60,
            power_usage=120,
            power_limit=300,
        )
        for i in range(gpu_count)
    )
    return GpuSnapshot(
        gpus=gpus,
        processes=tuple(processes),
        backend=GpuBackendKind.NVML,
        driver_version="550.54",
        api_version="12.4",
    )


def make_gpu_process(pid, gpu_index=0, memory=0, kind=GpuProcessKind.COMPUTE):
    return GpuProcessRecord(pid=pid, gpu_index=gpu_index, gpu_memory=memory, kind=kind)


@pytest.fixture
def telemetry():
    return FakeTelemetry()


@pytest.fixture
def gpu_backend():
    return FakeGpuBackend(
        make_gpu_snapshot([make_gpu_process(100, memory=2 * 1024**3)])
    )
