"""GPU telemetry backends: NVML, Metal, or none."""

import json
import logging
import re
import shutil
import subprocess
import sys
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import TypeVar

import pynvml

from nvglances.models import (
    GpuBackendKind,
    GpuProcessKind,
    GpuProcessRecord,
    GpuRecord,
    GpuSnapshot,
    merge_gpu_processes,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_UNKNOWN_PSTATE = 32


class GpuBackendError(Exception):
    """A GPU backend could not be initialized."""


class GpuBackend(ABC):
    """Capability interface every GPU backend implements."""

    kind: GpuBackendKind = GpuBackendKind.NONE

    @abstractmethod
    def collect(self) -> GpuSnapshot | None:
        """Read all devices, or return None when nothing can be read."""

    def shutdown(self) -> None:
        """Release backend resources."""


class NullBackend(GpuBackend):
    """Used when no GPU backend is available."""

    def collect(self) -> GpuSnapshot | None:
        return None


def _text(value: str | bytes) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value


def _query(fn: Callable[..., T], *args: object, default: T) -> T:
    """Call an NVML getter, substituting ``default`` when the query fails."""
    try:
        return fn(*args)
    except pynvml.NVMLError as exc:
        logger.debug("NVML query %s failed: %s", getattr(fn, "__name__", fn), exc)
        return default


class NvmlBackend(GpuBackend):
    """NVIDIA devices through the NVML library (nvidia-ml-py)."""

    kind = GpuBackendKind.NVML

    def __init__(self) -> None:
        """
        Initialize NVML.

        Raises:
            GpuBackendError: If the NVML library cannot be loaded or initialized.
        """
        try:
            pynvml.nvmlInit()
        except pynvml.NVMLError as exc:
            raise GpuBackendError(f"NVML unavailable: {exc}") from exc

    def shutdown(self) -> None:
        """Shut NVML down; failures are only logged."""
        try:
            pynvml.nvmlShutdown()
        except pynvml.NVMLError:
            logger.debug("nvmlShutdown failed", exc_info=True)

    def collect(self) -> GpuSnapshot | None:
        """Query every device and its compute and graphics processes."""
        try:
            count = pynvml.nvmlDeviceGetCount()
        except pynvml.NVMLError as exc:
            logger.debug("NVML device count failed: %s", exc)
            return None

        driver_version = _text(_query(pynvml.nvmlSystemGetDriverVersion, default="N/A"))
        cuda = _query(pynvml.nvmlSystemGetCudaDriverVersion, default=0)
        cuda_version = f"{cuda // 1000}.{(cuda % 1000) // 10}" if cuda else "N/A"

        gpus: list[GpuRecord] = []
        processes: list[GpuProcessRecord] = []
        for index in range(count):
            try:
                handle = pynvml.nvmlDeviceGetHandleByIndex(index)
            except pynvml.NVMLError as exc:
                # Skip the device for this tick; the others are still useful
                logger.debug("GPU %d unavailable: %s", index, exc)
                continue
            gpus.append(self._read_device(index, handle))
            processes.extend(self._read_processes(index, handle))

        return GpuSnapshot(
            gpus=tuple(gpus),
            processes=tuple(merge_gpu_processes(processes)),
            backend=self.kind,
            driver_version=driver_version,
            api_version=cuda_version,
        )

    def _read_device(self, index: int, handle: object) -> GpuRecord:
        utilization = _query(pynvml.nvmlDeviceGetUtilizationRates, handle, default=None)
        memory = _query(pynvml.nvmlDeviceGetMemoryInfo, handle, default=None)
        encoder = _query(pynvml.nvmlDeviceGetEncoderUtilization, handle, default=(0, 0))
        decoder = _query(pynvml.nvmlDeviceGetDecoderUtilization, handle, default=(0, 0))
        pstate = _query(pynvml.nvmlDeviceGetPerformanceState, handle, default=None)
        if pstate is None:
            pstate_label = "?"
        elif pstate == _UNKNOWN_PSTATE:
            pstate_label = "P?"
        else:
            pstate_label = f"P{pstate}"

        return GpuRecord(
            index=index,
            name=_text(_query(pynvml.nvmlDeviceGetName, handle, default="Unknown GPU")),
            utilization=float(utilization.gpu) if utilization else 0.0,
            memory_utilization=float(utilization.memory) if utilization else 0.0,
            memory_used=memory.used if memory else 0,
            memory_total=memory.total if memory else 0,
            temperature=_query(
                pynvml.nvmlDeviceGetTemperature,
                handle,
                pynvml.NVML_TEMPERATURE_GPU,
                default=0,
            ),
            fan_speed=_query(pynvml.nvmlDeviceGetFanSpeed, handle, default=0),
            power_usage=_query(pynvml.nvmlDeviceGetPowerUsage, handle, default=0) // 1000,
            power_limit=_query(pynvml.nvmlDeviceGetPowerManagementLimit, handle, default=0)
            // 1000,
            sm_clock=_query(
                pynvml.nvmlDeviceGetClockInfo, handle, pynvml.NVML_CLOCK_GRAPHICS, default=0
            ),
            mem_clock=_query(
                pynvml.nvmlDeviceGetClockInfo, handle, pynvml.NVML_CLOCK_MEM, default=0
            ),
            encoder_utilization=encoder[0],
            decoder_utilization=decoder[0],
            # NVML reports PCIe throughput in KB/s
            pcie_rx=_query(
                pynvml.nvmlDeviceGetPcieThroughput,
                handle,
                pynvml.NVML_PCIE_UTIL_RX_BYTES,
                default=0,
            )
            * 1024,
            pcie_tx=_query(
                pynvml.nvmlDeviceGetPcieThroughput,
                handle,
                pynvml.NVML_PCIE_UTIL_TX_BYTES,
                default=0,
            )
            * 1024,
            pstate=pstate_label,
        )

    def _read_processes(self, index: int, handle: object) -> list[GpuProcessRecord]:
        records: list[GpuProcessRecord] = []
        sources = (
            (GpuProcessKind.COMPUTE, pynvml.nvmlDeviceGetComputeRunningProcesses),
            (GpuProcessKind.GRAPHICS, pynvml.nvmlDeviceGetGraphicsRunningProcesses),
        )
        for kind, getter in sources:
            for proc in _query(getter, handle, default=[]):
                records.append(
                    GpuProcessRecord(
                        pid=proc.pid,
                        gpu_index=index,
                        gpu_memory=proc.usedGpuMemory or 0,
                        kind=kind,
                    )
                )
        return records


_METAL_FAMILIES = {
    "spdisplays_metal3": "Metal 3",
    "spdisplays_metal2": "Metal 2",
    "spdisplays_metal": "Metal",
}

_VRAM_PATTERN = re.compile(r"(\d+)\s*(GB|MB)", re.IGNORECASE)


def _parse_vram(text: str) -> int:
    match = _VRAM_PATTERN.search(text)
    if not match:
        return 0
    amount = int(match.group(1))
    scale = 1024**3 if match.group(2).upper() == "GB" else 1024**2
    return amount * scale


class MetalBackend(GpuBackend):
    """
    Apple GPUs described by ``system_profiler``.

    The display report is static, so it is read once at startup. Metal does not
    expose utilization, temperature, power or per-process usage without
    elevated privileges; those fields stay at their zero placeholders.
    """

    kind = GpuBackendKind.METAL

    def __init__(self, runner: Callable[[], str] | None = None) -> None:
        """
        Read the GPU inventory once from system_profiler.

        Args:
            runner: Returns the system_profiler JSON report. Default runs the
                command; tests pass a canned report.

        Raises:
            GpuBackendError: If the report cannot be read or lists no GPU.
        """
        runner = runner or self._run_system_profiler
        try:
            report = json.loads(runner())
        except (OSError, subprocess.SubprocessError, ValueError) as exc:
            raise GpuBackendError(f"system_profiler unavailable: {exc}") from exc

        displays = report.get("SPDisplaysDataType") or []
        if not displays:
            raise GpuBackendError("no displays reported by system_profiler")

        self._gpus = tuple(
            GpuRecord(
                index=index,
                name=entry.get("sppci_model", "Apple GPU"),
                memory_total=_parse_vram(
                    entry.get("spdisplays_vram") or entry.get("spdisplays_vram_shared") or ""
                ),
            )
            for index, entry in enumerate(displays)
        )
        family = displays[0].get("spdisplays_mtlgpufamilysupport", "")
        self._api_version = _METAL_FAMILIES.get(family, "Metal")

    @staticmethod
    def _run_system_profiler() -> str:
        if shutil.which("system_profiler") is None:
            raise OSError("system_profiler not found")
        result = subprocess.run(
            ["system_profiler", "SPDisplaysDataType", "-json"],
            capture_output=True,
            text=True,
            timeout=10,
            check=True,
        )
        return result.stdout

    def collect(self) -> GpuSnapshot | None:
        """Static inventory with zero utilization and memory."""
        return GpuSnapshot(
            gpus=self._gpus,
            processes=(),
            backend=self.kind,
            driver_version="N/A",
            api_version=self._api_version,
        )


def probe_gpu_backend(platform: str | None = None) -> GpuBackend:
    """Pick the first backend that initializes on this machine."""
    platform = platform or sys.platform
    candidates: list[Callable[[], GpuBackend]] = [NvmlBackend]
    if platform == "darwin":
        candidates.append(MetalBackend)

    for candidate in candidates:
        try:
            backend = candidate()
        except GpuBackendError as exc:
            logger.info("GPU backend %s not available: %s", candidate.__name__, exc)
            continue
        logger.info("Using GPU backend %s", backend.kind.value)
        return backend

    logger.info("No GPU backend available, running with system data only")
    return NullBackend()
