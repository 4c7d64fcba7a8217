"""Fixed-length sample windows that feed the history graphs."""

from collections import deque

from nvglances.models import Snapshot

HISTORY_LENGTH = 60

CPU = "cpu%"
MEMORY = "mem%"
NET_RX = "net-rx"
NET_TX = "net-tx"

_MIB = 1024 * 1024


def gpu_util_channel(index: int) -> str:
    """Channel name for the utilization history of GPU ``index``."""
    return f"gpu{index}-util%"


def gpu_mem_channel(index: int) -> str:
    """Channel name for the memory history of GPU ``index``."""
    return f"gpu{index}-mem%"


class HistoryBuffers:
    """
    One sliding window of HISTORY_LENGTH samples per channel.

    Windows start zero-filled so every channel always reports a full window.
    GPU windows are created the first time an index is seen and are kept for
    the rest of the session, even if the device stops reporting.
    """

    def __init__(self, length: int = HISTORY_LENGTH) -> None:
        """
        Initialize the HistoryBuffers.

        Args:
            length: Samples kept per channel. Default 60.
        """
        self._length = length
        self._channels: dict[str, deque[float]] = {}
        self._gpu_count = 0
        for channel in (CPU, MEMORY, NET_RX, NET_TX):
            self._add_channel(channel)

    @property
    def length(self) -> int:
        """Get the number of samples per channel."""
        return self._length

    @property
    def gpu_count(self) -> int:
        """Number of GPU indices that have windows."""
        return self._gpu_count

    def _add_channel(self, channel: str) -> deque[float]:
        window: deque[float] = deque([0.0] * self._length, maxlen=self._length)
        self._channels[channel] = window
        return window

    def push(self, channel: str, value: float) -> None:
        """Drop the oldest sample of ``channel`` and append ``value``."""
        window = self._channels.get(channel)
        if window is None:
            window = self._add_channel(channel)
        window.append(float(value))

    def push_gpu(self, index: int, utilization: float, memory: float) -> None:
        """Append one utilization and memory sample for GPU ``index``."""
        while self._gpu_count <= index:
            self._add_channel(gpu_util_channel(self._gpu_count))
            self._add_channel(gpu_mem_channel(self._gpu_count))
            self._gpu_count += 1
        self.push(gpu_util_channel(index), utilization)
        self.push(gpu_mem_channel(index), memory)

    def record(self, snapshot: Snapshot) -> None:
        """Feed every channel from one tick's snapshot."""
        self.push(CPU, snapshot.cpu_percent)
        self.push(MEMORY, snapshot.memory_percent)
        if snapshot.gpu is not None:
            for gpu in snapshot.gpu.gpus:
                self.push_gpu(gpu.index, gpu.utilization, gpu.memory_percent)
        self.push(NET_RX, snapshot.total_rx_rate / _MIB)
        self.push(NET_TX, snapshot.total_tx_rate / _MIB)

    def series(self, channel: str) -> list[float]:
        """Samples of one channel, oldest first."""
        window = self._channels.get(channel)
        if window is None:
            return [0.0] * self._length
        return list(window)

    def points(self, channel: str) -> list[tuple[float, float]]:
        """(x, y) pairs of one channel with x = 0..length-1."""
        return [(float(x), y) for x, y in enumerate(self.series(channel))]

    def channels(self) -> list[str]:
        """Names of every channel, GPU channels included."""
        return list(self._channels)

    def snapshot(self) -> dict[str, list[float]]:
        """Copy of every channel, oldest sample first."""
        return {name: list(window) for name, window in self._channels.items()}
