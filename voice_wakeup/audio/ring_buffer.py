"""Thread-safe FIFO of recent audio chunks bounded by total byte size."""

import threading
from collections import deque

from voice_wakeup.audio.chunk import AudioChunk


class RingBuffer:
    """Holds the most recent `max_seconds` of audio as whole chunks.

    Chunks are evicted from the front after every append until the running
    byte total fits the capacity. Thread-safe for single-writer /
    single-reader usage.
    """

    def __init__(
        self,
        max_seconds: float = 5.0,
        sample_rate: int = 16000,
        channels: int = 1,
        bits_per_sample: int = 16,
    ):
        self._frame_bytes = channels * (bits_per_sample // 8)
        self._bytes_per_second = sample_rate * self._frame_bytes
        self._capacity = int(max_seconds * self._bytes_per_second)
        self._chunks: deque[AudioChunk] = deque()
        self._total_bytes = 0
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        """Maximum number of buffered bytes."""
        return self._capacity

    @property
    def total_bytes(self) -> int:
        with self._lock:
            return self._total_bytes

    @property
    def bytes_per_second(self) -> int:
        return self._bytes_per_second

    def __len__(self) -> int:
        with self._lock:
            return len(self._chunks)

    def append(self, chunk: AudioChunk) -> None:
        """Append a chunk, then evict from the front until within capacity."""
        with self._lock:
            self._chunks.append(chunk)
            self._total_bytes += len(chunk.data)
            while self._total_bytes > self._capacity and self._chunks:
                evicted = self._chunks.popleft()
                self._total_bytes -= len(evicted.data)

    def read_last(self, num_bytes: int) -> bytes:
        """Return up to `num_bytes` of the most recently appended audio."""
        with self._lock:
            wanted = min(max(0, num_bytes), self._total_bytes)
            if wanted == 0:
                return b""
            parts: list[bytes] = []
            collected = 0
            for chunk in reversed(self._chunks):
                parts.append(chunk.data)
                collected += len(chunk.data)
                if collected >= wanted:
                    break
        joined = b"".join(reversed(parts))
        return joined[len(joined) - wanted:]

    def read_seconds(self, seconds: float) -> bytes:
        """Return up to `seconds` of the most recent audio, frame-aligned."""
        num_bytes = int(seconds * self._bytes_per_second)
        num_bytes -= num_bytes % self._frame_bytes
        return self.read_last(num_bytes)

    def clear(self) -> None:
        with self._lock:
            self._chunks.clear()
            self._total_bytes = 0
