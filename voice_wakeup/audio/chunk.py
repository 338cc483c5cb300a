"""PCM containers passed between capture, VAD and the orchestrator."""

import time
from dataclasses import dataclass, field

import numpy as np


def pcm16_to_float(data: bytes) -> np.ndarray:
    """Convert little-endian 16-bit PCM bytes to float32 samples in [-1, 1)."""
    usable = len(data) - (len(data) % 2)
    samples = np.frombuffer(data[:usable], dtype="<i2")
    return samples.astype(np.float32) / 32768.0


@dataclass(frozen=True)
class AudioChunk:
    """One capture callback's worth of 16-bit PCM."""

    data: bytes
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * (self.bits_per_sample // 8)

    @property
    def duration(self) -> float:
        return len(self.data) / self.bytes_per_second

    def __len__(self) -> int:
        return len(self.data)

    def samples(self) -> np.ndarray:
        return pcm16_to_float(self.data)


@dataclass(frozen=True)
class SpeechSegment:
    """Contiguous PCM from speech onset to speech end, as assembled by VAD."""

    data: bytes
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16
    created_at: float = field(default_factory=time.time)

    @property
    def duration(self) -> float:
        bytes_per_second = self.sample_rate * self.channels * (self.bits_per_sample // 8)
        return len(self.data) / bytes_per_second

    def __len__(self) -> int:
        return len(self.data)
