"""Shared fixtures: synthetic PCM signals and chunking."""

import numpy as np
import pytest

from voice_wakeup.audio.chunk import AudioChunk

SAMPLE_RATE = 16000


def _tone(seconds: float, freq: float = 440.0, amplitude: float = 0.3,
          sample_rate: int = SAMPLE_RATE) -> bytes:
    n = int(round(seconds * sample_rate))
    t = np.arange(n) / sample_rate
    samples = amplitude * np.sin(2 * np.pi * freq * t)
    return (samples * 32767).astype("<i2").tobytes()


def _tone_samples(num_samples: int, freq: float = 440.0, amplitude: float = 0.5,
                  sample_rate: int = SAMPLE_RATE) -> bytes:
    t = np.arange(num_samples) / sample_rate
    samples = amplitude * np.sin(2 * np.pi * freq * t)
    return (samples * 32767).astype("<i2").tobytes()


def _silence(seconds: float, sample_rate: int = SAMPLE_RATE) -> bytes:
    return b"\x00\x00" * int(round(seconds * sample_rate))


def _split(pcm: bytes, chunk_ms: int = 100, sample_rate: int = SAMPLE_RATE) -> list[AudioChunk]:
    size = int(sample_rate * chunk_ms / 1000) * 2
    return [
        AudioChunk(data=pcm[i:i + size], sample_rate=sample_rate)
        for i in range(0, len(pcm), size)
    ]


@pytest.fixture
def make_tone():
    return _tone


@pytest.fixture
def make_tone_samples():
    return _tone_samples


@pytest.fixture
def make_silence():
    return _silence


@pytest.fixture
def split_chunks():
    return _split
