"""Energy-based voice activity detection over capture chunks."""

import logging
from enum import Enum
from typing import Callable

import numpy as np

from voice_wakeup.audio.chunk import AudioChunk, SpeechSegment, pcm16_to_float
from voice_wakeup.config import VADConfig

logger = logging.getLogger(__name__)

SegmentCallback = Callable[[SpeechSegment], None]


def compute_rms(data: bytes) -> float:
    """RMS of 16-bit PCM normalized to [-1, 1]. Empty input → 0.0."""
    samples = pcm16_to_float(data)
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


class VadState(Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


class VoiceActivityDetector:
    """Segment a chunk stream into utterances by RMS energy.

    IDLE → SPEAKING when a chunk's RMS exceeds `silence_threshold`. While
    speaking every chunk is appended; the segment ends when its duration
    reaches `max_recording_duration` or the trailing silence reaches
    `silence_timeout`. Both are measured in audio time from byte counts, so
    chunks of any size add up exactly. Only arithmetic and buffer appends
    happen here, so it is safe to call from the capture thread.
    """

    def __init__(
        self,
        silence_threshold: float = 0.01,
        silence_timeout: float = 2.0,
        max_recording_duration: float = 10.0,
    ):
        self.silence_threshold = silence_threshold
        self.silence_timeout = silence_timeout
        self.max_recording_duration = max_recording_duration

        self._state = VadState.IDLE
        self._buffer = bytearray()
        self._silence_chunks = 0
        self._silence_bytes = 0
        self._format: tuple[int, int, int] = (16000, 1, 16)
        self._listeners: list[SegmentCallback] = []

    @classmethod
    def from_config(cls, config: VADConfig) -> "VoiceActivityDetector":
        return cls(
            silence_threshold=config.silence_threshold,
            silence_timeout=config.silence_timeout,
            max_recording_duration=config.max_recording_duration,
        )

    @property
    def state(self) -> VadState:
        return self._state

    @property
    def silence_chunks(self) -> int:
        return self._silence_chunks

    def add_listener(self, callback: SegmentCallback) -> None:
        """Register a callback invoked with each completed segment."""
        if callback not in self._listeners:
            self._listeners.append(callback)

    def remove_listener(self, callback: SegmentCallback) -> None:
        if callback in self._listeners:
            self._listeners.remove(callback)

    def reset(self) -> None:
        """Drop any partial segment and return to IDLE."""
        self._state = VadState.IDLE
        self._buffer = bytearray()
        self._silence_chunks = 0
        self._silence_bytes = 0

    def process(self, chunk: AudioChunk) -> SpeechSegment | None:
        """Feed one chunk. Returns the completed segment, if this chunk ended one."""
        rms = compute_rms(chunk.data)
        is_voice = rms > self.silence_threshold

        if self._state == VadState.IDLE:
            if is_voice:
                self._state = VadState.SPEAKING
                self._buffer = bytearray(chunk.data)
                self._silence_chunks = 0
                self._silence_bytes = 0
                self._format = (chunk.sample_rate, chunk.channels, chunk.bits_per_sample)
                logger.debug("VAD: speech start (RMS=%.4f)", rms)
            return None

        self._buffer.extend(chunk.data)
        elapsed = len(self._buffer) / chunk.bytes_per_second

        if rms >= self.silence_threshold:
            self._silence_chunks = 0
            self._silence_bytes = 0
        else:
            self._silence_chunks += 1
            self._silence_bytes += len(chunk.data)
        silence = self._silence_bytes / chunk.bytes_per_second

        if elapsed >= self.max_recording_duration:
            logger.debug("VAD: max duration reached (%.1fs)", elapsed)
            return self._finish()

        if silence >= self.silence_timeout:
            logger.debug("VAD: silence timeout (%.1fs)", silence)
            return self._finish()

        return None

    def _finish(self) -> SpeechSegment:
        sample_rate, channels, bits = self._format
        segment = SpeechSegment(
            data=bytes(self._buffer),
            sample_rate=sample_rate,
            channels=channels,
            bits_per_sample=bits,
        )
        self.reset()
        for callback in list(self._listeners):
            callback(segment)
        return segment
