"""Microphone capture via PyAudioWPatch with bulk-capture and monitoring modes."""

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from voice_wakeup.audio.chunk import AudioChunk
from voice_wakeup.audio.ring_buffer import RingBuffer
from voice_wakeup.config import AudioConfig

try:
    import pyaudiowpatch as pyaudio
except ImportError:
    pyaudio = None  # type: ignore[assignment]  # Mocked in tests on non-Windows

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[AudioChunk], None]


class AudioDeviceError(RuntimeError):
    """Capture device could not be opened, started or stopped."""


class CaptureMode(Enum):
    IDLE = "idle"
    CAPTURE = "capture"
    MONITOR = "monitor"


@dataclass
class InputDevice:
    index: int
    name: str
    channels: int

    def __str__(self) -> str:
        return self.name


class AudioSource:
    """Shares one input device between bulk capture and continuous monitoring.

    Capture accumulates every chunk into a buffer returned by
    `stop_capture()`. Monitoring pushes every chunk into the ring buffer and
    to subscribers without accumulating. The two modes are mutually
    exclusive: starting one stops the other.

    Chunks are read on a dedicated thread. Subscribers run on that thread and
    must return quickly.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        channels: int = 1,
        bits_per_sample: int = 16,
        input_device: int | None = None,
        chunk_ms: int = 100,
        ring_seconds: float = 5.0,
        stop_timeout: float = 2.0,
    ):
        self._sample_rate = sample_rate
        self._channels = channels
        self._bits_per_sample = bits_per_sample
        self._input_device = input_device
        self._chunk_frames = max(1, int(sample_rate * chunk_ms / 1000))
        self._stop_timeout = stop_timeout

        self.ring_buffer = RingBuffer(
            max_seconds=ring_seconds,
            sample_rate=sample_rate,
            channels=channels,
            bits_per_sample=bits_per_sample,
        )

        self._pa = None
        self._stream = None
        self._reader_thread: threading.Thread | None = None
        self._reader_stopped = threading.Event()
        self._stop_requested = threading.Event()

        self._mode = CaptureMode.IDLE
        self._capture_buffer = bytearray()
        self._subscribers: list[ChunkCallback] = []
        self._dropped_chunks = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: AudioConfig) -> "AudioSource":
        return cls(
            sample_rate=config.sample_rate,
            channels=config.channels,
            bits_per_sample=config.bits_per_sample,
            input_device=config.input_device,
            chunk_ms=config.chunk_ms,
            ring_seconds=config.ring_seconds,
            stop_timeout=config.stop_timeout,
        )

    @property
    def sample_rate(self) -> int:
        return self._sample_rate

    @property
    def channels(self) -> int:
        return self._channels

    @property
    def bits_per_sample(self) -> int:
        return self._bits_per_sample

    @property
    def input_device(self) -> int | None:
        return self._input_device

    @property
    def mode(self) -> CaptureMode:
        return self._mode

    @property
    def is_capturing(self) -> bool:
        return self._mode == CaptureMode.CAPTURE

    @property
    def is_monitoring(self) -> bool:
        return self._mode == CaptureMode.MONITOR

    @property
    def dropped_chunks(self) -> int:
        with self._lock:
            return self._dropped_chunks

    # ── Subscribers ─────────────────────────────────────────────

    def subscribe(self, callback: ChunkCallback) -> None:
        """Register a callback that receives every chunk while monitoring."""
        with self._lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: ChunkCallback) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    # ── Modes ───────────────────────────────────────────────────

    def start_capture(self) -> None:
        """Begin accumulating audio until `stop_capture()`."""
        if self._mode == CaptureMode.CAPTURE:
            return
        if self._mode == CaptureMode.MONITOR:
            self._stop_stream()
        self._capture_buffer = bytearray()
        self.ring_buffer.clear()
        self._open_stream(CaptureMode.CAPTURE)
        logger.info("Capture started")

    def stop_capture(self) -> bytes | None:
        """Stop capture and return the accumulated PCM, or None if not capturing."""
        if self._mode != CaptureMode.CAPTURE:
            return None
        try:
            self._stop_stream()
        except AudioDeviceError as e:
            logger.error("Capture stop failed: %s", e)
        data = bytes(self._capture_buffer)
        self._capture_buffer = bytearray()
        logger.info("Capture stopped, %d bytes", len(data))
        return data

    def start_monitoring(self) -> None:
        """Begin continuous delivery to subscribers and the ring buffer."""
        if self._mode == CaptureMode.MONITOR:
            return
        if self._mode == CaptureMode.CAPTURE:
            self._stop_stream()
            self._capture_buffer = bytearray()
        self.ring_buffer.clear()
        self._open_stream(CaptureMode.MONITOR)
        logger.info("Monitoring started")

    def stop_monitoring(self) -> None:
        if self._mode != CaptureMode.MONITOR:
            return
        try:
            self._stop_stream()
        except AudioDeviceError as e:
            logger.error("Monitoring stop failed: %s", e)
        self.ring_buffer.clear()
        logger.info("Monitoring stopped")

    def get_recent_audio(self, seconds: float) -> bytes | None:
        """Return up to `seconds` of the most recent monitored audio, or None."""
        data = self.ring_buffer.read_seconds(seconds)
        return data or None

    def update_input_device(self, device: int | None) -> None:
        """Reopen on another device, resuming whichever mode was active."""
        previous = self._mode
        if previous != CaptureMode.IDLE:
            try:
                self._stop_stream()
            except AudioDeviceError as e:
                logger.error("Stop before device switch failed: %s", e)
        self._reinitialize()
        self._input_device = device
        logger.info("Input device set to %s", device)

        if previous == CaptureMode.CAPTURE:
            self.start_capture()
        elif previous == CaptureMode.MONITOR:
            self.start_monitoring()

    def list_input_devices(self) -> list[InputDevice]:
        """Return every device that exposes input channels."""
        pa = self._ensure_backend()
        devices = []
        for index in range(pa.get_device_count()):
            info = pa.get_device_info_by_index(index)
            channels = int(info.get("maxInputChannels", 0))
            if channels > 0:
                devices.append(InputDevice(index=index, name=info["name"], channels=channels))
        return devices

    def close(self) -> None:
        """Stop any active mode and release the backend."""
        if self._mode != CaptureMode.IDLE:
            try:
                self._stop_stream()
            except AudioDeviceError as e:
                logger.error("Stop on close failed: %s", e)
        self._reinitialize()

    # ── Device plumbing ─────────────────────────────────────────

    def _ensure_backend(self):
        if pyaudio is None:
            raise AudioDeviceError("PyAudio backend is not available")
        if self._pa is None:
            self._pa = pyaudio.PyAudio()
        return self._pa

    def _open_stream(self, mode: CaptureMode) -> None:
        pa = self._ensure_backend()
        try:
            self._stream = pa.open(
                format=pa.get_format_from_width(self._bits_per_sample // 8),
                channels=self._channels,
                rate=self._sample_rate,
                input=True,
                input_device_index=self._input_device,
                frames_per_buffer=self._chunk_frames,
            )
        except Exception as e:
            self._stream = None
            logger.error("Failed to open input device %s: %s", self._input_device, e)
            raise AudioDeviceError(f"Failed to open input device: {e}") from e

        self._mode = mode
        self._stop_requested = threading.Event()
        self._reader_stopped = threading.Event()
        self._reader_thread = threading.Thread(
            target=self._reader,
            args=(self._stream, self._stop_requested, self._reader_stopped),
            daemon=True,
        )
        self._reader_thread.start()

    def _stop_stream(self) -> None:
        """Stop the reader and close the stream within the stop timeout.

        A reader that does not exit in time is abandoned and the backend is
        re-initialized.
        """
        self._stop_requested.set()
        self._mode = CaptureMode.IDLE
        stream = self._stream
        self._stream = None

        if not self._reader_stopped.wait(timeout=self._stop_timeout):
            logger.warning(
                "Device stop did not complete within %.1fs, reinitializing",
                self._stop_timeout,
            )
            self._reader_thread = None
            if stream is not None:
                try:
                    stream.close()
                except Exception as e:
                    logger.warning("Closing abandoned stream failed: %s", e)
            self._reinitialize()
            return
        self._reader_thread = None

        if stream is None:
            return
        try:
            stream.stop_stream()
            stream.close()
        except Exception as e:
            logger.error("Failed to stop input stream: %s", e)
            self._reinitialize()
            raise AudioDeviceError(f"Failed to stop input stream: {e}") from e

    def _reinitialize(self) -> None:
        """Drop the backend instance so the next open starts from scratch."""
        pa = self._pa
        self._pa = None
        if pa is not None:
            try:
                pa.terminate()
            except Exception as e:
                logger.warning("Backend terminate failed: %s", e)

    def _reader(self, stream, stop: threading.Event, stopped: threading.Event) -> None:
        """Read chunks from the stream until stopped."""
        try:
            while not stop.is_set():
                try:
                    data = stream.read(self._chunk_frames, exception_on_overflow=False)
                except Exception as e:
                    if not stop.is_set():
                        logger.error("Input stream read failed: %s", e)
                    break
                if data and not stop.is_set():
                    self._deliver(data)
        finally:
            stopped.set()

    def _deliver(self, data: bytes) -> None:
        mode = self._mode
        if mode == CaptureMode.CAPTURE:
            self._capture_buffer.extend(data)
            return
        if mode != CaptureMode.MONITOR:
            return

        chunk = AudioChunk(
            data=bytes(data),
            sample_rate=self._sample_rate,
            channels=self._channels,
            bits_per_sample=self._bits_per_sample,
        )
        self.ring_buffer.append(chunk)
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(chunk)
            except Exception:
                with self._lock:
                    self._dropped_chunks += 1
                logger.exception("Chunk subscriber failed")
