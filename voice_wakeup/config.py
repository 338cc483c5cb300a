# voice_wakeup/config.py
from dataclasses import dataclass, field
import yaml


@dataclass
class AudioConfig:
    sample_rate: int = 16000
    channels: int = 1
    bits_per_sample: int = 16
    input_device: int | None = None  # None = default
    chunk_ms: int = 100
    ring_seconds: float = 5.0
    stop_timeout: float = 2.0

    @property
    def bytes_per_second(self) -> int:
        return self.sample_rate * self.channels * (self.bits_per_sample // 8)


@dataclass
class VADConfig:
    silence_threshold: float = 0.01  # RMS of samples in [-1, 1]
    silence_timeout: float = 2.0
    min_recording_duration: float = 1.0
    max_recording_duration: float = 10.0


@dataclass
class FeatureConfig:
    frame_size: int = 400  # 25ms at 16kHz
    hop_size: int = 160  # 10ms
    fft_size: int = 512
    num_bands: int = 20
    window: str = "hamming"
    log_floor: float = 1e-10
    silence_energy_floor: float = 0.005
    max_length_ratio: float = 3.0
    min_frames: int = 3


@dataclass
class WakeupConfig:
    wake_word_threshold: float = 0.55
    voiceprint_threshold: float = 0.7  # cosine similarity, -1..1
    wakeup_cooldown: float = 2.0
    worker_threads: int = 2


@dataclass
class ProvidersConfig:
    embedding: str = ""  # "package.module:factory"
    transcriber: str = ""
    template_store: str = ""


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


@dataclass
class WakeupServiceConfig:
    audio: AudioConfig = field(default_factory=AudioConfig)
    vad: VADConfig = field(default_factory=VADConfig)
    features: FeatureConfig = field(default_factory=FeatureConfig)
    wakeup: WakeupConfig = field(default_factory=WakeupConfig)
    providers: ProvidersConfig = field(default_factory=ProvidersConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    def validate(self) -> "WakeupServiceConfig":
        """Clamp out-of-range values in place. Returns self for chaining."""
        if self.audio.bits_per_sample != 16:
            raise ValueError(
                f"Only 16-bit PCM is supported, got {self.audio.bits_per_sample}"
            )
        if not 8000 <= self.audio.sample_rate <= 48000:
            self.audio.sample_rate = 16000

        vad = self.vad
        vad.min_recording_duration = max(0.5, vad.min_recording_duration)
        vad.max_recording_duration = max(
            vad.min_recording_duration + 1, vad.max_recording_duration
        )

        wakeup = self.wakeup
        wakeup.voiceprint_threshold = _clamp(wakeup.voiceprint_threshold, -1.0, 1.0)
        wakeup.wakeup_cooldown = _clamp(wakeup.wakeup_cooldown, 0.5, 10.0)
        wakeup.wake_word_threshold = _clamp(wakeup.wake_word_threshold, 0.1, 0.95)
        wakeup.worker_threads = max(2, wakeup.worker_threads)
        return self


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _build_nested(cls, data: dict):
    """Build a dataclass from a dict, handling nested dataclasses."""
    if data is None:
        return cls()
    fieldtypes = {f.name: f.type for f in cls.__dataclass_fields__.values()}
    kwargs = {}
    for key, value in data.items():
        if key in fieldtypes and isinstance(value, dict):
            nested_cls = cls.__dataclass_fields__[key].default_factory
            kwargs[key] = _build_nested(nested_cls, value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def load_config(path: str) -> WakeupServiceConfig:
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return _build_nested(WakeupServiceConfig, data).validate()
