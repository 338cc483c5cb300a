"""Log-Mel spectral features: windowed FFT → power → Mel filterbank → log → CMVN."""

import threading
from dataclasses import dataclass

import numpy as np

_FilterKey = tuple[int, int, int]

_filterbanks: dict[_FilterKey, np.ndarray] = {}
_filterbank_lock = threading.Lock()


@dataclass
class MelFeatureSequence:
    """Log-Mel energies, shape (frames, bands)."""

    features: np.ndarray
    duration: float = 0.0
    condition: str = "normal"

    @property
    def num_frames(self) -> int:
        return int(self.features.shape[0])

    @property
    def num_bands(self) -> int:
        return int(self.features.shape[1]) if self.features.ndim == 2 else 0

    def to_record(self) -> dict:
        return {
            "features": self.features.astype(np.float32).ravel().tolist(),
            "num_frames": self.num_frames,
            "num_bands": self.num_bands,
            "duration": float(self.duration),
            "condition": self.condition,
        }

    @classmethod
    def from_record(cls, record: dict) -> "MelFeatureSequence":
        frames = int(record["num_frames"])
        bands = int(record["num_bands"])
        flat = np.asarray(record["features"], dtype=np.float32)
        if flat.size != frames * bands:
            raise ValueError(
                f"Exemplar has {flat.size} values, expected {frames} x {bands}"
            )
        return cls(
            features=flat.reshape(frames, bands),
            duration=float(record.get("duration", 0.0)),
            condition=record.get("condition") or "normal",
        )


def next_power_of_two(n: int) -> int:
    """Smallest power of two >= n (1 for n <= 1)."""
    if n <= 1:
        return 1
    return 1 << (int(n) - 1).bit_length()


def hz_to_mel(hz):
    return 2595.0 * np.log10(1.0 + np.asarray(hz, dtype=np.float64) / 700.0)


def mel_to_hz(mel):
    return 700.0 * (10.0 ** (np.asarray(mel, dtype=np.float64) / 2595.0) - 1.0)


def _build_filterbank(fft_size: int, num_bands: int, sample_rate: int) -> np.ndarray:
    n_freqs = fft_size // 2 + 1
    mel_points = np.linspace(hz_to_mel(0.0), hz_to_mel(sample_rate / 2.0), num_bands + 2)
    bin_points = mel_to_hz(mel_points) * fft_size / sample_rate
    bins = np.arange(n_freqs, dtype=np.float64)

    filters = np.zeros((num_bands, n_freqs), dtype=np.float64)
    for m in range(num_bands):
        left, center, right = bin_points[m], bin_points[m + 1], bin_points[m + 2]
        if center > left:
            rising = (bins >= left) & (bins <= center)
            filters[m, rising] = (bins[rising] - left) / (center - left)
        if right > center:
            falling = (bins > center) & (bins <= right)
            filters[m, falling] = (right - bins[falling]) / (right - center)

        # Slaney normalization: coefficients of each filter sum to 1
        total = filters[m].sum()
        if total > 0:
            filters[m] /= total

    filters.setflags(write=False)
    return filters


def mel_filterbank(fft_size: int, num_bands: int, sample_rate: int) -> np.ndarray:
    """Triangular Mel filterbank, shape (num_bands, fft_size // 2 + 1).

    Built once per configuration and shared read-only.
    """
    key = (int(fft_size), int(num_bands), int(sample_rate))
    filters = _filterbanks.get(key)
    if filters is None:
        with _filterbank_lock:
            filters = _filterbanks.get(key)
            if filters is None:
                filters = _build_filterbank(*key)
                _filterbanks[key] = filters
    return filters


def _window(name: str, size: int) -> np.ndarray:
    if name == "hamming":
        return np.hamming(size)
    if name == "hann":
        return np.hanning(size)
    raise ValueError(f"Unknown window: {name}")


def frame_signal(samples: np.ndarray, frame_size: int, hop_size: int) -> np.ndarray:
    """Slice samples into overlapping frames, zero-padding the last one.

    Always returns at least one frame.
    """
    samples = np.asarray(samples, dtype=np.float64)
    num_frames = max(1, (len(samples) - frame_size) // hop_size + 1)
    needed = (num_frames - 1) * hop_size + frame_size
    if len(samples) < needed:
        samples = np.pad(samples, (0, needed - len(samples)))
    idx = np.arange(frame_size)[None, :] + hop_size * np.arange(num_frames)[:, None]
    return samples[idx]


def power_spectrum(frames: np.ndarray, fft_size: int) -> np.ndarray:
    """Power spectrum per frame, FFT length padded to the next power of two."""
    n = next_power_of_two(max(fft_size, frames.shape[-1]))
    spectrum = np.fft.rfft(frames, n=n, axis=-1)
    return spectrum.real ** 2 + spectrum.imag ** 2


def log_mel_frames(
    samples: np.ndarray,
    frame_size: int = 400,
    hop_size: int = 160,
    fft_size: int = 512,
    num_bands: int = 20,
    sample_rate: int = 16000,
    window: str = "hamming",
    log_floor: float = 1e-10,
) -> tuple[np.ndarray, np.ndarray]:
    """Return (log-Mel energies [frames, bands], mean power per frame)."""
    frames = frame_signal(samples, frame_size, hop_size) * _window(window, frame_size)
    power = power_spectrum(frames, fft_size)
    n_fft = (power.shape[-1] - 1) * 2
    filters = mel_filterbank(n_fft, num_bands, sample_rate)
    mel = power @ filters.T
    log_mel = np.log(np.maximum(mel, log_floor))
    return log_mel, power.mean(axis=-1)


def apply_cmvn(features: np.ndarray) -> np.ndarray:
    """Subtract the per-band mean across all frames."""
    if features.shape[0] == 0:
        return features
    return features - features.mean(axis=0, keepdims=True)


def compute_mel(
    samples: np.ndarray,
    frame_size: int = 400,
    hop_size: int = 160,
    fft_size: int = 512,
    num_bands: int = 20,
    sample_rate: int = 16000,
    window: str = "hamming",
    log_floor: float = 1e-10,
    cmvn: bool = True,
    condition: str = "normal",
) -> MelFeatureSequence:
    """Compute a log-Mel feature sequence from float samples in [-1, 1]."""
    log_mel, _ = log_mel_frames(
        samples,
        frame_size=frame_size,
        hop_size=hop_size,
        fft_size=fft_size,
        num_bands=num_bands,
        sample_rate=sample_rate,
        window=window,
        log_floor=log_floor,
    )
    if cmvn:
        log_mel = apply_cmvn(log_mel)
    return MelFeatureSequence(
        features=log_mel.astype(np.float32),
        duration=len(samples) / float(sample_rate),
        condition=condition,
    )
