"""Dynamic time warping between two log-Mel sequences."""

import math

import numpy as np

_INF = math.inf


def dtw_cost(a: np.ndarray, b: np.ndarray, window: int) -> float:
    """Accumulated DTW cost with a Sakoe-Chiba band of half-width `window`.

    Uses two rolling rows. Cells outside the band stay unreachable (inf).
    """
    m, n = len(a), len(b)
    prev = [_INF] * (n + 1)
    prev[0] = 0.0

    for i in range(1, m + 1):
        curr = [_INF] * (n + 1)
        lo = max(1, i - window)
        hi = min(n, i + window)
        if lo <= hi:
            local = np.sqrt(np.sum((b[lo - 1:hi] - a[i - 1]) ** 2, axis=1)).tolist()
            for j in range(lo, hi + 1):
                best = prev[j - 1]
                if prev[j] < best:
                    best = prev[j]
                if curr[j - 1] < best:
                    best = curr[j - 1]
                if best == _INF:
                    continue
                curr[j] = local[j - lo] + best
        prev = curr

    return prev[n]


def dtw_similarity(
    a: np.ndarray,
    b: np.ndarray,
    num_bands: int | None = None,
    max_length_ratio: float = 3.0,
) -> float:
    """Similarity in [0, 1] between two (frames, bands) sequences.

    Sequences whose frame counts differ by more than `max_length_ratio`
    score 0. The accumulated cost is normalized by (m + n) * sqrt(bands)
    and mapped through 1 / (1 + cost).
    """
    a = np.asarray(a, dtype=np.float64)
    b = np.asarray(b, dtype=np.float64)
    m, n = len(a), len(b)
    if m == 0 or n == 0:
        return 0.0
    if m > n * max_length_ratio or n > m * max_length_ratio:
        return 0.0

    bands = num_bands or min(a.shape[1], b.shape[1])
    if bands <= 0:
        return 0.0
    a = a[:, :bands]
    b = b[:, :bands]
    if n > m:
        # rows hold the shorter sequence
        a, b, m, n = b, a, n, m

    window = max(max(m, n) // 3, abs(m - n) + 1)
    total = dtw_cost(a, b, window)
    if total == _INF:
        return 0.0

    normalized = total / ((m + n) * math.sqrt(bands))
    return max(0.0, 1.0 / (1.0 + normalized))
