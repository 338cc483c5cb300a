"""Wake word matching: log-Mel features compared against enrolled exemplars by DTW."""

import logging

import numpy as np

from voice_wakeup.audio.chunk import pcm16_to_float
from voice_wakeup.config import FeatureConfig
from voice_wakeup.features.spectral import (
    MelFeatureSequence,
    apply_cmvn,
    log_mel_frames,
    mel_filterbank,
)
from voice_wakeup.wakeword.dtw import dtw_similarity

logger = logging.getLogger(__name__)


class WakeWordMatcher:
    """Score an utterance against wake word exemplars (0.0-1.0)."""

    def __init__(self, config: FeatureConfig | None = None, sample_rate: int = 16000):
        self.config = config or FeatureConfig()
        self.sample_rate = sample_rate
        # Warm the shared filterbank so the first match doesn't build it.
        mel_filterbank(self.config.fft_size, self.config.num_bands, sample_rate)

    def extract(
        self,
        pcm: bytes,
        sample_rate: int | None = None,
        condition: str = "normal",
    ) -> MelFeatureSequence:
        """Extract a trimmed, mean-normalized log-Mel sequence from 16-bit PCM.

        CMVN runs over all frames, then leading and trailing frames whose
        mean spectral power is below the silence floor are trimmed. Fully
        silent input yields a single zero frame.
        """
        cfg = self.config
        rate = sample_rate or self.sample_rate
        samples = pcm16_to_float(pcm)
        duration = len(samples) / float(rate)

        log_mel, energies = log_mel_frames(
            samples,
            frame_size=cfg.frame_size,
            hop_size=cfg.hop_size,
            fft_size=cfg.fft_size,
            num_bands=cfg.num_bands,
            sample_rate=rate,
            window=cfg.window,
            log_floor=cfg.log_floor,
        )
        features = apply_cmvn(log_mel)

        voiced = np.flatnonzero(energies >= cfg.silence_energy_floor)
        if voiced.size == 0:
            return MelFeatureSequence(
                features=np.zeros((1, cfg.num_bands), dtype=np.float32),
                duration=0.0,
                condition=condition,
            )

        start, end = int(voiced[0]), int(voiced[-1])
        return MelFeatureSequence(
            features=features[start:end + 1].astype(np.float32),
            duration=duration,
            condition=condition,
        )

    def match(
        self,
        pcm: bytes,
        templates: list[MelFeatureSequence],
        sample_rate: int | None = None,
    ) -> float:
        """Return the best DTW similarity between the utterance and any exemplar."""
        if not templates:
            return 0.0

        cfg = self.config
        query = self.extract(pcm, sample_rate)
        if query.num_frames < cfg.min_frames:
            logger.debug("Utterance too short for matching (%d frames)", query.num_frames)
            return 0.0

        best = 0.0
        best_condition = ""
        for template in templates:
            if template.num_frames < cfg.min_frames:
                continue
            if template.num_bands != query.num_bands:
                continue
            similarity = dtw_similarity(
                query.features,
                template.features,
                num_bands=query.num_bands,
                max_length_ratio=cfg.max_length_ratio,
            )
            if similarity > best:
                best = similarity
                best_condition = template.condition or "unknown"

        logger.debug(
            "Wake word match: best=%.3f (condition=%s), frames=%d, exemplars=%d",
            best, best_condition, query.num_frames, len(templates),
        )
        return best
