"""Speaker verification: cosine similarity against enrolled embeddings."""

import logging
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from voice_wakeup.audio.chunk import pcm16_to_float
from voice_wakeup.providers import EmbeddingProvider
from voice_wakeup.speaker.templates import TemplateRegistry, VoiceprintTemplate, l2_normalize

logger = logging.getLogger(__name__)

NO_TEMPLATES = "no enrolled templates"


@dataclass(frozen=True)
class VerificationResult:
    is_verified: bool
    confidence: float = 0.0
    matched_user_id: str | None = None
    error: str | None = None
    similarity: float | None = None


def cosine_similarity(a, b) -> float:
    """Cosine similarity of two vectors after L2 normalization, in [-1, 1]."""
    a = l2_normalize(a)
    b = l2_normalize(b)
    if a.shape != b.shape:
        raise ValueError(f"Embedding dimension mismatch: {a.shape[0]} vs {b.shape[0]}")
    return float(np.clip(np.dot(a, b), -1.0, 1.0))


class SpeakerVerifier:
    """Verify that an utterance comes from one of the enrolled speakers."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        registry: TemplateRegistry,
        threshold: float = 0.7,
    ):
        self.provider = provider
        self.registry = registry
        self.threshold = threshold

    def embed(self, pcm: bytes) -> np.ndarray:
        """Embedding of 16-bit PCM via the provider, L2-normalized."""
        return l2_normalize(self.provider.extract_embedding(pcm16_to_float(pcm)))

    def verify(
        self,
        pcm: bytes,
        templates: Sequence[VoiceprintTemplate] | None = None,
    ) -> VerificationResult:
        """Compare the utterance against every template and keep the best.

        `templates` defaults to the registry's current snapshot. Provider
        failures become a failed result rather than an exception.
        """
        if templates is None:
            templates = self.registry.snapshot()
        if not templates:
            return VerificationResult(is_verified=False, error=NO_TEMPLATES)

        try:
            embedding = self.embed(pcm)
            best_similarity = -1.0
            best_user: str | None = None
            for template in templates:
                similarity = cosine_similarity(embedding, template.embedding)
                if best_user is None or similarity > best_similarity:
                    best_similarity = similarity
                    best_user = template.user_id
        except Exception as e:
            logger.error("Speaker verification failed: %s", e)
            return VerificationResult(is_verified=False, confidence=0.0, error=str(e))

        verified = best_similarity >= self.threshold
        confidence = min(1.0, max(0.0, (best_similarity + 1.0) / 2.0))
        logger.debug(
            "Speaker similarity %.3f (threshold %.2f, user=%s)",
            best_similarity, self.threshold, best_user,
        )
        return VerificationResult(
            is_verified=verified,
            confidence=confidence,
            matched_user_id=best_user if verified else None,
            similarity=best_similarity,
        )
