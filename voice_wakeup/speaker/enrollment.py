"""Multi-sample enrollment of a speaker and their wake phrase.

`Enroller` is the public enrollment API. `python -m voice_wakeup.main enroll`
records one sample per entry of `CONDITIONS` and passes them here.
"""

import logging

import numpy as np

from voice_wakeup.speaker.templates import TemplateRegistry, VoiceprintTemplate, l2_normalize
from voice_wakeup.speaker.verifier import SpeakerVerifier
from voice_wakeup.wakeword.matcher import WakeWordMatcher

logger = logging.getLogger(__name__)

CONDITIONS = ("normal", "far", "close", "loud", "quiet")


class Enroller:
    """Build a template from several recordings of the same wake phrase.

    Each sample contributes one embedding and one wake word exemplar. The
    embeddings are averaged and re-normalized into a single voiceprint.
    """

    def __init__(
        self,
        verifier: SpeakerVerifier,
        matcher: WakeWordMatcher,
        registry: TemplateRegistry,
    ):
        self.verifier = verifier
        self.matcher = matcher
        self.registry = registry

    def enroll(
        self,
        user_id: str,
        name: str,
        samples: list[tuple[bytes, str]],
        sample_rate: int | None = None,
    ) -> VoiceprintTemplate | None:
        """Enroll `samples` as (pcm, condition) pairs. Returns None on failure."""
        if not samples:
            logger.warning("Enrollment of %s skipped: no samples", user_id)
            return None

        samples = [(pcm, condition or "normal") for pcm, condition in samples]
        unknown = sorted({c for _, c in samples if c not in CONDITIONS})
        if unknown:
            logger.warning("Enrollment of %s skipped: unknown condition(s) %s", user_id, unknown)
            return None

        try:
            embeddings = [self.verifier.embed(pcm) for pcm, _ in samples]
            exemplars = [
                self.matcher.extract(pcm, sample_rate, condition=condition)
                for pcm, condition in samples
            ]
        except Exception as e:
            logger.error("Enrollment of %s failed: %s", user_id, e)
            return None

        for exemplar in exemplars:
            logger.info(
                "Exemplar: %d frames x %d bands, condition=%s, %.1fs",
                exemplar.num_frames, exemplar.num_bands,
                exemplar.condition, exemplar.duration,
            )

        template = VoiceprintTemplate(
            user_id=user_id,
            name=name,
            embedding=l2_normalize(np.mean(np.stack(embeddings), axis=0)),
            exemplars=exemplars,
        )
        self.registry.add(template)
        return template
