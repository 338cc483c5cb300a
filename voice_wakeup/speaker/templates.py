"""Enrolled voiceprint templates and the registry that serves them."""

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime

import numpy as np

from voice_wakeup.features.spectral import MelFeatureSequence
from voice_wakeup.providers import TemplateStore

logger = logging.getLogger(__name__)


def l2_normalize(vector) -> np.ndarray:
    """Return `vector` scaled to unit length (zero vectors are returned as-is)."""
    arr = np.asarray(vector, dtype=np.float32).ravel()
    norm = float(np.linalg.norm(arr))
    if norm > 0:
        arr = arr / norm
    return arr


@dataclass
class VoiceprintTemplate:
    """One enrolled user: embedding plus wake word exemplars."""

    user_id: str
    name: str
    embedding: np.ndarray
    exemplars: list[MelFeatureSequence] = field(default_factory=list)
    created_at: datetime = field(default_factory=datetime.now)

    def __post_init__(self):
        self.embedding = l2_normalize(self.embedding)

    @property
    def has_exemplars(self) -> bool:
        return bool(self.exemplars)

    def to_record(self) -> dict:
        return {
            "user_id": self.user_id,
            "name": self.name,
            "embedding": self.embedding.tolist(),
            "exemplars": [e.to_record() for e in self.exemplars],
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict) -> "VoiceprintTemplate":
        created = record.get("created_at")
        return cls(
            user_id=str(record["user_id"]),
            name=record.get("name", ""),
            embedding=np.asarray(record["embedding"], dtype=np.float32),
            exemplars=[MelFeatureSequence.from_record(e) for e in record.get("exemplars") or []],
            created_at=datetime.fromisoformat(created) if created else datetime.now(),
        )


class TemplateRegistry:
    """Copy-on-write list of templates.

    Readers take a `snapshot()` (an immutable tuple) and keep using it while
    writers swap in a new tuple, so in-flight verification never sees a
    half-updated set.
    """

    def __init__(
        self,
        templates: list[VoiceprintTemplate] | None = None,
        store: TemplateStore | None = None,
    ):
        self._templates: tuple[VoiceprintTemplate, ...] = tuple(templates or ())
        self._store = store
        self._write_lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._templates)

    def snapshot(self) -> tuple[VoiceprintTemplate, ...]:
        return self._templates

    def get(self, user_id: str) -> VoiceprintTemplate | None:
        for template in self._templates:
            if template.user_id == user_id:
                return template
        return None

    def exemplars(self) -> list[MelFeatureSequence]:
        """All wake word exemplars across every enrolled user."""
        return [e for t in self._templates for e in t.exemplars]

    def add(self, template: VoiceprintTemplate) -> None:
        """Add a template, replacing any existing one for the same user id."""
        with self._write_lock:
            kept = [t for t in self._templates if t.user_id != template.user_id]
            kept.append(template)
            self._templates = tuple(kept)
            self._persist()
        logger.info("Template registered: %s (%s)", template.name, template.user_id)

    def remove(self, user_id: str) -> bool:
        with self._write_lock:
            kept = tuple(t for t in self._templates if t.user_id != user_id)
            if len(kept) == len(self._templates):
                return False
            self._templates = kept
            self._persist()
        logger.info("Template removed: %s", user_id)
        return True

    def load(self) -> int:
        """Replace the in-memory set with the store's records. Returns the count."""
        if self._store is None:
            return len(self._templates)
        records = self._store.load()
        templates = tuple(VoiceprintTemplate.from_record(r) for r in records)
        with self._write_lock:
            self._templates = templates
        logger.info("Loaded %d voiceprint template(s)", len(templates))
        return len(templates)

    def _persist(self) -> None:
        if self._store is not None:
            self._store.save([t.to_record() for t in self._templates])
