"""Abstract collaborators the wake-up core consumes but does not implement."""

import importlib
from abc import ABC, abstractmethod

import numpy as np


class EmbeddingProvider(ABC):
    """Turns an utterance into a fixed-length speaker embedding."""

    @abstractmethod
    def extract_embedding(self, samples: np.ndarray) -> np.ndarray:
        """Return a 1-D embedding for float samples in [-1, 1]. Raises on failure."""


class Transcriber(ABC):
    """Speech-to-text, invoked by the host application after a wake."""

    @abstractmethod
    def transcribe(self, audio: np.ndarray) -> str:
        """Transcribe audio to text."""


class TemplateStore(ABC):
    """Persists voiceprint template records as an ordered list of dicts."""

    @abstractmethod
    def load(self) -> list[dict]:
        """Return all stored records."""

    @abstractmethod
    def save(self, records: list[dict]) -> None:
        """Replace stored records."""


def load_provider(path: str, *args, **kwargs):
    """Resolve "package.module:attr" and call it to build a collaborator.

    Returns None for an empty path.
    """
    if not path:
        return None
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Provider path must look like 'module:attr', got {path!r}")
    module = importlib.import_module(module_name)
    factory = getattr(module, attr)
    return factory(*args, **kwargs)
