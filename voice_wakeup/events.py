"""Runtime event fan-out for wake-up monitoring."""

import logging
from typing import Callable

logger = logging.getLogger(__name__)


class WakeupEvents:
    """Listener lists for the events a monitoring session emits.

    - utterance: (pcm, duration) for every segment accepted for analysis
    - verification: (VerificationResult)
    - wake_word_score: (similarity)
    - wakeup: (pcm, VerificationResult) on a positive wake

    A failing listener is logged and skipped.
    """

    NAMES = ("utterance", "verification", "wake_word_score", "wakeup")

    def __init__(self):
        self._listeners: dict[str, list[Callable]] = {name: [] for name in self.NAMES}

    def on(self, name: str, callback: Callable) -> None:
        self._listeners[self._check(name)].append(callback)

    def off(self, name: str, callback: Callable) -> None:
        listeners = self._listeners[self._check(name)]
        if callback in listeners:
            listeners.remove(callback)

    def emit(self, name: str, *args) -> None:
        for callback in list(self._listeners[self._check(name)]):
            try:
                callback(*args)
            except Exception:
                logger.exception("Listener for %s failed", name)

    def _check(self, name: str) -> str:
        if name not in self._listeners:
            raise KeyError(f"Unknown event: {name}")
        return name
