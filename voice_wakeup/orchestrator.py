"""Orchestrator: drives VAD segments through speaker verification and wake word matching."""

import asyncio
import logging
import time
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable

from voice_wakeup.audio.capture import AudioSource
from voice_wakeup.audio.chunk import SpeechSegment
from voice_wakeup.audio.vad import VoiceActivityDetector
from voice_wakeup.config import WakeupServiceConfig
from voice_wakeup.events import WakeupEvents
from voice_wakeup.features.spectral import MelFeatureSequence
from voice_wakeup.speaker.templates import TemplateRegistry
from voice_wakeup.speaker.verifier import SpeakerVerifier, VerificationResult
from voice_wakeup.wakeword.matcher import WakeWordMatcher

logger = logging.getLogger(__name__)


class State(Enum):
    NOT_MONITORING = "not_monitoring"
    MONITORING = "monitoring"
    PROCESSING = "processing"


class ProcessOutcome(Enum):
    BUSY = "busy"
    TOO_SHORT = "too_short"
    COOLDOWN = "cooldown"
    REJECTED = "rejected"
    WOKE = "woke"
    STOPPED = "stopped"
    ERROR = "error"


class WakeupOrchestrator:
    """Turns speech segments into wake decisions.

    Segments arrive on the capture thread and are handed to the event loop.
    Verification and matching run in parallel on a worker pool. At most one
    segment is analyzed at a time; a segment arriving meanwhile is dropped.
    A wake requires a verified speaker and a wake word score at or above
    `wake_word_threshold`, and is suppressed within `wakeup_cooldown`
    seconds of the previous one.
    """

    def __init__(
        self,
        audio: AudioSource,
        vad: VoiceActivityDetector,
        verifier: SpeakerVerifier,
        matcher: WakeWordMatcher,
        registry: TemplateRegistry,
        wake_word_threshold: float = 0.55,
        min_recording_duration: float = 1.0,
        wakeup_cooldown: float = 2.0,
        worker_threads: int = 2,
        events: WakeupEvents | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.state = State.NOT_MONITORING

        self.audio = audio
        self.vad = vad
        self.verifier = verifier
        self.matcher = matcher
        self.registry = registry
        self.events = events or WakeupEvents()

        self.wake_word_threshold = wake_word_threshold
        self.min_recording_duration = min_recording_duration
        self.wakeup_cooldown = wakeup_cooldown

        self.refusal_reason: str | None = None
        self.processed_count = 0
        self.dropped_count = 0
        self.last_result: VerificationResult | None = None
        self.last_score: float | None = None

        self._clock = clock
        self._busy = False
        self._last_wakeup: float | None = None
        self._session = 0
        self._loop: asyncio.AbstractEventLoop | None = None
        self._executor = ThreadPoolExecutor(
            max_workers=max(2, worker_threads), thread_name_prefix="wakeup"
        )
        self._tasks: set[asyncio.Task] = set()

    @classmethod
    def from_config(
        cls,
        config: WakeupServiceConfig,
        audio: AudioSource,
        vad: VoiceActivityDetector,
        verifier: SpeakerVerifier,
        matcher: WakeWordMatcher,
        registry: TemplateRegistry,
        events: WakeupEvents | None = None,
    ) -> "WakeupOrchestrator":
        return cls(
            audio=audio,
            vad=vad,
            verifier=verifier,
            matcher=matcher,
            registry=registry,
            wake_word_threshold=config.wakeup.wake_word_threshold,
            min_recording_duration=config.vad.min_recording_duration,
            wakeup_cooldown=config.wakeup.wakeup_cooldown,
            worker_threads=config.wakeup.worker_threads,
            events=events,
        )

    @property
    def is_monitoring(self) -> bool:
        return self.state != State.NOT_MONITORING

    @property
    def is_busy(self) -> bool:
        return self._busy

    # ── Session control ─────────────────────────────────────────

    def check_ready(self) -> str | None:
        """Return why monitoring cannot start, or None if it can."""
        templates = self.registry.snapshot()
        if not templates:
            return "no enrolled voiceprints"
        if not any(t.has_exemplars for t in templates):
            return "enrolled voiceprints have no wake word exemplars (re-enroll)"
        return None

    async def start_monitoring(self) -> bool:
        """Start listening. Returns False and sets `refusal_reason` if not ready."""
        if self.is_monitoring:
            return True

        reason = self.check_ready()
        if reason is not None:
            self.refusal_reason = reason
            logger.warning("Cannot start monitoring: %s", reason)
            return False
        self.refusal_reason = None

        self._loop = asyncio.get_running_loop()
        self.vad.reset()
        self.vad.add_listener(self._on_segment)
        self.audio.subscribe(self.vad.process)
        try:
            self.audio.start_monitoring()
        except Exception:
            self.audio.unsubscribe(self.vad.process)
            self.vad.remove_listener(self._on_segment)
            raise

        self.state = State.MONITORING
        logger.info("Wake-up monitoring started")
        return True

    async def stop_monitoring(self) -> None:
        if not self.is_monitoring:
            return
        self.audio.unsubscribe(self.vad.process)
        self.vad.remove_listener(self._on_segment)
        self.audio.stop_monitoring()
        self.vad.reset()
        self.state = State.NOT_MONITORING
        self._session += 1

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("Wake-up monitoring stopped")

    def close(self) -> None:
        self._executor.shutdown(wait=False)

    # ── Segment handling ────────────────────────────────────────

    def _on_segment(self, segment: SpeechSegment) -> None:
        """VAD listener; runs on the capture thread."""
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        loop.call_soon_threadsafe(self._schedule, segment)

    def _schedule(self, segment: SpeechSegment) -> None:
        if self.state == State.NOT_MONITORING:
            logger.debug("Monitoring stopped, dropping queued segment")
            return
        task = asyncio.ensure_future(self.process_segment(segment))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def process_segment(self, segment: SpeechSegment) -> ProcessOutcome:
        """Analyze one segment unless another is already in flight."""
        if self._busy:
            self.dropped_count += 1
            logger.debug("Previous segment still processing, dropping this one")
            return ProcessOutcome.BUSY

        self._busy = True
        try:
            return await self._analyze(segment)
        except Exception:
            logger.exception("Wake-up detection failed")
            return ProcessOutcome.ERROR
        finally:
            self._busy = False
            if self.state == State.PROCESSING:
                self.state = State.MONITORING

    async def _analyze(self, segment: SpeechSegment) -> ProcessOutcome:
        session = self._session
        duration = segment.duration
        if duration < self.min_recording_duration:
            logger.debug(
                "Segment too short (%.1fs < %.1fs), dropping",
                duration, self.min_recording_duration,
            )
            return ProcessOutcome.TOO_SHORT

        now = self._clock()
        if self._last_wakeup is not None:
            since = now - self._last_wakeup
            if since < self.wakeup_cooldown:
                logger.debug("In cooldown (%.1fs left), dropping", self.wakeup_cooldown - since)
                return ProcessOutcome.COOLDOWN

        logger.info("Speech segment: %.1fs, %d bytes", duration, len(segment))
        self.events.emit("utterance", segment.data, duration)
        if self.state == State.MONITORING:
            self.state = State.PROCESSING

        templates = self.registry.snapshot()
        exemplars = [e for t in templates for e in t.exemplars]

        loop = asyncio.get_running_loop()
        started = time.perf_counter()
        result, score = await asyncio.gather(
            loop.run_in_executor(self._executor, self.verifier.verify, segment.data, templates),
            loop.run_in_executor(self._executor, self._match, segment, exemplars),
        )
        elapsed_ms = (time.perf_counter() - started) * 1000
        self.processed_count += 1
        self.last_result = result
        self.last_score = score

        logger.info(
            "Speaker: %s (confidence %.1f%%)",
            "verified" if result.is_verified else "rejected", result.confidence * 100,
        )
        logger.info("Wake word score: %.3f (threshold %.2f)", score, self.wake_word_threshold)
        logger.debug("Parallel analysis took %.0fms", elapsed_ms)
        self.events.emit("verification", result)
        self.events.emit("wake_word_score", score)

        if not result.is_verified:
            return ProcessOutcome.REJECTED
        if score < self.wake_word_threshold:
            logger.info("Wake word not matched (%.3f < %.2f)", score, self.wake_word_threshold)
            return ProcessOutcome.REJECTED

        if self._session != session:
            logger.info("Monitoring stopped during analysis, wake discarded")
            return ProcessOutcome.STOPPED

        self._last_wakeup = self._clock()
        logger.info(
            "Wake-up: speaker %s, wake word %.3f (%.0fms)",
            result.matched_user_id, score, elapsed_ms,
        )
        self.events.emit("wakeup", segment.data, result)
        return ProcessOutcome.WOKE

    def _match(self, segment: SpeechSegment, exemplars: list[MelFeatureSequence]) -> float:
        try:
            return self.matcher.match(segment.data, exemplars, segment.sample_rate)
        except Exception as e:
            logger.error("Wake word matching failed: %s", e)
            return 0.0
