# voice_wakeup/main.py
import argparse
import asyncio
import logging
import os
import time

from voice_wakeup.audio.capture import AudioSource
from voice_wakeup.audio.chunk import pcm16_to_float
from voice_wakeup.audio.vad import VoiceActivityDetector
from voice_wakeup.config import WakeupServiceConfig, load_config
from voice_wakeup.orchestrator import WakeupOrchestrator
from voice_wakeup.providers import Transcriber, load_provider
from voice_wakeup.speaker.enrollment import CONDITIONS, Enroller
from voice_wakeup.speaker.templates import TemplateRegistry
from voice_wakeup.speaker.verifier import SpeakerVerifier, VerificationResult
from voice_wakeup.wakeword.matcher import WakeWordMatcher

logger = logging.getLogger(__name__)


def configure_logging(config: WakeupServiceConfig) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level.upper(), logging.INFO),
        format=config.logging.format,
    )


def build_service(config: WakeupServiceConfig) -> WakeupOrchestrator:
    """Wire capture, VAD, verification and matching from config."""
    provider = load_provider(config.providers.embedding)
    if provider is None:
        raise ValueError("providers.embedding must name an embedding provider factory")
    store = load_provider(config.providers.template_store)

    registry = TemplateRegistry(store=store)
    registry.load()

    audio = AudioSource.from_config(config.audio)
    vad = VoiceActivityDetector.from_config(config.vad)
    verifier = SpeakerVerifier(
        provider, registry, threshold=config.wakeup.voiceprint_threshold
    )
    matcher = WakeWordMatcher(config.features, sample_rate=config.audio.sample_rate)
    return WakeupOrchestrator.from_config(config, audio, vad, verifier, matcher, registry)


def wakeup_handler(transcriber: Transcriber | None):
    """Log each wake and, when a transcriber is configured, what was said.

    Must be registered from the event loop thread. Transcription runs in the
    loop's default executor so the loop keeps handling segments meanwhile.
    """

    def transcribe(pcm: bytes) -> None:
        text = transcriber.transcribe(pcm16_to_float(pcm))
        logger.info("Heard: %s", text)

    def log_failure(future) -> None:
        if not future.cancelled() and future.exception() is not None:
            logger.error("Transcription failed: %s", future.exception())

    def handle(pcm: bytes, result: VerificationResult) -> None:
        logger.info(
            "WAKE: user=%s confidence=%.2f (%d bytes)",
            result.matched_user_id, result.confidence, len(pcm),
        )
        if transcriber is not None:
            loop = asyncio.get_running_loop()
            loop.run_in_executor(None, transcribe, pcm).add_done_callback(log_failure)

    return handle


def record_sample(audio: AudioSource, seconds: float) -> bytes:
    """Capture `seconds` of audio in bulk mode. Blocks the calling thread."""
    audio.start_capture()
    time.sleep(seconds)
    return audio.stop_capture() or b""


async def enroll(config_path: str, user_id: str, name: str, seconds: float = 3.0) -> bool:
    """Record the wake phrase once per condition and enroll the speaker."""
    config = load_config(config_path)
    configure_logging(config)
    orchestrator = build_service(config)
    enroller = Enroller(orchestrator.verifier, orchestrator.matcher, orchestrator.registry)
    loop = asyncio.get_running_loop()

    try:
        samples = []
        for condition in CONDITIONS:
            logger.info("Say the wake phrase (%s) now...", condition)
            pcm = await loop.run_in_executor(
                None, record_sample, orchestrator.audio, seconds
            )
            samples.append((pcm, condition))

        template = await loop.run_in_executor(
            None, enroller.enroll, user_id, name, samples, config.audio.sample_rate
        )
    finally:
        orchestrator.audio.close()
        orchestrator.close()

    if template is None:
        logger.error("Enrollment of %s failed", user_id)
        return False
    logger.info("Enrolled %s with %d exemplar(s)", name, len(template.exemplars))
    return True


async def run(config_path: str) -> None:
    config = load_config(config_path)
    configure_logging(config)
    orchestrator = build_service(config)

    transcriber = load_provider(config.providers.transcriber)
    orchestrator.events.on("wakeup", wakeup_handler(transcriber))

    if not await orchestrator.start_monitoring():
        logger.error("Monitoring refused: %s", orchestrator.refusal_reason)
        orchestrator.close()
        return
    try:
        while True:
            await asyncio.sleep(1)
    finally:
        await orchestrator.stop_monitoring()
        orchestrator.audio.close()
        orchestrator.close()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Voice wake-up service")
    parser.add_argument(
        "--config",
        default=os.environ.get("WAKEUP_CONFIG", "voice_wakeup/config.yaml"),
        help="Path to config.yaml",
    )
    sub = parser.add_subparsers(dest="command")
    enroll_parser = sub.add_parser("enroll", help="Enroll a speaker from the microphone")
    enroll_parser.add_argument("user_id")
    enroll_parser.add_argument("name")
    enroll_parser.add_argument("--seconds", type=float, default=3.0)
    args = parser.parse_args()

    try:
        if args.command == "enroll":
            asyncio.run(enroll(args.config, args.user_id, args.name, args.seconds))
        else:
            asyncio.run(run(args.config))
    except KeyboardInterrupt:
        pass
