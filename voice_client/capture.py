"""
Capture loop around EndpointDetector.

The audio collaborator yields (normalized level, duration) per buffer. The
loop feeds one detector until it answers END_AUDIO, then stops pulling from
the source so the caller can finalize the recognition request.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterable, Callable, Optional, Tuple

from logging_setup import get_logger, Component
from .endpointing import EndpointAction, EndpointConfig, EndpointDetector

logger = get_logger(Component.ENDPOINTING)

Sample = Tuple[float, float]

SOURCE_EXHAUSTED = "source_exhausted"


@dataclass(frozen=True)
class UtteranceOutcome:
    """Summary of one captured utterance."""

    ended_by_detector: bool
    reason: str
    total_duration: float
    utterance_duration: float
    samples_consumed: int

    @property
    def has_speech(self) -> bool:
        return self.utterance_duration > 0


async def capture_utterance(
    samples: AsyncIterable[Sample],
    config: EndpointConfig,
    *,
    session_id: Optional[str] = None,
    on_end: Optional[Callable[[UtteranceOutcome], None]] = None,
) -> UtteranceOutcome:
    """
    Run a fresh detector over ``samples`` until the utterance ends.

    Args:
        samples: async iterable of (level, duration_seconds)
        config: endpointing thresholds for this session
        session_id: optional id for log correlation
        on_end: called once with the outcome when the detector ends the utterance

    Returns:
        UtteranceOutcome. If the source runs dry first, ended_by_detector is
        False and reason is "source_exhausted".
    """
    detector = EndpointDetector(config)
    log = logger.with_session(session_id) if session_id else logger
    consumed = 0

    async for level, duration in samples:
        consumed += 1
        if detector.ingest(level, duration) is EndpointAction.END_AUDIO:
            outcome = UtteranceOutcome(
                ended_by_detector=True,
                reason=detector.end_reason.value,
                total_duration=detector.total_duration,
                utterance_duration=detector.utterance_duration,
                samples_consumed=consumed,
            )
            log.debug(
                "Utterance ended",
                reason=outcome.reason,
                utterance_ms=int(outcome.utterance_duration * 1000),
                total_ms=int(outcome.total_duration * 1000),
            )
            if on_end is not None:
                on_end(outcome)
            return outcome

    log.debug("Audio source exhausted before endpoint", samples=consumed)
    return UtteranceOutcome(
        ended_by_detector=False,
        reason=SOURCE_EXHAUSTED,
        total_duration=detector.total_duration,
        utterance_duration=detector.utterance_duration,
        samples_consumed=consumed,
    )
