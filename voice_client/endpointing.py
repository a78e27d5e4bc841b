"""
Utterance endpointing.

Decides, from a stream of (normalized level, duration) samples, when the user
has finished speaking. The detector is a synchronous state machine: the audio
capture loop calls ingest() once per buffer and stops feeding the instance as
soon as it returns END_AUDIO. A new utterance needs a new detector.
"""

from __future__ import annotations

import math
import sys
from array import array
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Union


class EndpointAction(str, Enum):
    """Result of feeding one audio buffer to the detector."""

    CONTINUE_LISTENING = "continue_listening"
    END_AUDIO = "end_audio"


class SpeechPaceProfile(str, Enum):
    """Named tunings trading responsiveness against false triggers."""

    FAST = "fast"
    BALANCED = "balanced"
    PATIENT = "patient"


@dataclass(frozen=True)
class EndpointConfig:
    """Endpointing thresholds. Levels are 0..1, durations in seconds."""

    speaking_start: float
    speaking_floor: float
    minimum_utterance: float
    trailing_silence_to_commit: float
    max_utterance: float
    pre_speech_timeout: float
    # How long the capture side waits for a final transcript after END_AUDIO
    post_end_final_result_timeout: float

    @classmethod
    def for_profile(cls, profile: Union[SpeechPaceProfile, str]) -> "EndpointConfig":
        return PROFILES[SpeechPaceProfile(profile)]


PROFILES = {
    SpeechPaceProfile.FAST: EndpointConfig(
        speaking_start=0.075,
        speaking_floor=0.03,
        minimum_utterance=0.18,
        trailing_silence_to_commit=0.62,
        max_utterance=10.0,
        pre_speech_timeout=4.0,
        post_end_final_result_timeout=1.2,
    ),
    SpeechPaceProfile.BALANCED: EndpointConfig(
        speaking_start=0.09,
        speaking_floor=0.04,
        minimum_utterance=0.25,
        trailing_silence_to_commit=0.9,
        max_utterance=11.0,
        pre_speech_timeout=4.5,
        post_end_final_result_timeout=1.5,
    ),
    SpeechPaceProfile.PATIENT: EndpointConfig(
        speaking_start=0.10,
        speaking_floor=0.045,
        minimum_utterance=0.3,
        trailing_silence_to_commit=1.2,
        max_utterance=12.0,
        pre_speech_timeout=5.0,
        post_end_final_result_timeout=1.8,
    ),
}


class EndpointReason(str, Enum):
    """Why a detector ended the utterance."""

    TRAILING_SILENCE = "trailing_silence"
    MAX_UTTERANCE = "max_utterance"
    NO_SPEECH = "no_speech"
    SHORT_BLIP = "short_blip"


class EndpointDetector:
    """
    Stateful end-of-utterance detector.

    Hysteresis: entering speech needs speaking_start, staying in speech only
    needs speaking_floor, so short dips inside a word do not count as silence.
    Once END_AUDIO has been returned the instance is frozen and every further
    ingest() is a no-op returning CONTINUE_LISTENING.
    """

    def __init__(self, config: EndpointConfig):
        self.config = config
        self._has_detected_speech = False
        self._has_ended = False
        self._total_duration = 0.0
        self._utterance_duration = 0.0
        self._trailing_silence_duration = 0.0
        self._end_reason: EndpointReason | None = None

    @classmethod
    def for_profile(cls, profile: Union[SpeechPaceProfile, str]) -> "EndpointDetector":
        return cls(EndpointConfig.for_profile(profile))

    @property
    def has_detected_speech(self) -> bool:
        return self._has_detected_speech

    @property
    def has_ended(self) -> bool:
        return self._has_ended

    @property
    def total_duration(self) -> float:
        return self._total_duration

    @property
    def utterance_duration(self) -> float:
        return self._utterance_duration

    @property
    def trailing_silence_duration(self) -> float:
        return self._trailing_silence_duration

    @property
    def end_reason(self) -> EndpointReason | None:
        return self._end_reason

    def ingest(self, level: float, duration: float) -> EndpointAction:
        """Feed one buffer's normalized level and duration (seconds)."""
        if duration <= 0 or self._has_ended:
            return EndpointAction.CONTINUE_LISTENING

        cfg = self.config
        self._total_duration += duration
        level = max(0.0, min(1.0, level))
        threshold = cfg.speaking_floor if self._has_detected_speech else cfg.speaking_start

        if level >= threshold:
            self._has_detected_speech = True
            self._utterance_duration += duration
            self._trailing_silence_duration = 0.0

            if self._utterance_duration >= cfg.max_utterance:
                return self._mark_ended(EndpointReason.MAX_UTTERANCE)
            return EndpointAction.CONTINUE_LISTENING

        if self._has_detected_speech:
            self._trailing_silence_duration += duration

            if (self._utterance_duration >= cfg.minimum_utterance
                    and self._trailing_silence_duration >= cfg.trailing_silence_to_commit):
                return self._mark_ended(EndpointReason.TRAILING_SILENCE)

            # A blip too short to be an utterance still has to resolve eventually
            if (self._utterance_duration < cfg.minimum_utterance
                    and self._trailing_silence_duration >= cfg.pre_speech_timeout):
                return self._mark_ended(EndpointReason.SHORT_BLIP)

            if self._utterance_duration >= cfg.max_utterance:
                return self._mark_ended(EndpointReason.MAX_UTTERANCE)

            return EndpointAction.CONTINUE_LISTENING

        if self._total_duration >= cfg.pre_speech_timeout:
            return self._mark_ended(EndpointReason.NO_SPEECH)

        return EndpointAction.CONTINUE_LISTENING

    def _mark_ended(self, reason: EndpointReason) -> EndpointAction:
        self._has_ended = True
        self._end_reason = reason
        return EndpointAction.END_AUDIO


def normalized_level(samples: Iterable[float]) -> float:
    """
    Map a buffer of float samples in [-1, 1] to a 0..1 level.

    RMS is converted to dBFS and the -60..0 dB range is mapped linearly onto
    0..1. An empty buffer is silence.
    """
    total = 0.0
    count = 0
    for sample in samples:
        total += sample * sample
        count += 1
    if count == 0:
        return 0.0

    rms = math.sqrt(total / count)
    db = 20 * math.log10(max(rms, 0.000001))
    return max(0.0, min(1.0, (db + 60) / 60))


def pcm16_level(pcm: bytes) -> float:
    """Level of a signed 16-bit little-endian mono PCM buffer."""
    usable = len(pcm) - (len(pcm) % 2)
    frames = array("h")
    frames.frombytes(pcm[:usable])
    if sys.byteorder == "big":
        frames.byteswap()
    return normalized_level(s / 32768.0 for s in frames)
