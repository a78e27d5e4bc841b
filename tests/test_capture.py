"""
Capture loop tests: the loop stops pulling audio once the detector ends.
"""
import pytest

from voice_client.capture import SOURCE_EXHAUSTED, capture_utterance
from voice_client.endpointing import EndpointConfig, SpeechPaceProfile


class CountingSource:
    """Async sample source that records how many samples were pulled."""

    def __init__(self, samples):
        self.samples = list(samples)
        self.pulled = 0

    def __aiter__(self):
        return self._gen()

    async def _gen(self):
        for sample in self.samples:
            self.pulled += 1
            yield sample


FAST = EndpointConfig.for_profile(SpeechPaceProfile.FAST)


@pytest.mark.asyncio
async def test_capture_stops_at_end_audio():
    source = CountingSource([(0.35, 0.1)] * 4 + [(0.0, 0.1)] * 20)
    ended = []

    outcome = await capture_utterance(source, FAST, session_id="sess_cap", on_end=ended.append)

    assert outcome.ended_by_detector
    assert outcome.reason == "trailing_silence"
    assert outcome.samples_consumed == 11
    assert source.pulled == 11
    assert outcome.has_speech
    assert ended == [outcome]


@pytest.mark.asyncio
async def test_capture_source_exhausted():
    source = CountingSource([(0.35, 0.05)] * 3 + [(0.0, 0.05)] * 10)
    ended = []

    outcome = await capture_utterance(source, FAST, on_end=ended.append)

    assert not outcome.ended_by_detector
    assert outcome.reason == SOURCE_EXHAUSTED
    assert outcome.samples_consumed == 13
    assert outcome.utterance_duration == pytest.approx(0.15)
    assert ended == []


@pytest.mark.asyncio
async def test_capture_no_speech():
    source = CountingSource([(0.0, 1.0)] * 10)

    outcome = await capture_utterance(source, FAST)

    assert outcome.ended_by_detector
    assert outcome.reason == "no_speech"
    assert not outcome.has_speech
    assert source.pulled == 4
