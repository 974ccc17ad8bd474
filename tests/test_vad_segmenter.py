import numpy as np
import pytest

from stt_pipeline.backend.component.vad_segmenter import (
    AdmittedAudio,
    EnergyFrameClassifier,
    IdentitySegmenter,
    SpanClosed,
    VadPolicy,
    VadSettings,
    VoiceActivitySegmenter,
    build_segmenter,
)
from stt_pipeline.errors import ErrorCode, STTError
from tests.conftest import silence, tone

SR = 16000


def _feed(segmenter, samples, chunk=None):
    events = []
    if chunk is None:
        events.extend(segmenter.process(samples))
    else:
        for i in range(0, samples.size, chunk):
            events.extend(segmenter.process(samples[i : i + chunk]))
    events.extend(segmenter.finish())
    return events


def _speech_spans(events):
    return [e.span for e in events if isinstance(e, SpanClosed) and e.span.is_speech]


def _admitted(events):
    return [e for e in events if isinstance(e, AdmittedAudio)]


def _energy_segmenter(block_seconds=30.0, policy=None):
    return VoiceActivitySegmenter(
        EnergyFrameClassifier(0.02),
        policy or VadPolicy(),
        block_samples=int(block_seconds * SR),
    )


def test_identity_segmenter_emits_one_span_for_whole_stream():
    segmenter = IdentitySegmenter(block_samples=SR)
    events = _feed(segmenter, tone(2.5), chunk=3000)
    spans = _speech_spans(events)
    assert len(spans) == 1
    assert (spans[0].start_sample, spans[0].end_sample) == (0, int(2.5 * SR))
    blocks = _admitted(events)
    assert [b.samples.size for b in blocks] == [SR, SR, SR // 2]
    assert [b.start_sample for b in blocks] == [0, SR, 2 * SR]


def test_identity_segmenter_with_no_audio_emits_nothing():
    assert IdentitySegmenter(block_samples=SR).finish() == []


def test_speech_island_yields_single_padded_span():
    audio = np.concatenate([silence(1.0), tone(2.0), silence(2.0)])
    events = _feed(_energy_segmenter(), audio)
    spans = _speech_spans(events)
    assert len(spans) == 1
    span = spans[0]
    policy = VadPolicy()
    # Hangover keeps a margin around the speech but never swallows the silence.
    assert 1.0 - span.start_sec <= policy.pre_pad_samples / SR + 0.05
    assert span.start_sec <= 1.0
    assert 3.0 <= span.end_sec <= 3.0 + policy.post_pad_samples / SR + 0.05
    admitted = _admitted(events)
    assert len(admitted) == 1
    assert admitted[0].start_sample == span.start_sample
    assert admitted[0].samples.size == span.num_samples


def test_silence_only_stream_has_no_speech_spans():
    events = _feed(_energy_segmenter(), silence(3.0))
    assert _speech_spans(events) == []
    assert _admitted(events) == []


def test_short_pause_is_merged_into_one_span():
    audio = np.concatenate([silence(0.5), tone(1.0), silence(0.2), tone(1.0), silence(1.0)])
    spans = _speech_spans(_feed(_energy_segmenter(), audio))
    assert len(spans) == 1


def test_long_pause_separates_spans():
    audio = np.concatenate([silence(0.5), tone(1.0), silence(2.0), tone(1.0), silence(1.0)])
    spans = _speech_spans(_feed(_energy_segmenter(), audio))
    assert len(spans) == 2
    assert spans[0].end_sample <= spans[1].start_sample


def test_click_shorter_than_min_speech_is_ignored():
    audio = np.concatenate([silence(1.0), tone(0.05), silence(1.0)])
    assert _speech_spans(_feed(_energy_segmenter(), audio)) == []


def test_spans_and_admitted_audio_are_chunk_independent():
    audio = np.concatenate(
        [silence(0.7), tone(1.3), silence(1.1), tone(0.9), silence(0.4)]
    )
    whole = _feed(_energy_segmenter(block_seconds=0.5), audio)
    split = _feed(_energy_segmenter(block_seconds=0.5), audio, chunk=333)
    assert _speech_spans(whole) == _speech_spans(split)
    assert [(a.start_sample, a.samples.size) for a in _admitted(whole)] == [
        (a.start_sample, a.samples.size) for a in _admitted(split)
    ]


def test_long_utterance_is_admitted_in_blocks_while_open():
    audio = np.concatenate([tone(3.2), silence(1.0)])
    segmenter = build_segmenter(True, "energy", SR)
    early = segmenter.process(audio[: int(2.5 * SR)])
    assert len(_admitted(early)) >= 1
    assert all(a.samples.size == SR for a in _admitted(early))
    rest = segmenter.process(audio[int(2.5 * SR) :]) + segmenter.finish()
    admitted = _admitted(early) + _admitted(rest)
    positions = [a.start_sample for a in admitted]
    assert positions == sorted(positions)
    assert sum(a.samples.size for a in admitted) == _speech_spans(rest)[0].num_samples


def test_spans_tile_the_stream():
    audio = np.concatenate([silence(1.0), tone(1.0), silence(1.5)])
    events = _feed(_energy_segmenter(), audio)
    spans = [e.span for e in events if isinstance(e, SpanClosed)]
    assert spans[0].start_sample == 0
    for prev, nxt in zip(spans, spans[1:]):
        assert prev.end_sample == nxt.start_sample
    assert spans[-1].end_sample == audio.size


def test_build_segmenter_without_vad_is_identity():
    segmenter = build_segmenter(False, "silero", SR)
    assert isinstance(segmenter, IdentitySegmenter)


def test_build_segmenter_energy_uses_settings_threshold():
    settings = VadSettings(policy=VadPolicy.from_ms(threshold=0.4), energy_threshold=0.1)
    segmenter = build_segmenter(True, "energy", SR, settings)
    assert isinstance(segmenter, VoiceActivitySegmenter)
    assert segmenter.classifier.energy_threshold == pytest.approx(0.1)
    assert segmenter.policy.threshold == pytest.approx(0.4)


def test_build_segmenter_rejects_unknown_model():
    with pytest.raises(STTError) as exc:
        build_segmenter(True, "webrtc", SR)
    assert exc.value.code == ErrorCode.VAD_MODEL_UNKNOWN


def test_policy_from_ms_converts_to_samples():
    policy = VadPolicy.from_ms(pre_pad_ms=100, post_pad_ms=200, gap_merge_ms=50)
    assert policy.pre_pad_samples == 1600
    assert policy.post_pad_samples == 3200
    assert policy.gap_merge_samples == 800


def test_continuous_speech_is_admitted_before_the_span_closes():
    segmenter = build_segmenter(True, "energy", SR)
    events = []
    audio = tone(10.0)
    for i in range(0, audio.size, 2048):
        events.extend(segmenter.process(audio[i : i + 2048]))
    assert segmenter.span_open
    admitted = _admitted(events)
    # Everything up to the post-pad of the last speech frame is certain.
    assert len(admitted) >= 9
    assert all(a.samples.size == SR for a in admitted)
    assert [a.start_sample for a in admitted] == [i * SR for i in range(len(admitted))]
