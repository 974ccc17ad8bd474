import numpy as np
import pytest

from stt_pipeline.backend.application.types import Window
from stt_pipeline.backend.component.assembler import TranscriptAssembler
from stt_pipeline.model.backends.base import Segment

SR = 16000


def _window(index, start_sec, duration_sec):
    samples = np.zeros(int(duration_sec * SR), dtype=np.float32)
    return Window(index=index, start_sample=int(start_sec * SR), samples=samples)


def test_segments_are_shifted_by_window_offset():
    assembler = TranscriptAssembler()
    accepted = assembler.add_window(
        _window(0, 2.0, 3.0),
        [Segment(0.5, 1.5, " hello "), Segment(1.5, 2.75, "world")],
        "en",
    )
    assert [(s.start_time, s.end_time, s.text) for s in accepted] == [
        (2.5, 3.5, "hello"),
        (3.5, 4.75, "world"),
    ]
    assert all(s.language == "en" for s in accepted)


def test_empty_text_segments_are_dropped():
    assembler = TranscriptAssembler()
    accepted = assembler.add_window(
        _window(0, 0.0, 2.0), [Segment(0.0, 1.0, "   "), Segment(1.0, 2.0, "ok")]
    )
    assert [s.text for s in accepted] == ["ok"]
    assert assembler.dropped_segments == 1


def test_segments_are_clamped_to_window_and_never_overlap():
    assembler = TranscriptAssembler()
    assembler.add_window(_window(0, 0.0, 2.0), [Segment(0.0, 2.4, "first")])
    second = assembler.add_window(
        _window(1, 2.0, 2.0), [Segment(-0.3, 1.0, "second")]
    )
    transcript = assembler.finalize()
    first = transcript.segments[0]
    assert first.end_time == pytest.approx(2.0)
    assert second[0].start_time == pytest.approx(2.0)
    assert second[0].start_time >= first.end_time


def test_segment_starting_past_window_end_is_dropped():
    assembler = TranscriptAssembler()
    accepted = assembler.add_window(
        _window(0, 0.0, 1.0), [Segment(0.2, 0.8, "in"), Segment(1.5, 1.9, "out")]
    )
    assert [s.text for s in accepted] == ["in"]


def test_unsorted_backend_output_is_ordered():
    assembler = TranscriptAssembler()
    accepted = assembler.add_window(
        _window(0, 0.0, 4.0), [Segment(2.0, 3.0, "b"), Segment(0.0, 1.0, "a")]
    )
    assert [s.text for s in accepted] == ["a", "b"]


def test_windows_must_arrive_in_order():
    assembler = TranscriptAssembler()
    assembler.add_window(_window(1, 1.0, 1.0), [])
    with pytest.raises(ValueError):
        assembler.add_window(_window(0, 0.0, 1.0), [])


def test_requested_language_overrides_detection():
    assembler = TranscriptAssembler(language="de")
    accepted = assembler.add_window(
        _window(0, 0.0, 1.0), [Segment(0.0, 1.0, "hallo", language="en")], "en"
    )
    assert accepted[0].language == "de"


def test_finalize_freezes_transcript():
    assembler = TranscriptAssembler()
    assembler.add_window(_window(0, 0.0, 1.0), [Segment(0.0, 0.5, "hi", 0.8)])
    transcript = assembler.finalize()
    assert transcript.finalized
    assert transcript.text == "hi"
    assert transcript.segments[0].confidence == pytest.approx(0.8)
    with pytest.raises(RuntimeError):
        assembler.add_window(_window(1, 1.0, 1.0), [])


def test_empty_transcript_when_no_windows():
    transcript = TranscriptAssembler().finalize()
    assert len(transcript) == 0
    assert transcript.finalized
