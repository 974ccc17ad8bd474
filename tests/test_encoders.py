import json

import pytest

from stt_pipeline.backend.application.types import (
    OutputFormat,
    Transcript,
    TranscriptSegment,
)
from stt_pipeline.backend.component.encoders import (
    content_type_for,
    encode_transcript,
    format_timestamp,
    parse_output_format,
)
from stt_pipeline.errors import EncodingError, ErrorCode, STTError


def _transcript(*segments, finalized=True):
    return Transcript(segments=tuple(segments), finalized=finalized)


SEGMENTS = (
    TranscriptSegment(1.0, 2.5, "Hello there.", 0.91234, "en"),
    TranscriptSegment(2.5, 4.0004, "General <Kenobi> & co", None, None),
)


@pytest.mark.parametrize(
    "value,expected",
    [
        (None, OutputFormat.VTT),
        ("", OutputFormat.VTT),
        ("JSON", OutputFormat.JSON),
        ("webvtt", OutputFormat.VTT),
        ("Text", OutputFormat.TEXT),
        ("txt", OutputFormat.TEXT),
    ],
)
def test_parse_output_format(value, expected):
    assert parse_output_format(value) is expected


def test_parse_output_format_rejects_unknown():
    with pytest.raises(STTError) as exc:
        parse_output_format("srt")
    assert exc.value.code == ErrorCode.OUTPUT_FORMAT_UNKNOWN
    assert exc.value.http_status == 400


def test_format_timestamp():
    assert format_timestamp(0.0) == "00:00:00.000"
    assert format_timestamp(3723.4567) == "01:02:03.457"
    with pytest.raises(EncodingError):
        format_timestamp(-1.0)


def test_json_encoding():
    body = encode_transcript(_transcript(*SEGMENTS), OutputFormat.JSON)
    payload = json.loads(body)
    assert payload == [
        {
            "start_seconds": 1.0,
            "end_seconds": 2.5,
            "text": "Hello there.",
            "language_code": "en",
            "confidence": 0.9123,
        },
        {
            "start_seconds": 2.5,
            "end_seconds": 4.0,
            "text": "General <Kenobi> & co",
            "language_code": "und",
        },
    ]


def test_vtt_encoding():
    body = encode_transcript(_transcript(*SEGMENTS), "vtt").decode("utf-8")
    assert body == (
        "WEBVTT\n\n"
        "00:00:01.000 --> 00:00:02.500\nHello there.\n\n"
        "00:00:02.500 --> 00:00:04.000\nGeneral &lt;Kenobi&gt; &amp; co\n\n"
    )


def test_text_encoding():
    body = encode_transcript(_transcript(*SEGMENTS), OutputFormat.TEXT)
    assert body.decode("utf-8") == "Hello there.\nGeneral <Kenobi> & co\n"


@pytest.mark.parametrize(
    "fmt,expected",
    [(OutputFormat.JSON, b"[]"), (OutputFormat.VTT, b"WEBVTT\n\n"), (OutputFormat.TEXT, b"")],
)
def test_empty_transcript_encodings(fmt, expected):
    assert encode_transcript(_transcript(), fmt) == expected


def test_non_ascii_text_is_kept_verbatim():
    segment = TranscriptSegment(0.0, 1.0, "안녕하세요", None, "ko")
    body = encode_transcript(_transcript(segment), OutputFormat.JSON)
    assert "안녕하세요" in body.decode("utf-8")


def test_unfinalized_transcript_is_rejected():
    with pytest.raises(EncodingError) as exc:
        encode_transcript(_transcript(*SEGMENTS, finalized=False), OutputFormat.JSON)
    assert exc.value.code == ErrorCode.ENCODING_FAILED


def test_overlapping_segments_are_rejected():
    overlapping = (
        TranscriptSegment(0.0, 2.0, "a"),
        TranscriptSegment(1.5, 3.0, "b"),
    )
    with pytest.raises(EncodingError):
        encode_transcript(_transcript(*overlapping), OutputFormat.VTT)


def test_encoding_is_deterministic():
    transcript = _transcript(*SEGMENTS)
    for fmt in OutputFormat:
        assert encode_transcript(transcript, fmt) == encode_transcript(transcript, fmt)


def test_content_types():
    assert content_type_for(OutputFormat.JSON) == "application/json"
    assert content_type_for(OutputFormat.VTT).startswith("text/vtt")
    assert content_type_for(OutputFormat.TEXT).startswith("text/plain")
