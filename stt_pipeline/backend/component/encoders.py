"""Serialize finalized transcripts to JSON, WebVTT or plain text."""

from __future__ import annotations

import json
import math
from typing import Dict, Iterable, List, Optional, Protocol, Type, Union

from stt_pipeline.backend.application.types import (
    OutputFormat,
    Transcript,
    TranscriptSegment,
)
from stt_pipeline.config.default import UNDETERMINED_LANGUAGE
from stt_pipeline.errors import EncodingError, ErrorCode, STTError

CONTENT_TYPES: Dict[OutputFormat, str] = {
    OutputFormat.JSON: "application/json",
    OutputFormat.VTT: "text/vtt; charset=utf-8",
    OutputFormat.TEXT: "text/plain; charset=utf-8",
}

_FORMAT_ALIASES: Dict[str, OutputFormat] = {
    "json": OutputFormat.JSON,
    "vtt": OutputFormat.VTT,
    "webvtt": OutputFormat.VTT,
    "text": OutputFormat.TEXT,
    "txt": OutputFormat.TEXT,
    "plain": OutputFormat.TEXT,
}


def parse_output_format(value: Union[str, OutputFormat, None]) -> OutputFormat:
    """Resolve a user-supplied output type; ``None`` or blank means VTT."""
    if isinstance(value, OutputFormat):
        return value
    if value is None or not str(value).strip():
        return OutputFormat.VTT
    fmt = _FORMAT_ALIASES.get(str(value).strip().lower())
    if fmt is None:
        raise STTError(
            ErrorCode.OUTPUT_FORMAT_UNKNOWN, f"unknown output type '{value}'"
        )
    return fmt


def content_type_for(fmt: OutputFormat) -> str:
    return CONTENT_TYPES[fmt]


def format_timestamp(seconds: float) -> str:
    """``HH:MM:SS.mmm`` rounded to the nearest millisecond."""
    if not math.isfinite(seconds) or seconds < 0:
        raise EncodingError(f"invalid cue time {seconds!r}")
    total_ms = int(round(seconds * 1000.0))
    hours, rem = divmod(total_ms, 3_600_000)
    minutes, rem = divmod(rem, 60_000)
    secs, millis = divmod(rem, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}.{millis:03d}"


class SegmentEncoder(Protocol):
    """Incremental encoder: ``begin`` + ``encode_segment``* + ``end``."""

    def begin(self) -> str: ...

    def encode_segment(self, segment: TranscriptSegment) -> str: ...

    def end(self) -> str: ...


class JsonEncoder:
    """JSON array of segment objects."""

    def __init__(self) -> None:
        self._count = 0

    def begin(self) -> str:
        return "["

    def encode_segment(self, segment: TranscriptSegment) -> str:
        item: Dict[str, object] = {
            "start_seconds": round(segment.start_time, 3),
            "end_seconds": round(segment.end_time, 3),
            "text": segment.text,
            "language_code": segment.language or UNDETERMINED_LANGUAGE,
        }
        if segment.confidence is not None:
            item["confidence"] = round(segment.confidence, 4)
        prefix = "," if self._count else ""
        self._count += 1
        return prefix + json.dumps(item, ensure_ascii=False)

    def end(self) -> str:
        return "]"


class VttEncoder:
    """WebVTT document; one cue per segment."""

    def begin(self) -> str:
        return "WEBVTT\n\n"

    def encode_segment(self, segment: TranscriptSegment) -> str:
        timing = (
            f"{format_timestamp(segment.start_time)} --> "
            f"{format_timestamp(segment.end_time)}"
        )
        return f"{timing}\n{_escape_cue_text(segment.text)}\n\n"

    def end(self) -> str:
        return ""


class TextEncoder:
    """Segment text, one segment per line."""

    def begin(self) -> str:
        return ""

    def encode_segment(self, segment: TranscriptSegment) -> str:
        return " ".join(segment.text.split()) + "\n"

    def end(self) -> str:
        return ""


_ENCODERS: Dict[OutputFormat, Type[SegmentEncoder]] = {
    OutputFormat.JSON: JsonEncoder,
    OutputFormat.VTT: VttEncoder,
    OutputFormat.TEXT: TextEncoder,
}


def encoder_for(fmt: OutputFormat) -> SegmentEncoder:
    return _ENCODERS[fmt]()


def _escape_cue_text(text: str) -> str:
    # Cue payload may not contain "-->" or blank lines.
    escaped = text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")
    lines = [line.strip() for line in escaped.splitlines() if line.strip()]
    return "\n".join(lines)


def validate_transcript(transcript: Transcript) -> None:
    if not transcript.finalized:
        raise EncodingError("transcript is not finalized")
    previous_end: Optional[float] = None
    for index, segment in enumerate(transcript.segments):
        if segment.end_time < segment.start_time:
            raise EncodingError(f"segment {index} ends before it starts")
        if previous_end is not None and segment.start_time < previous_end:
            raise EncodingError(
                f"segment {index} starts at {segment.start_time:.3f}s before the "
                f"previous segment ends at {previous_end:.3f}s"
            )
        previous_end = segment.end_time


def encode_segments(
    segments: Iterable[TranscriptSegment], fmt: OutputFormat
) -> str:
    encoder = encoder_for(fmt)
    parts: List[str] = [encoder.begin()]
    parts.extend(encoder.encode_segment(segment) for segment in segments)
    parts.append(encoder.end())
    return "".join(parts)


def encode_transcript(
    transcript: Transcript, fmt: Union[str, OutputFormat, None]
) -> bytes:
    """Encode a finalized transcript; output depends only on its content."""
    output_format = parse_output_format(fmt)
    validate_transcript(transcript)
    return encode_segments(transcript.segments, output_format).encode("utf-8")


__all__ = [
    "CONTENT_TYPES",
    "JsonEncoder",
    "SegmentEncoder",
    "TextEncoder",
    "VttEncoder",
    "content_type_for",
    "encode_segments",
    "encode_transcript",
    "encoder_for",
    "format_timestamp",
    "parse_output_format",
    "validate_transcript",
]
