"""Data model shared by the transcription pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

import numpy as np

from stt_pipeline.config.default import (
    DEFAULT_MIN_WINDOW_SEC,
    DEFAULT_VAD_MODEL,
)
from stt_pipeline.utils.audio import CANONICAL_SAMPLE_RATE


class OutputFormat(str, Enum):
    JSON = "json"
    VTT = "vtt"
    TEXT = "text"


@dataclass(frozen=True)
class RunOptions:
    """Per-session configuration, fixed at session creation."""

    model_key: Optional[str] = None
    translate_to_english: bool = False
    enable_vad: bool = False
    vad_model: str = DEFAULT_VAD_MODEL
    language: Optional[str] = None
    min_window_seconds: float = DEFAULT_MIN_WINDOW_SEC
    output_format: OutputFormat = OutputFormat.VTT

    @property
    def task(self) -> str:
        return "translate" if self.translate_to_english else "transcribe"


@dataclass(frozen=True)
class SpeechSpan:
    """Half-open interval ``[start_sample, end_sample)`` of the canonical stream."""

    start_sample: int
    end_sample: int
    is_speech: bool = True

    @property
    def num_samples(self) -> int:
        return self.end_sample - self.start_sample

    @property
    def start_sec(self) -> float:
        return self.start_sample / CANONICAL_SAMPLE_RATE

    @property
    def end_sec(self) -> float:
        return self.end_sample / CANONICAL_SAMPLE_RATE


@dataclass(frozen=True)
class Window:
    """Contiguous slice of canonical samples handed to the backend once."""

    index: int
    start_sample: int
    samples: np.ndarray = field(repr=False, compare=False)
    final_in_span: bool = False

    @property
    def num_samples(self) -> int:
        return int(self.samples.size)

    @property
    def end_sample(self) -> int:
        return self.start_sample + self.num_samples

    @property
    def start_sec(self) -> float:
        return self.start_sample / CANONICAL_SAMPLE_RATE

    @property
    def end_sec(self) -> float:
        return self.end_sample / CANONICAL_SAMPLE_RATE

    @property
    def duration_sec(self) -> float:
        return self.num_samples / CANONICAL_SAMPLE_RATE


@dataclass(frozen=True)
class TranscriptSegment:
    """A segment anchored to the absolute stream timeline."""

    start_time: float
    end_time: float
    text: str
    confidence: Optional[float] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class Transcript:
    """Ordered, non-overlapping segments; immutable once finalized."""

    segments: Tuple[TranscriptSegment, ...] = ()
    finalized: bool = True

    def __len__(self) -> int:
        return len(self.segments)

    def __iter__(self):
        return iter(self.segments)

    @property
    def text(self) -> str:
        return " ".join(seg.text for seg in self.segments)


__all__ = [
    "OutputFormat",
    "RunOptions",
    "SpeechSpan",
    "Transcript",
    "TranscriptSegment",
    "Window",
]
