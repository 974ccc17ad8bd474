"""Backend interface for Whisper model implementations."""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import numpy as np


@dataclass(frozen=True)
class Segment:
    """Backend segment with timestamps relative to the start of its window."""

    start: float
    end: float
    text: str
    confidence: Optional[float] = None
    language: Optional[str] = None


@dataclass(frozen=True)
class BackendInfo:
    """Metadata returned by a backend transcription pass."""

    language: str
    language_probability: float


class ModelBackend(Protocol):
    """Backend interface for model implementations.

    ``transcribe`` receives one window of mono 16 kHz float32 samples and
    returns segments ordered by start time. A ``language`` option is binding;
    without it the backend detects the language per call. Implementations must
    tolerate concurrent calls from independent sessions.
    """

    def __init__(self, model_size: str, device: str, compute_type: str) -> None:
        """Initialize backend with model configuration."""
        raise NotImplementedError

    def transcribe(
        self, audio: np.ndarray, options: Dict[str, Any]
    ) -> Tuple[List[Segment], BackendInfo]:
        """Transcribe audio and return segments with metadata."""
        raise NotImplementedError
