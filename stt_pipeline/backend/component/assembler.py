"""Re-anchors window-relative backend segments onto the stream timeline."""

from __future__ import annotations

import threading
from typing import Iterable, List, Optional

from stt_pipeline.backend.application.types import (
    Transcript,
    TranscriptSegment,
    Window,
)
from stt_pipeline.model.backends.base import Segment
from stt_pipeline.utils.logger import LOGGER

# Segment times are rounded to whole microseconds so float noise from
# the offset addition never breaks the ordering checks downstream.
_TIME_DIGITS = 6


class TranscriptAssembler:
    """Accumulates segments window by window, in window order.

    Every accepted segment lies inside its window, starts no earlier than the
    previous segment ended, and carries non-empty text.
    """

    def __init__(self, language: Optional[str] = None) -> None:
        self.language = language
        self._lock = threading.Lock()
        self._segments: List[TranscriptSegment] = []
        self._last_window_index = -1
        self._last_end = 0.0
        self._finalized = False
        self.dropped_segments = 0

    @property
    def segments(self) -> List[TranscriptSegment]:
        with self._lock:
            return list(self._segments)

    def add_window(
        self,
        window: Window,
        segments: Iterable[Segment],
        detected_language: Optional[str] = None,
    ) -> List[TranscriptSegment]:
        """Anchor one window's segments; returns the ones that were kept."""
        with self._lock:
            if self._finalized:
                raise RuntimeError("transcript already finalized")
            if window.index <= self._last_window_index:
                raise ValueError(
                    f"window {window.index} arrived after window "
                    f"{self._last_window_index}"
                )
            self._last_window_index = window.index
            window_start = window.start_sec
            window_end = window.end_sec
            accepted: List[TranscriptSegment] = []
            for seg in sorted(segments, key=lambda s: (s.start, s.end)):
                text = (seg.text or "").strip()
                if not text:
                    self.dropped_segments += 1
                    continue
                start = round(window_start + max(0.0, float(seg.start)), _TIME_DIGITS)
                end = round(window_start + max(0.0, float(seg.end)), _TIME_DIGITS)
                start = max(start, self._last_end)
                end = min(end, window_end)
                if start > window_end:
                    self.dropped_segments += 1
                    LOGGER.debug(
                        "Dropping segment beyond window %d end: %r", window.index, text
                    )
                    continue
                end = max(end, start)
                language = self.language or seg.language or detected_language or None
                segment = TranscriptSegment(
                    start_time=start,
                    end_time=end,
                    text=text,
                    confidence=seg.confidence,
                    language=language,
                )
                self._segments.append(segment)
                self._last_end = end
                accepted.append(segment)
            return accepted

    def finalize(self) -> Transcript:
        with self._lock:
            self._finalized = True
            return Transcript(segments=tuple(self._segments), finalized=True)


__all__ = ["TranscriptAssembler"]
