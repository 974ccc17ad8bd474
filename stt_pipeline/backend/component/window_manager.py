"""Buffers admitted speech audio and cuts it into backend windows."""

from __future__ import annotations

from enum import Enum
from typing import List, Optional

import numpy as np

from stt_pipeline.backend.application.types import Window
from stt_pipeline.utils.logger import LOGGER


class WindowState(Enum):
    ACCUMULATING = "accumulating"
    READY = "ready"
    FLUSHING = "flushing"


class WindowManager:
    """Per-session window cutter.

    ``ACCUMULATING``: admitted samples are appended to the pending buffer.
    ``READY``: the buffer holds at least ``min_window_samples``; everything
    buffered (up to ``max_window_samples``) becomes one window and any
    sub-threshold remainder is carried forward.
    ``FLUSHING``: the current speech span ended; whatever is buffered becomes
    the span's final window, however short. Windows never straddle spans.
    """

    def __init__(self, min_window_samples: int, max_window_samples: int) -> None:
        if min_window_samples <= 0:
            raise ValueError("min_window_samples must be positive")
        if max_window_samples < min_window_samples:
            raise ValueError("max_window_samples must be >= min_window_samples")
        self.min_window_samples = int(min_window_samples)
        self.max_window_samples = int(max_window_samples)
        self.state = WindowState.ACCUMULATING
        self._chunks: List[np.ndarray] = []
        self._buffered = 0
        self._buffer_start: Optional[int] = None
        self._next_index = 0
        self.windows_cut = 0

    @property
    def buffered_samples(self) -> int:
        return self._buffered

    @property
    def expected_start(self) -> Optional[int]:
        if self._buffer_start is None:
            return None
        return self._buffer_start + self._buffered

    def append(self, start_sample: int, samples: np.ndarray) -> List[Window]:
        """Buffer admitted samples; return the windows that became ready."""
        if samples.size == 0:
            return []
        expected = self.expected_start
        if expected is not None and start_sample != expected:
            raise ValueError(
                f"non-contiguous audio within a span: expected sample {expected}, "
                f"got {start_sample}"
            )
        if self._buffer_start is None:
            self._buffer_start = int(start_sample)
        self._chunks.append(np.asarray(samples, dtype=np.float32))
        self._buffered += samples.size
        if self._buffered >= self.min_window_samples:
            self.state = WindowState.READY
        return self._advance()

    def close_span(self) -> List[Window]:
        """End of the current speech span: flush the remainder."""
        self.state = WindowState.FLUSHING
        return self._advance()

    def _advance(self) -> List[Window]:
        windows: List[Window] = []
        while True:
            match self.state:
                case WindowState.ACCUMULATING:
                    return windows
                case WindowState.READY:
                    size = min(self._buffered, self.max_window_samples)
                    windows.append(self._cut(size, final_in_span=False))
                    if self._buffered < self.min_window_samples:
                        self.state = WindowState.ACCUMULATING
                case WindowState.FLUSHING:
                    while self._buffered > 0:
                        size = min(self._buffered, self.max_window_samples)
                        last = self._buffered == size
                        windows.append(self._cut(size, final_in_span=last))
                    self._buffer_start = None
                    self.state = WindowState.ACCUMULATING

    def _cut(self, size: int, final_in_span: bool) -> Window:
        assert self._buffer_start is not None
        if len(self._chunks) > 1:
            self._chunks = [np.concatenate(self._chunks)]
        buffered = self._chunks[0]
        window = Window(
            index=self._next_index,
            start_sample=self._buffer_start,
            samples=buffered[:size].copy(),
            final_in_span=final_in_span,
        )
        rest = buffered[size:]
        self._chunks = [rest] if rest.size else []
        self._buffered = int(rest.size)
        self._buffer_start += size
        self._next_index += 1
        self.windows_cut += 1
        LOGGER.debug(
            "Window cut index=%d start=%.3fs duration=%.3fs final_in_span=%s",
            window.index,
            window.start_sec,
            window.duration_sec,
            final_in_span,
        )
        return window


__all__ = ["WindowManager", "WindowState"]
