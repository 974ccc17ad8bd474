"""Downmix and resample decoded frames to the canonical mono 16 kHz stream."""

from __future__ import annotations

from typing import Optional

import numpy as np
import soxr

from stt_pipeline.backend.component.decoder import DecodedFrames
from stt_pipeline.errors import UnsupportedFormat
from stt_pipeline.utils.audio import CANONICAL_SAMPLE_RATE
from stt_pipeline.utils.logger import LOGGER

_EMPTY = np.zeros(0, dtype=np.float32)
RESAMPLE_QUALITY = "HQ"


def downmix(samples: np.ndarray, channels: int) -> np.ndarray:
    """Average channels uniformly into a mono float32 vector."""
    if samples.ndim == 1:
        if channels <= 1:
            return samples.astype(np.float32, copy=False)
        samples = samples.reshape(-1, channels)
    if samples.shape[1] == 1:
        return samples[:, 0].astype(np.float32, copy=False)
    return samples.mean(axis=1, dtype=np.float64).astype(np.float32)


class SampleNormalizer:
    """Per-stream normalizer with resampler filter state.

    Streams at the canonical rate pass through untouched. Any other rate goes
    through one band-limited ``soxr.ResampleStream`` for the life of the
    stream: content above the target Nyquist is filtered out before
    decimation, and the filter history carries across chunk boundaries so
    splitting the input differently does not move or drop output samples.
    The resampler withholds its filter delay until :meth:`flush`.
    """

    def __init__(self, target_rate: int = CANONICAL_SAMPLE_RATE) -> None:
        self.target_rate = target_rate
        self.source_rate: Optional[int] = None
        self.channels: Optional[int] = None
        self._resampler: Optional[soxr.ResampleStream] = None
        self._produced = 0
        self._flushed = False

    @property
    def samples_out(self) -> int:
        return self._produced

    def process(self, frames: DecodedFrames) -> np.ndarray:
        """Normalize one batch of decoded frames."""
        self._check_format(frames.sample_rate, frames.channels)
        if self._flushed:
            raise UnsupportedFormat("audio received after end-of-stream")
        mono = downmix(np.asarray(frames.samples, dtype=np.float32), frames.channels)
        if mono.size == 0:
            return _EMPTY
        if self._resampler is None:
            self._produced += mono.size
            return mono
        return self._emit(self._resampler.resample_chunk(np.ascontiguousarray(mono)))

    def flush(self) -> np.ndarray:
        """Drain the resampler's filter delay at end-of-stream."""
        if self._flushed:
            return _EMPTY
        self._flushed = True
        if self._resampler is None:
            return _EMPTY
        return self._emit(self._resampler.resample_chunk(_EMPTY, last=True))

    def _emit(self, out: np.ndarray) -> np.ndarray:
        out = np.asarray(out, dtype=np.float32).reshape(-1)
        self._produced += out.size
        return out

    def _check_format(self, sample_rate: int, channels: int) -> None:
        if channels is None or channels <= 0:
            raise UnsupportedFormat(f"decoder reported {channels} channels")
        if sample_rate is None or sample_rate <= 0:
            raise UnsupportedFormat(f"decoder reported sample rate {sample_rate}")
        if self.source_rate is None:
            self.source_rate = int(sample_rate)
            self.channels = int(channels)
            if self.source_rate != self.target_rate:
                self._resampler = soxr.ResampleStream(
                    self.source_rate,
                    self.target_rate,
                    1,
                    dtype="float32",
                    quality=RESAMPLE_QUALITY,
                )
                LOGGER.debug(
                    "Resampling %d Hz -> %d Hz (soxr %s)",
                    self.source_rate,
                    self.target_rate,
                    RESAMPLE_QUALITY,
                )
            return
        if sample_rate != self.source_rate:
            raise UnsupportedFormat(
                f"sample rate changed mid-stream ({self.source_rate} -> {sample_rate})"
            )
        if channels != self.channels:
            raise UnsupportedFormat(
                f"channel count changed mid-stream ({self.channels} -> {channels})"
            )


__all__ = ["SampleNormalizer", "downmix"]
