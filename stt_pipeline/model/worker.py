import logging
import time
from typing import Any, Dict, List, NamedTuple, Optional

import numpy as np

from stt_pipeline.backend.application.types import RunOptions
from stt_pipeline.config.default.model import default_decode_options
from stt_pipeline.errors import InferenceError
from stt_pipeline.model.backends.base import ModelBackend, Segment
from stt_pipeline.utils.audio import CANONICAL_SAMPLE_RATE

LOGGER = logging.getLogger("stt_pipeline.model_worker")


class DecodeResult(NamedTuple):
    segments: List[Segment]
    latency_sec: float
    audio_duration: float
    rtf: float
    language_code: str
    language_probability: float
    queue_wait_sec: float


def build_decode_options(
    options: RunOptions, base_options: Optional[Dict[str, Any]] = None
) -> Dict[str, Any]:
    """Translate run options into backend keyword options."""
    decode_options = default_decode_options()
    if base_options:
        decode_options.update(base_options)
    decode_options["task"] = options.task
    if options.language:
        decode_options["language"] = options.language
    else:
        decode_options.pop("language", None)
    return decode_options


class ModelWorker:
    """Wraps a loaded backend and times each window decode."""

    def __init__(
        self,
        model_key: str,
        backend: ModelBackend,
        log_metrics: bool = False,
        base_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.model_key = model_key
        self.backend = backend
        self.log_metrics = log_metrics
        self.base_options = base_options.copy() if base_options else {}

    def decode_options(self, options: RunOptions) -> Dict[str, Any]:
        return build_decode_options(options, self.base_options)

    def decode_sync(
        self,
        samples: np.ndarray,
        decode_options: Dict[str, Any],
        submitted_at: Optional[float] = None,
    ) -> DecodeResult:
        """Decode one window on the calling thread.

        Any backend failure is raised as InferenceError with the original
        exception preserved.
        """
        start = time.perf_counter()
        queue_wait_sec = (
            max(0.0, start - submitted_at) if submitted_at is not None else 0.0
        )
        if samples.size == 0:
            return DecodeResult(
                segments=[],
                latency_sec=0.0,
                audio_duration=0.0,
                rtf=-1.0,
                language_code="",
                language_probability=-1.0,
                queue_wait_sec=queue_wait_sec,
            )

        audio = np.ascontiguousarray(samples, dtype=np.float32)
        try:
            segments, info = self.backend.transcribe(audio, dict(decode_options))
        except Exception as exc:
            LOGGER.exception(
                "Backend decode failed model_key=%s samples=%d",
                self.model_key,
                audio.size,
            )
            raise InferenceError(cause=exc) from exc
        elapsed = time.perf_counter() - start
        audio_duration = audio.size / float(CANONICAL_SAMPLE_RATE)
        rtf = elapsed / audio_duration if audio_duration > 0 else -1.0
        if self.log_metrics:
            LOGGER.info(
                "decode metrics model_key=%s audio=%.2fs elapsed=%.2fs real_time_factor=%.2f",
                self.model_key,
                audio_duration,
                elapsed,
                rtf if rtf >= 0 else float("inf"),
            )
        return DecodeResult(
            segments=list(segments),
            latency_sec=elapsed,
            audio_duration=audio_duration,
            rtf=rtf,
            language_code=info.language if info else "",
            language_probability=info.language_probability if info else -1.0,
            queue_wait_sec=queue_wait_sec,
        )
