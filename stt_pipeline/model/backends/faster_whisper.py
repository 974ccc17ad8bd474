"""faster-whisper backend implementation."""

import math
from typing import Any, Dict, List, Optional, Tuple

import numpy as np
from faster_whisper import WhisperModel

from stt_pipeline.model.backends.base import BackendInfo, ModelBackend, Segment


def _confidence(avg_logprob: Optional[float]) -> Optional[float]:
    if avg_logprob is None:
        return None
    try:
        value = math.exp(float(avg_logprob))
    except (TypeError, ValueError, OverflowError):
        return None
    return max(0.0, min(1.0, value))


class FasterWhisperBackend(ModelBackend):
    """Backend wrapper for faster-whisper.

    CTranslate2 serves concurrent ``transcribe`` calls on one model; callers
    from several threads run in parallel up to ``num_workers``.
    """

    def __init__(
        self, model_size: str, device: str, compute_type: str, num_workers: int = 1
    ) -> None:
        self.model = WhisperModel(
            model_size,
            device=device,
            compute_type=compute_type,
            num_workers=max(1, int(num_workers)),
        )

    def transcribe(
        self, audio: np.ndarray, options: Dict[str, Any]
    ) -> Tuple[List[Segment], BackendInfo]:
        opts = dict(options)
        segments, info = self.model.transcribe(audio, **opts)
        language = opts.get("language") or (info.language if info else "")
        language_probability = info.language_probability if info else -1.0
        # The generator performs the decode; drain it inside this call.
        parsed = [
            Segment(
                float(seg.start),
                float(seg.end),
                seg.text,
                confidence=_confidence(getattr(seg, "avg_logprob", None)),
                language=language or None,
            )
            for seg in segments
        ]
        return parsed, BackendInfo(language, language_probability)
