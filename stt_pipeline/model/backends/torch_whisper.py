"""PyTorch Whisper backend implementation."""

import logging
import math
import threading
from typing import Any, Dict, List, Tuple

import numpy as np
import whisper

from stt_pipeline.model.backends.base import BackendInfo, ModelBackend, Segment

LOGGER = logging.getLogger("stt_pipeline.model_backend")

FLOAT16_ALIASES = {"float16", "fp16", "half"}

SUPPORTED_OPTIONS = {
    "temperature",
    "compression_ratio_threshold",
    "logprob_threshold",
    "no_speech_threshold",
    "condition_on_previous_text",
    "initial_prompt",
    "word_timestamps",
    "language",
    "task",
    "beam_size",
    "best_of",
    "patience",
    "length_penalty",
    "fp16",
}


class TorchWhisperBackend(ModelBackend):
    """Backend wrapper for openai-whisper.

    The torch model keeps per-call decoder state, so calls are serialized.
    """

    def __init__(self, model_size: str, device: str, compute_type: str) -> None:
        self.device = device
        self.compute_type = compute_type
        self.model = whisper.load_model(model_size, device=device)
        self._lock = threading.Lock()
        LOGGER.info(
            "torch_whisper loaded model=%s device=%s compute_type=%s",
            model_size,
            device,
            compute_type,
        )
        self._apply_compute_type()

    def _apply_compute_type(self) -> None:
        if self.compute_type in FLOAT16_ALIASES and self.device != "cpu":
            if self.device == "mps":
                LOGGER.warning(
                    "MPS does not reliably support fp16 for Whisper decoding; "
                    "falling back to float32 (requested compute_type=%s)",
                    self.compute_type,
                )
                self.compute_type = "float32"
            else:
                self.model = self.model.half()
                return
        if self.compute_type not in {"float32", "fp32", "int8", "int8_float16"}:
            LOGGER.warning(
                "Unsupported compute_type=%s for torch_whisper; using float32",
                self.compute_type,
            )
        self.model = self.model.float()

    def transcribe(
        self, audio: np.ndarray, options: Dict[str, Any]
    ) -> Tuple[List[Segment], BackendInfo]:
        opts = self._normalize_options(options)
        if "fp16" not in opts:
            opts["fp16"] = self.compute_type in FLOAT16_ALIASES and self.device != "cpu"
        with self._lock:
            result = self.model.transcribe(audio, **opts)
        language = opts.get("language") or result.get("language") or ""
        if not isinstance(language, str):
            language = str(language)
        segments: List[Segment] = []
        for seg in result.get("segments", []):
            if not isinstance(seg, dict):
                continue
            try:
                start_f = float(seg.get("start", 0.0))
            except (TypeError, ValueError):
                start_f = 0.0
            try:
                end_f = float(seg.get("end", 0.0))
            except (TypeError, ValueError):
                end_f = 0.0
            confidence = None
            avg_logprob = seg.get("avg_logprob")
            if isinstance(avg_logprob, (int, float)):
                confidence = max(0.0, min(1.0, math.exp(avg_logprob)))
            segments.append(
                Segment(
                    start_f,
                    end_f,
                    str(seg.get("text", "") or ""),
                    confidence=confidence,
                    language=language or None,
                )
            )
        return segments, BackendInfo(language, -1.0)

    def _normalize_options(self, options: Dict[str, Any]) -> Dict[str, Any]:
        opts = dict(options)
        if "log_prob_threshold" in opts and "logprob_threshold" not in opts:
            opts["logprob_threshold"] = opts.pop("log_prob_threshold")
        dropped = {key: value for key, value in opts.items() if key not in SUPPORTED_OPTIONS}
        for key, value in dropped.items():
            LOGGER.warning(
                "Dropping unsupported torch_whisper option %s=%s", key, value
            )
            opts.pop(key, None)
        return opts
