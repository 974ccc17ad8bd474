"""Runtime configuration models for the transcription application layer."""

from dataclasses import dataclass, field
from typing import Any, Dict

from stt_pipeline.config.default import (
    DEFAULT_DECODE_CONCURRENCY,
    DEFAULT_DECODE_TIMEOUT_SEC,
    DEFAULT_MAX_WINDOW_SEC,
    DEFAULT_MIN_WINDOW_SEC,
    DEFAULT_VAD_ENERGY_THRESHOLD,
    DEFAULT_VAD_GAP_MERGE_MS,
    DEFAULT_VAD_MIN_SPEECH_MS,
    DEFAULT_VAD_MODEL,
    DEFAULT_VAD_POST_PAD_MS,
    DEFAULT_VAD_PRE_PAD_MS,
    DEFAULT_VAD_THRESHOLD,
)


@dataclass
class ModelRuntimeConfig:
    """Model keys to load; the first entry is the default."""

    models: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    log_metrics: bool = False


@dataclass
class PipelineRuntimeConfig:
    """Windowing, decode pool and VAD policy shared by all sessions."""

    min_window_sec: float = DEFAULT_MIN_WINDOW_SEC
    max_window_sec: float = DEFAULT_MAX_WINDOW_SEC
    decode_concurrency: int = DEFAULT_DECODE_CONCURRENCY
    decode_timeout_sec: float = DEFAULT_DECODE_TIMEOUT_SEC
    vad_model: str = DEFAULT_VAD_MODEL
    vad_threshold: float = DEFAULT_VAD_THRESHOLD
    vad_pre_pad_ms: int = DEFAULT_VAD_PRE_PAD_MS
    vad_post_pad_ms: int = DEFAULT_VAD_POST_PAD_MS
    vad_min_speech_ms: int = DEFAULT_VAD_MIN_SPEECH_MS
    vad_gap_merge_ms: int = DEFAULT_VAD_GAP_MERGE_MS
    vad_energy_threshold: float = DEFAULT_VAD_ENERGY_THRESHOLD
    vad_model_pool_size: int = 4
    vad_model_prewarm: int = 0


@dataclass
class RuntimeConfig:
    """Top-level configuration for the application runtime."""

    model: ModelRuntimeConfig = field(default_factory=ModelRuntimeConfig)
    pipeline: PipelineRuntimeConfig = field(default_factory=PipelineRuntimeConfig)
