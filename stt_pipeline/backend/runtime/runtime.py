"""Application wiring for the transcription pipeline."""

from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from stt_pipeline.backend.application.model_registry import (
    BackendFactory,
    ModelRegistry,
)
from stt_pipeline.backend.application.session import (
    EOF,
    SessionLimits,
    SessionPhase,
    TranscriptionSession,
)
from stt_pipeline.backend.application.session_manager import (
    SessionManager,
    SessionManagerHooks,
)
from stt_pipeline.backend.application.types import RunOptions
from stt_pipeline.backend.component.decode_scheduler import (
    DecodeScheduler,
    DecodeSchedulerHooks,
)
from stt_pipeline.backend.component.decoder import MediaDecoder
from stt_pipeline.backend.component.vad_segmenter import (
    VadPolicy,
    VadSettings,
    configure_vad_model_pool,
)
from stt_pipeline.backend.runtime.config import RuntimeConfig
from stt_pipeline.backend.runtime.metrics import Metrics
from stt_pipeline.config.default.model import DEFAULT_MODEL_NAME
from stt_pipeline.config.languages import SupportedLanguages
from stt_pipeline.errors import STTError
from stt_pipeline.utils.logger import LOGGER


class ApplicationRuntime:
    """Builds and owns application-layer dependencies."""

    def __init__(
        self,
        config: RuntimeConfig,
        backend_factory: Optional[BackendFactory] = None,
        load_models: bool = True,
    ) -> None:
        self.config = config
        self.metrics = Metrics()
        pipeline = config.pipeline
        self.supported_languages = SupportedLanguages()
        self.model_registry = ModelRegistry(backend_factory=backend_factory)

        decode_hooks = DecodeSchedulerHooks(
            on_decode_result=self._on_decode_result,
            on_decode_error=self.metrics.record_decode_error,
            on_decode_cancelled=self.metrics.record_decode_cancelled,
        )
        self.decode_scheduler = DecodeScheduler(
            max_concurrency=pipeline.decode_concurrency, hooks=decode_hooks
        )
        vad_settings = VadSettings(
            policy=VadPolicy.from_ms(
                threshold=pipeline.vad_threshold,
                pre_pad_ms=pipeline.vad_pre_pad_ms,
                post_pad_ms=pipeline.vad_post_pad_ms,
                min_speech_ms=pipeline.vad_min_speech_ms,
                gap_merge_ms=pipeline.vad_gap_merge_ms,
            ),
            energy_threshold=pipeline.vad_energy_threshold,
        )
        session_hooks = SessionManagerHooks(
            on_create=self._on_session_created,
            on_remove=self._on_session_removed,
        )
        self.session_manager = SessionManager(
            model_registry=self.model_registry,
            scheduler=self.decode_scheduler,
            language_lookup=self.supported_languages,
            limits=SessionLimits(
                max_window_seconds=pipeline.max_window_sec,
                decode_timeout_sec=pipeline.decode_timeout_sec,
            ),
            vad_settings=vad_settings,
            default_min_window_seconds=pipeline.min_window_sec,
            default_vad_model=pipeline.vad_model,
            hooks=session_hooks,
        )
        configure_vad_model_pool(
            max_size=pipeline.vad_model_pool_size, prewarm=pipeline.vad_model_prewarm
        )
        if load_models:
            self.load_models()

    def load_models(self) -> None:
        """Load every configured model once; raises ModelLoadError on failure."""
        specs = self.config.model.models or {DEFAULT_MODEL_NAME: {}}
        for model_key, spec in specs.items():
            merged = dict(spec)
            merged.setdefault("log_metrics", self.config.model.log_metrics)
            self.model_registry.load_model(model_key, merged)

    def transcribe(
        self,
        chunks: Iterable[bytes],
        options: RunOptions,
        decoder: Optional[MediaDecoder] = None,
    ) -> bytes:
        """Run one whole request through a session and encode the result."""
        session = self.session_manager.create(options, decoder=decoder)
        try:
            for chunk in chunks:
                session.feed(chunk)
            session.feed(EOF)
            return session.encode()
        except STTError as exc:
            self.metrics.record_error(exc.code.value)
            raise
        finally:
            if session.phase not in (
                SessionPhase.COMPLETED,
                SessionPhase.FAILED,
                SessionPhase.CANCELLED,
            ):
                session.cancel()

    def health_snapshot(self) -> Dict[str, Any]:
        """Return a point-in-time snapshot of runtime health."""
        metrics_snapshot = self.metrics.snapshot()
        registry_summary = self.model_registry.health_summary()
        return {
            "models_loaded": registry_summary["models_loaded"],
            "model_count": registry_summary["model_count"],
            "default_model_key": registry_summary["default_model_key"],
            "active_sessions": self.session_manager.active_count(),
            "decode_queue_depth": self.decode_scheduler.pending_decodes(),
            "decode_latency_avg": metrics_snapshot.get("decode_latency_avg"),
            "decode_latency_max": metrics_snapshot.get("decode_latency_max"),
        }

    def shutdown(self) -> None:
        """Release runtime resources before exiting."""
        cancelled = self.session_manager.cancel_all()
        if cancelled:
            LOGGER.info("Cancelled %d active session(s) on shutdown", cancelled)
        self.decode_scheduler.shutdown(wait=False)

    def _on_decode_result(
        self,
        inference_sec: float,
        real_time_factor: float,
        queue_wait_sec: float,
        audio_seconds: float,
    ) -> None:
        self.metrics.record_decode(inference_sec, real_time_factor, queue_wait_sec)

    def _on_session_created(self, _: TranscriptionSession) -> None:
        self.metrics.increase_active_sessions()

    def _on_session_removed(self, session: TranscriptionSession) -> None:
        self.metrics.decrease_active_sessions(session.phase.value)
        self.metrics.record_audio_seconds(session.audio_seconds)
