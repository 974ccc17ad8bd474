"""Backend registry for model implementations."""

from typing import Type

from stt_pipeline.model.backends.base import BackendInfo, ModelBackend, Segment


def get_backend(name: str) -> Type[ModelBackend]:
    """Resolve a backend implementation by name."""
    normalized = (name or "faster_whisper").lower()
    if normalized in {"faster_whisper", "faster-whisper", "fw"}:
        try:
            from stt_pipeline.model.backends.faster_whisper import (
                FasterWhisperBackend,
            )
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "faster_whisper backend requires the faster-whisper package."
            ) from exc

        return FasterWhisperBackend
    if normalized in {"torch_whisper", "torch-whisper", "whisper", "pytorch"}:
        try:
            from stt_pipeline.model.backends.torch_whisper import TorchWhisperBackend
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError(
                "torch_whisper backend requires the openai-whisper package. "
                "Install with: pip install openai-whisper"
            ) from exc

        return TorchWhisperBackend
    raise ValueError(f"Unknown model backend: {name}")


__all__ = ["BackendInfo", "ModelBackend", "Segment", "get_backend"]
