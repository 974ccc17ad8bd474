"""Runtime wiring and configuration for the transcription application layer."""

from .config import ModelRuntimeConfig, PipelineRuntimeConfig, RuntimeConfig
from .runtime import ApplicationRuntime

__all__ = [
    "ApplicationRuntime",
    "ModelRuntimeConfig",
    "PipelineRuntimeConfig",
    "RuntimeConfig",
]
