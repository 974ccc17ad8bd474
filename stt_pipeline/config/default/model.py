"""Default values and helpers for model-related configuration."""

from typing import Any, Dict

DEFAULT_MODEL_BACKEND = "faster_whisper"
DEFAULT_MODEL_NAME = "small"
DEFAULT_DEVICE = "cpu"
DEFAULT_COMPUTE_TYPE = "int8"
DEFAULT_BEAM_SIZE = 5
# Placeholder language code when neither the request nor the backend names one.
UNDETERMINED_LANGUAGE = "und"

DEFAULT_DECODE_OPTIONS: Dict[str, Any] = {
    "beam_size": DEFAULT_BEAM_SIZE,
    "patience": 1.0,
    "temperature": 0.0,
    "condition_on_previous_text": False,
}


def default_decode_options() -> Dict[str, Any]:
    """Return a copy of the default decode options."""
    return DEFAULT_DECODE_OPTIONS.copy()


MODEL_SECTION_MAP = {
    "backend": "model_backend",
    "name": "model",
    "device": "device",
    "compute_type": "compute_type",
    "default_model_key": "default_model_key",
}


__all__ = [
    "DEFAULT_MODEL_BACKEND",
    "DEFAULT_MODEL_NAME",
    "DEFAULT_DEVICE",
    "DEFAULT_COMPUTE_TYPE",
    "DEFAULT_BEAM_SIZE",
    "DEFAULT_DECODE_OPTIONS",
    "UNDETERMINED_LANGUAGE",
    "default_decode_options",
    "MODEL_SECTION_MAP",
]
