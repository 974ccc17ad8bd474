"""Default values for server/pipeline configuration."""

from typing import Dict

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 8080
DEFAULT_MAX_BODY_BYTES = 512 * 1024 * 1024
DEFAULT_LOG_LEVEL = "INFO"
DEFAULT_LOG_FILE = None
DEFAULT_TRANSCRIPT_LOG_FILE = None
DEFAULT_LOG_METRICS = False

DEFAULT_MIN_WINDOW_SEC = 1.0
DEFAULT_MAX_WINDOW_SEC = 30.0
DEFAULT_DECODE_CONCURRENCY = 2
DEFAULT_DECODE_TIMEOUT_SEC = 600.0

# Hangover margins lean towards over-inclusion of audio around speech.
DEFAULT_VAD_MODEL = "silero"
DEFAULT_VAD_THRESHOLD = 0.5
DEFAULT_VAD_FRAME_SAMPLES = 512
DEFAULT_VAD_PRE_PAD_MS = 250
DEFAULT_VAD_POST_PAD_MS = 250
DEFAULT_VAD_MIN_SPEECH_MS = 250
DEFAULT_VAD_GAP_MERGE_MS = 300
DEFAULT_VAD_ENERGY_THRESHOLD = 0.02

SERVER_SECTION_MAP: Dict[str, Dict[str, str]] = {
    "server": {
        "host": "host",
        "port": "port",
        "max_body_bytes": "max_body_bytes",
        "log_metrics": "log_metrics",
    },
    "pipeline": {
        "min_window_sec": "min_window_sec",
        "max_window_sec": "max_window_sec",
        "decode_concurrency": "decode_concurrency",
        "decode_timeout_sec": "decode_timeout_sec",
    },
    "vad": {
        "model": "vad_model",
        "threshold": "vad_threshold",
        "pre_pad_ms": "vad_pre_pad_ms",
        "post_pad_ms": "vad_post_pad_ms",
        "min_speech_ms": "vad_min_speech_ms",
        "gap_merge_ms": "vad_gap_merge_ms",
        "energy_threshold": "vad_energy_threshold",
    },
    "logging": {
        "level": "log_level",
        "file": "log_file",
        "transcript_file": "transcript_log_file",
    },
}

__all__ = [
    "DEFAULT_HOST",
    "DEFAULT_PORT",
    "DEFAULT_MAX_BODY_BYTES",
    "DEFAULT_LOG_LEVEL",
    "DEFAULT_LOG_FILE",
    "DEFAULT_TRANSCRIPT_LOG_FILE",
    "DEFAULT_LOG_METRICS",
    "DEFAULT_MIN_WINDOW_SEC",
    "DEFAULT_MAX_WINDOW_SEC",
    "DEFAULT_DECODE_CONCURRENCY",
    "DEFAULT_DECODE_TIMEOUT_SEC",
    "DEFAULT_VAD_MODEL",
    "DEFAULT_VAD_THRESHOLD",
    "DEFAULT_VAD_FRAME_SAMPLES",
    "DEFAULT_VAD_PRE_PAD_MS",
    "DEFAULT_VAD_POST_PAD_MS",
    "DEFAULT_VAD_MIN_SPEECH_MS",
    "DEFAULT_VAD_GAP_MERGE_MS",
    "DEFAULT_VAD_ENERGY_THRESHOLD",
    "SERVER_SECTION_MAP",
]
