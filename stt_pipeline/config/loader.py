from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from stt_pipeline.config.default import (
    DEFAULT_COMPUTE_TYPE,
    DEFAULT_DECODE_CONCURRENCY,
    DEFAULT_DECODE_TIMEOUT_SEC,
    DEFAULT_DEVICE,
    DEFAULT_HOST,
    DEFAULT_LOG_FILE,
    DEFAULT_LOG_LEVEL,
    DEFAULT_LOG_METRICS,
    DEFAULT_MAX_BODY_BYTES,
    DEFAULT_MAX_WINDOW_SEC,
    DEFAULT_MIN_WINDOW_SEC,
    DEFAULT_MODEL_BACKEND,
    DEFAULT_MODEL_NAME,
    DEFAULT_PORT,
    DEFAULT_TRANSCRIPT_LOG_FILE,
    DEFAULT_VAD_ENERGY_THRESHOLD,
    DEFAULT_VAD_GAP_MERGE_MS,
    DEFAULT_VAD_MIN_SPEECH_MS,
    DEFAULT_VAD_MODEL,
    DEFAULT_VAD_POST_PAD_MS,
    DEFAULT_VAD_PRE_PAD_MS,
    DEFAULT_VAD_THRESHOLD,
    MODEL_SECTION_MAP,
    SERVER_SECTION_MAP,
)


@dataclass
class ServerConfig:
    model: str = DEFAULT_MODEL_NAME
    model_backend: str = DEFAULT_MODEL_BACKEND
    device: str = DEFAULT_DEVICE
    compute_type: str = DEFAULT_COMPUTE_TYPE
    default_model_key: Optional[str] = None
    models: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
    log_metrics: bool = DEFAULT_LOG_METRICS
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
    log_level: str = DEFAULT_LOG_LEVEL
    log_file: Optional[str] = DEFAULT_LOG_FILE
    transcript_log_file: Optional[str] = DEFAULT_TRANSCRIPT_LOG_FILE

    def model_specs(self) -> Dict[str, Dict[str, Any]]:
        """Return model load specs keyed by model key, default key first."""
        if self.models:
            specs = {key: self._with_model_defaults(spec) for key, spec in self.models.items()}
        else:
            base = self._with_model_defaults({"name": self.model})
            specs = {derive_model_key(self.model): base}
        if self.default_model_key and self.default_model_key in specs:
            ordered = {self.default_model_key: specs[self.default_model_key]}
            ordered.update(specs)
            return ordered
        return specs

    def _with_model_defaults(self, spec: Dict[str, Any]) -> Dict[str, Any]:
        merged: Dict[str, Any] = {
            "backend": self.model_backend,
            "name": self.model,
            "device": self.device,
            "compute_type": self.compute_type,
        }
        merged.update({k: v for k, v in spec.items() if v is not None})
        return merged


def derive_model_key(model: str) -> str:
    """Derive a model key from a model name or file path."""
    name = Path(model).name
    stem = Path(name).stem if Path(name).suffix in {".bin", ".pt", ".gguf"} else name
    return stem or model


PROJECT_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG_PATH = PROJECT_ROOT / "config" / "server.yaml"
DEFAULT_MODEL_CONFIG_PATH = PROJECT_ROOT / "config" / "model.yaml"

SECTION_MAP: Dict[str, Dict[str, str]] = {"model": MODEL_SECTION_MAP}
SECTION_MAP.update(SERVER_SECTION_MAP)


def load_config(
    server_path: Optional[Path] = None, model_path: Optional[Path] = None
) -> ServerConfig:
    """Load server + model configuration from YAML, falling back to defaults."""
    cfg = ServerConfig()
    server_data = _read_yaml(server_path or DEFAULT_CONFIG_PATH)
    if server_data:
        _apply_sections(cfg, server_data)
    model_data = _read_yaml(model_path or DEFAULT_MODEL_CONFIG_PATH)
    if model_data:
        _apply_sections(cfg, model_data)

    return cfg


def _read_yaml(path: Optional[Path]) -> Optional[Dict[str, Any]]:
    if not path or not path.exists():
        return None
    with path.open("r", encoding="utf-8") as fh:
        data = yaml.safe_load(fh)
    if isinstance(data, dict):
        return data
    return None


def _apply_sections(cfg: ServerConfig, raw: Dict[str, Any]) -> None:
    field_names = {f.name for f in fields(ServerConfig)}
    for section, mapping in SECTION_MAP.items():
        data = raw.get(section)
        if not isinstance(data, dict):
            continue
        for key, attr in mapping.items():
            if key in data and data[key] is not None:
                setattr(cfg, attr, data[key])

    _apply_models(cfg, raw.get("models"))

    for key, value in raw.items():
        if key in SECTION_MAP or key == "models":
            continue
        if key in field_names and value is not None:
            setattr(cfg, key, value)


def _apply_models(cfg: ServerConfig, models: Any) -> None:
    normalized = _normalize_models(models)
    if normalized:
        cfg.models = normalized


def _normalize_models(models: Any) -> Dict[str, Dict[str, Any]]:
    # Accepts {key: {...}}, {key: "name-or-path"} or ["name-or-path", ...].
    normalized: Dict[str, Dict[str, Any]] = {}
    if isinstance(models, dict):
        for key, spec in models.items():
            if isinstance(spec, dict):
                normalized[str(key)] = dict(spec)
            elif isinstance(spec, str):
                normalized[str(key)] = {"name": spec}
    elif isinstance(models, list):
        entries: List[Any] = list(models)
        for entry in entries:
            if isinstance(entry, str):
                normalized[derive_model_key(entry)] = {"name": entry}
    return normalized


__all__ = [
    "ServerConfig",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_MODEL_CONFIG_PATH",
    "derive_model_key",
    "load_config",
]
