"""Model registry: loads each configured model once and shares it."""

import logging
import sys
import threading
from typing import Any, Callable, Dict, List, Optional

from stt_pipeline.config.default.model import (
    DEFAULT_COMPUTE_TYPE,
    DEFAULT_DEVICE,
    DEFAULT_MODEL_BACKEND,
    DEFAULT_MODEL_NAME,
)
from stt_pipeline.errors import ErrorCode, ModelLoadError, STTError
from stt_pipeline.model.backends import get_backend
from stt_pipeline.model.backends.base import ModelBackend
from stt_pipeline.model.worker import ModelWorker

LOGGER = logging.getLogger("stt_pipeline.model_registry")

BackendFactory = Callable[[str, str, str, str], ModelBackend]


def _default_backend_factory(
    backend: str, model_size: str, device: str, compute_type: str
) -> ModelBackend:
    backend_cls = get_backend(backend)
    return backend_cls(model_size=model_size, device=device, compute_type=compute_type)


class ModelRegistry:
    """Holds one loaded backend per model key for the process lifetime."""

    def __init__(self, backend_factory: Optional[BackendFactory] = None) -> None:
        self._lock = threading.RLock()
        self._workers: Dict[str, ModelWorker] = {}
        self._configs: Dict[str, Dict[str, Any]] = {}
        self._default_key: Optional[str] = None
        self._backend_factory = backend_factory or _default_backend_factory

    @property
    def default_model_key(self) -> Optional[str]:
        with self._lock:
            return self._default_key

    def is_loaded(self, model_key: str) -> bool:
        with self._lock:
            return model_key in self._workers

    def list_models(self) -> List[str]:
        """Return loaded model keys, default first."""
        with self._lock:
            return list(self._workers.keys())

    def resolve_key(self, model_key: Optional[str]) -> str:
        """Map an optional request key onto a loaded key."""
        with self._lock:
            if not model_key:
                if self._default_key is None:
                    raise STTError(ErrorCode.MODEL_KEY_UNKNOWN, "no models are loaded")
                return self._default_key
            if model_key not in self._workers:
                raise STTError(
                    ErrorCode.MODEL_KEY_UNKNOWN, f"unknown model_key '{model_key}'"
                )
            return model_key

    def get_worker(self, model_key: Optional[str] = None) -> ModelWorker:
        key = self.resolve_key(model_key)
        with self._lock:
            return self._workers[key]

    def health_summary(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "models_loaded": bool(self._workers),
                "model_count": len(self._workers),
                "default_model_key": self._default_key,
            }

    def load_model(self, model_key: str, config: Dict[str, Any]) -> ModelWorker:
        """Load ``model_key`` unless it already is; the first key is the default."""
        with self._lock:
            existing = self._workers.get(model_key)
            if existing is not None:
                LOGGER.info("Model '%s' is already loaded", model_key)
                return existing

            LOGGER.info("Loading model '%s' with config=%s", model_key, config)
            model_path_or_size = (
                config.get("model_path")
                or config.get("path")
                or config.get("model_size")
                or config.get("name")
                or DEFAULT_MODEL_NAME
            )
            device = config.get("device", DEFAULT_DEVICE)
            compute_type = config.get("compute_type", DEFAULT_COMPUTE_TYPE)
            backend = config.get("backend") or config.get("model_backend")
            if not backend:
                backend = DEFAULT_MODEL_BACKEND
            base_options = dict(config.get("base_options") or {})
            log_metrics = bool(config.get("log_metrics", False))

            try:
                self._validate_device_backend(backend, device)
                instance = self._backend_factory(
                    backend, model_path_or_size, device, compute_type
                )
            except (RuntimeError, ValueError, OSError, TypeError) as exc:
                LOGGER.exception("Failed to load model '%s'", model_key)
                raise ModelLoadError(
                    f"failed to load model '{model_key}': {exc}"
                ) from exc

            worker = ModelWorker(
                model_key,
                instance,
                log_metrics=log_metrics,
                base_options=base_options,
            )
            self._workers[model_key] = worker
            self._configs[model_key] = dict(config)
            if self._default_key is None:
                self._default_key = model_key
            LOGGER.info(
                "Successfully loaded model '%s' backend=%s device=%s",
                model_key,
                backend,
                device,
            )
            return worker

    def _validate_device_backend(self, backend: str, device: str) -> None:
        device_norm = (device or "").lower()
        backend_norm = (backend or "").lower()
        if not device_norm or device_norm in ("cpu", "auto"):
            return
        if device_norm.startswith("cuda"):
            if sys.platform == "darwin":
                raise ValueError("CUDA device requested on macOS")
            if backend_norm == "torch_whisper":
                try:
                    import torch
                except ImportError as exc:  # pragma: no cover - torch optional
                    raise ValueError(
                        "CUDA requested but torch is not available"
                    ) from exc
                if not torch.cuda.is_available():
                    raise ValueError("CUDA requested but torch reports no CUDA devices")
            return
        if device_norm == "mps":
            if backend_norm != "torch_whisper":
                raise ValueError("MPS device requires the torch_whisper backend")
            if sys.platform != "darwin":
                raise ValueError("MPS device requested on non-macOS platform")
            return
        raise ValueError(f"Unsupported device '{device}'")


__all__ = ["ModelRegistry"]
