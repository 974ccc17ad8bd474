"""HTTP transcription surface plus health and metrics endpoints."""

import logging
import threading
import time
from copy import deepcopy
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from uvicorn.config import LOGGING_CONFIG

from stt_pipeline.backend.application.session import EOF, SessionPhase
from stt_pipeline.backend.component.encoders import content_type_for
from stt_pipeline.backend.runtime import ApplicationRuntime
from stt_pipeline.config.default import DEFAULT_MAX_BODY_BYTES
from stt_pipeline.errors import ErrorCode, STTError, http_payload_for, http_status_for

_ACCESS_LOG_IGNORED_PATHS = frozenset(
    {"/metrics", "/metrics.json", "/health", "/healthz"}
)
_USAGE = (
    "POST audio to /v1/transcribe?output=json|vtt|text"
    "&model_key=...&enable_vad=true&translate_to_english=false&language=en\n"
)
LOGGER = logging.getLogger("stt_pipeline.http_server")


class _AccessLogPathFilter(logging.Filter):
    """Filter out noisy access logs for internal endpoints."""

    def __init__(self, ignored_paths: Tuple[str, ...]) -> None:
        super().__init__()
        self._ignored_paths = set(ignored_paths)

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.args, tuple) and len(record.args) >= 3:
            path = str(record.args[2]).split("?", 1)[0]
            if path in self._ignored_paths:
                return False
        return True


def _build_uvicorn_log_config() -> Dict[str, Any]:
    log_config = deepcopy(LOGGING_CONFIG)
    log_config.setdefault("filters", {})
    log_config["filters"]["ignore_internal_endpoints"] = {
        "()": _AccessLogPathFilter,
        "ignored_paths": tuple(sorted(_ACCESS_LOG_IGNORED_PATHS)),
    }
    access_handler = log_config["handlers"].get("access", {})
    access_filters = access_handler.get("filters", [])
    access_handler["filters"] = [*access_filters, "ignore_internal_endpoints"]
    log_config["handlers"]["access"] = access_handler
    return log_config


class ModelsResponse(BaseModel):
    """Loaded model keys; the default key is used when none is requested."""

    default_model_key: Optional[str]
    model_keys: List[str]


@dataclass
class HttpServerHandle:
    """Handle for the background HTTP server thread."""

    server: uvicorn.Server
    thread: threading.Thread

    def stop(self, timeout: Optional[float] = None) -> None:
        if self.thread.is_alive():
            self.server.should_exit = True
            self.thread.join(timeout=timeout)


def _sanitize_metric_name(value: str) -> str:
    sanitized = []
    for idx, ch in enumerate(value):
        if ch.isalnum() or ch == "_":
            sanitized.append(ch)
        else:
            sanitized.append("_")
        if idx == 0 and sanitized[-1].isdigit():
            sanitized.insert(0, "m")
    return "".join(sanitized) or "metric"


def _flatten_metrics(payload: Dict[str, Any]) -> Dict[str, float]:
    flat: Dict[str, float] = {}
    for key, value in payload.items():
        if value is None:
            continue
        if isinstance(value, (int, float, bool)):
            flat[_sanitize_metric_name(key)] = float(value)
        elif isinstance(value, dict):
            for sub_key, sub_val in value.items():
                if isinstance(sub_val, (int, float, bool)):
                    metric_key = _sanitize_metric_name(f"{key}_{sub_key}")
                    flat[metric_key] = float(sub_val)
    return flat


def _prometheus_text(payload: Dict[str, Any]) -> str:
    flat = _flatten_metrics(payload)
    lines: List[str] = []
    for key in sorted(flat.keys()):
        metric_name = f"stt_{key}"
        lines.append(f"# HELP {metric_name} Pipeline metric '{key}' exposed as a gauge.")
        lines.append(f"# TYPE {metric_name} gauge")
        lines.append(f"{metric_name} {flat[key]}")
    return "\n".join(lines) + "\n"


def build_http_app(
    runtime: ApplicationRuntime, max_body_bytes: int = DEFAULT_MAX_BODY_BYTES
) -> FastAPI:
    """Create the FastAPI app bound to ``runtime``."""
    app = FastAPI()
    metrics = runtime.metrics
    model_registry = runtime.model_registry
    session_manager = runtime.session_manager

    @app.exception_handler(STTError)
    async def stt_error_handler(_request: Request, exc: STTError) -> JSONResponse:
        metrics.record_error(exc.code.value)
        return JSONResponse(
            http_payload_for(exc.code, exc.detail),
            status_code=http_status_for(exc.code),
        )

    @app.middleware("http")
    async def record_request_metrics(request: Request, call_next):
        metrics.http_request_started()
        start = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            metrics.http_request_finished(status_code, time.perf_counter() - start)

    @app.get("/")
    def index_endpoint() -> PlainTextResponse:
        return PlainTextResponse(_USAGE)

    @app.get("/health")
    @app.get("/healthz")
    def health_endpoint() -> JSONResponse:
        snapshot = runtime.health_snapshot()
        healthy = bool(snapshot["models_loaded"])
        status = 200 if healthy else 500
        payload = {"status": "ok" if healthy else "error", **snapshot}
        return JSONResponse(payload, status_code=status)

    @app.get("/v1/models", response_model=ModelsResponse)
    def models_endpoint() -> ModelsResponse:
        return ModelsResponse(
            default_model_key=model_registry.default_model_key,
            model_keys=model_registry.list_models(),
        )

    @app.post("/v1/transcribe")
    async def transcribe_endpoint(
        request: Request,
        output: Optional[str] = None,
        output_type: Optional[str] = None,
        model_key: Optional[str] = None,
        enable_vad: Optional[str] = None,
        translate_to_english: Optional[str] = None,
        language: Optional[str] = None,
        min_window_seconds: Optional[str] = None,
        vad_model: Optional[str] = None,
    ) -> Response:
        # Options are validated before any audio enters the pipeline.
        options = session_manager.build_run_options(
            model_key=model_key,
            output=output if output is not None else output_type,
            enable_vad=enable_vad,
            translate_to_english=translate_to_english,
            language=language,
            min_window_seconds=min_window_seconds,
            vad_model=vad_model,
        )
        session = session_manager.create(options)
        received = 0
        try:
            async for chunk in request.stream():
                if not chunk:
                    continue
                received += len(chunk)
                if max_body_bytes and received > max_body_bytes:
                    raise STTError(ErrorCode.BODY_TOO_LARGE)
                await run_in_threadpool(session.feed, chunk)
            if received == 0:
                raise STTError(ErrorCode.EMPTY_BODY)
            await run_in_threadpool(session.feed, EOF)
            body = await run_in_threadpool(session.encode)
        finally:
            if session.phase in (SessionPhase.OPEN, SessionPhase.DRAINING):
                session.cancel()
        LOGGER.info(
            "Transcribed request session_id=%s bytes=%d audio=%.2fs output=%s",
            session.session_id,
            received,
            session.audio_seconds,
            options.output_format.value,
        )
        return Response(
            content=body, media_type=content_type_for(options.output_format)
        )

    @app.get("/metrics")
    def metrics_endpoint() -> Response:
        text = _prometheus_text(metrics.render())
        return Response(content=text, media_type="text/plain; version=0.0.4")

    @app.get("/metrics.json")
    def metrics_json_endpoint() -> JSONResponse:
        return JSONResponse(metrics.render(), status_code=200)

    return app


def start_http_server(
    runtime: ApplicationRuntime,
    host: str,
    port: int,
    max_body_bytes: int = DEFAULT_MAX_BODY_BYTES,
) -> HttpServerHandle:
    """Start the FastAPI app in a background thread."""
    app = build_http_app(runtime, max_body_bytes=max_body_bytes)
    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
        log_config=_build_uvicorn_log_config(),
    )
    server = uvicorn.Server(config)

    def run_server() -> None:
        server.run()

    thread = threading.Thread(target=run_server, daemon=True)
    thread.start()
    return HttpServerHandle(server=server, thread=thread)
