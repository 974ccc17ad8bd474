import argparse
import signal
import threading
from pathlib import Path
from typing import Optional

from stt_pipeline.backend.runtime import (
    ApplicationRuntime,
    ModelRuntimeConfig,
    PipelineRuntimeConfig,
    RuntimeConfig,
)
from stt_pipeline.backend.transport import start_http_server
from stt_pipeline.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL_CONFIG_PATH,
    ServerConfig,
    derive_model_key,
    load_config,
)
from stt_pipeline.errors import ModelLoadError
from stt_pipeline.utils.logger import LOGGER, configure_logging


def build_runtime_config(config: ServerConfig) -> RuntimeConfig:
    model_cfg = ModelRuntimeConfig(
        models=config.model_specs(),
        log_metrics=config.log_metrics,
    )
    pipeline_cfg = PipelineRuntimeConfig(
        min_window_sec=config.min_window_sec,
        max_window_sec=config.max_window_sec,
        decode_concurrency=config.decode_concurrency,
        decode_timeout_sec=config.decode_timeout_sec,
        vad_model=config.vad_model,
        vad_threshold=config.vad_threshold,
        vad_pre_pad_ms=config.vad_pre_pad_ms,
        vad_post_pad_ms=config.vad_post_pad_ms,
        vad_min_speech_ms=config.vad_min_speech_ms,
        vad_gap_merge_ms=config.vad_gap_merge_ms,
        vad_energy_threshold=config.vad_energy_threshold,
    )
    return RuntimeConfig(model=model_cfg, pipeline=pipeline_cfg)


def serve(config: ServerConfig, stop_event: Optional[threading.Event] = None) -> None:
    """Load models, then serve HTTP until interrupted."""
    try:
        runtime = ApplicationRuntime(build_runtime_config(config))
    except ModelLoadError as exc:
        LOGGER.error("Refusing to start: %s", exc)
        raise SystemExit(1) from exc

    handle = start_http_server(
        runtime,
        host=config.host,
        port=config.port,
        max_body_bytes=config.max_body_bytes,
    )
    LOGGER.info(
        "Transcription server started on %s:%s (models=%s, default=%s)",
        config.host,
        config.port,
        ",".join(runtime.model_registry.list_models()),
        runtime.model_registry.default_model_key,
    )
    stop = stop_event or threading.Event()
    if threading.current_thread() is threading.main_thread():
        signal.signal(signal.SIGTERM, lambda *_: stop.set())
    try:
        while not stop.is_set() and handle.thread.is_alive():
            stop.wait(0.5)
    except KeyboardInterrupt:
        LOGGER.info("Interrupted; shutting down")
    finally:
        handle.stop(timeout=5.0)
        runtime.shutdown()


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Streaming transcription HTTP server")
    parser.add_argument(
        "--config",
        type=str,
        help=f"Path to YAML config (default search: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--model-config",
        type=str,
        help=f"Path to model YAML (default: {DEFAULT_MODEL_CONFIG_PATH})",
    )
    parser.add_argument(
        "--model",
        action="append",
        dest="models",
        help="Model name or path to load; repeat to load several (first is default)",
    )
    parser.add_argument(
        "--backend", default=None, help="Model backend (faster_whisper, torch_whisper)"
    )
    parser.add_argument("--device", default=None, help="Target inference device")
    parser.add_argument("--compute-type", default=None, help="Backend compute_type")
    parser.add_argument("--host", default=None, help="Address to bind")
    parser.add_argument("--port", type=int, default=None, help="Port to bind")
    parser.add_argument(
        "--max-body-bytes",
        type=int,
        default=None,
        help="Largest accepted request body in bytes (0 disables the limit)",
    )
    parser.add_argument(
        "--min-window",
        type=float,
        default=None,
        help="Default minimum window duration in seconds",
    )
    parser.add_argument(
        "--max-window",
        type=float,
        default=None,
        help="Window ceiling in seconds",
    )
    parser.add_argument(
        "--decode-concurrency",
        type=int,
        default=None,
        help="Maximum backend calls in flight across all sessions",
    )
    parser.add_argument(
        "--decode-timeout",
        type=float,
        default=None,
        help="Seconds to wait for outstanding windows at end of stream (<=0 disables)",
    )
    parser.add_argument(
        "--vad-model",
        choices=("silero", "energy"),
        default=None,
        help="VAD classifier used when a request enables VAD",
    )
    parser.add_argument(
        "--log-metrics",
        dest="log_metrics",
        action="store_true",
        help="Log decode latency and real-time factor for each window",
    )
    parser.add_argument(
        "--no-log-metrics",
        dest="log_metrics",
        action="store_false",
        help="Disable metric logging (overrides config)",
    )
    parser.set_defaults(log_metrics=None)
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (e.g. DEBUG, INFO); overrides config",
    )
    parser.add_argument(
        "--log-file",
        default=None,
        help="Optional log file path; overrides config",
    )
    parser.add_argument(
        "--transcript-log-file",
        default=None,
        help="Optional file receiving transcript text; overrides config",
    )
    return parser.parse_args(argv)


def configure_from_args(args: argparse.Namespace) -> ServerConfig:
    config_arg_path = Path(args.config).expanduser() if args.config else None
    model_config_arg_path = (
        Path(args.model_config).expanduser() if args.model_config else None
    )
    effective_config_path = config_arg_path or DEFAULT_CONFIG_PATH
    effective_model_path = model_config_arg_path or DEFAULT_MODEL_CONFIG_PATH
    config = load_config(effective_config_path, effective_model_path)

    if args.models:
        config.model = args.models[0]
        config.models = {}
        config.default_model_key = None
        for name in args.models:
            config.models.setdefault(derive_model_key(name), {"name": name})
    if args.backend is not None:
        config.model_backend = args.backend
    if args.device is not None:
        config.device = args.device
    if args.compute_type is not None:
        config.compute_type = args.compute_type
    if args.host is not None:
        config.host = args.host
    if args.port is not None:
        config.port = args.port
    if args.max_body_bytes is not None:
        config.max_body_bytes = args.max_body_bytes
    if args.min_window is not None:
        config.min_window_sec = args.min_window
    if args.max_window is not None:
        config.max_window_sec = args.max_window
    if args.decode_concurrency is not None:
        config.decode_concurrency = args.decode_concurrency
    if args.decode_timeout is not None:
        config.decode_timeout_sec = args.decode_timeout
    if args.vad_model is not None:
        config.vad_model = args.vad_model
    if args.log_metrics is not None:
        config.log_metrics = args.log_metrics
    if args.log_level is not None:
        config.log_level = args.log_level
    if args.log_file is not None:
        config.log_file = args.log_file
    if args.transcript_log_file is not None:
        config.transcript_log_file = args.transcript_log_file

    configure_logging(config.log_level, config.log_file, config.transcript_log_file)
    if effective_config_path.exists():
        LOGGER.info("Loaded server config from %s", effective_config_path)
    else:
        LOGGER.info(
            "Server config file not found at %s; using defaults/CLI overrides",
            effective_config_path,
        )
    if effective_model_path.exists():
        LOGGER.info("Loaded model config from %s", effective_model_path)
    else:
        LOGGER.info(
            "Model config file not found at %s; using defaults/CLI overrides",
            effective_model_path,
        )
    return config


def main() -> None:
    args = parse_args()
    config = configure_from_args(args)
    serve(config)


if __name__ == "__main__":
    main()
