"""Transcribe a media file or stdin through one session and print the result."""

import argparse
import sys
from pathlib import Path
from typing import BinaryIO, Iterator, Optional

from stt_pipeline.backend.component.decoder import RawPcmDecoder
from stt_pipeline.backend.runtime import ApplicationRuntime
from stt_pipeline.config import (
    DEFAULT_CONFIG_PATH,
    DEFAULT_MODEL_CONFIG_PATH,
    ServerConfig,
    load_config,
)
from stt_pipeline.errors import STTError
from stt_pipeline.main import build_runtime_config
from stt_pipeline.utils.logger import LOGGER, configure_logging, shutdown_logging

READ_CHUNK_BYTES = 64 * 1024


def read_chunks(stream: BinaryIO, chunk_bytes: int = READ_CHUNK_BYTES) -> Iterator[bytes]:
    while True:
        chunk = stream.read(chunk_bytes)
        if not chunk:
            return
        yield chunk


def parse_args(argv: Optional[list] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transcribe an audio file (or stdin) to JSON, WebVTT or text"
    )
    parser.add_argument(
        "-i", "--input", required=True, help="Media file path, or '-' for stdin"
    )
    parser.add_argument(
        "-o",
        "--output",
        default="vtt",
        help="Output format: json, vtt or text (default: vtt)",
    )
    parser.add_argument(
        "--enable-vad",
        action="store_true",
        help="Skip non-speech audio using voice activity detection",
    )
    parser.add_argument(
        "--vad-model",
        choices=("silero", "energy"),
        default=None,
        help="VAD classifier (default from config)",
    )
    parser.add_argument(
        "-t",
        "--translate",
        action="store_true",
        help="Translate speech to English instead of transcribing",
    )
    parser.add_argument(
        "-l", "--language", default=None, help="Spoken language code (default: auto)"
    )
    parser.add_argument(
        "--min-window",
        type=float,
        default=None,
        help="Minimum window duration in seconds",
    )
    parser.add_argument("--model", default=None, help="Model name or path")
    parser.add_argument("--backend", default=None, help="Model backend")
    parser.add_argument("--device", default=None, help="Inference device")
    parser.add_argument("--compute-type", default=None, help="Backend compute_type")
    parser.add_argument(
        "--raw-rate",
        type=int,
        default=None,
        help="Treat input as headerless PCM16 at this sample rate",
    )
    parser.add_argument(
        "--raw-channels",
        type=int,
        default=1,
        help="Channel count for headerless PCM16 input (default: 1)",
    )
    parser.add_argument(
        "--config",
        default=None,
        help=f"Path to YAML config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "--model-config",
        default=None,
        help=f"Path to model YAML (default: {DEFAULT_MODEL_CONFIG_PATH})",
    )
    parser.add_argument(
        "--log-level", default="WARNING", help="Logging level (default: WARNING)"
    )
    return parser.parse_args(argv)


def configure_from_args(args: argparse.Namespace) -> ServerConfig:
    config = load_config(
        Path(args.config).expanduser() if args.config else None,
        Path(args.model_config).expanduser() if args.model_config else None,
    )
    if args.model is not None:
        config.model = args.model
        config.models = {}
        config.default_model_key = None
    if args.backend is not None:
        config.model_backend = args.backend
    if args.device is not None:
        config.device = args.device
    if args.compute_type is not None:
        config.compute_type = args.compute_type
    if args.min_window is not None:
        config.min_window_sec = args.min_window
    configure_logging(args.log_level, None)
    return config


def run(args: argparse.Namespace, config: ServerConfig) -> bytes:
    runtime = ApplicationRuntime(build_runtime_config(config))
    try:
        options = runtime.session_manager.build_run_options(
            output=args.output,
            enable_vad=args.enable_vad,
            translate_to_english=args.translate,
            language=args.language,
            vad_model=args.vad_model,
        )
        decoder = None
        if args.raw_rate is not None:
            decoder = RawPcmDecoder(args.raw_rate, args.raw_channels)
        if args.input == "-":
            return runtime.transcribe(
                read_chunks(sys.stdin.buffer), options, decoder=decoder
            )
        with open(args.input, "rb") as fh:
            return runtime.transcribe(read_chunks(fh), options, decoder=decoder)
    finally:
        runtime.shutdown()


def main(argv: Optional[list] = None) -> int:
    args = parse_args(argv)
    config = configure_from_args(args)
    try:
        body = run(args, config)
    except STTError as exc:
        LOGGER.error("Transcription failed: %s", exc)
        return 1
    except OSError as exc:
        LOGGER.error("Cannot read %s: %s", args.input, exc)
        return 2
    finally:
        shutdown_logging()
    sys.stdout.buffer.write(body)
    sys.stdout.buffer.flush()
    return 0


if __name__ == "__main__":
    sys.exit(main())
