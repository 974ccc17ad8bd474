"""Centralized error codes and status mappings."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Final, Optional


class ErrorCode(str, Enum):
    """Stable error identifiers surfaced to clients and logs."""

    # request (ERR100x)
    EMPTY_BODY = "ERR1001"
    MODEL_KEY_UNKNOWN = "ERR1002"
    OUTPUT_FORMAT_UNKNOWN = "ERR1003"
    LANGUAGE_UNSUPPORTED = "ERR1004"
    WINDOW_DURATION_INVALID = "ERR1005"
    VAD_MODEL_UNKNOWN = "ERR1006"
    OPTION_INVALID = "ERR1007"
    BODY_TOO_LARGE = "ERR1008"

    # media (ERR200x)
    UNSUPPORTED_FORMAT = "ERR2001"

    # pipeline (ERR300x)
    INFERENCE_FAILED = "ERR3001"
    MODEL_LOAD_FAILED = "ERR3002"
    ENCODING_FAILED = "ERR3003"
    PIPELINE_FAILED = "ERR3004"

    # session (ERR400x)
    SESSION_CANCELLED = "ERR4001"
    SESSION_FINISHED = "ERR4002"
    SESSION_TIMEOUT = "ERR4003"
    SESSION_NOT_FOUND = "ERR4004"


@dataclass(frozen=True)
class ErrorSpec:
    """Maps an error code to an HTTP status and message."""

    code: ErrorCode
    http_status: int
    message: str


ERROR_SPECS: Final[dict[ErrorCode, ErrorSpec]] = {
    ErrorCode.EMPTY_BODY: ErrorSpec(
        ErrorCode.EMPTY_BODY, 400, "request body was empty"
    ),
    ErrorCode.MODEL_KEY_UNKNOWN: ErrorSpec(
        ErrorCode.MODEL_KEY_UNKNOWN, 400, "unknown model_key"
    ),
    ErrorCode.OUTPUT_FORMAT_UNKNOWN: ErrorSpec(
        ErrorCode.OUTPUT_FORMAT_UNKNOWN,
        400,
        "unknown output type (expected 'json', 'vtt' or 'text')",
    ),
    ErrorCode.LANGUAGE_UNSUPPORTED: ErrorSpec(
        ErrorCode.LANGUAGE_UNSUPPORTED, 400, "unsupported language code"
    ),
    ErrorCode.WINDOW_DURATION_INVALID: ErrorSpec(
        ErrorCode.WINDOW_DURATION_INVALID,
        400,
        "min_window_seconds must be positive",
    ),
    ErrorCode.VAD_MODEL_UNKNOWN: ErrorSpec(
        ErrorCode.VAD_MODEL_UNKNOWN, 400, "unknown VAD model"
    ),
    ErrorCode.OPTION_INVALID: ErrorSpec(
        ErrorCode.OPTION_INVALID, 400, "invalid request option"
    ),
    ErrorCode.BODY_TOO_LARGE: ErrorSpec(
        ErrorCode.BODY_TOO_LARGE, 413, "request body exceeds the configured limit"
    ),
    ErrorCode.UNSUPPORTED_FORMAT: ErrorSpec(
        ErrorCode.UNSUPPORTED_FORMAT,
        415,
        "unsupported or unrecognized media container",
    ),
    ErrorCode.INFERENCE_FAILED: ErrorSpec(
        ErrorCode.INFERENCE_FAILED, 500, "backend inference failed"
    ),
    ErrorCode.MODEL_LOAD_FAILED: ErrorSpec(
        ErrorCode.MODEL_LOAD_FAILED, 503, "model could not be loaded"
    ),
    ErrorCode.ENCODING_FAILED: ErrorSpec(
        ErrorCode.ENCODING_FAILED, 500, "transcript encoding failed"
    ),
    ErrorCode.PIPELINE_FAILED: ErrorSpec(
        ErrorCode.PIPELINE_FAILED, 500, "audio pipeline failed"
    ),
    ErrorCode.SESSION_CANCELLED: ErrorSpec(
        ErrorCode.SESSION_CANCELLED, 409, "session was cancelled"
    ),
    ErrorCode.SESSION_FINISHED: ErrorSpec(
        ErrorCode.SESSION_FINISHED, 409, "session already received end-of-stream"
    ),
    ErrorCode.SESSION_TIMEOUT: ErrorSpec(
        ErrorCode.SESSION_TIMEOUT, 504, "timed out waiting for transcription"
    ),
    ErrorCode.SESSION_NOT_FOUND: ErrorSpec(
        ErrorCode.SESSION_NOT_FOUND, 404, "unknown session"
    ),
}

ERROR_HTTP_STATUS_MAP: Final[dict[ErrorCode, int]] = {
    code: spec.http_status for code, spec in ERROR_SPECS.items()
}


def spec_for(code: ErrorCode) -> ErrorSpec:
    """Return the ErrorSpec for a given error code."""
    return ERROR_SPECS[code]


def http_status_for(code: ErrorCode) -> int:
    """Return the HTTP status associated with an error code."""
    return ERROR_SPECS[code].http_status


def format_error(code: ErrorCode, detail: Optional[str] = None) -> str:
    """Format an error code and optional detail into a message."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return f"{spec.code.value} {message}"


def http_payload_for(code: ErrorCode, detail: Optional[str] = None) -> dict[str, str]:
    """Build an HTTP error payload for a given error code."""
    spec = ERROR_SPECS[code]
    message = detail if detail else spec.message
    return {"code": spec.code.value, "message": message}


class STTError(RuntimeError):
    """Raised for application-defined errors with status metadata."""

    def __init__(self, code: ErrorCode, detail: Optional[str] = None) -> None:
        """Create an STTError with formatted message and status metadata."""
        self.code = code
        self.http_status = http_status_for(code)
        self.detail = detail or ERROR_SPECS[code].message
        super().__init__(format_error(code, detail))


class UnsupportedFormat(STTError):
    """Input media cannot be interpreted; fatal to the session only."""

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(ErrorCode.UNSUPPORTED_FORMAT, detail)


class InferenceError(STTError):
    """A backend call failed; the underlying exception is kept as ``cause``."""

    def __init__(
        self, detail: Optional[str] = None, cause: Optional[BaseException] = None
    ) -> None:
        if cause is not None and not detail:
            detail = f"backend inference failed: {cause}"
        super().__init__(ErrorCode.INFERENCE_FAILED, detail)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class ModelLoadError(STTError):
    """A model could not be loaded; the process should not start serving."""

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(ErrorCode.MODEL_LOAD_FAILED, detail)


class EncodingError(STTError):
    """Encoder received a transcript that violates its invariants."""

    def __init__(self, detail: Optional[str] = None) -> None:
        super().__init__(ErrorCode.ENCODING_FAILED, detail)


__all__ = [
    "ErrorCode",
    "ErrorSpec",
    "ERROR_SPECS",
    "ERROR_HTTP_STATUS_MAP",
    "EncodingError",
    "InferenceError",
    "ModelLoadError",
    "STTError",
    "UnsupportedFormat",
    "format_error",
    "http_payload_for",
    "http_status_for",
    "spec_for",
]
