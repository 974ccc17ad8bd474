import pytest

from stt_pipeline.errors import (
    ERROR_HTTP_STATUS_MAP,
    ERROR_SPECS,
    EncodingError,
    ErrorCode,
    InferenceError,
    ModelLoadError,
    STTError,
    UnsupportedFormat,
    format_error,
    http_payload_for,
)


def test_every_code_has_a_spec():
    assert set(ERROR_SPECS) == set(ErrorCode)
    for code, spec in ERROR_SPECS.items():
        assert spec.code is code
        assert ERROR_HTTP_STATUS_MAP[code] == spec.http_status


def test_request_errors_are_client_errors():
    for code in ErrorCode:
        if code.value.startswith("ERR10"):
            assert 400 <= ERROR_SPECS[code].http_status < 500


def test_payload_uses_detail_when_given():
    assert http_payload_for(ErrorCode.EMPTY_BODY) == {
        "code": "ERR1001",
        "message": "request body was empty",
    }
    assert http_payload_for(ErrorCode.EMPTY_BODY, "nothing sent")["message"] == (
        "nothing sent"
    )
    assert format_error(ErrorCode.SESSION_TIMEOUT) == (
        "ERR4003 timed out waiting for transcription"
    )


@pytest.mark.parametrize(
    "error,code,status",
    [
        (UnsupportedFormat("bad header"), ErrorCode.UNSUPPORTED_FORMAT, 415),
        (ModelLoadError("no weights"), ErrorCode.MODEL_LOAD_FAILED, 503),
        (EncodingError("negative time"), ErrorCode.ENCODING_FAILED, 500),
        (STTError(ErrorCode.BODY_TOO_LARGE), ErrorCode.BODY_TOO_LARGE, 413),
    ],
)
def test_subclasses_carry_code_and_status(error, code, status):
    assert isinstance(error, STTError)
    assert error.code is code
    assert error.http_status == status


def test_inference_error_keeps_cause():
    cause = RuntimeError("cuda out of memory")
    error = InferenceError(cause=cause)
    assert error.cause is cause
    assert error.__cause__ is cause
    assert "cuda out of memory" in error.detail
    assert str(error).startswith("ERR3001 ")
