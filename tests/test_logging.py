import logging
from pathlib import Path

from stt_pipeline.backend.application.session import EOF
from stt_pipeline.utils.logger import (
    LOGGER,
    TRACE_LEVEL_NUM,
    TRANSCRIPT_LOGGER,
    clear_session_id,
    configure_logging,
    current_session_id,
    set_session_id,
    shutdown_logging,
)
from tests.conftest import FakeBackend, make_runtime, tone, wav_bytes


def test_logging_includes_session_id(tmp_path: Path) -> None:
    """Test logging includes session id."""
    log_path = tmp_path / "session.log"
    configure_logging("INFO", str(log_path))
    try:
        set_session_id("session-123")
        LOGGER.info("log-test")
    finally:
        clear_session_id()
        shutdown_logging()

    content = log_path.read_text(encoding="utf-8")
    assert "session_id=session-123" in content
    assert current_session_id() == "-"


def test_trace_level_is_configurable(tmp_path: Path) -> None:
    log_path = tmp_path / "trace.log"
    configure_logging("TRACE", str(log_path))
    try:
        assert logging.getLogger().level == TRACE_LEVEL_NUM
        LOGGER.trace("trace-line")
    finally:
        shutdown_logging()

    content = log_path.read_text(encoding="utf-8")
    assert "[TRACE]" in content
    assert "trace-line" in content


def test_transcript_logging_is_opt_in(tmp_path: Path) -> None:
    """Ensure transcripts do not appear in main logs by default."""
    log_path = tmp_path / "server.log"
    configure_logging("INFO", str(log_path))
    try:
        set_session_id("session-456")
        TRANSCRIPT_LOGGER.info("pii-text-1234")
    finally:
        clear_session_id()
        shutdown_logging()

    content = log_path.read_text(encoding="utf-8")
    assert "pii-text-1234" not in content


def test_transcript_logging_uses_separate_sink(tmp_path: Path) -> None:
    """Ensure transcripts only appear in the dedicated transcript sink."""
    log_path = tmp_path / "server.log"
    transcript_path = tmp_path / "transcripts.log"
    configure_logging("INFO", str(log_path), transcript_log_file=str(transcript_path))
    try:
        set_session_id("session-789")
        TRANSCRIPT_LOGGER.info("pii-text-5678")
    finally:
        clear_session_id()
        shutdown_logging()

    server_content = log_path.read_text(encoding="utf-8")
    transcript_content = transcript_path.read_text(encoding="utf-8")
    assert "pii-text-5678" not in server_content
    assert "pii-text-5678" in transcript_content


def test_completed_session_writes_transcript_sink(tmp_path: Path) -> None:
    log_path = tmp_path / "server.log"
    transcript_path = tmp_path / "transcripts.log"
    configure_logging("INFO", str(log_path), transcript_log_file=str(transcript_path))
    runtime = make_runtime(FakeBackend(text="secret words"))
    try:
        manager = runtime.session_manager
        session = manager.create(manager.build_run_options(), session_id="sess-1")
        session.feed(wav_bytes(tone(1.0)))
        session.feed(EOF)
        session.finish()
    finally:
        runtime.shutdown()
        shutdown_logging()

    server_content = log_path.read_text(encoding="utf-8")
    transcript_content = transcript_path.read_text(encoding="utf-8")
    assert "Session completed session_id=sess-1" in server_content
    assert "secret words" not in server_content
    assert "session_id=sess-1" in transcript_content
    assert "secret words" in transcript_content
