import threading
import time
from unittest.mock import MagicMock

import pytest

from stt_pipeline.backend.application.session import EOF, SessionPhase
from stt_pipeline.backend.application import session_manager as session_manager_module
from stt_pipeline.backend.application.session_manager import (
    SessionManagerHooks,
    parse_flag,
)
from stt_pipeline.backend.application.types import OutputFormat
from stt_pipeline.errors import ErrorCode, STTError
from tests.conftest import FakeBackend, make_runtime, tone, wav_bytes


@pytest.fixture
def manager(runtime):
    return runtime.session_manager


def test_defaults(manager):
    options = manager.build_run_options()
    assert options.model_key == "fake"
    assert options.output_format is OutputFormat.VTT
    assert options.enable_vad is False
    assert options.translate_to_english is False
    assert options.language is None
    assert options.min_window_seconds == pytest.approx(1.0)
    assert options.vad_model == "energy"


def test_query_style_values_are_parsed(manager):
    options = manager.build_run_options(
        output="JSON",
        enable_vad="true",
        translate_to_english="1",
        language=" De ",
        min_window_seconds="2.5",
        vad_model="Silero",
    )
    assert options.output_format is OutputFormat.JSON
    assert options.enable_vad is True
    assert options.translate_to_english is True
    assert options.task == "translate"
    assert options.language == "de"
    assert options.min_window_seconds == pytest.approx(2.5)
    assert options.vad_model == "silero"


@pytest.mark.parametrize(
    "kwargs,code",
    [
        ({"model_key": "missing"}, ErrorCode.MODEL_KEY_UNKNOWN),
        ({"output": "srt"}, ErrorCode.OUTPUT_FORMAT_UNKNOWN),
        ({"language": "xx-not-a-language"}, ErrorCode.LANGUAGE_UNSUPPORTED),
        ({"min_window_seconds": "0"}, ErrorCode.WINDOW_DURATION_INVALID),
        ({"min_window_seconds": "-1"}, ErrorCode.WINDOW_DURATION_INVALID),
        ({"min_window_seconds": "nan"}, ErrorCode.WINDOW_DURATION_INVALID),
        ({"min_window_seconds": "soon"}, ErrorCode.WINDOW_DURATION_INVALID),
        ({"min_window_seconds": "31"}, ErrorCode.WINDOW_DURATION_INVALID),
        ({"vad_model": "webrtc"}, ErrorCode.VAD_MODEL_UNKNOWN),
        ({"enable_vad": "maybe"}, ErrorCode.OPTION_INVALID),
    ],
)
def test_invalid_options_are_rejected(manager, kwargs, code):
    with pytest.raises(STTError) as exc:
        manager.build_run_options(**kwargs)
    assert exc.value.code == code
    assert exc.value.http_status == 400


def test_parse_flag():
    assert parse_flag(None) is False
    assert parse_flag("Yes") is True
    assert parse_flag("off") is False
    assert parse_flag(True) is True
    with pytest.raises(ValueError):
        parse_flag("sometimes", "enable_vad")


def test_sessions_are_registered_and_removed(manager):
    session = manager.create(manager.build_run_options())
    assert manager.get(session.session_id) is session
    assert manager.active_count() == 1
    session.feed(wav_bytes(tone(0.5)))
    session.feed(EOF)
    session.finish()
    assert manager.active_count() == 0
    with pytest.raises(STTError) as exc:
        manager.get(session.session_id)
    assert exc.value.code == ErrorCode.SESSION_NOT_FOUND


def test_duplicate_session_id_is_rejected(manager):
    options = manager.build_run_options()
    manager.create(options, session_id="abc")
    with pytest.raises(ValueError):
        manager.create(options, session_id="abc")


def test_concurrent_creates_with_same_id_admit_one(manager, monkeypatch):
    real_session = session_manager_module.TranscriptionSession

    def slow_session(*args, **kwargs):
        time.sleep(0.05)
        return real_session(*args, **kwargs)

    monkeypatch.setattr(session_manager_module, "TranscriptionSession", slow_session)
    options = manager.build_run_options()
    barrier = threading.Barrier(4)
    created = []
    rejected = []

    def worker():
        barrier.wait()
        try:
            created.append(manager.create(options, session_id="shared"))
        except ValueError:
            rejected.append(True)

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)
    assert len(created) == 1
    assert len(rejected) == 3
    assert manager.get("shared") is created[0]
    assert manager.active_count() == 1


def test_hooks_fire_on_create_and_remove():
    runtime = make_runtime(FakeBackend())
    try:
        manager = runtime.session_manager
        hooks = SessionManagerHooks(on_create=MagicMock(), on_remove=MagicMock())
        manager._hooks = hooks
        session = manager.create(manager.build_run_options())
        hooks.on_create.assert_called_once_with(session)
        session.cancel()
        hooks.on_remove.assert_called_once_with(session)
        assert session.phase is SessionPhase.CANCELLED
    finally:
        runtime.shutdown()


def test_cancel_all(manager):
    options = manager.build_run_options()
    sessions = [manager.create(options) for _ in range(3)]
    assert manager.cancel_all() == 3
    assert all(s.phase is SessionPhase.CANCELLED for s in sessions)
    assert manager.active_count() == 0
