from types import SimpleNamespace
from unittest.mock import MagicMock

import numpy as np
import pytest

from stt_pipeline.model.backends import get_backend


def test_unknown_backend_name_raises():
    with pytest.raises(ValueError):
        get_backend("whisper_cpp")


def test_faster_whisper_backend_parses_segments(monkeypatch):
    pytest.importorskip("faster_whisper")
    from stt_pipeline.model.backends import faster_whisper as fw_module

    model = MagicMock()
    model.transcribe.return_value = (
        iter(
            [
                SimpleNamespace(start=0.0, end=1.2, text=" Hallo", avg_logprob=-0.1),
                SimpleNamespace(start=1.2, end=2.0, text=" Welt", avg_logprob=None),
            ]
        ),
        SimpleNamespace(language="de", language_probability=0.97),
    )
    model_cls = MagicMock(return_value=model)
    monkeypatch.setattr(fw_module, "WhisperModel", model_cls)

    assert get_backend("faster-whisper") is fw_module.FasterWhisperBackend
    backend = fw_module.FasterWhisperBackend("small", "cpu", "int8")
    segments, info = backend.transcribe(
        np.zeros(32000, dtype=np.float32), {"beam_size": 5, "task": "transcribe"}
    )

    model_cls.assert_called_once_with(
        "small", device="cpu", compute_type="int8", num_workers=1
    )
    _, kwargs = model.transcribe.call_args
    assert kwargs == {"beam_size": 5, "task": "transcribe"}
    assert [seg.text for seg in segments] == [" Hallo", " Welt"]
    assert segments[0].confidence == pytest.approx(np.exp(-0.1))
    assert segments[1].confidence is None
    assert info.language == "de"
    assert info.language_probability == pytest.approx(0.97)


def test_faster_whisper_explicit_language_wins(monkeypatch):
    pytest.importorskip("faster_whisper")
    from stt_pipeline.model.backends import faster_whisper as fw_module

    model = MagicMock()
    model.transcribe.return_value = (
        iter([]),
        SimpleNamespace(language="en", language_probability=0.5),
    )
    monkeypatch.setattr(fw_module, "WhisperModel", MagicMock(return_value=model))

    backend = fw_module.FasterWhisperBackend("small", "cpu", "int8")
    segments, info = backend.transcribe(
        np.zeros(16000, dtype=np.float32), {"language": "fr"}
    )
    assert segments == []
    assert info.language == "fr"


def test_torch_whisper_backend_filters_options(monkeypatch):
    whisper = pytest.importorskip("whisper")
    from stt_pipeline.model.backends import torch_whisper as tw_module

    model = MagicMock()
    model.float.return_value = model
    model.transcribe.return_value = {
        "language": "en",
        "segments": [
            {"start": 0.0, "end": 0.8, "text": " hi", "avg_logprob": -0.2},
            "not-a-segment",
            {"start": "bad", "end": 1.0, "text": None},
        ],
    }
    monkeypatch.setattr(whisper, "load_model", MagicMock(return_value=model))

    backend = tw_module.TorchWhisperBackend("tiny", "cpu", "int8")
    segments, info = backend.transcribe(
        np.zeros(16000, dtype=np.float32),
        {"beam_size": 5, "vad_filter": True, "log_prob_threshold": -1.0},
    )

    _, kwargs = model.transcribe.call_args
    assert "vad_filter" not in kwargs
    assert kwargs["logprob_threshold"] == -1.0
    assert kwargs["fp16"] is False
    assert [(seg.start, seg.end, seg.text) for seg in segments] == [
        (0.0, 0.8, " hi"),
        (0.0, 1.0, ""),
    ]
    assert segments[0].confidence == pytest.approx(np.exp(-0.2))
    assert info.language == "en"
