import io
import threading
import time

import numpy as np
import pytest
import soundfile as sf

from stt_pipeline.backend.runtime import (
    ApplicationRuntime,
    ModelRuntimeConfig,
    PipelineRuntimeConfig,
    RuntimeConfig,
)
from stt_pipeline.model.backends.base import BackendInfo, Segment

SAMPLE_RATE = 16000


class FakeBackend:
    """Deterministic stand-in for Whisper: one segment spanning each window."""

    def __init__(
        self,
        text="hello",
        language="en",
        fail_on_call=None,
        delay=0.0,
        segments_fn=None,
    ):
        self.text = text
        self.language = language
        self.fail_on_call = fail_on_call
        self.delay = delay
        self.segments_fn = segments_fn
        self.calls = []
        self.max_parallel = 0
        self._active = 0
        self._lock = threading.Lock()

    def transcribe(self, audio, options):
        with self._lock:
            self.calls.append((int(audio.size), dict(options)))
            call_no = len(self.calls)
            self._active += 1
            self.max_parallel = max(self.max_parallel, self._active)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail_on_call is not None and call_no >= self.fail_on_call:
                raise RuntimeError("backend exploded")
            duration = audio.size / SAMPLE_RATE
            if self.segments_fn is not None:
                segments = self.segments_fn(audio, options)
            else:
                segments = [Segment(0.0, duration, f"{self.text} {audio.size}")]
            language = options.get("language") or self.language
            return segments, BackendInfo(language, 0.9)
        finally:
            with self._lock:
                self._active -= 1

    @property
    def window_sizes(self):
        return [size for size, _ in self.calls]


def make_runtime(backend=None, models=None, **pipeline_overrides):
    backend = backend or FakeBackend()
    config = RuntimeConfig(
        model=ModelRuntimeConfig(models=models or {"fake": {"name": "fake"}}),
        pipeline=PipelineRuntimeConfig(**pipeline_overrides),
    )
    return ApplicationRuntime(config, backend_factory=lambda *_args: backend)


def tone(seconds, amplitude=0.5, freq=220.0, sample_rate=SAMPLE_RATE):
    t = np.arange(int(round(seconds * sample_rate))) / sample_rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def silence(seconds, sample_rate=SAMPLE_RATE):
    return np.zeros(int(round(seconds * sample_rate)), dtype=np.float32)


def wav_bytes(samples, sample_rate=SAMPLE_RATE, subtype="PCM_16"):
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format="WAV", subtype=subtype)
    return buf.getvalue()


def chunked(data, size):
    return [data[i : i + size] for i in range(0, len(data), size)]


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def runtime(fake_backend):
    rt = make_runtime(fake_backend, vad_model="energy")
    yield rt
    rt.shutdown()
