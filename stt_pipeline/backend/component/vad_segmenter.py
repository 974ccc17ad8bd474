"""Voice activity segmentation over the canonical sample stream."""

from __future__ import annotations

import copy
import threading
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, List, Optional, Protocol, TypeAlias, Union, cast

import numpy as np

from stt_pipeline.backend.application.types import SpeechSpan
from stt_pipeline.config.default import (
    DEFAULT_MIN_WINDOW_SEC,
    DEFAULT_VAD_ENERGY_THRESHOLD,
    DEFAULT_VAD_FRAME_SAMPLES,
    DEFAULT_VAD_GAP_MERGE_MS,
    DEFAULT_VAD_MIN_SPEECH_MS,
    DEFAULT_VAD_POST_PAD_MS,
    DEFAULT_VAD_PRE_PAD_MS,
    DEFAULT_VAD_THRESHOLD,
)
from stt_pipeline.errors import ErrorCode, STTError
from stt_pipeline.utils import audio
from stt_pipeline.utils.logger import LOGGER

try:
    import torch
except ImportError:  # pragma: no cover - optional dependency in some environments
    torch = None

try:
    from silero_vad import load_silero_vad
except ImportError:  # pragma: no cover - optional dependency in some environments
    load_silero_vad = None

if TYPE_CHECKING:
    import torch as torch_mod

    TensorLike: TypeAlias = torch_mod.Tensor
else:
    TensorLike: TypeAlias = object

VAD_MODELS = ("silero", "energy")


class VADModel(Protocol):
    def __call__(self, audio: TensorLike, sample_rate: int): ...

    def eval(self) -> None: ...

    def reset_states(self) -> None: ...


_SILERO_BASE_MODEL: Optional[VADModel] = None
_VAD_POOL_LOCK = threading.Lock()
_VAD_POOL: "deque[VADModel]" = deque()
_VAD_POOL_MAX_SIZE = 0


def _load_silero_base_model():
    if torch is None or load_silero_vad is None:
        raise RuntimeError(
            "silero-vad requires torch + silero-vad. "
            "Install them to enable VAD-based detection."
        )
    global _SILERO_BASE_MODEL
    with _VAD_POOL_LOCK:
        if _SILERO_BASE_MODEL is None:
            _SILERO_BASE_MODEL = cast(VADModel, load_silero_vad())
        return _SILERO_BASE_MODEL


def _new_silero_model():
    base_model = _load_silero_base_model()
    try:
        model = copy.deepcopy(base_model)
    except Exception:
        assert load_silero_vad is not None
        model = cast(VADModel, load_silero_vad())
    model.eval()
    if hasattr(model, "reset_states"):
        model.reset_states()
    return model


def configure_vad_model_pool(max_size: int = 0, prewarm: int = 0) -> None:
    """Keep up to ``max_size`` idle Silero instances, creating ``prewarm`` now."""
    global _VAD_POOL_MAX_SIZE
    max_size = max(0, int(max_size))
    with _VAD_POOL_LOCK:
        _VAD_POOL_MAX_SIZE = max_size
        while len(_VAD_POOL) > max_size:
            _VAD_POOL.pop()
    for _ in range(min(max(0, int(prewarm)), max_size)):
        try:
            model = _new_silero_model()
        except RuntimeError:
            LOGGER.exception("Failed to prewarm VAD model pool")
            break
        _release_vad_model(model)


def _acquire_vad_model() -> VADModel:
    with _VAD_POOL_LOCK:
        if _VAD_POOL:
            model = _VAD_POOL.popleft()
            if hasattr(model, "reset_states"):
                model.reset_states()
            return model
    return _new_silero_model()


def _release_vad_model(model: VADModel) -> None:
    with _VAD_POOL_LOCK:
        if len(_VAD_POOL) >= _VAD_POOL_MAX_SIZE:
            return
        if hasattr(model, "reset_states"):
            model.reset_states()
        _VAD_POOL.append(model)


def _silero_frame_probability(model: VADModel, frame: np.ndarray) -> float:
    if frame.size == 0:
        return 0.0
    assert torch is not None
    contiguous = np.ascontiguousarray(frame, dtype=np.float32)
    tensor = torch.from_numpy(contiguous).unsqueeze(0)
    with torch.no_grad():
        prob = model(tensor, audio.CANONICAL_SAMPLE_RATE)
    if isinstance(prob, torch.Tensor):
        return float(prob.mean().item())
    if prob is None:
        return 0.0
    return float(prob)


class FrameClassifier(Protocol):
    def probability(self, frame: np.ndarray) -> float: ...

    def close(self) -> None: ...


class SileroFrameClassifier:
    """Silero VAD scores for 32 ms frames; one stateful model per stream."""

    def __init__(self) -> None:
        self._model: Optional[VADModel] = _acquire_vad_model()

    def probability(self, frame: np.ndarray) -> float:
        if self._model is None:
            return 0.0
        return _silero_frame_probability(self._model, frame)

    def close(self) -> None:
        if self._model is None:
            return
        _release_vad_model(self._model)
        self._model = None


class EnergyFrameClassifier:
    """RMS gate; frames at or above the energy threshold count as speech."""

    def __init__(self, energy_threshold: float = DEFAULT_VAD_ENERGY_THRESHOLD) -> None:
        self.energy_threshold = energy_threshold

    def probability(self, frame: np.ndarray) -> float:
        if self.energy_threshold <= 0:
            return 1.0
        return 1.0 if audio.samples_rms(frame) >= self.energy_threshold else 0.0

    def close(self) -> None:
        return None


@dataclass(frozen=True)
class VadPolicy:
    """Frame size, decision threshold and hangover margins, in samples."""

    threshold: float = DEFAULT_VAD_THRESHOLD
    frame_samples: int = DEFAULT_VAD_FRAME_SAMPLES
    pre_pad_samples: int = audio.seconds_to_samples(DEFAULT_VAD_PRE_PAD_MS / 1e3)
    post_pad_samples: int = audio.seconds_to_samples(DEFAULT_VAD_POST_PAD_MS / 1e3)
    min_speech_samples: int = audio.seconds_to_samples(DEFAULT_VAD_MIN_SPEECH_MS / 1e3)
    gap_merge_samples: int = audio.seconds_to_samples(DEFAULT_VAD_GAP_MERGE_MS / 1e3)

    @classmethod
    def from_ms(
        cls,
        threshold: float = DEFAULT_VAD_THRESHOLD,
        pre_pad_ms: int = DEFAULT_VAD_PRE_PAD_MS,
        post_pad_ms: int = DEFAULT_VAD_POST_PAD_MS,
        min_speech_ms: int = DEFAULT_VAD_MIN_SPEECH_MS,
        gap_merge_ms: int = DEFAULT_VAD_GAP_MERGE_MS,
        frame_samples: int = DEFAULT_VAD_FRAME_SAMPLES,
    ) -> "VadPolicy":
        return cls(
            threshold=float(threshold),
            frame_samples=int(frame_samples),
            pre_pad_samples=audio.seconds_to_samples(pre_pad_ms / 1000.0),
            post_pad_samples=audio.seconds_to_samples(post_pad_ms / 1000.0),
            min_speech_samples=audio.seconds_to_samples(min_speech_ms / 1000.0),
            gap_merge_samples=audio.seconds_to_samples(gap_merge_ms / 1000.0),
        )


@dataclass(frozen=True, eq=False)
class AdmittedAudio:
    """Samples that certainly belong to the currently open speech span."""

    start_sample: int
    samples: np.ndarray


@dataclass(frozen=True)
class SpanClosed:
    span: SpeechSpan


SegmenterEvent = Union[AdmittedAudio, SpanClosed]


class Segmenter(Protocol):
    def process(self, samples: np.ndarray) -> List[SegmenterEvent]: ...

    def finish(self) -> List[SegmenterEvent]: ...

    def close(self) -> None: ...


class IdentitySegmenter:
    """VAD disabled: the whole stream is one speech span.

    Audio is admitted in fixed blocks of ``block_samples`` measured from the
    start of the stream, so window boundaries never depend on how the input
    was chunked.
    """

    def __init__(self, block_samples: int) -> None:
        if block_samples <= 0:
            raise ValueError("block_samples must be positive")
        self.block_samples = int(block_samples)
        self._pending: List[np.ndarray] = []
        self._pending_samples = 0
        self._admitted = 0
        self._finished = False

    def process(self, samples: np.ndarray) -> List[SegmenterEvent]:
        if samples.size == 0:
            return []
        self._pending.append(samples)
        self._pending_samples += samples.size
        events: List[SegmenterEvent] = []
        if self._pending_samples < self.block_samples:
            return events
        buffered = np.concatenate(self._pending)
        offset = 0
        while buffered.size - offset >= self.block_samples:
            block = buffered[offset : offset + self.block_samples]
            events.append(AdmittedAudio(self._admitted, block))
            self._admitted += block.size
            offset += self.block_samples
        rest = buffered[offset:]
        self._pending = [rest] if rest.size else []
        self._pending_samples = int(rest.size)
        return events

    def finish(self) -> List[SegmenterEvent]:
        if self._finished:
            return []
        self._finished = True
        events: List[SegmenterEvent] = []
        if self._pending_samples:
            rest = np.concatenate(self._pending)
            events.append(AdmittedAudio(self._admitted, rest))
            self._admitted += rest.size
            self._pending = []
            self._pending_samples = 0
        if self._admitted == 0:
            return events
        events.append(SpanClosed(SpeechSpan(0, self._admitted, True)))
        return events

    def close(self) -> None:
        return None


class VoiceActivitySegmenter:
    """Frame-level VAD with hangover, emitting final span boundaries.

    A run of speech frames opens a span once it lasts ``min_speech_samples``;
    the span starts ``pre_pad_samples`` before the run. A span closes
    ``post_pad_samples`` after its last speech frame, once no confirmed speech
    can follow within ``gap_merge_samples``. While a span is open, audio up
    to the post-pad of its last speech frame is admitted in ``block_samples``
    blocks; the rest is admitted when the span closes. Non-speech spans fill
    the gaps.
    """

    def __init__(
        self,
        classifier: FrameClassifier,
        policy: Optional[VadPolicy] = None,
        block_samples: int = audio.seconds_to_samples(DEFAULT_MIN_WINDOW_SEC),
    ) -> None:
        if block_samples <= 0:
            raise ValueError("block_samples must be positive")
        self.classifier = classifier
        self.policy = policy or VadPolicy()
        self.block_samples = int(block_samples)
        self._audio = np.zeros(0, dtype=np.float32)
        self._audio_start = 0
        self._total = 0
        self._pos = 0
        self._run_start: Optional[int] = None
        self._open_start: Optional[int] = None
        self._admitted_until = 0
        self._last_speech_end = 0
        self._closed_until = 0
        self._finished = False
        self.speech_spans = 0

    @property
    def span_open(self) -> bool:
        return self._open_start is not None

    def process(self, samples: np.ndarray) -> List[SegmenterEvent]:
        events: List[SegmenterEvent] = []
        if samples.size == 0:
            return events
        self._append(samples)
        frame = self.policy.frame_samples
        while self._total - self._pos >= frame:
            start = self._pos
            prob = self.classifier.probability(self._slice(start, start + frame))
            self._step(prob >= self.policy.threshold, start, start + frame, events)
            self._pos = start + frame
            self._admit_blocks(events)
        self._trim()
        return events

    def finish(self) -> List[SegmenterEvent]:
        events: List[SegmenterEvent] = []
        if self._finished:
            return events
        self._finished = True
        remaining = self._total - self._pos
        if remaining > 0:
            padded = np.zeros(self.policy.frame_samples, dtype=np.float32)
            padded[:remaining] = self._slice(self._pos, self._total)
            prob = self.classifier.probability(padded)
            self._step(prob >= self.policy.threshold, self._pos, self._total, events)
            self._pos = self._total
        if self._open_start is not None:
            end = min(self._last_speech_end + self.policy.post_pad_samples, self._total)
            self._close(end, events)
        if self._closed_until < self._total:
            gap = SpeechSpan(self._closed_until, self._total, False)
            events.append(SpanClosed(gap))
            self._closed_until = self._total
        self._audio = np.zeros(0, dtype=np.float32)
        self._audio_start = self._total
        return events

    def close(self) -> None:
        self.classifier.close()

    def _step(
        self, is_speech: bool, start: int, end: int, events: List[SegmenterEvent]
    ) -> None:
        policy = self.policy
        if is_speech:
            if self._run_start is None:
                self._run_start = start
            if end - self._run_start >= policy.min_speech_samples:
                if self._open_start is None:
                    onset = self._run_start - policy.pre_pad_samples
                    self._open(max(onset, self._closed_until), events)
                self._last_speech_end = end
        else:
            self._run_start = None
        if self._open_start is None:
            return
        merge_limit = self._last_speech_end + policy.gap_merge_samples
        horizon = self._last_speech_end + max(
            policy.post_pad_samples, policy.gap_merge_samples
        )
        pending = self._run_start is not None and self._run_start < merge_limit
        if end >= horizon and not pending:
            self._close(self._last_speech_end + policy.post_pad_samples, events)

    def _open(self, start: int, events: List[SegmenterEvent]) -> None:
        if start > self._closed_until:
            events.append(SpanClosed(SpeechSpan(self._closed_until, start, False)))
            self._closed_until = start
        self._open_start = start
        self._admitted_until = start
        LOGGER.debug("VAD span opened at sample=%d", start)

    def _close(self, end: int, events: List[SegmenterEvent]) -> None:
        assert self._open_start is not None
        self._admit(end, events)
        span = SpeechSpan(self._open_start, end, True)
        events.append(SpanClosed(span))
        self.speech_spans += 1
        LOGGER.debug(
            "VAD span closed start=%.3fs end=%.3fs", span.start_sec, span.end_sec
        )
        self._closed_until = end
        self._open_start = None

    def _admit_blocks(self, events: List[SegmenterEvent]) -> None:
        if self._open_start is None:
            return
        # Only audio up to the post-pad of the last speech frame is certain.
        certain = min(self._pos, self._last_speech_end + self.policy.post_pad_samples)
        while certain - self._admitted_until >= self.block_samples:
            self._admit(self._admitted_until + self.block_samples, events)

    def _admit(self, limit: int, events: List[SegmenterEvent]) -> None:
        if self._open_start is None or limit <= self._admitted_until:
            return
        samples = self._slice(self._admitted_until, limit).copy()
        events.append(AdmittedAudio(self._admitted_until, samples))
        self._admitted_until = limit

    def _append(self, samples: np.ndarray) -> None:
        chunk = samples.astype(np.float32, copy=False)
        self._total += chunk.size
        if self._audio.size:
            chunk = np.concatenate([self._audio, chunk])
        self._audio = chunk

    def _slice(self, start: int, end: int) -> np.ndarray:
        return self._audio[start - self._audio_start : end - self._audio_start]

    def _trim(self) -> None:
        if self._open_start is not None:
            keep_from = self._admitted_until
        else:
            anchor = self._run_start if self._run_start is not None else self._pos
            keep_from = max(self._closed_until, anchor - self.policy.pre_pad_samples)
        keep_from = min(keep_from, self._pos)
        drop = keep_from - self._audio_start
        if drop > 0:
            self._audio = self._audio[drop:]
            self._audio_start = keep_from


@dataclass(frozen=True)
class VadSettings:
    """Server-level VAD configuration shared by all sessions."""

    policy: VadPolicy = VadPolicy()
    energy_threshold: float = DEFAULT_VAD_ENERGY_THRESHOLD


def build_segmenter(
    enable_vad: bool,
    vad_model: str,
    window_samples: int,
    settings: Optional[VadSettings] = None,
) -> Segmenter:
    """Create the segmenter a session uses for its run options.

    Audio is released in ``window_samples`` blocks. With VAD only speech is
    released, and each utterance ends with whatever remains when it closes.
    """
    if not enable_vad:
        return IdentitySegmenter(window_samples)
    settings = settings or VadSettings()
    normalized = (vad_model or "silero").lower()
    classifier: FrameClassifier
    if normalized == "silero":
        try:
            classifier = SileroFrameClassifier()
        except RuntimeError as exc:
            raise STTError(ErrorCode.VAD_MODEL_UNKNOWN, str(exc)) from exc
    elif normalized == "energy":
        classifier = EnergyFrameClassifier(settings.energy_threshold)
    else:
        raise STTError(ErrorCode.VAD_MODEL_UNKNOWN, f"unknown VAD model '{vad_model}'")
    return VoiceActivitySegmenter(classifier, settings.policy, window_samples)


__all__ = [
    "AdmittedAudio",
    "EnergyFrameClassifier",
    "FrameClassifier",
    "IdentitySegmenter",
    "Segmenter",
    "SegmenterEvent",
    "SileroFrameClassifier",
    "SpanClosed",
    "VAD_MODELS",
    "VadPolicy",
    "VadSettings",
    "VoiceActivitySegmenter",
    "build_segmenter",
    "configure_vad_model_pool",
]
