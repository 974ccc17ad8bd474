"""Per-stream transcription session: bytes in, transcript segments out."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Union

import numpy as np

from stt_pipeline.backend.application.types import (
    RunOptions,
    SpeechSpan,
    Transcript,
    TranscriptSegment,
    Window,
)
from stt_pipeline.backend.component.assembler import TranscriptAssembler
from stt_pipeline.backend.component.decode_scheduler import DecodeScheduler
from stt_pipeline.backend.component.decoder import MediaDecoder, ProbingDecoder
from stt_pipeline.backend.component.encoders import encode_transcript
from stt_pipeline.backend.component.normalizer import SampleNormalizer
from stt_pipeline.backend.component.vad_segmenter import (
    AdmittedAudio,
    SegmenterEvent,
    SpanClosed,
    VadSettings,
    build_segmenter,
)
from stt_pipeline.backend.component.window_manager import WindowManager
from stt_pipeline.config.default import (
    DEFAULT_DECODE_TIMEOUT_SEC,
    DEFAULT_MAX_WINDOW_SEC,
)
from stt_pipeline.errors import ErrorCode, STTError
from stt_pipeline.model.worker import DecodeResult, ModelWorker
from stt_pipeline.utils.audio import samples_to_seconds, seconds_to_samples
from stt_pipeline.utils.logger import (
    LOGGER,
    TRANSCRIPT_LOGGER,
    clear_session_id,
    set_session_id,
)


class _EndOfStream:
    _instance: Optional["_EndOfStream"] = None

    def __new__(cls) -> "_EndOfStream":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EOF"


EOF = _EndOfStream()
FeedInput = Union[bytes, bytearray, memoryview, _EndOfStream]


class SessionPhase(Enum):
    OPEN = "open"
    DRAINING = "draining"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_PHASES = (SessionPhase.COMPLETED, SessionPhase.FAILED, SessionPhase.CANCELLED)


@dataclass(frozen=True)
class SessionLimits:
    max_window_seconds: float = DEFAULT_MAX_WINDOW_SEC
    decode_timeout_sec: float = DEFAULT_DECODE_TIMEOUT_SEC


class TranscriptionSession:
    """One input stream through decode, normalize, segment, window and assemble.

    ``feed`` runs the front half of the pipeline on the caller's thread; window
    decoding happens on the shared scheduler pool, one window at a time for
    this session. The first error is terminal: it is raised from the call that
    observes it and from every later call, and no transcript is produced.
    """

    def __init__(
        self,
        session_id: str,
        options: RunOptions,
        worker: ModelWorker,
        scheduler: DecodeScheduler,
        decoder: Optional[MediaDecoder] = None,
        limits: Optional[SessionLimits] = None,
        vad_settings: Optional[VadSettings] = None,
        on_close: Optional[Callable[["TranscriptionSession"], None]] = None,
    ) -> None:
        self.session_id = session_id
        self.options = options
        self.limits = limits or SessionLimits()
        self.created_at = time.monotonic()
        self._on_close = on_close
        self._lock = threading.Lock()
        self._feed_lock = threading.Lock()
        self._phase = SessionPhase.OPEN
        self._error: Optional[STTError] = None
        self._transcript: Optional[Transcript] = None
        self._new_segments: List[TranscriptSegment] = []
        self.speech_spans: List[SpeechSpan] = []

        max_window = seconds_to_samples(self.limits.max_window_seconds)
        min_window = min(seconds_to_samples(options.min_window_seconds), max_window)
        self._decoder = decoder or ProbingDecoder()
        self._normalizer = SampleNormalizer()
        self._segmenter = build_segmenter(
            options.enable_vad,
            options.vad_model,
            min_window,
            vad_settings,
        )
        self._windows = WindowManager(min_window, max_window)
        self._assembler = TranscriptAssembler(language=options.language)
        self._worker = worker
        self._stream = scheduler.new_stream(
            worker,
            worker.decode_options(options),
            on_result=self._on_window_result,
            on_error=self._on_stream_error,
            session_id=session_id,
        )
        LOGGER.info(
            "Session created session_id=%s model_key=%s vad=%s task=%s language=%s "
            "min_window=%.2fs output=%s",
            session_id,
            worker.model_key,
            options.vad_model if options.enable_vad else "off",
            options.task,
            options.language or "auto",
            options.min_window_seconds,
            options.output_format.value,
        )

    @property
    def phase(self) -> SessionPhase:
        with self._lock:
            return self._phase

    @property
    def error(self) -> Optional[STTError]:
        with self._lock:
            return self._error

    @property
    def audio_seconds(self) -> float:
        return samples_to_seconds(self._normalizer.samples_out)

    @property
    def windows_decoded(self) -> int:
        return self._stream.windows_decoded

    def feed(self, data: FeedInput) -> None:
        """Push the next chunk of the byte stream, or ``EOF`` to end it."""
        with self._feed_lock:
            self._raise_if_stopped(data)
            if isinstance(data, _EndOfStream):
                if self.phase is SessionPhase.DRAINING:
                    return
                self._run(self._end_of_stream)
                with self._lock:
                    if self._phase is SessionPhase.OPEN:
                        self._phase = SessionPhase.DRAINING
                LOGGER.debug(
                    "End of stream audio=%.2fs windows=%d",
                    self.audio_seconds,
                    self._windows.windows_cut,
                )
            else:
                chunk = bytes(data)
                if chunk:
                    self._run(lambda: self._ingest(chunk))
            self._raise_if_failed()

    def drain(self) -> List[TranscriptSegment]:
        """Return the segments assembled since the previous call."""
        self._raise_if_failed()
        with self._lock:
            segments = self._new_segments
            self._new_segments = []
        return segments

    def finish(self, timeout: Optional[float] = None) -> Transcript:
        """End the stream if needed, wait for outstanding windows, finalize."""
        with self._lock:
            if self._transcript is not None:
                return self._transcript
        if self.phase is SessionPhase.OPEN:
            self.feed(EOF)
        self._raise_if_failed()
        if self.phase is SessionPhase.CANCELLED:
            raise STTError(ErrorCode.SESSION_CANCELLED)
        wait_for = self.limits.decode_timeout_sec if timeout is None else timeout
        if not self._stream.wait_idle(wait_for if wait_for > 0 else None):
            self._stream.cancel()
            error = STTError(
                ErrorCode.SESSION_TIMEOUT,
                f"transcription did not finish within {wait_for:.1f}s",
            )
            self._fail(error)
            raise error
        self._raise_if_failed()
        transcript = self._assembler.finalize()
        with self._lock:
            if self._phase is not SessionPhase.DRAINING:
                if self._error is not None:
                    raise self._error
                raise STTError(ErrorCode.SESSION_CANCELLED)
            self._transcript = transcript
            self._phase = SessionPhase.COMPLETED
        self._log_transcript(transcript)
        LOGGER.info(
            "Session completed session_id=%s segments=%d windows=%d audio=%.2fs",
            self.session_id,
            len(transcript),
            self.windows_decoded,
            self.audio_seconds,
        )
        self._release()
        return transcript

    def encode(self, timeout: Optional[float] = None) -> bytes:
        return encode_transcript(self.finish(timeout), self.options.output_format)

    def cancel(self) -> None:
        """Stop the session without waiting for an in-flight decode."""
        with self._lock:
            if self._phase in TERMINAL_PHASES:
                return
            self._phase = SessionPhase.CANCELLED
        dropped = self._stream.cancel()
        LOGGER.info(
            "Session cancelled session_id=%s dropped_windows=%d",
            self.session_id,
            dropped,
        )
        self._release()

    def _ingest(self, chunk: bytes) -> None:
        for frames in self._decoder.feed(chunk):
            self._push(self._normalizer.process(frames))

    def _end_of_stream(self) -> None:
        for frames in self._decoder.finish():
            self._push(self._normalizer.process(frames))
        self._push(self._normalizer.flush())
        self._handle(self._segmenter.finish())

    def _push(self, samples: np.ndarray) -> None:
        if samples.size:
            self._handle(self._segmenter.process(samples))

    def _handle(self, events: List[SegmenterEvent]) -> None:
        for event in events:
            windows: List[Window] = []
            if isinstance(event, AdmittedAudio):
                windows = self._windows.append(event.start_sample, event.samples)
            elif isinstance(event, SpanClosed) and event.span.is_speech:
                self.speech_spans.append(event.span)
                windows = self._windows.close_span()
            for window in windows:
                self._stream.submit(window)

    def _run(self, step: Callable[[], None]) -> None:
        set_session_id(self.session_id)
        try:
            step()
        except STTError as exc:
            self._stream.cancel()
            self._fail(exc)
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected pipeline error session_id=%s", self.session_id)
            error = STTError(ErrorCode.PIPELINE_FAILED, f"{type(exc).__name__}: {exc}")
            self._stream.cancel()
            self._fail(error)
            raise error from exc
        finally:
            clear_session_id()

    def _on_window_result(self, window: Window, result: DecodeResult) -> None:
        set_session_id(self.session_id)
        try:
            accepted = self._assembler.add_window(
                window, result.segments, result.language_code or None
            )
            LOGGER.debug(
                "Window decoded index=%d segments=%d latency=%.2fs rtf=%.2f",
                window.index,
                len(accepted),
                result.latency_sec,
                result.rtf,
            )
            with self._lock:
                self._new_segments.extend(accepted)
        finally:
            clear_session_id()

    def _on_stream_error(self, error: STTError) -> None:
        self._fail(error)

    def _fail(self, error: STTError) -> None:
        with self._lock:
            if self._phase in TERMINAL_PHASES:
                return
            self._phase = SessionPhase.FAILED
            self._error = error
            self._new_segments = []
        LOGGER.error(
            "Session failed session_id=%s code=%s: %s",
            self.session_id,
            error.code.value,
            error.detail,
        )
        self._release()

    def _raise_if_stopped(self, data: FeedInput) -> None:
        self._raise_if_failed()
        phase = self.phase
        if phase is SessionPhase.CANCELLED:
            raise STTError(ErrorCode.SESSION_CANCELLED)
        if phase is SessionPhase.COMPLETED or (
            phase is SessionPhase.DRAINING and not isinstance(data, _EndOfStream)
        ):
            raise STTError(ErrorCode.SESSION_FINISHED)

    def _raise_if_failed(self) -> None:
        with self._lock:
            error = self._error
        if error is not None:
            raise error

    def _log_transcript(self, transcript: Transcript) -> None:
        for segment in transcript:
            TRANSCRIPT_LOGGER.info(
                "session_id=%s [%.2f, %.2f] lang=%s text=%s",
                self.session_id,
                segment.start_time,
                segment.end_time,
                segment.language or "auto",
                segment.text,
            )

    def _release(self) -> None:
        self._segmenter.close()
        if self._on_close is not None:
            callback, self._on_close = self._on_close, None
            callback(self)


__all__ = [
    "EOF",
    "SessionLimits",
    "SessionPhase",
    "TranscriptionSession",
]
