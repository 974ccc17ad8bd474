"""Shared decode pool and per-session, in-order window scheduling."""

from __future__ import annotations

import threading
import time
from collections import deque
from concurrent import futures
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional, Tuple

from stt_pipeline.backend.application.types import Window
from stt_pipeline.config.default import DEFAULT_DECODE_CONCURRENCY
from stt_pipeline.errors import InferenceError, STTError
from stt_pipeline.model.worker import DecodeResult, ModelWorker
from stt_pipeline.utils.logger import LOGGER


def _noop() -> None:
    return None


def _noop_decode(_: float, __: float, ___: float, ____: float) -> None:
    return None


def _noop_count(_: int) -> None:
    return None


@dataclass(frozen=True)
class DecodeSchedulerHooks:
    on_decode_result: Callable[[float, float, float, float], None] = _noop_decode
    on_decode_error: Callable[[], None] = _noop
    on_decode_cancelled: Callable[[int], None] = _noop_count


ResultCallback = Callable[[Window, DecodeResult], None]
ErrorCallback = Callable[[STTError], None]


class DecodeScheduler:
    """Bounded thread pool shared by every session.

    ``max_concurrency`` caps the number of backend calls in flight across the
    process. Each session gets a :class:`DecodeStream` that keeps at most one
    of its own windows in flight so results arrive in window order.
    """

    def __init__(
        self,
        max_concurrency: int = DEFAULT_DECODE_CONCURRENCY,
        hooks: DecodeSchedulerHooks | None = None,
    ) -> None:
        if max_concurrency <= 0:
            raise ValueError("max_concurrency must be >= 1")
        self.max_concurrency = int(max_concurrency)
        self._hooks = hooks or DecodeSchedulerHooks()
        self._executor = futures.ThreadPoolExecutor(
            max_workers=self.max_concurrency, thread_name_prefix="stt-decode"
        )
        self._pending_lock = threading.Lock()
        self._pending_tasks = 0
        self._closed = False

    def new_stream(
        self,
        worker: ModelWorker,
        decode_options: Dict[str, Any],
        on_result: ResultCallback,
        on_error: ErrorCallback,
        session_id: Optional[str] = None,
    ) -> "DecodeStream":
        return DecodeStream(
            self, worker, decode_options, on_result, on_error, session_id
        )

    def pending_decodes(self) -> int:
        with self._pending_lock:
            return self._pending_tasks

    def shutdown(self, wait: bool = True) -> None:
        if self._closed:
            return
        self._closed = True
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def _submit(
        self, fn: Callable[..., DecodeResult], *args: Any
    ) -> futures.Future:
        if self._closed:
            raise RuntimeError("decode scheduler is shut down")
        future = self._executor.submit(fn, *args)
        with self._pending_lock:
            self._pending_tasks += 1
        return future

    def _task_done(self) -> None:
        with self._pending_lock:
            if self._pending_tasks > 0:
                self._pending_tasks -= 1

    def _on_decode_result(self, result: DecodeResult) -> None:
        self._hooks.on_decode_result(
            result.latency_sec,
            result.rtf,
            result.queue_wait_sec,
            result.audio_duration,
        )

    def _on_decode_error(self) -> None:
        self._hooks.on_decode_error()

    def _on_decode_cancelled(self, count: int) -> None:
        if count > 0:
            self._hooks.on_decode_cancelled(count)


class DecodeStream:
    """Serializes one session's windows through the shared pool."""

    def __init__(
        self,
        scheduler: DecodeScheduler,
        worker: ModelWorker,
        decode_options: Dict[str, Any],
        on_result: ResultCallback,
        on_error: ErrorCallback,
        session_id: Optional[str] = None,
    ) -> None:
        self.scheduler = scheduler
        self.worker = worker
        self.decode_options = dict(decode_options)
        self.session_id = session_id
        self._on_result = on_result
        self._on_error = on_error
        self._cond = threading.Condition()
        self._queue: Deque[Tuple[Window, float]] = deque()
        self._in_flight: Optional[Tuple[Window, futures.Future]] = None
        self._cancelled = False
        self._failed = False
        self.windows_submitted = 0
        self.windows_decoded = 0

    @property
    def idle(self) -> bool:
        with self._cond:
            return self._in_flight is None and not self._queue

    def pending_count(self) -> int:
        with self._cond:
            return len(self._queue) + (1 if self._in_flight is not None else 0)

    def submit(self, window: Window) -> None:
        """Queue a window; it is decoded after every earlier window."""
        with self._cond:
            if self._cancelled or self._failed:
                LOGGER.debug(
                    "Dropping window index=%d for stopped stream", window.index
                )
                return
            self._queue.append((window, time.perf_counter()))
            self.windows_submitted += 1
            LOGGER.debug(
                "Queued window index=%d start=%.2fs duration=%.2fs pending=%d",
                window.index,
                window.start_sec,
                window.duration_sec,
                len(self._queue),
            )
        self._pump()

    def cancel(self) -> int:
        """Drop queued windows and discard the in-flight result."""
        with self._cond:
            if self._cancelled:
                return 0
            self._cancelled = True
            dropped = len(self._queue)
            self._queue.clear()
            in_flight = self._in_flight
            self._cond.notify_all()
        if in_flight is not None and in_flight[1].cancel():
            dropped += 1
        self.scheduler._on_decode_cancelled(dropped)
        if dropped:
            LOGGER.info("Cancelled %d pending decode(s)", dropped)
        return dropped

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """Block until nothing is queued or in flight; False on timeout."""
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while self._in_flight is not None or self._queue:
                if self._cancelled:
                    return True
                remaining = None if deadline is None else deadline - time.monotonic()
                if remaining is not None and remaining <= 0:
                    return False
                self._cond.wait(remaining)
            return True

    def _pump(self) -> None:
        with self._cond:
            if self._in_flight is not None or not self._queue:
                return
            if self._cancelled or self._failed:
                return
            window, queued_at = self._queue.popleft()
            try:
                future = self.scheduler._submit(
                    self.worker.decode_sync,
                    window.samples,
                    self.decode_options,
                    queued_at,
                )
            except RuntimeError as exc:
                self._failed = True
                self._queue.clear()
                error: Optional[STTError] = InferenceError(cause=exc)
            else:
                self._in_flight = (window, future)
                error = None
        if error is not None:
            self._on_error(error)
            self._clear_in_flight()
            return
        future.add_done_callback(lambda fut, w=window: self._on_done(w, fut))

    def _on_done(self, window: Window, future: futures.Future) -> None:
        self.scheduler._task_done()
        if future.cancelled():
            self._clear_in_flight()
            return
        error: Optional[STTError] = None
        try:
            result = future.result()
        except STTError as exc:
            error = exc
        except Exception as exc:
            error = InferenceError(cause=exc)
        with self._cond:
            discard = self._cancelled
        if error is None and not discard:
            self.scheduler._on_decode_result(result)
            try:
                self._on_result(window, result)
            except STTError as exc:
                error = exc
            else:
                self.windows_decoded += 1
        if error is not None and not discard:
            self.scheduler._on_decode_error()
            LOGGER.error(
                "Decode failed window=%d session_id=%s: %s",
                window.index,
                self.session_id or "unknown",
                error,
            )
            with self._cond:
                self._failed = True
                self._queue.clear()
            # Error must be recorded before waiters observe the idle stream.
            self._on_error(error)
            self._clear_in_flight()
            return
        self._clear_in_flight()
        self._pump()

    def _clear_in_flight(self) -> None:
        with self._cond:
            self._in_flight = None
            self._cond.notify_all()


__all__ = ["DecodeScheduler", "DecodeSchedulerHooks", "DecodeStream"]
