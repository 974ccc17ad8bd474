"""Process-wide metrics for transcription sessions and HTTP requests."""

import bisect
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Dict


@dataclass(frozen=True)
class HistogramSnapshot:
    """Serializable histogram snapshot for metrics export."""

    bounds: tuple[float, ...]
    cumulative_counts: tuple[int, ...]
    count: int
    sum: float


class Histogram:
    """Fixed-bucket histogram; callers hold the owning lock."""

    def __init__(self, bounds: tuple[float, ...]):
        normalized = []
        for value in bounds:
            value = float(value)
            if value < 0:
                continue
            if normalized and value <= normalized[-1]:
                continue
            normalized.append(value)
        self._bounds = tuple(normalized)
        self._bucket_counts = [0] * (len(self._bounds) + 1)  # +Inf bucket
        self._count = 0
        self._sum = 0.0

    def observe(self, value: float) -> None:
        """Observe a non-negative sample."""
        if value < 0:
            return
        index = bisect.bisect_left(self._bounds, value)
        self._bucket_counts[index] += 1
        self._count += 1
        self._sum += value

    def snapshot(self) -> HistogramSnapshot:
        cumulative = []
        running = 0
        for count in self._bucket_counts:
            running += count
            cumulative.append(running)
        return HistogramSnapshot(
            bounds=self._bounds,
            cumulative_counts=tuple(cumulative),
            count=self._count,
            sum=self._sum,
        )


class Metrics:
    """Thread-safe counters shared by every session and request."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._active_sessions = 0
        self._sessions_total = 0
        self._session_outcomes: Dict[str, int] = defaultdict(int)
        self._http_requests: Dict[str, int] = defaultdict(int)
        self._http_in_flight = 0
        self._decode_count = 0
        self._decode_total = 0.0
        self._decode_max = 0.0
        self._decode_errors = 0
        self._decode_cancelled = 0
        self._queue_wait_total = 0.0
        self._queue_wait_max = 0.0
        self._rtf_count = 0
        self._rtf_total = 0.0
        self._rtf_max = 0.0
        self._audio_seconds_total = 0.0
        self._error_counts: Dict[str, int] = defaultdict(int)
        self._decode_latency_hist = Histogram(
            (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)
        )
        self._request_duration_hist = Histogram(
            (0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 120.0)
        )

    def increase_active_sessions(self) -> None:
        with self._lock:
            self._active_sessions += 1
            self._sessions_total += 1

    def decrease_active_sessions(self, outcome: str) -> None:
        with self._lock:
            if self._active_sessions > 0:
                self._active_sessions -= 1
            self._session_outcomes[outcome or "unknown"] += 1

    def record_audio_seconds(self, seconds: float) -> None:
        if seconds <= 0:
            return
        with self._lock:
            self._audio_seconds_total += seconds

    def record_decode(
        self,
        inference_sec: float,
        real_time_factor: float,
        queue_wait_sec: float | None = None,
    ) -> None:
        """Record timing for one decoded window."""
        with self._lock:
            self._decode_count += 1
            self._decode_total += inference_sec
            self._decode_max = max(self._decode_max, inference_sec)
            self._decode_latency_hist.observe(inference_sec)
            if queue_wait_sec is not None and queue_wait_sec >= 0:
                self._queue_wait_total += queue_wait_sec
                self._queue_wait_max = max(self._queue_wait_max, queue_wait_sec)
            if real_time_factor >= 0:
                self._rtf_count += 1
                self._rtf_total += real_time_factor
                self._rtf_max = max(self._rtf_max, real_time_factor)

    def record_decode_error(self) -> None:
        with self._lock:
            self._decode_errors += 1

    def record_decode_cancelled(self, count: int) -> None:
        with self._lock:
            self._decode_cancelled += max(count, 0)

    def record_error(self, code: str) -> None:
        """Record an application error code occurrence."""
        with self._lock:
            self._error_counts[code] += 1

    def http_request_started(self) -> None:
        with self._lock:
            self._http_in_flight += 1

    def http_request_finished(self, status_code: int, duration_sec: float) -> None:
        with self._lock:
            if self._http_in_flight > 0:
                self._http_in_flight -= 1
            self._http_requests[str(status_code)] += 1
            self._request_duration_hist.observe(max(0.0, duration_sec))

    def render(self) -> Dict[str, Any]:
        """Render metrics as a serializable payload."""
        with self._lock:
            return {
                "active_sessions": self._active_sessions,
                "sessions_total": self._sessions_total,
                "session_outcomes": dict(self._session_outcomes),
                "http_requests": dict(self._http_requests),
                "http_in_flight": self._http_in_flight,
                "decode_latency_total": self._decode_total,
                "decode_latency_count": self._decode_count,
                "decode_latency_max": self._decode_max,
                "decode_queue_wait_total": self._queue_wait_total,
                "decode_queue_wait_max": self._queue_wait_max,
                "decode_errors": self._decode_errors,
                "decode_cancelled": self._decode_cancelled,
                "rtf_total": self._rtf_total,
                "rtf_count": self._rtf_count,
                "rtf_max": self._rtf_max,
                "audio_seconds_total": self._audio_seconds_total,
                "error_counts": dict(self._error_counts),
                "histograms": {
                    "decode_latency_sec": self._histogram_payload(
                        self._decode_latency_hist
                    ),
                    "http_request_duration_sec": self._histogram_payload(
                        self._request_duration_hist
                    ),
                },
            }

    @staticmethod
    def _histogram_payload(histogram: Histogram) -> Dict[str, Any]:
        snap = histogram.snapshot()
        buckets: Dict[str, int] = {}
        for idx, bound in enumerate(snap.bounds):
            buckets[str(bound)] = snap.cumulative_counts[idx]
        buckets["+Inf"] = snap.cumulative_counts[-1]
        return {"buckets": buckets, "count": snap.count, "sum": snap.sum}

    def snapshot(self) -> Dict[str, float]:
        """Return averages and maxima for key metrics."""
        with self._lock:
            decode_avg = (
                (self._decode_total / self._decode_count) if self._decode_count else 0.0
            )
            rtf_avg = (self._rtf_total / self._rtf_count) if self._rtf_count else 0.0
            queue_wait_avg = (
                (self._queue_wait_total / self._decode_count)
                if self._decode_count
                else 0.0
            )
            return {
                "active_sessions": float(self._active_sessions),
                "decode_latency_avg": decode_avg,
                "decode_latency_max": self._decode_max,
                "decode_queue_wait_avg": queue_wait_avg,
                "rtf_avg": rtf_avg,
                "rtf_max": self._rtf_max,
                "audio_seconds_total": self._audio_seconds_total,
            }
