"""Session registry and Run Options construction from request input."""

from __future__ import annotations

import math
import threading
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Union

from stt_pipeline.backend.application.model_registry import ModelRegistry
from stt_pipeline.backend.application.session import (
    SessionLimits,
    TranscriptionSession,
)
from stt_pipeline.backend.application.types import OutputFormat, RunOptions
from stt_pipeline.backend.component.decode_scheduler import DecodeScheduler
from stt_pipeline.backend.component.decoder import MediaDecoder
from stt_pipeline.backend.component.encoders import parse_output_format
from stt_pipeline.backend.component.vad_segmenter import VAD_MODELS, VadSettings
from stt_pipeline.config.default import DEFAULT_MIN_WINDOW_SEC, DEFAULT_VAD_MODEL
from stt_pipeline.config.languages import SupportedLanguages
from stt_pipeline.errors import ErrorCode, STTError
from stt_pipeline.utils.logger import LOGGER

_TRUE_VALUES = {"1", "true", "yes", "on", "y"}
_FALSE_VALUES = {"0", "false", "no", "off", "n", ""}


def _noop_session_hook(_: TranscriptionSession) -> None:
    return None


@dataclass(frozen=True)
class SessionManagerHooks:
    """Callbacks invoked on session create/remove."""

    on_create: Callable[[TranscriptionSession], None] = _noop_session_hook
    on_remove: Callable[[TranscriptionSession], None] = _noop_session_hook


def parse_flag(value: Union[str, bool, int, None], name: str = "flag") -> bool:
    """Interpret a query-string style boolean."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    normalized = str(value).strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"invalid boolean for {name}: {value!r}")


class SessionManager:
    """Creates sessions bound to the shared registry and decode pool."""

    def __init__(
        self,
        model_registry: ModelRegistry,
        scheduler: DecodeScheduler,
        language_lookup: Optional[SupportedLanguages] = None,
        limits: Optional[SessionLimits] = None,
        vad_settings: Optional[VadSettings] = None,
        default_min_window_seconds: float = DEFAULT_MIN_WINDOW_SEC,
        default_vad_model: str = DEFAULT_VAD_MODEL,
        hooks: SessionManagerHooks | None = None,
    ) -> None:
        self.model_registry = model_registry
        self.scheduler = scheduler
        self.language_lookup = language_lookup or SupportedLanguages()
        self.limits = limits or SessionLimits()
        self.vad_settings = vad_settings or VadSettings()
        self.default_min_window_seconds = default_min_window_seconds
        self.default_vad_model = default_vad_model
        self._hooks = hooks or SessionManagerHooks()
        self._lock = threading.Lock()
        self._sessions: Dict[str, TranscriptionSession] = {}

    def build_run_options(
        self,
        model_key: Optional[str] = None,
        output: Union[str, OutputFormat, None] = None,
        enable_vad: Any = False,
        translate_to_english: Any = False,
        language: Optional[str] = None,
        min_window_seconds: Any = None,
        vad_model: Optional[str] = None,
    ) -> RunOptions:
        """Validate untrusted request options; raises STTError on bad input."""
        resolved_key = self.model_registry.resolve_key(model_key or None)
        output_format = parse_output_format(output)

        language_code: Optional[str] = None
        if language is not None and str(language).strip():
            language_code = str(language).strip().lower()
            if language_code == "auto":
                language_code = None
            elif not self.language_lookup.is_supported(language_code):
                raise STTError(
                    ErrorCode.LANGUAGE_UNSUPPORTED,
                    f"unsupported language code '{language}'",
                )

        if min_window_seconds is None or str(min_window_seconds).strip() == "":
            window = float(self.default_min_window_seconds)
        else:
            try:
                window = float(min_window_seconds)
            except (TypeError, ValueError) as exc:
                raise STTError(
                    ErrorCode.WINDOW_DURATION_INVALID,
                    f"invalid min_window_seconds '{min_window_seconds}'",
                ) from exc
        if not math.isfinite(window) or window <= 0:
            raise STTError(ErrorCode.WINDOW_DURATION_INVALID)
        if window > self.limits.max_window_seconds:
            raise STTError(
                ErrorCode.WINDOW_DURATION_INVALID,
                f"min_window_seconds must not exceed "
                f"{self.limits.max_window_seconds:g}",
            )

        vad_name = (vad_model or self.default_vad_model).strip().lower()
        if vad_name not in VAD_MODELS:
            raise STTError(
                ErrorCode.VAD_MODEL_UNKNOWN, f"unknown VAD model '{vad_model}'"
            )

        try:
            vad_enabled = parse_flag(enable_vad, "enable_vad")
            translate = parse_flag(translate_to_english, "translate_to_english")
        except ValueError as exc:
            raise STTError(ErrorCode.OPTION_INVALID, str(exc)) from exc

        return RunOptions(
            model_key=resolved_key,
            translate_to_english=translate,
            enable_vad=vad_enabled,
            vad_model=vad_name,
            language=language_code,
            min_window_seconds=window,
            output_format=output_format,
        )

    def create(
        self,
        options: RunOptions,
        decoder: Optional[MediaDecoder] = None,
        session_id: Optional[str] = None,
    ) -> TranscriptionSession:
        worker = self.model_registry.get_worker(options.model_key)
        session_id = session_id or uuid.uuid4().hex
        with self._lock:
            if session_id in self._sessions:
                raise ValueError("session already exists")
            session = TranscriptionSession(
                session_id,
                options,
                worker,
                self.scheduler,
                decoder=decoder,
                limits=self.limits,
                vad_settings=self.vad_settings,
                on_close=self._on_session_closed,
            )
            self._sessions[session_id] = session
        self._hooks.on_create(session)
        return session

    def get(self, session_id: str) -> TranscriptionSession:
        with self._lock:
            session = self._sessions.get(session_id)
        if session is None:
            raise STTError(ErrorCode.SESSION_NOT_FOUND, f"unknown session '{session_id}'")
        return session

    def remove(self, session_id: str) -> Optional[TranscriptionSession]:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            self._hooks.on_remove(session)
            LOGGER.debug(
                "Session removed session_id=%s phase=%s",
                session_id,
                session.phase.value,
            )
        return session

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def active_sessions(self) -> List[TranscriptionSession]:
        with self._lock:
            return list(self._sessions.values())

    def cancel_all(self) -> int:
        sessions = self.active_sessions()
        for session in sessions:
            session.cancel()
        return len(sessions)

    def _on_session_closed(self, session: TranscriptionSession) -> None:
        self.remove(session.session_id)


__all__ = [
    "SessionManager",
    "SessionManagerHooks",
    "parse_flag",
]
