"""Media decoding front-end: raw bytes to PCM frames tagged with rate/channels."""

from __future__ import annotations

import io
import shutil
import struct
import tempfile
from dataclasses import dataclass
from typing import List, Optional, Protocol

import ffmpeg
import numpy as np
import soundfile as sf

from stt_pipeline.errors import UnsupportedFormat
from stt_pipeline.utils.audio import CANONICAL_SAMPLE_RATE, pcm16_to_float32
from stt_pipeline.utils.logger import LOGGER

_WAVE_FORMAT_PCM = 0x0001
_WAVE_FORMAT_IEEE_FLOAT = 0x0003
_WAVE_FORMAT_EXTENSIBLE = 0xFFFE
_UNKNOWN_DATA_SIZES = (0, 0xFFFFFFFF)
_EBML_MAGIC = b"\x1a\x45\xdf\xa3"
PROBE_BYTES = 12
_FFMPEG_CONTAINERS = ("mp4", "matroska")


@dataclass(frozen=True)
class DecodedFrames:
    """Interleaved PCM frames as float32 with shape ``(frames, channels)``."""

    samples: np.ndarray
    sample_rate: int
    channels: int

    @property
    def num_frames(self) -> int:
        return int(self.samples.shape[0]) if self.samples.ndim else 0


class MediaDecoder(Protocol):
    def feed(self, data: bytes) -> List[DecodedFrames]: ...

    def finish(self) -> List[DecodedFrames]: ...


def sniff_container(prefix: bytes) -> Optional[str]:
    """Identify a container from its leading bytes, or None when unknown."""
    if len(prefix) >= 12 and prefix[:4] == b"RIFF" and prefix[8:12] == b"WAVE":
        return "wav"
    if prefix[:4] == b"fLaC":
        return "flac"
    if prefix[:4] == b"OggS":
        return "ogg"
    if len(prefix) >= 12 and prefix[:4] == b"FORM" and prefix[8:12] in (b"AIFF", b"AIFC"):
        return "aiff"
    if prefix[:3] == b"ID3":
        return "mp3"
    if len(prefix) >= 8 and prefix[4:8] == b"ftyp":
        return "mp4"
    if prefix[:4] == _EBML_MAGIC:
        return "matroska"
    if len(prefix) >= 2 and prefix[0] == 0xFF and (prefix[1] & 0xE0) == 0xE0:
        return "mp3"
    return None


class RawPcmDecoder:
    """Little-endian PCM16 byte stream with caller-supplied format."""

    def __init__(self, sample_rate: int, channels: int = 1) -> None:
        if channels <= 0 or sample_rate <= 0:
            raise UnsupportedFormat(
                f"invalid PCM format sample_rate={sample_rate} channels={channels}"
            )
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self._frame_bytes = 2 * self.channels
        self._pending = bytearray()

    def feed(self, data: bytes) -> List[DecodedFrames]:
        if not data:
            return []
        self._pending.extend(data)
        usable = len(self._pending) - (len(self._pending) % self._frame_bytes)
        if usable == 0:
            return []
        chunk = bytes(self._pending[:usable])
        del self._pending[:usable]
        pcm = pcm16_to_float32(chunk)
        return [
            DecodedFrames(
                pcm.reshape(-1, self.channels), self.sample_rate, self.channels
            )
        ]

    def finish(self) -> List[DecodedFrames]:
        if self._pending:
            LOGGER.debug("Dropping %d trailing PCM bytes", len(self._pending))
            self._pending.clear()
        return []


@dataclass(frozen=True)
class _WavFormat:
    audio_format: int
    channels: int
    sample_rate: int
    block_align: int
    bits_per_sample: int


class WavStreamDecoder:
    """Incremental RIFF/WAVE parser that decodes frames as bytes arrive."""

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._header_checked = False
        self._format: Optional[_WavFormat] = None
        self._in_data = False
        self._data_remaining: Optional[int] = None
        self._skip_remaining = 0
        self._done = False
        self._seen_bytes = 0

    @property
    def format(self) -> Optional[_WavFormat]:
        return self._format

    def feed(self, data: bytes) -> List[DecodedFrames]:
        if not data or self._done:
            return []
        self._seen_bytes += len(data)
        self._buffer.extend(data)
        return self._drain()

    def finish(self) -> List[DecodedFrames]:
        frames = self._drain()
        if self._seen_bytes == 0:
            return frames
        if not self._in_data and not self._done:
            raise UnsupportedFormat("truncated WAV header: no data chunk")
        if self._buffer:
            LOGGER.debug("Dropping %d trailing WAV bytes", len(self._buffer))
            self._buffer.clear()
        self._done = True
        return frames

    def _drain(self) -> List[DecodedFrames]:
        out: List[DecodedFrames] = []
        while not self._done:
            if not self._header_checked:
                if len(self._buffer) < 12:
                    break
                if self._buffer[:4] != b"RIFF" or self._buffer[8:12] != b"WAVE":
                    raise UnsupportedFormat("not a RIFF/WAVE stream")
                del self._buffer[:12]
                self._header_checked = True
                continue
            if self._skip_remaining:
                take = min(self._skip_remaining, len(self._buffer))
                del self._buffer[:take]
                self._skip_remaining -= take
                if self._skip_remaining:
                    break
                continue
            if self._in_data:
                frames = self._decode_available()
                if frames is not None:
                    out.append(frames)
                break
            if len(self._buffer) < 8:
                break
            chunk_id = bytes(self._buffer[:4])
            (chunk_size,) = struct.unpack("<I", self._buffer[4:8])
            if chunk_id == b"fmt ":
                if len(self._buffer) < 8 + chunk_size:
                    break
                self._format = self._parse_fmt(bytes(self._buffer[8 : 8 + chunk_size]))
                del self._buffer[: 8 + chunk_size]
                self._skip_remaining = chunk_size & 1
                continue
            if chunk_id == b"data":
                if self._format is None:
                    raise UnsupportedFormat("WAV data chunk before fmt chunk")
                del self._buffer[:8]
                self._in_data = True
                self._data_remaining = (
                    None if chunk_size in _UNKNOWN_DATA_SIZES else chunk_size
                )
                continue
            del self._buffer[:8]
            self._skip_remaining = chunk_size + (chunk_size & 1)
        return out

    @staticmethod
    def _parse_fmt(payload: bytes) -> _WavFormat:
        if len(payload) < 16:
            raise UnsupportedFormat("WAV fmt chunk too short")
        audio_format, channels, sample_rate, _byte_rate, block_align, bits = (
            struct.unpack("<HHIIHH", payload[:16])
        )
        if audio_format == _WAVE_FORMAT_EXTENSIBLE and len(payload) >= 26:
            (audio_format,) = struct.unpack("<H", payload[24:26])
        if channels == 0 or sample_rate == 0:
            raise UnsupportedFormat(
                f"WAV reports channels={channels} sample_rate={sample_rate}"
            )
        supported = (audio_format == _WAVE_FORMAT_PCM and bits in (8, 16, 24, 32)) or (
            audio_format == _WAVE_FORMAT_IEEE_FLOAT and bits in (32, 64)
        )
        if not supported:
            raise UnsupportedFormat(
                f"unsupported WAV encoding format={audio_format} bits={bits}"
            )
        if block_align != channels * (bits // 8):
            block_align = channels * (bits // 8)
        return _WavFormat(audio_format, channels, sample_rate, block_align, bits)

    def _decode_available(self) -> Optional[DecodedFrames]:
        fmt = self._format
        assert fmt is not None
        available = len(self._buffer)
        if self._data_remaining is not None:
            available = min(available, self._data_remaining)
        usable = available - (available % fmt.block_align)
        if usable <= 0:
            if self._data_remaining == 0:
                self._done = True
            return None
        raw = bytes(self._buffer[:usable])
        del self._buffer[:usable]
        if self._data_remaining is not None:
            self._data_remaining -= usable
            if self._data_remaining < fmt.block_align:
                self._done = True
        samples = _pcm_to_float32(raw, fmt)
        return DecodedFrames(
            samples.reshape(-1, fmt.channels), fmt.sample_rate, fmt.channels
        )


def _pcm_to_float32(raw: bytes, fmt: _WavFormat) -> np.ndarray:
    if fmt.audio_format == _WAVE_FORMAT_IEEE_FLOAT:
        dtype = "<f4" if fmt.bits_per_sample == 32 else "<f8"
        return np.frombuffer(raw, dtype=dtype).astype(np.float32)
    bits = fmt.bits_per_sample
    if bits == 8:
        return (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    if bits == 16:
        return pcm16_to_float32(raw)
    if bits == 24:
        triplets = np.frombuffer(raw, dtype=np.uint8).reshape(-1, 3).astype(np.int32)
        values = triplets[:, 0] | (triplets[:, 1] << 8) | (triplets[:, 2] << 16)
        values = np.where(values & 0x800000, values - 0x1000000, values)
        return values.astype(np.float32) / 8388608.0
    return (np.frombuffer(raw, dtype="<i4").astype(np.float64) / 2147483648.0).astype(
        np.float32
    )


class SoundFileDecoder:
    """Containers handled by libsndfile; decoded once the stream ends."""

    def __init__(self, container: Optional[str] = None) -> None:
        self.container = container
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[DecodedFrames]:
        if data:
            self._buffer.extend(data)
        return []

    def finish(self) -> List[DecodedFrames]:
        if not self._buffer:
            return []
        payload = bytes(self._buffer)
        self._buffer.clear()
        try:
            samples, sample_rate = sf.read(
                io.BytesIO(payload), dtype="float32", always_2d=True
            )
        except (RuntimeError, TypeError, ValueError) as exc:
            raise UnsupportedFormat(
                f"failed to decode {self.container or 'media'} stream: {exc}"
            ) from exc
        channels = int(samples.shape[1]) if samples.ndim == 2 else 1
        return [DecodedFrames(samples, int(sample_rate), channels)]


def check_ffmpeg_available() -> bool:
    return shutil.which("ffmpeg") is not None


class FFmpegDecoder:
    """Audio/video containers demuxed by FFmpeg; decoded once the stream ends.

    The first audio stream is decoded, downmixed and resampled to
    ``target_rate`` in one FFmpeg pass. Video and subtitle
    streams are ignored. The payload is spooled to a temporary file because
    MP4 files may keep their index after the media data.
    """

    def __init__(
        self, container: Optional[str] = None, target_rate: int = CANONICAL_SAMPLE_RATE
    ) -> None:
        self.container = container
        self.target_rate = int(target_rate)
        self._buffer = bytearray()

    def feed(self, data: bytes) -> List[DecodedFrames]:
        if data:
            self._buffer.extend(data)
        return []

    def finish(self) -> List[DecodedFrames]:
        if not self._buffer:
            return []
        payload = bytes(self._buffer)
        self._buffer.clear()
        name = self.container or "media"
        if not check_ffmpeg_available():
            raise UnsupportedFormat(f"decoding {name} input requires ffmpeg on PATH")
        with tempfile.NamedTemporaryFile(suffix=f".{name}") as handle:
            handle.write(payload)
            handle.flush()
            stream = (
                ffmpeg.input(handle.name)
                .audio.filter("aresample", self.target_rate)
                .output(
                    "pipe:",
                    format="f32le",
                    acodec="pcm_f32le",
                    ac=1,
                    ar=self.target_rate,
                )
            )
            try:
                out, _ = stream.run(capture_stdout=True, capture_stderr=True, quiet=True)
            except ffmpeg.Error as exc:
                stderr = exc.stderr.decode("utf-8", "replace") if exc.stderr else ""
                reason = stderr.strip().splitlines()[-1] if stderr.strip() else str(exc)
                raise UnsupportedFormat(
                    f"no decodable audio stream in {name} input: {reason}"
                ) from exc
        samples = np.frombuffer(out, dtype="<f4").astype(np.float32)
        LOGGER.debug(
            "FFmpeg decoded %s input: %d bytes -> %d samples",
            name,
            len(payload),
            samples.size,
        )
        if samples.size == 0:
            return []
        return [DecodedFrames(samples.reshape(-1, 1), self.target_rate, 1)]


class ProbingDecoder:
    """Buffers a short prefix, sniffs the container, then delegates."""

    def __init__(self) -> None:
        self._prefix = bytearray()
        self._delegate: Optional[MediaDecoder] = None

    @property
    def container(self) -> Optional[str]:
        if isinstance(self._delegate, WavStreamDecoder):
            return "wav"
        if isinstance(self._delegate, (SoundFileDecoder, FFmpegDecoder)):
            return self._delegate.container
        return None

    def feed(self, data: bytes) -> List[DecodedFrames]:
        if self._delegate is not None:
            return self._delegate.feed(data)
        self._prefix.extend(data)
        if len(self._prefix) < PROBE_BYTES:
            return []
        return self._select_and_replay()

    def finish(self) -> List[DecodedFrames]:
        frames: List[DecodedFrames] = []
        if self._delegate is None:
            if not self._prefix:
                return []
            frames = self._select_and_replay()
        assert self._delegate is not None
        return frames + self._delegate.finish()

    def _select_and_replay(self) -> List[DecodedFrames]:
        prefix = bytes(self._prefix)
        self._prefix.clear()
        self._delegate = decoder_for_prefix(prefix)
        return self._delegate.feed(prefix)


def decoder_for_prefix(prefix: bytes) -> MediaDecoder:
    """Pick a decoder for a stream starting with ``prefix``."""
    container = sniff_container(prefix)
    if container is None:
        raise UnsupportedFormat("unsupported or unrecognized media container")
    LOGGER.debug("Detected %s container", container)
    if container == "wav":
        return WavStreamDecoder()
    if container in _FFMPEG_CONTAINERS:
        return FFmpegDecoder(container)
    return SoundFileDecoder(container)


__all__ = [
    "DecodedFrames",
    "FFmpegDecoder",
    "MediaDecoder",
    "ProbingDecoder",
    "RawPcmDecoder",
    "SoundFileDecoder",
    "WavStreamDecoder",
    "check_ffmpeg_available",
    "decoder_for_prefix",
    "sniff_container",
]
