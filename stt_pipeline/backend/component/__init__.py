"""Pipeline stages for the transcription backend."""

from .assembler import TranscriptAssembler
from .decode_scheduler import DecodeScheduler, DecodeStream
from .normalizer import SampleNormalizer
from .window_manager import WindowManager, WindowState

__all__ = [
    "DecodeScheduler",
    "DecodeStream",
    "SampleNormalizer",
    "TranscriptAssembler",
    "WindowManager",
    "WindowState",
]
