import numpy as np

CANONICAL_SAMPLE_RATE = 16000


def pcm16_to_float32(pcm_bytes):
    """PCM16 bytes → float32 numpy array"""
    return np.frombuffer(pcm_bytes, dtype="<i2").astype(np.float32) / 32768.0


def float32_to_pcm16(samples: np.ndarray) -> bytes:
    """Float samples in [-1, 1] → little-endian PCM16 bytes."""
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def samples_to_seconds(num_samples: int, sample_rate: int = CANONICAL_SAMPLE_RATE) -> float:
    if sample_rate <= 0:
        return 0.0
    return num_samples / float(sample_rate)


def seconds_to_samples(seconds: float, sample_rate: int = CANONICAL_SAMPLE_RATE) -> int:
    return int(round(seconds * sample_rate))


def samples_rms(samples: np.ndarray) -> float:
    """Compute RMS of float samples."""
    if samples.size == 0:
        return 0.0
    values = samples.astype(np.float64, copy=False)
    return float(np.sqrt(np.mean(np.square(values))))
