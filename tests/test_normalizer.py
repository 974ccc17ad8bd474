import numpy as np
import pytest

from stt_pipeline.backend.component.decoder import DecodedFrames
from stt_pipeline.backend.component.normalizer import SampleNormalizer, downmix
from stt_pipeline.errors import ErrorCode, STTError, UnsupportedFormat
from stt_pipeline.utils.audio import samples_rms


def _frames(samples, rate, channels=1):
    samples = np.asarray(samples, dtype=np.float32)
    return DecodedFrames(samples.reshape(-1, channels), rate, channels)


def _run(normalizer, pieces):
    out = [normalizer.process(piece) for piece in pieces]
    out.append(normalizer.flush())
    return np.concatenate(out)


def _sine(freq, rate, seconds=1.0, amplitude=1.0):
    t = np.arange(int(rate * seconds)) / rate
    return (amplitude * np.sin(2 * np.pi * freq * t)).astype(np.float32)


def test_downmix_averages_channels_uniformly():
    stereo = np.array([[1.0, 0.0], [0.5, -0.5], [0.2, 0.4]], dtype=np.float32)
    mono = downmix(stereo, 2)
    assert mono.dtype == np.float32
    assert mono.tolist() == pytest.approx([0.5, 0.0, 0.3])


def test_canonical_rate_passes_through_unchanged():
    normalizer = SampleNormalizer()
    samples = np.linspace(-1.0, 1.0, 1600, dtype=np.float32)
    out = _run(normalizer, [_frames(samples, 16000)])
    np.testing.assert_array_equal(out, samples)
    assert normalizer.samples_out == 1600


@pytest.mark.parametrize("source_rate", [8000, 22050, 44100, 48000])
def test_output_length_matches_duration(source_rate):
    normalizer = SampleNormalizer()
    samples = np.random.default_rng(0).uniform(-0.5, 0.5, source_rate * 2)
    out = _run(normalizer, [_frames(samples, source_rate)])
    assert out.dtype == np.float32
    assert abs(out.size - 32000) <= 2
    assert normalizer.samples_out == out.size


@pytest.mark.parametrize("chunk", [7, 441, 4096])
def test_chunking_does_not_change_output(chunk):
    rng = np.random.default_rng(1)
    samples = rng.uniform(-0.8, 0.8, 44100).astype(np.float32)
    whole = _run(SampleNormalizer(), [_frames(samples, 44100)])
    pieces = [
        _frames(samples[i : i + chunk], 44100) for i in range(0, samples.size, chunk)
    ]
    split = _run(SampleNormalizer(), pieces)
    assert split.size == whole.size
    np.testing.assert_allclose(split, whole, atol=1e-5)


@pytest.mark.parametrize("source_rate,freq", [(48000, 15000.0), (44100, 12000.0)])
def test_content_above_target_nyquist_is_filtered(source_rate, freq):
    out = _run(SampleNormalizer(), [_frames(_sine(freq, source_rate), source_rate)])
    # Without an anti-aliasing filter this folds back at full amplitude.
    assert samples_rms(out) < 0.05


def test_speech_band_tone_survives_resampling():
    out = _run(SampleNormalizer(), [_frames(_sine(1000.0, 48000), 48000)])
    body = out[1000:-1000]
    assert samples_rms(body) == pytest.approx(np.sqrt(0.5), abs=0.02)


def test_stereo_input_is_downmixed_before_resampling():
    left = np.full(4800, 0.25, dtype=np.float32)
    right = np.full(4800, 0.75, dtype=np.float32)
    stereo = np.stack([left, right], axis=1)
    out = _run(SampleNormalizer(), [_frames(stereo, 48000, channels=2)])
    assert abs(out.size - 1600) <= 2
    # Skip the filter's edge transients.
    np.testing.assert_allclose(out[200:-200], 0.5, atol=1e-3)


@pytest.mark.parametrize("rate,channels", [(0, 1), (16000, 0), (-8000, 1)])
def test_invalid_format_is_rejected(rate, channels):
    normalizer = SampleNormalizer()
    frames = DecodedFrames(np.zeros((10, 1), dtype=np.float32), rate, channels)
    with pytest.raises(UnsupportedFormat) as exc:
        normalizer.process(frames)
    assert exc.value.code == ErrorCode.UNSUPPORTED_FORMAT


def test_sample_rate_change_mid_stream_is_rejected():
    normalizer = SampleNormalizer()
    normalizer.process(_frames(np.zeros(100), 16000))
    with pytest.raises(STTError) as exc:
        normalizer.process(_frames(np.zeros(100), 8000))
    assert exc.value.code == ErrorCode.UNSUPPORTED_FORMAT
    assert "sample rate changed" in exc.value.detail


def test_audio_after_flush_is_rejected():
    normalizer = SampleNormalizer()
    normalizer.process(_frames(np.zeros(480), 48000))
    normalizer.flush()
    assert normalizer.flush().size == 0
    with pytest.raises(UnsupportedFormat):
        normalizer.process(_frames(np.zeros(480), 48000))


def test_flush_without_input_is_empty():
    normalizer = SampleNormalizer()
    assert normalizer.flush().size == 0
    assert normalizer.samples_out == 0
