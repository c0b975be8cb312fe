"""Audio loading and normalization utilities for tdt_transcribe."""
import io
import logging
import os
import shutil
import subprocess
import tempfile
from contextlib import contextmanager
from pathlib import Path

import numpy as np
import soundfile as sf

from tdt_transcribe.config import SAMPLE_RATE
from tdt_transcribe.errors import DecodeError

logger = logging.getLogger(__name__)

_WAV_FORMATS = ('WAV', 'WAVEX')


@contextmanager
def as_wav(path):
    """Yield a WAV path for `path`, transcoding other formats with ffmpeg.

    WAV inputs are yielded untouched. Anything else is converted to 16 kHz
    mono PCM in a temporary file that is removed when the block exits.
    """
    path = Path(path)
    if path.suffix.lower() == '.wav':
        yield path
        return

    ffmpeg = shutil.which('ffmpeg')
    if ffmpeg is None:
        raise DecodeError(f"{path.name} is not a WAV file and ffmpeg was not found on PATH")

    fd, tmp_name = tempfile.mkstemp(prefix='tdt-', suffix='.wav')
    os.close(fd)
    tmp = Path(tmp_name)
    try:
        cmd = [ffmpeg, '-nostdin', '-loglevel', 'error', '-y', '-i', str(path),
               '-ar', str(SAMPLE_RATE), '-ac', '1', '-c:a', 'pcm_s16le', str(tmp)]
        logger.debug("transcoding %s with ffmpeg", path)
        try:
            subprocess.run(cmd, check=True, stdout=subprocess.DEVNULL,
                           stderr=subprocess.PIPE)
        except subprocess.CalledProcessError as exc:
            detail = exc.stderr.decode(errors='replace').strip() if exc.stderr else ''
            raise DecodeError(f"ffmpeg could not decode {path}: {detail}") from exc
        yield tmp
    finally:
        tmp.unlink(missing_ok=True)


def load_wav(path) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read()
    except OSError as exc:
        raise DecodeError(f"cannot read {path}: {exc}") from exc


def downmix(frames: np.ndarray) -> np.ndarray:
    """Average interleaved channels: [frames, C] -> [frames]."""
    if frames.ndim == 1:
        return frames
    if frames.shape[1] == 1:
        return frames[:, 0]
    return frames.mean(axis=1, dtype=np.float32)


def resample_linear(audio: np.ndarray, orig_sr: int, target_sr: int = SAMPLE_RATE) -> np.ndarray:
    """Linear-interpolation resampler (not band-limited).

    Output index i reads source position i * orig_sr / target_sr and blends
    the two neighbouring samples, the upper one clamped to the last sample.
    """
    if orig_sr == target_sr:
        return audio
    ratio  = orig_sr / target_sr
    n_out  = int(len(audio) / ratio)
    pos    = np.arange(n_out, dtype=np.float64) * ratio
    low    = np.minimum(pos.astype(np.int64), len(audio) - 1)
    high   = np.minimum(low + 1, len(audio) - 1)
    frac   = (pos - low).astype(np.float32)
    return ((1.0 - frac) * audio[low] + frac * audio[high]).astype(np.float32)


def resample_librosa(audio: np.ndarray, orig_sr: int, target_sr: int = SAMPLE_RATE) -> np.ndarray:
    if orig_sr == target_sr:
        return audio
    import librosa
    return librosa.resample(audio, orig_sr=orig_sr, target_sr=target_sr).astype(np.float32)


_RESAMPLERS = {
    'linear':  resample_linear,
    'librosa': resample_librosa,
}


def read_wav(data: bytes):
    """Decode WAV bytes into ([frames, channels] float32, sample_rate).

    libsndfile scales every integer PCM depth by its own full-scale value
    (16-bit samples are divided by 32768), so the result lies in [-1, 1].
    """
    if not data:
        raise DecodeError("invalid WAV file: no data")
    try:
        with sf.SoundFile(io.BytesIO(data)) as f:
            if f.format not in _WAV_FORMATS:
                raise DecodeError(f"invalid WAV file: container is {f.format}")
            sr, subtype = f.samplerate, f.subtype
            frames = f.read(dtype='float32', always_2d=True)
    except (sf.LibsndfileError, RuntimeError) as exc:
        raise DecodeError(f"invalid WAV file: {exc}") from exc
    logger.debug("decoded WAV: %d frames, %d channel(s), %d Hz, %s",
                 frames.shape[0], frames.shape[1], sr, subtype)
    return frames, sr


def normalize_wav(data: bytes, resampler: str = 'linear') -> np.ndarray:
    """Turn arbitrary WAV bytes into mono 16 kHz float32 samples in [-1, 1].

    Mono 16 kHz input comes back sample-for-sample unchanged; otherwise
    channels are averaged and the result is resampled to 16 kHz.
    """
    frames, sr = read_wav(data)
    audio = downmix(frames)
    if sr != SAMPLE_RATE:
        audio = _RESAMPLERS[resampler](audio, sr, SAMPLE_RATE)
    return np.ascontiguousarray(audio, dtype=np.float32)
