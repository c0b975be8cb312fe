"""tdt_transcribe — on-device Parakeet TDT transcription with ONNX Runtime."""
from tdt_transcribe._loader import download_model_files, missing_model_files, model_files
from tdt_transcribe.config import ParakeetConfig
from tdt_transcribe.errors import (
    ConfigurationError, DecodeError, EmptyVocabularyError, InferenceError,
    ModelFilesMissingError, TranscriptionError, VocabLoadError,
)
from tdt_transcribe.model import ParakeetTDT, TranscriptionResult

__all__ = [
    'ParakeetTDT', 'ParakeetConfig', 'TranscriptionResult', 'from_pretrained',
    'model_files', 'missing_model_files', 'download_model_files',
    'TranscriptionError', 'ConfigurationError', 'DecodeError', 'VocabLoadError', 'InferenceError',
    'EmptyVocabularyError', 'ModelFilesMissingError',
]

_MODEL_CACHE: dict = {}


def from_pretrained(
    model_dir=None,
    providers=None,
    download: bool = False,
    resampler: str = None,
    warmup: bool = True,
) -> ParakeetTDT:
    """Load (or reuse) a ready-to-use ParakeetTDT.

    Args:
        model_dir: Directory with the ONNX artifacts. Default: the
                   TDT_TRANSCRIBE_MODEL_DIR environment variable, then the
                   per-user data directory (see config.default_model_dir).
        providers: ONNX Runtime execution providers, e.g.
                   ['CUDAExecutionProvider', 'CPUExecutionProvider'].
        download:  Fetch missing artifacts from the Hugging Face Hub first.
        resampler: 'linear' (default) or 'librosa'.
        warmup:    Run one silent inference before returning.
    Returns:
        ParakeetTDT with vocabulary and sessions loaded. Instances are cached
        per (model_dir, providers, resampler), so sessions are built once;
        a cached instance that has been closed is replaced by a fresh one.
    """
    config = ParakeetConfig.from_env(model_dir=model_dir, providers=providers,
                                     resampler=resampler)

    cache_key = (str(config.model_dir), config.providers, config.resampler)
    cached = _MODEL_CACHE.get(cache_key)
    if cached is not None and not cached.closed:
        return cached

    if download:
        download_model_files(config)

    model = ParakeetTDT(config).load_models()
    if warmup:
        model.warmup()

    _MODEL_CACHE[cache_key] = model
    return model
