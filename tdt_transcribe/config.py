"""Runtime configuration: model location, tensor names and model constants."""
import os
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path

from tdt_transcribe.errors import ConfigurationError

APP_NAME = 'tdt-transcribe'

# Published ONNX export of nvidia/parakeet-tdt-0.6b-v2, pinned.
HF_REPO_ID   = 'istupakov/parakeet-tdt-0.6b-v2-onnx'
HF_REVISION  = 'd808c3be882f47cf6a15a42c0eb9ee751b99a379'

SAMPLE_RATE        = 16_000
HOP_LENGTH         = 160   # 10 ms @ 16 kHz
NUM_MEL_BINS       = 128
SUBSAMPLING_FACTOR = 8
ENCODER_HIDDEN     = 1024
DECODER_HIDDEN     = 640
DECODER_LAYERS     = 2
NUM_DURATIONS      = 5     # TDT duration classes appended to the joint logits


def default_model_dir() -> Path:
    """Per-user data directory for the Parakeet artifacts.

    - Windows: %LOCALAPPDATA%\\tdt-transcribe\\models\\parakeet
    - macOS:   ~/Library/Application Support/tdt-transcribe/models/parakeet
    - Linux:   $XDG_DATA_HOME/tdt-transcribe/models/parakeet
               (defaults to ~/.local/share)
    """
    if sys.platform == 'win32':
        base = os.environ.get('LOCALAPPDATA') or os.environ.get('APPDATA')
        base = Path(base) if base else Path.home() / 'AppData' / 'Local'
    elif sys.platform == 'darwin':
        base = Path.home() / 'Library' / 'Application Support'
    else:
        xdg = os.environ.get('XDG_DATA_HOME')
        base = Path(xdg) if xdg else Path.home() / '.local' / 'share'
    return base / APP_NAME / 'models' / 'parakeet'


@dataclass(frozen=True)
class StageNames:
    inputs: tuple
    outputs: tuple


@dataclass(frozen=True)
class ParakeetConfig:
    """Everything the pipeline needs to find and drive the three ONNX graphs.

    Attributes:
        model_dir:      Directory holding the five model artifacts.
        providers:      ONNX Runtime execution providers, in priority order.
                        None lets onnxruntime pick its default.
        intra_op_threads: Threads per session (0 = onnxruntime default).
        resampler:      'linear' (default) or 'librosa'.
        *_file:         Artifact file names inside model_dir.
        *_names:        Declared input/output tensor names per stage.
    """
    model_dir: Path = field(default_factory=default_model_dir)
    providers: tuple = None
    intra_op_threads: int = 0
    resampler: str = 'linear'

    vocab_file: str         = 'vocab.txt'
    preprocessor_file: str  = 'nemo128.onnx'
    encoder_file: str       = 'encoder-model.int8.onnx'
    encoder_data_file: str  = 'encoder-model.onnx.data'
    decoder_file: str       = 'decoder_joint-model.int8.onnx'

    preprocessor_names: StageNames = StageNames(
        inputs=('waveforms', 'waveforms_lens'),
        outputs=('features', 'features_lens'),
    )
    encoder_names: StageNames = StageNames(
        inputs=('audio_signal', 'length'),
        outputs=('outputs', 'encoded_lengths'),
    )
    decoder_names: StageNames = StageNames(
        inputs=('encoder_outputs', 'targets', 'target_length',
                'input_states_1', 'input_states_2'),
        outputs=('outputs', 'output_states_1', 'output_states_2'),
    )

    def __post_init__(self):
        object.__setattr__(self, 'model_dir', Path(self.model_dir))
        if self.providers is not None:
            object.__setattr__(self, 'providers', tuple(self.providers))
        if self.resampler not in ('linear', 'librosa'):
            raise ConfigurationError(f"unknown resampler {self.resampler!r} (expected 'linear' or 'librosa')")

    @property
    def vocab_path(self) -> Path:
        return self.model_dir / self.vocab_file

    @property
    def preprocessor_path(self) -> Path:
        return self.model_dir / self.preprocessor_file

    @property
    def encoder_path(self) -> Path:
        return self.model_dir / self.encoder_file

    @property
    def encoder_data_path(self) -> Path:
        return self.model_dir / self.encoder_data_file

    @property
    def decoder_path(self) -> Path:
        return self.model_dir / self.decoder_file

    @classmethod
    def from_env(cls, **overrides) -> 'ParakeetConfig':
        """Build a config from TDT_TRANSCRIBE_* environment variables.

        Explicit keyword overrides (ignored when None) win over the environment.
        """
        values = {}
        model_dir = os.environ.get('TDT_TRANSCRIBE_MODEL_DIR')
        if model_dir:
            values['model_dir'] = Path(model_dir).expanduser()
        providers = os.environ.get('TDT_TRANSCRIBE_PROVIDERS')
        if providers:
            values['providers'] = tuple(p.strip() for p in providers.split(',') if p.strip())
        threads = os.environ.get('TDT_TRANSCRIBE_THREADS')
        if threads:
            try:
                values['intra_op_threads'] = int(threads)
            except ValueError as exc:
                raise ConfigurationError(
                    f"TDT_TRANSCRIBE_THREADS must be an integer, got {threads!r}") from exc
        resampler = os.environ.get('TDT_TRANSCRIBE_RESAMPLER')
        if resampler:
            values['resampler'] = resampler
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def with_model_dir(self, model_dir) -> 'ParakeetConfig':
        return replace(self, model_dir=Path(model_dir))
