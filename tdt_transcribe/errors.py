"""Exception hierarchy for tdt_transcribe.

Every failure is terminal for the current transcription call: nothing is
retried here and no partial transcript is returned.
"""


class TranscriptionError(Exception):
    """Base class for all tdt_transcribe errors."""


class ConfigurationError(TranscriptionError, ValueError):
    """A configuration value (argument or TDT_TRANSCRIBE_* variable) is invalid."""


class DecodeError(TranscriptionError):
    """The audio bytes are not a readable WAV container."""


class VocabLoadError(TranscriptionError):
    """The vocabulary table is missing or unreadable."""


class EmptyVocabularyError(TranscriptionError):
    """Transcription was requested before a vocabulary was loaded."""


class ModelFilesMissingError(TranscriptionError):
    """One or more model artifacts are absent from the model directory."""

    def __init__(self, missing):
        self.missing = list(missing)
        names = ', '.join(f.name for f in self.missing)
        super().__init__(f"missing model files: {names}. Download them first (--download)")


class InferenceError(TranscriptionError):
    """An ONNX Runtime session failed to load or run.

    Attributes:
        stage: pipeline stage that failed ('feature_extractor', 'encoder'
               or 'decoder_joint').
    """

    def __init__(self, stage: str, message: str):
        self.stage = stage
        super().__init__(f"{stage}: {message}")
