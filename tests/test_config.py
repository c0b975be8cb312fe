import sys
from pathlib import Path

import pytest

from tdt_transcribe.config import ParakeetConfig, default_model_dir
from tdt_transcribe.errors import ConfigurationError, TranscriptionError


def test_defaults():
    cfg = ParakeetConfig(model_dir='/models')
    assert cfg.model_dir == Path('/models')
    assert cfg.providers is None
    assert cfg.resampler == 'linear'
    assert cfg.decoder_path == Path('/models/decoder_joint-model.int8.onnx')
    assert cfg.decoder_names.inputs[-2:] == ('input_states_1', 'input_states_2')


def test_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv('TDT_TRANSCRIBE_MODEL_DIR', str(tmp_path))
    monkeypatch.setenv('TDT_TRANSCRIBE_PROVIDERS', 'CUDAExecutionProvider, CPUExecutionProvider')
    monkeypatch.setenv('TDT_TRANSCRIBE_THREADS', '2')
    cfg = ParakeetConfig.from_env()
    assert cfg.model_dir == tmp_path
    assert cfg.providers == ('CUDAExecutionProvider', 'CPUExecutionProvider')
    assert cfg.intra_op_threads == 2


def test_overrides_win_over_env(monkeypatch, tmp_path):
    monkeypatch.setenv('TDT_TRANSCRIBE_MODEL_DIR', '/from/env')
    cfg = ParakeetConfig.from_env(model_dir=tmp_path, providers=None)
    assert cfg.model_dir == tmp_path


def test_unknown_resampler():
    with pytest.raises(ConfigurationError, match='resampler'):
        ParakeetConfig(resampler='sinc')


@pytest.mark.skipif(not sys.platform.startswith('linux'), reason='XDG layout is Linux-only')
def test_default_model_dir_follows_xdg(monkeypatch, tmp_path):
    monkeypatch.setenv('XDG_DATA_HOME', str(tmp_path))
    assert default_model_dir() == tmp_path / 'tdt-transcribe' / 'models' / 'parakeet'


def test_bad_thread_count(monkeypatch):
    monkeypatch.setenv('TDT_TRANSCRIBE_THREADS', 'four')
    with pytest.raises(ConfigurationError, match='TDT_TRANSCRIBE_THREADS') as exc_info:
        ParakeetConfig.from_env()
    assert isinstance(exc_info.value, TranscriptionError)
