import pytest

import tdt_transcribe._loader as loader
from tdt_transcribe.config import HF_REPO_ID, HF_REVISION, ParakeetConfig


@pytest.fixture
def cfg(tmp_path):
    return ParakeetConfig(model_dir=tmp_path / 'parakeet')


def test_model_files_table(cfg):
    files = loader.model_files(cfg)
    assert [f.filename for f in files] == [
        'vocab.txt', 'nemo128.onnx', 'encoder-model.int8.onnx',
        'encoder-model.onnx.data', 'decoder_joint-model.int8.onnx',
    ]
    assert all(f.path.parent == cfg.model_dir for f in files)


def test_missing_model_files(cfg):
    assert len(loader.missing_model_files(cfg)) == 5
    cfg.model_dir.mkdir()
    cfg.vocab_path.write_text('<blk> 0\n')
    cfg.encoder_path.write_bytes(b'')
    missing = {f.name for f in loader.missing_model_files(cfg)}
    assert missing == {'Preprocessor (nemo128)', 'Encoder Data', 'Decoder'}


def test_download_fetches_only_missing(cfg, monkeypatch):
    calls = []

    def fake_download(repo_id, filename, revision, local_dir):
        calls.append((repo_id, filename, revision))
        (cfg.model_dir / filename).write_bytes(b'x')
        return str(cfg.model_dir / filename)

    monkeypatch.setattr(loader, 'hf_hub_download', fake_download)
    cfg.model_dir.mkdir()
    cfg.vocab_path.write_text('<blk> 0\n')

    downloaded = loader.download_model_files(cfg)

    assert [f.name for f in downloaded] == ['Preprocessor (nemo128)', 'Encoder',
                                            'Encoder Data', 'Decoder']
    assert all(c[0] == HF_REPO_ID and c[2] == HF_REVISION for c in calls)
    assert loader.missing_model_files(cfg) == []
    assert loader.download_model_files(cfg) == []
    assert len(calls) == 4
