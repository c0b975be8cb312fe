"""Model artifact bookkeeping and download for tdt_transcribe."""
import logging
from dataclasses import dataclass
from pathlib import Path

from huggingface_hub import hf_hub_download

from tdt_transcribe.config import HF_REPO_ID, HF_REVISION

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModelFile:
    name: str
    filename: str
    path: Path


def model_files(config) -> list:
    """All five artifacts the pipeline needs, with their local paths."""
    return [
        ModelFile('Vocabulary',             config.vocab_file,        config.vocab_path),
        ModelFile('Preprocessor (nemo128)', config.preprocessor_file, config.preprocessor_path),
        ModelFile('Encoder',                config.encoder_file,      config.encoder_path),
        ModelFile('Encoder Data',           config.encoder_data_file, config.encoder_data_path),
        ModelFile('Decoder',                config.decoder_file,      config.decoder_path),
    ]


def missing_model_files(config) -> list:
    return [f for f in model_files(config) if not f.path.is_file()]


def download_model_files(config, repo_id: str = HF_REPO_ID,
                         revision: str = HF_REVISION) -> list:
    """Fetch whichever artifacts are missing from the Hugging Face Hub.

    Files land directly in config.model_dir under their repo names. Returns
    the list of ModelFile entries that were downloaded.
    """
    missing = missing_model_files(config)
    if not missing:
        logger.debug("all model files present in %s", config.model_dir)
        return []

    config.model_dir.mkdir(parents=True, exist_ok=True)
    for f in missing:
        logger.info("downloading %s (%s) from %s@%s", f.name, f.filename, repo_id, revision[:8])
        hf_hub_download(
            repo_id=repo_id,
            filename=f.filename,
            revision=revision,
            local_dir=str(config.model_dir),
        )
    return missing
