"""
Parakeet TDT transcription over ONNX Runtime.

Architecture: nemo128 log-mel preprocessor + FastConformer encoder + TDT
(Token-and-Duration Transducer) decoder-joint, each exported as an ONNX graph
(see sessions.py). This module holds the greedy decode loop and the
ParakeetTDT facade that ties audio, vocabulary and sessions together.
"""
import logging
import threading
import time
from dataclasses import dataclass, replace
from typing import Optional

import numpy as np

from tdt_transcribe._loader import missing_model_files
from tdt_transcribe.audio import load_wav, normalize_wav
from tdt_transcribe.config import (
    DECODER_HIDDEN, DECODER_LAYERS, HOP_LENGTH, NUM_DURATIONS, SAMPLE_RATE,
    SUBSAMPLING_FACTOR, ParakeetConfig,
)
from tdt_transcribe.errors import (
    EmptyVocabularyError, InferenceError, ModelFilesMissingError, TranscriptionError,
)
from tdt_transcribe.sessions import DecoderJoint, Encoder, FeatureExtractor
from tdt_transcribe.vocab import load_vocabulary, split_word_start

logger = logging.getLogger(__name__)

# 1 encoder frame = 8 mel frames x hop_length / sample_rate = 80 ms
FRAME_S = SUBSAMPLING_FACTOR * HOP_LENGTH / SAMPLE_RATE


@dataclass
class TranscriptionResult:
    """Returned by transcribe(..., timestamps=True).

    Attributes:
        text: Full decoded transcript.
        tokens: Emitted vocabulary ids, in order.
        timestamp: Dict with keys 'word' and 'segment', each a list of
            dicts containing the text span and 'start'/'end' in seconds.

    Example::

        result = model.transcribe(wav_bytes, timestamps=True)
        for w in result.timestamp['word']:
            print(f"{w['start']:.2f}s - {w['end']:.2f}s : {w['word']}")
    """
    text: str
    tokens: list
    timestamp: dict  # {'word': [...], 'segment': [...]}


@dataclass(frozen=True)
class DecoderState:
    """Recurrent state carried from one decode step to the next.

    last_token is what the prediction network is fed next (blank at start);
    last_emitted is the previous emission, or None right after a blank.
    """
    state1: np.ndarray
    state2: np.ndarray
    last_token: int
    last_emitted: Optional[int] = None


def _frames_to_timestamps(token_ids: list, token_frames: list, vocab) -> dict:
    """Convert the emitting encoder frame of each token to word/segment timestamps.

    Every token is emitted while consuming exactly one encoder frame, so it
    spans [frame, frame + 1) in encoder-frame units.
    """
    word_ts = []
    curr_word_text  = ''
    curr_word_start = None
    curr_word_end   = None
    first_token     = True
    SENT_END = {'.', '!', '?'}

    for tok_id, frame in zip(token_ids, token_frames):
        is_word_start, raw_text = split_word_start(vocab.id_to_piece(tok_id))

        start_s = frame * FRAME_S
        end_s   = (frame + 1) * FRAME_S

        if is_word_start and not first_token:
            if curr_word_text:
                word_ts.append({
                    'word':  curr_word_text,
                    'start': round(curr_word_start, 3),
                    'end':   round(curr_word_end, 3),
                })
            curr_word_text  = raw_text
            curr_word_start = start_s
            curr_word_end   = end_s
        else:
            curr_word_text += raw_text
            if curr_word_start is None:
                curr_word_start = start_s
            curr_word_end = end_s

        first_token = False

    if curr_word_text:
        word_ts.append({
            'word':  curr_word_text,
            'start': round(curr_word_start, 3),
            'end':   round(curr_word_end, 3),
        })

    # Segments split on sentence-ending punctuation.
    seg_ts   = []
    curr_seg = []
    for w in word_ts:
        curr_seg.append(w)
        if w['word'][-1] in SENT_END:
            seg_ts.append({
                'segment': ' '.join(x['word'] for x in curr_seg),
                'start':   curr_seg[0]['start'],
                'end':     curr_seg[-1]['end'],
            })
            curr_seg = []
    if curr_seg:
        seg_ts.append({
            'segment': ' '.join(x['word'] for x in curr_seg),
            'start':   curr_seg[0]['start'],
            'end':     curr_seg[-1]['end'],
        })

    return {'word': word_ts, 'segment': seg_ts}


def tdt_greedy_decode(
    encoder_out: np.ndarray,
    enc_len: int,
    step,
    blank_id: int,
    vocab_size: int,
    initial_state: DecoderState = None,
    n_durations: int = NUM_DURATIONS,
    return_frames: bool = False,
):
    """Greedy TDT decoding, exactly one decoder-joint call per encoder frame.

    Args:
        encoder_out:   [1, d_model, T2] (or [d_model, T2]) encoder output.
        enc_len:       Valid encoder frames T2'; frames past it are ignored.
        step:          Callable (frame [d_model, 1], last_token, state1, state2)
                       -> (logits [V + n_durations], state1', state2').
        blank_id:      Index of the blank token.
        vocab_size:    V; duration scores after the first V logits are ignored.
        initial_state: Starting DecoderState; zero states fed blank by default.
        return_frames: Also return the encoder frame each token was emitted at.

    Per frame, with k = first arg-max over the token logits:
      - k is blank: keep states and last_token, forget last_emitted.
      - k repeats last_emitted: emit nothing, keep states and last_token.
      - otherwise: emit k, adopt the new states, feed k next time.
    """
    if encoder_out.ndim == 3:
        encoder_out = encoder_out[0]
    if initial_state is None:
        zeros = np.zeros((DECODER_LAYERS, 1, DECODER_HIDDEN), dtype=np.float32)
        initial_state = DecoderState(zeros, zeros.copy(), last_token=blank_id)

    state        = initial_state
    tokens       = []
    token_frames = []

    for t in range(enc_len):
        f = encoder_out[:, t:t + 1]  # [d_model, 1]
        logits, state1, state2 = step(f, state.last_token, state.state1, state.state2)

        if logits.shape[0] != vocab_size + n_durations:
            raise InferenceError(
                'decoder_joint',
                f"got {logits.shape[0]} logits, expected {vocab_size} tokens + {n_durations} durations",
            )
        k = int(np.argmax(logits[:vocab_size]))

        if k == blank_id:
            state = replace(state, last_emitted=None)
        elif k == state.last_emitted:
            continue
        else:
            tokens.append(k)
            token_frames.append(t)
            state = DecoderState(state1, state2, last_token=k, last_emitted=k)

    if return_frames:
        return tokens, token_frames
    return tokens


class ParakeetTDT:
    """Bytes in, text out.

    Construct with a config, then load_models() once (or use
    tdt_transcribe.from_pretrained()). Sessions may also be injected directly,
    which is how the tests drive the pipeline without ONNX files.

    Only one transcription runs at a time: a lock covers the whole pipeline
    because the native session handles are shared.
    """

    def __init__(self, config: ParakeetConfig = None, vocab=None,
                 feature_extractor=None, encoder=None, decoder_joint=None):
        self.config            = config or ParakeetConfig.from_env()
        self.vocab             = vocab
        self.feature_extractor = feature_extractor
        self.encoder           = encoder
        self.decoder_joint     = decoder_joint
        self._lock             = threading.Lock()
        self._closed           = False

    # -- loading ---------------------------------------------------------

    def check_models(self) -> list:
        """Return the model files missing from config.model_dir (empty if none)."""
        return missing_model_files(self.config)

    def load_vocabulary(self):
        self.vocab = load_vocabulary(self.config.vocab_path)
        return self.vocab

    def load_models(self):
        """Load vocabulary and build the three sessions. Call once per process."""
        missing = self.check_models()
        if missing:
            raise ModelFilesMissingError(missing)

        cfg = self.config
        self.load_vocabulary()
        opts = dict(providers=cfg.providers, intra_op_threads=cfg.intra_op_threads)
        if self.feature_extractor is None:
            self.feature_extractor = FeatureExtractor.load(
                cfg.preprocessor_path, cfg.preprocessor_names, **opts)
        if self.encoder is None:
            self.encoder = Encoder.load(cfg.encoder_path, cfg.encoder_names, **opts)
        if self.decoder_joint is None:
            self.decoder_joint = DecoderJoint.load(cfg.decoder_path, cfg.decoder_names, **opts)
        logger.info("models loaded from %s (%d tokens)", cfg.model_dir, len(self.vocab))
        return self

    def warmup(self, duration_s: float = 1.0):
        """Run a dummy silent inference so the first real call is not slow."""
        self.transcribe_samples(np.zeros(int(SAMPLE_RATE * duration_s), dtype=np.float32))

    def close(self):
        """Release the native sessions. The model is unusable afterwards."""
        with self._lock:
            for name in ('feature_extractor', 'encoder', 'decoder_joint'):
                stage = getattr(self, name)
                if stage is not None and hasattr(stage, 'close'):
                    stage.close()
                setattr(self, name, None)
            self._closed = True

    @property
    def closed(self) -> bool:
        """True once close() has released the sessions."""
        return self._closed

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    # -- inference -------------------------------------------------------

    def _require(self, stage_name: str):
        stage = getattr(self, stage_name)
        if stage is None:
            raise InferenceError(stage_name, "session not loaded, call load_models() first")
        return stage

    def _run_stage(self, stage_name: str, fn, *args):
        """Call one pipeline stage, tagging any foreign exception with the stage name."""
        try:
            return fn(*args)
        except TranscriptionError:
            raise
        except Exception as exc:
            raise InferenceError(stage_name, str(exc)) from exc

    def transcribe_audio(self, audio: np.ndarray, return_timestamps: bool = False):
        """
        audio: 1D float32 array, 16 kHz mono
        Returns: list of token IDs, or (token_ids, token_frames) when
                 return_timestamps=True.
        """
        if self.vocab is None or len(self.vocab) == 0:
            raise EmptyVocabularyError("vocabulary not loaded, call load_models() first")

        if len(audio) == 0:
            logger.debug("empty audio, skipping inference")
            return ([], []) if return_timestamps else []

        feature_extractor = self._require('feature_extractor')
        encoder           = self._require('encoder')
        decoder_joint     = self._require('decoder_joint')

        with self._lock:
            features, feat_len = self._run_stage('feature_extractor', feature_extractor, audio)
            enc_out, enc_len   = self._run_stage('encoder', encoder, features, feat_len)
            logger.debug("features %s (valid %d) -> encoded %s (valid %d)",
                         list(features.shape), feat_len, list(enc_out.shape), enc_len)

            tokens, frames = self._run_stage(
                'decoder_joint',
                lambda: tdt_greedy_decode(
                    enc_out, enc_len, decoder_joint,
                    blank_id=self.vocab.blank_id, vocab_size=len(self.vocab),
                    return_frames=True,
                ),
            )

        if return_timestamps:
            return tokens, frames
        return tokens

    def transcribe_samples(self, audio: np.ndarray, timestamps: bool = False):
        """Transcribe 16 kHz mono float32 samples in [-1, 1].

        Returns str, or a TranscriptionResult when timestamps=True.
        """
        t0 = time.perf_counter()
        token_ids, token_frames = self.transcribe_audio(audio, return_timestamps=True)
        text = self.vocab.detokenize(token_ids)

        elapsed  = time.perf_counter() - t0
        duration = len(audio) / SAMPLE_RATE
        rtf      = duration / elapsed if elapsed > 0 else float('inf')
        logger.info("transcribed %.2fs audio in %.3fs (RTF=%.1fx, %d tokens)",
                    duration, elapsed, rtf, len(token_ids))

        if not timestamps:
            return text
        ts = _frames_to_timestamps(token_ids, token_frames, self.vocab)
        return TranscriptionResult(text=text, tokens=token_ids, timestamp=ts)

    def transcribe(self, wav_bytes: bytes, timestamps: bool = False):
        """Transcribe a complete WAV byte stream (any rate, channels, bit depth).

        Args:
            wav_bytes:  WAV container bytes.
            timestamps: When True, return a TranscriptionResult with word/
                        segment-level timestamps instead of a plain string.
        Returns:
            str when timestamps=False (default).
            TranscriptionResult when timestamps=True.
        """
        if self.vocab is None or len(self.vocab) == 0:
            raise EmptyVocabularyError("vocabulary not loaded, call load_models() first")
        audio = normalize_wav(wav_bytes, resampler=self.config.resampler)
        return self.transcribe_samples(audio, timestamps=timestamps)

    def transcribe_file(self, path, timestamps: bool = False):
        return self.transcribe(load_wav(path), timestamps=timestamps)
