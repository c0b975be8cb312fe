"""
ONNX Runtime sessions for the three Parakeet TDT graphs.

Pipeline: FeatureExtractor (nemo128.onnx, log-mel) -> Encoder (FastConformer)
-> DecoderJoint (LSTM prediction net + TDT joint, one call per encoder frame).
Each stage is loaded once and called many times; shapes are checked on the
way in and out so a bad graph fails loudly with the stage name attached.
"""
import logging
import time

import numpy as np
import onnxruntime as ort

from tdt_transcribe.config import (
    DECODER_HIDDEN, DECODER_LAYERS, ENCODER_HIDDEN, HOP_LENGTH,
    NUM_MEL_BINS, SUBSAMPLING_FACTOR,
)
from tdt_transcribe.errors import InferenceError

logger = logging.getLogger(__name__)


def expected_feature_frames(num_samples: int) -> int:
    """Feature frames for N samples: floor(N / hop) + 1 (centered STFT)."""
    return num_samples // HOP_LENGTH + 1


def expected_encoder_frames(num_frames: int) -> int:
    """Encoder frames for T feature frames: ceil(T / 8)."""
    return -(-num_frames // SUBSAMPLING_FACTOR)


def _scalar(x) -> int:
    return int(np.asarray(x).reshape(-1)[0])


class OnnxStage:
    """A named ONNX Runtime session with fixed input/output tensor names.

    Use as a context manager, or call close(), to drop the native session
    as soon as it is no longer needed instead of waiting for the collector.
    """
    stage = 'onnx'

    def __init__(self, session, names):
        self._session     = session
        self.input_names  = tuple(names.inputs)
        self.output_names = tuple(names.outputs)

    @classmethod
    def load(cls, path, names, providers=None, intra_op_threads: int = 0):
        """Parse and optimize the graph at `path`. Expensive: do it once."""
        t0 = time.perf_counter()
        try:
            opts = ort.SessionOptions()
            opts.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
            if intra_op_threads:
                opts.intra_op_num_threads = intra_op_threads
            session = ort.InferenceSession(
                str(path), sess_options=opts,
                providers=list(providers) if providers else None,
            )
        except Exception as exc:
            raise InferenceError(cls.stage, f"error creating session from {path}: {exc}") from exc
        logger.info("loaded %s session from %s in %.0f ms (providers=%s)",
                    cls.stage, path, (time.perf_counter() - t0) * 1000,
                    session.get_providers())
        return cls(session, names)

    @property
    def closed(self) -> bool:
        return self._session is None

    def run(self, *inputs):
        if self._session is None:
            raise InferenceError(self.stage, "session is closed")
        feed = dict(zip(self.input_names, inputs))
        try:
            return self._session.run(list(self.output_names), feed)
        except Exception as exc:
            raise InferenceError(self.stage, f"error running session: {exc}") from exc

    def close(self):
        self._session = None

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()


class FeatureExtractor(OnnxStage):
    """waveforms [1, N] -> features [1, 128, T1], features_lens [1]."""
    stage = 'feature_extractor'

    def __call__(self, samples: np.ndarray):
        """
        Args:
            samples: [N] float32, 16 kHz mono
        Returns:
            (features [1, 128, T1'] cropped to the valid length, T1')
        """
        n = len(samples)
        waveforms = np.ascontiguousarray(samples, dtype=np.float32).reshape(1, n)
        waveforms_lens = np.array([n], dtype=np.int64)

        features, features_lens = self.run(waveforms, waveforms_lens)
        features = np.asarray(features)
        if features.ndim != 3 or features.shape[:2] != (1, NUM_MEL_BINS):
            raise InferenceError(
                self.stage,
                f"unexpected features shape {list(features.shape)}, expected [1, {NUM_MEL_BINS}, T]",
            )

        T1    = features.shape[2]
        valid = _scalar(features_lens)
        if T1 != expected_feature_frames(n):
            logger.debug("feature extractor returned %d frames for %d samples (expected %d)",
                         T1, n, expected_feature_frames(n))
        if not 0 <= valid <= T1:
            raise InferenceError(self.stage, f"features_lens={valid} outside [0, {T1}]")
        return features[:, :, :valid], valid


class Encoder(OnnxStage):
    """audio_signal [1, 128, T1], length [1] -> outputs [1, 1024, T2], encoded_lengths [1]."""
    stage = 'encoder'

    def __call__(self, features: np.ndarray, length: int):
        features = np.asarray(features)
        if features.ndim != 3 or features.shape[:2] != (1, NUM_MEL_BINS):
            raise InferenceError(
                self.stage,
                f"features must be [1, {NUM_MEL_BINS}, T], got {list(features.shape)}",
            )
        if not 0 <= length <= features.shape[2]:
            raise InferenceError(self.stage, f"length={length} outside [0, {features.shape[2]}]")

        encoded, encoded_lengths = self.run(
            np.ascontiguousarray(features, dtype=np.float32),
            np.array([length], dtype=np.int64),
        )
        encoded = np.asarray(encoded)
        if encoded.ndim != 3 or encoded.shape[:2] != (1, ENCODER_HIDDEN):
            raise InferenceError(
                self.stage,
                f"unexpected encoder output shape {list(encoded.shape)}, expected [1, {ENCODER_HIDDEN}, T]",
            )

        T2    = encoded.shape[2]
        valid = _scalar(encoded_lengths)
        if T2 != expected_encoder_frames(length):
            logger.debug("encoder returned %d frames for %d feature frames (expected %d)",
                         T2, length, expected_encoder_frames(length))
        if not 0 <= valid <= T2:
            raise InferenceError(self.stage, f"encoded_lengths={valid} outside [0, {T2}]")
        return encoded[:, :, :valid], valid


class DecoderJoint(OnnxStage):
    """One TDT step: (encoder frame, last token, LSTM states) -> (logits, new states).

    Inputs:  encoder_outputs [1, 1024, 1], targets [1, 1] int32,
             target_length [1] int32, input_states_1/2 [2, 1, 640]
    Outputs: outputs [1, 1, 1, V + n_durations], output_states_1/2 [2, 1, 640]
    """
    stage = 'decoder_joint'

    STATE_SHAPE = (DECODER_LAYERS, 1, DECODER_HIDDEN)

    def initial_state(self):
        return (np.zeros(self.STATE_SHAPE, dtype=np.float32),
                np.zeros(self.STATE_SHAPE, dtype=np.float32))

    def __call__(self, encoder_step: np.ndarray, target: int,
                 state1: np.ndarray, state2: np.ndarray):
        """
        Returns: flat logits [V + n_durations], state1', state2'
        """
        logits, out1, out2 = self.run(
            np.ascontiguousarray(encoder_step, dtype=np.float32).reshape(1, ENCODER_HIDDEN, 1),
            np.array([[target]], dtype=np.int32),
            np.array([1], dtype=np.int32),
            state1,
            state2,
        )
        out1, out2 = np.asarray(out1), np.asarray(out2)
        if out1.shape != self.STATE_SHAPE or out2.shape != self.STATE_SHAPE:
            raise InferenceError(
                self.stage,
                f"unexpected state shapes {list(out1.shape)}, {list(out2.shape)}, "
                f"expected {list(self.STATE_SHAPE)}",
            )
        return np.asarray(logits).reshape(-1), out1, out2
