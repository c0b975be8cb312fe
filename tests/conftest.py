import io

import numpy as np
import pytest
import soundfile as sf

from tdt_transcribe.config import StageNames
from tdt_transcribe.vocab import WORD_BOUNDARY, load_vocabulary

VOCAB_LINES = [
    '<unk> 0',
    f'{WORD_BOUNDARY}hello 1',
    f'{WORD_BOUNDARY}world 2',
    's 3',
    '. 4',
    '<blk> 5',
]


def make_wav(samples, sample_rate=16000, subtype='PCM_16') -> bytes:
    buf = io.BytesIO()
    sf.write(buf, samples, sample_rate, format='WAV', subtype=subtype)
    return buf.getvalue()


def make_logits(token, vocab_size, n_durations=5, duration=0):
    """Logits whose token arg-max is `token` and duration arg-max is `duration`."""
    logits = np.zeros(vocab_size + n_durations, dtype=np.float32)
    logits[token] = 10.0
    logits[vocab_size + duration] = 20.0  # must never win the token arg-max
    return logits


class FakeOrtSession:
    """Stands in for onnxruntime.InferenceSession: records feeds, returns canned outputs."""

    def __init__(self, outputs=None, fn=None, error=None):
        self.outputs = outputs
        self.fn      = fn
        self.error   = error
        self.calls   = []

    def run(self, output_names, feed):
        self.calls.append((list(output_names), dict(feed)))
        if self.error is not None:
            raise self.error
        if self.fn is not None:
            return self.fn(feed)
        return self.outputs


class ScriptedStep:
    """Decoder-joint stand-in that emits a fixed token sequence, one per call.

    Each call returns fresh states filled with the call number, so tests can
    tell which step's state was adopted.
    """

    def __init__(self, script, vocab_size):
        self.script     = list(script)
        self.vocab_size = vocab_size
        self.calls      = []

    def __call__(self, frame, last_token, state1, state2):
        n = len(self.calls)
        self.calls.append((frame.copy(), last_token, float(state1.flat[0]), float(state2.flat[0])))
        new1 = np.full((2, 1, 640), n + 1, dtype=np.float32)
        new2 = np.full((2, 1, 640), -(n + 1), dtype=np.float32)
        return make_logits(self.script[n], self.vocab_size), new1, new2


@pytest.fixture
def vocab_path(tmp_path):
    path = tmp_path / 'vocab.txt'
    path.write_text('\n'.join(VOCAB_LINES) + '\n', encoding='utf-8')
    return path


@pytest.fixture
def vocab(vocab_path):
    return load_vocabulary(vocab_path)


@pytest.fixture
def names():
    return StageNames(inputs=('a', 'b'), outputs=('x', 'y'))
