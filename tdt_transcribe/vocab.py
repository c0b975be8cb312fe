"""Token table loading and detokenization."""
import logging
from dataclasses import dataclass

from tdt_transcribe.errors import VocabLoadError

logger = logging.getLogger(__name__)

BLANK_TOKEN = '<blk>'
WORD_BOUNDARY = chr(0x2581)   # '▁' sentencepiece word-start marker
WORD_BOUNDARY_ESCAPED = '\\u2581'
WORD_BOUNDARIES = (WORD_BOUNDARY, WORD_BOUNDARY_ESCAPED)


@dataclass(frozen=True)
class Vocabulary:
    tokens: tuple
    blank_id: int

    def __len__(self):
        return len(self.tokens)

    def __getitem__(self, idx):
        return self.tokens[idx]

    def id_to_piece(self, idx: int) -> str:
        return self.tokens[idx]

    def detokenize(self, token_ids) -> str:
        """Join pieces, turn word-boundary markers into spaces and trim."""
        return render_pieces(self.tokens[i] for i in token_ids)


def split_word_start(piece: str):
    """Return (starts_word, text) with any leading word-boundary marker removed."""
    for marker in WORD_BOUNDARIES:
        if piece.startswith(marker):
            return True, piece[len(marker):]
    return False, piece


def render_pieces(pieces) -> str:
    text = ''.join(pieces)
    for marker in WORD_BOUNDARIES:
        text = text.replace(marker, ' ')
    return text.strip()


def load_vocabulary(path) -> Vocabulary:
    """Parse a vocab.txt table: one token per line, first field is the token.

    The blank is the '<blk>' entry when present, otherwise the last token.
    Blank lines are skipped and do not take an index.
    """
    try:
        with open(path, encoding='utf-8') as f:
            lines = f.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise VocabLoadError(f"error reading vocab file {path}: {exc}") from exc

    tokens = []
    blank_id = -1
    for line in lines:
        parts = line.split()
        if not parts:
            continue
        if parts[0] == BLANK_TOKEN:
            blank_id = len(tokens)
        tokens.append(parts[0])

    if blank_id == -1:
        blank_id = len(tokens) - 1

    logger.debug("loaded vocabulary from %s: %d tokens, blank=%d", path, len(tokens), blank_id)
    return Vocabulary(tokens=tuple(tokens), blank_id=blank_id)
