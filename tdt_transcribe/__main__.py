"""CLI entry point for tdt_transcribe.

Usage:
    python -m tdt_transcribe audio.wav
    tdt-transcribe audio.wav --download --timestamps
    tdt-transcribe audio.ogg --runs 3      # report real-time factor
"""
import argparse
import logging
import sys
import time

from tdt_transcribe import from_pretrained
from tdt_transcribe.audio import as_wav, load_wav, normalize_wav
from tdt_transcribe.config import SAMPLE_RATE
from tdt_transcribe.errors import TranscriptionError

logger = logging.getLogger('tdt_transcribe')


def build_parser():
    parser = argparse.ArgumentParser(
        prog='tdt-transcribe',
        description='tdt-transcribe — Parakeet TDT transcription with ONNX Runtime',
    )
    parser.add_argument('audio', help='input audio file (wav; ogg/m4a/… via ffmpeg)')
    parser.add_argument('--model-dir', default=None,
                        help='directory with the ONNX artifacts (default: $TDT_TRANSCRIBE_MODEL_DIR '
                             'or the per-user data directory)')
    parser.add_argument('--download', action='store_true',
                        help='download missing model files from the Hugging Face Hub')
    parser.add_argument('--provider', action='append', dest='providers', default=None,
                        help='ONNX Runtime execution provider (repeatable, in priority order)')
    parser.add_argument('--resampler', choices=('linear', 'librosa'), default=None)
    parser.add_argument('--timestamps', action='store_true', help='print word timestamps')
    parser.add_argument('--runs', type=int, default=0,
                        help='number of timed runs to report the real-time factor')
    parser.add_argument('-v', '--verbose', action='store_true', help='debug logging')
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    try:
        model = from_pretrained(args.model_dir, providers=args.providers,
                                download=args.download, resampler=args.resampler)
        with as_wav(args.audio) as wav_path:
            wav_bytes = load_wav(wav_path)

        if args.runs > 0:
            audio    = normalize_wav(wav_bytes, resampler=model.config.resampler)
            duration = len(audio) / SAMPLE_RATE
            times    = []
            for _ in range(args.runs):
                t0 = time.perf_counter()
                text = model.transcribe_samples(audio)
                times.append(time.perf_counter() - t0)
            dt  = min(times)
            rtf = duration / dt if dt > 0 else float('inf')
            print(f"audio_s={duration:.2f}  time_s={dt:.4f}  RTF={rtf:.2f}x  text={text!r}")
            return 0

        if args.timestamps:
            result = model.transcribe(wav_bytes, timestamps=True)
            for w in result.timestamp['word']:
                print(f"{w['start']:7.2f}s {w['end']:7.2f}s  {w['word']}")
            print(result.text)
        else:
            print(model.transcribe(wav_bytes))
    except TranscriptionError as exc:
        logger.error("%s", exc)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
