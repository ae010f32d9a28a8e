#!/usr/bin/env python3
"""
Bilingual EPUB Converter

Translates every paragraph of an EPUB and writes a bilingual edition where
each translated paragraph is followed by the original in italics.

Usage:
    python convert.py input.epub --target fr
    python convert.py input.epub --target de --source en -o out/
    python convert.py input.epub --target es --cooldown 0 -v
"""

import argparse
import logging
import sys
from pathlib import Path

from bilingual_reader.config import MISMATCH_BEST_EFFORT, MISMATCH_STRICT, ReaderConfig
from bilingual_reader.models import LANGUAGES
from bilingual_reader.orchestrator import BookTranslationError, translate_book


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Translate an EPUB into a bilingual edition (translation + original).',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  python convert.py book.epub --target fr                  # English (auto) -> French
  python convert.py book.epub --target de -o translated/   # Write the result elsewhere
  python convert.py book.epub --target es --cooldown 0     # No pause between chapters
  python convert.py book.epub --target it --strict-pairing # Fail chunks that lose paragraphs
        ''',
    )

    parser.add_argument('input', help='Path to the input EPUB file')
    parser.add_argument(
        '--target',
        required=True,
        choices=sorted(LANGUAGES),
        help='Target language code',
    )
    parser.add_argument(
        '--source',
        default='auto',
        help='Source language code (default: auto-detect)',
    )
    parser.add_argument(
        '-o', '--output-dir',
        help='Directory for <input>_<target>.epub (default: next to the input)',
    )
    parser.add_argument(
        '--work-dir',
        help='Directory for unpacked books; reused to resume interrupted runs',
    )
    parser.add_argument(
        '--cooldown',
        type=float,
        help='Seconds to wait after each translated chapter file',
    )
    parser.add_argument(
        '--chunk-limit',
        type=int,
        help='Maximum characters per translation request',
    )
    parser.add_argument(
        '--strict-pairing',
        action='store_true',
        help='Fail a chunk when the translation returns a different paragraph count',
    )
    parser.add_argument(
        '-v', '--verbose',
        action='store_true',
        help='Enable verbose logging',
    )
    return parser


def config_from_args(args) -> ReaderConfig:
    """Environment defaults overridden by command line flags."""
    config = ReaderConfig.from_env()
    input_path = Path(args.input)
    config.output_root = Path(args.output_dir) if args.output_dir else input_path.parent
    if args.work_dir:
        config.work_root = Path(args.work_dir)
    if args.cooldown is not None:
        config.cooldown_seconds = args.cooldown
    if args.chunk_limit is not None:
        config.chunk_limit = args.chunk_limit
    config.mismatch_policy = MISMATCH_STRICT if args.strict_pairing else MISMATCH_BEST_EFFORT
    return config


def main(argv=None):
    args = build_parser().parse_args(argv)

    # Set up logging
    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S',
    )

    input_path = Path(args.input)
    if not input_path.exists():
        print(f'Error: Input file not found: {input_path}', file=sys.stderr)
        sys.exit(1)
    if input_path.suffix.lower() != '.epub':
        print(f'Warning: Input file does not have .epub extension: {input_path}', file=sys.stderr)
    if args.chunk_limit is not None and args.chunk_limit <= 0:
        print('Error: --chunk-limit must be positive', file=sys.stderr)
        sys.exit(1)

    config = config_from_args(args)
    config.output_dir.mkdir(parents=True, exist_ok=True)

    print(f'Input:    {input_path}')
    print(f'Output:   {config.output_dir}')
    print(f'Mode:     {args.source} -> {args.target}')
    print(f'Cooldown: {config.cooldown_seconds:g}s per chapter')
    print()

    try:
        result = translate_book(input_path, args.target, source=args.source, config=config)
    except BookTranslationError as e:
        print(f'\nError: {e}', file=sys.stderr)
        if e.output_path is not None and Path(e.output_path).exists():
            print(f'Partial output written to: {e.output_path}')
        sys.exit(1)

    print(
        f'\n{len(result.translated)} file(s) translated, '
        f'{len(result.skipped)} already translated'
    )
    print(f'Output written to: {result.output_path}')


if __name__ == '__main__':
    main()
