"""
Translate a whole EPUB into a bilingual EPUB.

The book is unpacked into a working directory of its own per source and
target language. A run that fails keeps that directory, so the next run of
the same job resumes where it stopped; a clean run removes it. Every chapter
file is translated in sequence and the tree is packed into
<stem>_<target>.epub. Packing always happens, even when some chapters
failed, so a partial book is never lost; the failure is raised afterwards.
"""

import logging
import shutil
import time
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from pathlib import Path
from typing import Optional

from .archive import extract_epub, pack_epub
from .cache import TranslationCache
from .config import ReaderConfig
from .pipeline import STATUS_SKIPPED, translate_chapter_file
from .translator import translate_text

logger = logging.getLogger(__name__)

MARKUP_SUFFIXES = ('.xhtml', '.html', '.htm')

# Navigation document, not reading content
NON_CONTENT_FILENAME = 'nav.xhtml'

# Layouts used by common EPUB producers, checked in order
KNOWN_CONTENT_DIRS = (
    ('OEBPS', 'xhtml'),
    ('OEBPS', 'Text'),
    ('OEBPS',),
    ('OPS',),
    ('EPUB',),
)

MAX_SEARCH_DEPTH = 8


class BookStage(Enum):
    NOT_STARTED = 'not_started'
    EXTRACTING = 'extracting'
    TRANSLATING_FILES = 'translating_files'
    REPACKAGING = 'repackaging'
    COMPLETED = 'completed'
    COMPLETED_WITH_ERROR = 'completed_with_error'


class BookTranslationError(Exception):
    """Raised when a book run cannot start or finished with failed chapters."""

    def __init__(self, message: str, output_path: Optional[Path] = None, failures=None):
        super().__init__(message)
        self.output_path = output_path
        self.failures = list(failures or [])


@dataclass
class BookTranslationResult:
    output_path: Path
    translated: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0


def _has_markup(directory: Path) -> bool:
    return any(
        p.is_file() and p.suffix.lower() in MARKUP_SUFFIXES
        for p in directory.iterdir()
    )


def detect_content_directory(root, max_depth: int = MAX_SEARCH_DEPTH) -> Path:
    """
    Find the directory holding the book's chapter files.

    Known layouts are tried first; otherwise the tree is searched depth
    first (to `max_depth` levels) for the first directory with markup files.
    """
    root = Path(root)
    for parts in KNOWN_CONTENT_DIRS:
        candidate = root.joinpath(*parts)
        if candidate.is_dir() and _has_markup(candidate):
            logger.info(f'Using content directory: {candidate}')
            return candidate

    # Pre-order walk; children are visited in name order
    pending = [(root, 0)]
    while pending:
        directory, depth = pending.pop()
        try:
            if _has_markup(directory):
                logger.info(f'Found markup files in: {directory}')
                return directory
            children = sorted(p for p in directory.iterdir() if p.is_dir())
        except OSError as e:
            logger.warning(f'Could not read directory {directory}: {e}')
            continue
        if depth < max_depth:
            pending.extend((child, depth + 1) for child in reversed(children))

    raise BookTranslationError(f'No HTML/XHTML files found in {root}')


def find_chapter_files(content_dir) -> list[Path]:
    """Markup files of the content directory in name order, minus the nav document."""
    content_dir = Path(content_dir)
    return sorted(
        p for p in content_dir.iterdir()
        if p.is_file()
        and p.suffix.lower() in MARKUP_SUFFIXES
        and p.name.lower() != NON_CONTENT_FILENAME
    )


def output_path_for(epub_path, target: str, output_dir) -> Path:
    return Path(output_dir) / f'{Path(epub_path).stem}_{target}.epub'


def work_dir_for(epub_path, source: str, target: str, work_root) -> Path:
    """Working tree of one (book, source, target) job."""
    return Path(work_root) / f'{Path(epub_path).stem}_{source}_{target}'


def translate_book(
    epub_path,
    target: str,
    source: str = 'auto',
    config: Optional[ReaderConfig] = None,
    translate=None,
    cache: Optional[TranslationCache] = None,
    progress_callback=None,
    sleep=time.sleep,
) -> BookTranslationResult:
    """
    Translate every chapter of an EPUB and pack a bilingual copy.

    Args:
        epub_path: Stored book to translate.
        target: Target language code.
        source: Source language code, or 'auto'.
        config: Limits, cooldown and directories (defaults to ReaderConfig()).
        translate: Callable (text, source, target) -> text; defaults to
            Google Translate with the configured retry count.
        cache: Translation cache; defaults to the one at config.cache_path.
        progress_callback: Called as (stage, step, total, message).
        sleep: Wait function used for the per-file cooldown.

    Raises:
        BookTranslationError: If nothing can be translated, or after packing
            when one or more chapter files failed.
    """
    config = config or ReaderConfig()
    epub_path = Path(epub_path)
    if not epub_path.exists():
        raise BookTranslationError(f'EPUB file not found: {epub_path}')
    if translate is None:
        translate = partial(translate_text, max_retries=config.max_retries)
    if cache is None:
        cache = TranslationCache(config.cache_path)

    def report(stage, step=0, total=0, message=''):
        if progress_callback:
            progress_callback(stage, step, total, message)

    started = time.monotonic()
    logger.info(f'Translating {epub_path.name}: {source} -> {target}')
    report(BookStage.NOT_STARTED, message='Starting...')

    work_dir = work_dir_for(epub_path, source, target, config.work_dir)
    if work_dir.exists():
        logger.info(f'Reusing working directory: {work_dir}')
    else:
        report(BookStage.EXTRACTING, message='Extracting EPUB...')
        extract_epub(epub_path, work_dir)

    content_dir = detect_content_directory(work_dir)
    files = find_chapter_files(content_dir)
    if not files:
        raise BookTranslationError(f'No chapter files to translate in {content_dir}')
    logger.info(f'Files to translate: {[f.name for f in files]}')

    result = BookTranslationResult(output_path=output_path_for(epub_path, target, config.output_dir))
    failures = []
    total = len(files)
    for i, path in enumerate(files, 1):
        logger.info(f'Processing file {i}/{total}: {path.name}')
        report(BookStage.TRANSLATING_FILES, i - 1, total, f'Translating {path.name} ({i}/{total})')
        try:
            status = translate_chapter_file(
                path,
                source,
                target,
                translate=translate,
                cache=cache,
                chunk_limit=config.chunk_limit,
                cooldown_seconds=config.cooldown_seconds,
                mismatch_policy=config.mismatch_policy,
                sleep=sleep,
            )
        except Exception as e:
            logger.exception(f'Failed to translate {path.name}')
            failures.append((path.name, e))
            continue
        if status == STATUS_SKIPPED:
            result.skipped.append(path.name)
        else:
            result.translated.append(path.name)

    report(BookStage.REPACKAGING, total, total, 'Creating EPUB...')
    pack_epub(work_dir, result.output_path)
    result.duration_seconds = time.monotonic() - started

    if failures:
        names = ', '.join(name for name, _ in failures)
        message = f'Translation failed for {len(failures)} file(s): {names}'
        logger.error(f'{message}; partial EPUB written to {result.output_path}')
        report(BookStage.COMPLETED_WITH_ERROR, total, total, message)
        raise BookTranslationError(
            message, output_path=result.output_path, failures=failures,
        ) from failures[0][1]

    shutil.rmtree(work_dir, ignore_errors=True)
    logger.info(
        f'Translation completed in {result.duration_seconds / 60:.2f} minutes: '
        f'{result.output_path}'
    )
    report(BookStage.COMPLETED, total, total, 'Done!')
    return result
