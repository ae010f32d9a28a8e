"""Bilingual EPUB translation and read-aloud utilities."""

from .chapter_extractor import (
    ChapterNotFoundError,
    list_chapters,
    read_chapter,
)
from .chunk_translator import (
    ParagraphMismatchError,
    translate_chunk,
)
from .config import ReaderConfig
from .orchestrator import (
    BookTranslationError,
    translate_book,
)
from .playback import (
    PlaybackScheduler,
    build_queue,
)
from .translator import (
    TranslationError,
    translate_text,
)

__all__ = [
    'ChapterNotFoundError',
    'list_chapters',
    'read_chapter',
    'ParagraphMismatchError',
    'translate_chunk',
    'ReaderConfig',
    'BookTranslationError',
    'translate_book',
    'PlaybackScheduler',
    'build_queue',
    'TranslationError',
    'translate_text',
]
