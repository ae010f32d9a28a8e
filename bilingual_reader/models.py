"""
Shared data types for the bilingual reader.

Paragraph streams, translation chunks, playback items and saved progress are
plain dataclasses so they can be passed between the translation pipeline,
the web front end and the playback scheduler without extra glue.
"""

from dataclasses import dataclass, field
from datetime import datetime

# Language tags carried by every paragraph of a chapter stream
SOURCE = 'source'
TARGET = 'target'

# Supported languages for the translate form (code -> display name)
LANGUAGES = {
    'en': 'English',
    'es': 'Spanish',
    'fr': 'French',
    'de': 'German',
    'it': 'Italian',
    'pt': 'Portuguese',
    'ru': 'Russian',
    'ja': 'Japanese',
    'ko': 'Korean',
    'zh': 'Chinese',
}

# Source side additionally accepts auto-detection
SOURCE_LANGUAGES = {'auto': 'Detect language', **LANGUAGES}


@dataclass(frozen=True)
class ParagraphRecord:
    """One rendered paragraph of a chapter, in stream order."""
    text: str
    language: str = SOURCE
    index: int = 0

    def to_dict(self) -> dict:
        return {'text': self.text, 'lang': self.language, 'index': self.index}


@dataclass(frozen=True)
class ChapterDocument:
    """A chapter document and its paragraph stream (read-only)."""
    identifier: str
    paragraphs: tuple[ParagraphRecord, ...] = ()
    label: str = ''

    def __len__(self) -> int:
        return len(self.paragraphs)


@dataclass
class TranslationChunk:
    """A line-bounded slice of a chapter file: lines[start_line:end_line]."""
    raw_lines: list[str] = field(default_factory=list)
    start_line: int = 0
    end_line: int = 0

    @property
    def size(self) -> int:
        return sum(len(line) + 1 for line in self.raw_lines)

    @property
    def text(self) -> str:
        return '\n'.join(self.raw_lines)


@dataclass(frozen=True)
class PlaybackItem:
    """An entry of the playback queue; original_index points into the unfiltered stream."""
    text: str
    language: str
    original_index: int


@dataclass(frozen=True)
class SavedProgress:
    book: str
    last_chapter: str
    last_paragraph_index: int


@dataclass(frozen=True)
class BookFile:
    """A stored upload as listed in the library."""
    filename: str
    size: int
    uploaded_at: datetime

    @property
    def size_formatted(self) -> str:
        return format_file_size(self.size)


def format_file_size(size: int) -> str:
    """Human-readable size, e.g. 1536 -> '1.5 KB'."""
    if size <= 0:
        return '0 Bytes'
    units = ['Bytes', 'KB', 'MB', 'GB']
    value = float(size)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    return f'{round(value, 2):g} {units[unit]}'
