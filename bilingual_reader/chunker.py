"""
Line-bounded chunking of chapter markup.

The free translate endpoint takes the text in the request URL, so each
request must stay under a fixed size. Chunks are built greedily from whole
lines; a line is never split.
"""

import logging

from .config import DEFAULT_CHUNK_LIMIT
from .models import TranslationChunk

logger = logging.getLogger(__name__)


def chunk_lines(lines: list[str], limit: int = DEFAULT_CHUNK_LIMIT) -> list[TranslationChunk]:
    """
    Split a sequence of lines into size-bounded chunks.

    Each line costs len(line) + 1 (its line break). When adding the next line
    would push the running size over `limit`, the current chunk is closed and
    the line starts a new one. A single line longer than `limit` gets a chunk
    of its own and is allowed to exceed the limit.
    """
    chunks = []
    current: list[str] = []
    current_size = 0
    start = 0

    for i, line in enumerate(lines):
        cost = len(line) + 1
        if current and current_size + cost > limit:
            chunks.append(TranslationChunk(raw_lines=current, start_line=start, end_line=i))
            current = []
            current_size = 0
            start = i
        if not current and cost > limit:
            logger.warning(
                f'Line {i + 1} is {cost} characters, over the {limit} limit; '
                f'sending it as its own chunk'
            )
        current.append(line)
        current_size += cost

    if current:
        chunks.append(TranslationChunk(raw_lines=current, start_line=start, end_line=len(lines)))

    return chunks


def chunk_markup(markup: str, limit: int = DEFAULT_CHUNK_LIMIT) -> list[TranslationChunk]:
    """Chunk a chapter file's text. Empty input yields no chunks."""
    if not markup:
        return []
    return chunk_lines(markup.split('\n'), limit=limit)
