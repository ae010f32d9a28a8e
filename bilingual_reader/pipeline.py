"""
Translate a single chapter file in place.

The file is chunked, each chunk is translated in order, and the result
overwrites the file. Files that already carry the bilingual marker are
skipped, so a run can be repeated safely.
"""

import logging
import re
import time
from pathlib import Path

from .chunk_translator import MARKER_ATTR, parse_paragraph_line, split_header, translate_chunk
from .chunker import chunk_lines
from .config import DEFAULT_CHUNK_LIMIT, DEFAULT_COOLDOWN_SECONDS, MISMATCH_BEST_EFFORT
from .translator import translate_text

logger = logging.getLogger(__name__)

STATUS_TRANSLATED = 'translated'
STATUS_SKIPPED = 'skipped'

CLOSING_TAGS = '</body>\n</html>\n'

_BODY_OPEN = re.compile(r'<body[\s>/]', re.IGNORECASE)
_BODY_CLOSE = re.compile(r'</body\s*>', re.IGNORECASE)


def is_translated(content: str) -> bool:
    """True if the markup already holds bilingual paragraph pairs."""
    return f'{MARKER_ATTR}=' in content


def count_paragraphs(lines: list[str]) -> int:
    """Paragraph lines after the <body> line (all lines when there is none)."""
    _, body = split_header(lines)
    return sum(1 for line in body if parse_paragraph_line(line) is not None)


def split_trailer(content: str) -> tuple[list[str], str]:
    """Split into (lines before </body>, trailer text from the </body> line on)."""
    lines = content.split('\n')
    for i, line in enumerate(lines):
        if _BODY_CLOSE.search(line):
            return lines[:i], '\n'.join(lines[i:])
    trailer = CLOSING_TAGS if _BODY_OPEN.search(content) else ''
    return lines, trailer


def translate_chapter_file(
    path,
    source: str,
    target: str,
    translate=translate_text,
    cache=None,
    chunk_limit: int = DEFAULT_CHUNK_LIMIT,
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
    mismatch_policy: str = MISMATCH_BEST_EFFORT,
    sleep=time.sleep,
) -> str:
    """
    Translate one chapter file and overwrite it with the bilingual version.

    Returns STATUS_SKIPPED when the file was already translated, otherwise
    STATUS_TRANSLATED. The cooldown only follows files that made at least one
    provider call. Any error aborts the
    file and propagates; nothing written before the error is rolled back.
    """
    path = Path(path)
    content = path.read_text(encoding='utf-8')

    if is_translated(content):
        logger.info(f'Already translated, skipping: {path.name}')
        return STATUS_SKIPPED

    main_lines, trailer = split_trailer(content)
    chunks = chunk_lines(main_lines, limit=chunk_limit)
    # A chapter with fewer than two paragraphs passes through whole
    min_paragraphs = 1 if count_paragraphs(main_lines) >= 2 else 2
    total_lines = len(main_lines)

    provider_calls = 0

    def counted_translate(text, src, tgt):
        nonlocal provider_calls
        provider_calls += 1
        return translate(text, src, tgt)

    translated_parts = []
    for chunk in chunks:
        logger.info(
            f'{path.name}: translating lines {chunk.start_line + 1}-{chunk.end_line} '
            f'of {total_lines} ({chunk.size} characters)'
        )
        translated_parts.append(
            translate_chunk(
                chunk.text,
                source,
                target,
                translate=counted_translate,
                cache=cache,
                mismatch_policy=mismatch_policy,
                min_paragraphs=min_paragraphs,
            )
        )

    result = '\n'.join(translated_parts)
    if trailer:
        result = f'{result}\n{trailer}' if result else trailer

    path.write_text(result, encoding='utf-8')
    logger.info(f'Translated and updated: {path.name}')

    # Pass-through and fully cached files never reached the provider
    if cooldown_seconds > 0 and provider_calls:
        logger.info(f'Cooling down for {cooldown_seconds:g}s before the next file')
        sleep(cooldown_seconds)

    return STATUS_TRANSLATED
