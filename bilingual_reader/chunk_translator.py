"""
Translate one chunk of chapter markup and interleave the result.

Every paragraph line of the chunk is paired with its translation: the
translated paragraph comes first, followed by the original. Structural lines
(wrappers, headings, blank lines) stay exactly where they were.
"""

import logging
import re
from typing import Optional

from bs4 import BeautifulSoup, NavigableString, Tag

from .config import MISMATCH_BEST_EFFORT, MISMATCH_STRICT
from .translator import translate_text

logger = logging.getLogger(__name__)

PARAGRAPH_DELIMITER = '\n\n'

# Attribute set on both halves of a pair; its presence marks a translated file
MARKER_ATTR = 'data-bilingual'
TRANSLATED_CLASS = 'translated'
SOURCE_STYLE = 'font-style: italic;'

_BODY_OPEN = re.compile(r'<body[\s>/]', re.IGNORECASE)
_BLANK_LINES = re.compile(r'\n\s*\n')


class ParagraphMismatchError(Exception):
    """Raised under the strict policy when the reply does not split into one part per paragraph."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(
            f'Translation returned {received} paragraph(s) for {expected} original(s)'
        )


def split_header(lines: list[str]) -> tuple[list[str], list[str]]:
    """Split lines into (header, body) at the line that opens <body>."""
    for i, line in enumerate(lines):
        if _BODY_OPEN.search(line):
            return lines[:i + 1], lines[i + 1:]
    return [], lines


def parse_paragraph_line(line: str) -> Optional[Tag]:
    """Return the <p> element if the line holds exactly one non-empty paragraph."""
    stripped = line.strip()
    lowered = stripped.lower()
    if not lowered.startswith('<p') or not lowered.endswith('</p>'):
        return None

    fragment = BeautifulSoup(stripped, 'html.parser')
    elements = [
        node for node in fragment.contents
        if not (isinstance(node, NavigableString) and not node.strip())
    ]
    if len(elements) != 1:
        return None
    element = elements[0]
    if not isinstance(element, Tag) or element.name != 'p':
        return None
    if not element.get_text(strip=True):
        return None
    return element


def paragraph_text(tag: Tag) -> str:
    """Plain text of a paragraph with whitespace collapsed."""
    return ' '.join(tag.get_text().split())


def split_translation(reply: str) -> list[str]:
    """Split a provider reply back into paragraphs on blank lines."""
    return [part.strip() for part in _BLANK_LINES.split(reply or '') if part.strip()]


def _indent_of(line: str) -> str:
    return line[:len(line) - len(line.lstrip())]


def _translated_line(text: str, indent: str = '') -> str:
    soup = BeautifulSoup('', 'html.parser')
    trans_p = soup.new_tag('p')
    trans_p['class'] = TRANSLATED_CLASS
    trans_p[MARKER_ATTR] = 'target'
    trans_p.string = text
    return indent + str(trans_p)


def _source_line(tag: Tag, indent: str = '') -> str:
    existing = tag.get('style')
    tag['style'] = f'{SOURCE_STYLE} {existing}' if existing else SOURCE_STYLE
    tag[MARKER_ATTR] = 'source'
    return indent + str(tag)


def translate_chunk(
    chunk_text: str,
    source: str,
    target: str,
    translate=translate_text,
    cache=None,
    mismatch_policy: str = MISMATCH_BEST_EFFORT,
    min_paragraphs: int = 2,
) -> str:
    """
    Translate the paragraphs of one chunk and return the interleaved markup.

    Args:
        chunk_text: Raw lines of the chunk joined with newlines.
        source: Source language code (or 'auto').
        target: Target language code.
        translate: Callable (text, source, target) -> translated text.
        cache: Optional TranslationCache checked before calling `translate`.
        mismatch_policy: 'best_effort' pairs by position when the reply has a
            different paragraph count; 'strict' raises ParagraphMismatchError.
        min_paragraphs: Chunks with fewer paragraphs are returned unchanged.
            The chapter pipeline lowers this to 1 when the whole chapter has
            enough paragraphs, so a paragraph left alone at a chunk boundary
            is still translated.

    Provider errors propagate to the caller.
    """
    lines = chunk_text.split('\n')
    header, body = split_header(lines)
    parsed = [(line, parse_paragraph_line(line)) for line in body]
    paragraphs = [tag for _, tag in parsed if tag is not None]

    if not paragraphs or len(paragraphs) < min_paragraphs:
        logger.debug(f'Chunk has {len(paragraphs)} paragraph(s), passing through')
        return chunk_text

    request = PARAGRAPH_DELIMITER.join(paragraph_text(tag) for tag in paragraphs)

    reply = cache.get(request, source, target) if cache is not None else None
    if reply is None:
        reply = translate(request, source, target)
        if cache is not None:
            cache.set(request, source, target, reply)
    else:
        logger.debug('Chunk translation served from cache')

    translations = split_translation(reply)
    if len(translations) != len(paragraphs):
        if mismatch_policy == MISMATCH_STRICT:
            raise ParagraphMismatchError(len(paragraphs), len(translations))
        logger.warning(
            f'Paragraph count mismatch: {len(paragraphs)} original vs '
            f'{len(translations)} translated; pairing by position'
        )

    result = list(header)
    position = 0
    for line, tag in parsed:
        if tag is None:
            result.append(line)
            continue
        indent = _indent_of(line)
        if position < len(translations):
            result.append(_translated_line(translations[position], indent))
        result.append(_source_line(tag, indent))
        position += 1

    return '\n'.join(result)
