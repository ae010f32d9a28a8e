"""
Translation provider: plain text in, translated text out.

Uses deep-translator with the Google Translate backend (free, no API key).
The backend carries the text in the request URL, so a request whose encoded
query would grow past MAX_QUERY_LENGTH is sent in parts: whole paragraphs
are grouped while they fit, and an oversized paragraph is cut at sentence
boundaries. Retries with exponential backoff, then raises so the caller
decides what a failed chapter means. Never returns placeholder text.
"""

import logging
import re
import time
from dataclasses import dataclass
from urllib.parse import quote_plus

from deep_translator import GoogleTranslator
from deep_translator.exceptions import LanguageNotSupportedException

logger = logging.getLogger(__name__)

# Encoded query budget per request; non-Latin text encodes to ~9 bytes a character
MAX_QUERY_LENGTH = 8000

PARAGRAPH_BREAK = '\n\n'

# Codes the Google backend spells differently
PROVIDER_CODES = {
    'zh': 'zh-CN',
}

# Typographic characters the web endpoint mangles
_ASCII_REPLACEMENTS = {
    '‘': "'",
    '’': "'",
    '“': '"',
    '”': '"',
    '—': '--',
    '–': '-',
}

_SENTENCE_END = re.compile(r'(?<=[。！？；.!?;])')


class TranslationError(Exception):
    """Raised when the provider cannot translate a request."""


@dataclass(frozen=True)
class RequestPart:
    text: str
    # True when this part is the tail of a paragraph started by the previous part
    continues: bool = False


def normalize_text(text: str) -> str:
    """Replace smart quotes and dashes with ASCII equivalents."""
    for char, replacement in _ASCII_REPLACEMENTS.items():
        text = text.replace(char, replacement)
    return text


def encoded_length(text: str) -> int:
    return len(quote_plus(text))


def _hard_split(text: str, limit: int) -> list[str]:
    pieces, current, size = [], [], 0
    for char in text:
        char_size = encoded_length(char)
        if current and size + char_size > limit:
            pieces.append(''.join(current))
            current, size = [], 0
        current.append(char)
        size += char_size
    if current:
        pieces.append(''.join(current))
    return pieces


def split_paragraph(paragraph: str, limit: int = MAX_QUERY_LENGTH) -> list[str]:
    """Cut one paragraph into pieces that fit the limit, preferring sentence ends."""
    sentences = []
    for sentence in _SENTENCE_END.split(paragraph):
        if encoded_length(sentence) > limit:
            sentences.extend(_hard_split(sentence, limit))
        elif sentence:
            sentences.append(sentence)

    pieces, current, size = [], '', 0
    for sentence in sentences:
        sentence_size = encoded_length(sentence)
        if current and size + sentence_size > limit:
            pieces.append(current)
            current, size = '', 0
        current += sentence
        size += sentence_size
    if current:
        pieces.append(current)
    return [piece.strip() for piece in pieces if piece.strip()]


def split_for_requests(text: str, limit: int = MAX_QUERY_LENGTH) -> list[RequestPart]:
    """Plan the provider requests for `text` so none exceeds `limit` encoded characters."""
    if encoded_length(text) <= limit:
        return [RequestPart(text)]

    parts = []
    group, group_size = [], 0
    break_size = encoded_length(PARAGRAPH_BREAK)
    for paragraph in text.split(PARAGRAPH_BREAK):
        size = encoded_length(paragraph)
        if size > limit:
            if group:
                parts.append(RequestPart(PARAGRAPH_BREAK.join(group)))
                group, group_size = [], 0
            parts.extend(
                RequestPart(piece, continues=i > 0)
                for i, piece in enumerate(split_paragraph(paragraph, limit))
            )
            continue
        added = size + (break_size if group else 0)
        if group and group_size + added > limit:
            parts.append(RequestPart(PARAGRAPH_BREAK.join(group)))
            group, group_size, added = [], 0, size
        group.append(paragraph)
        group_size += added
    if group:
        parts.append(RequestPart(PARAGRAPH_BREAK.join(group)))
    return parts


def _provider_code(code: str) -> str:
    return PROVIDER_CODES.get(code, code)


def _translate_with_retry(translator, text: str, max_retries: int, sleep) -> str:
    """Translate with exponential backoff retry."""
    last_error = None
    for attempt in range(max_retries):
        try:
            return translator.translate(text) or ''
        except Exception as e:
            last_error = e
            if attempt < max_retries - 1:
                wait = 2 ** (attempt + 1)
                logger.warning(
                    f'Translation attempt {attempt + 1} failed: {e}. '
                    f'Retrying in {wait}s...'
                )
                sleep(wait)

    logger.error(f'Translation failed after {max_retries} attempts: {last_error}')
    raise TranslationError(f'Translation failed: {last_error}') from last_error


def translate_text(
    text: str,
    source: str = 'auto',
    target: str = 'en',
    max_retries: int = 3,
    sleep=time.sleep,
    translator_factory=GoogleTranslator,
) -> str:
    """
    Translate a text string from source to target language.

    Args:
        text: Plain text; paragraphs may be separated by blank lines.
        source: Source language code, or 'auto' for detection.
        target: Target language code.
        max_retries: Attempts per request before giving up.
        sleep: Wait function between attempts (injectable for tests).
        translator_factory: Builds the provider from source/target keywords.

    Raises:
        TranslationError: If the language pair is unsupported or a request
            failed on every attempt.
    """
    text = normalize_text(text).strip()
    if not text:
        return ''

    try:
        translator = translator_factory(source=_provider_code(source), target=_provider_code(target))
    except LanguageNotSupportedException as e:
        raise TranslationError(f'Unsupported language pair {source} -> {target}: {e}') from e

    parts = split_for_requests(text)
    if len(parts) > 1:
        logger.info(f'Text too long for one request, sending {len(parts)} parts')

    paragraphs = []
    for part in parts:
        translated = _translate_with_retry(translator, part.text, max_retries, sleep).strip()
        if part.continues and paragraphs:
            paragraphs[-1] = f'{paragraphs[-1]} {translated}'
        else:
            paragraphs.append(translated)
    return PARAGRAPH_BREAK.join(paragraphs)
