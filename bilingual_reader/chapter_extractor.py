"""
Read chapters and paragraph streams out of an EPUB.

Chapters are the spine documents in reading order. A chapter's paragraph
stream is the sequence of leaf text blocks; blocks produced by the
translation pipeline are tagged 'target', everything else 'source'.
"""

import base64
import logging
import warnings
from pathlib import PurePosixPath
from typing import Optional

import ebooklib
from bs4 import BeautifulSoup, XMLParsedAsHTMLWarning
from ebooklib import epub

from .chunk_translator import MARKER_ATTR, TRANSLATED_CLASS
from .models import SOURCE, TARGET, ChapterDocument, ParagraphRecord

warnings.filterwarnings('ignore', category=XMLParsedAsHTMLWarning)

logger = logging.getLogger(__name__)

_PARAGRAPH_BLOCKS = ['p', 'h1', 'h2', 'h3', 'h4', 'h5', 'h6', 'li', 'blockquote']

_IMAGE_TYPES = {
    '.jpg': 'image/jpeg',
    '.jpeg': 'image/jpeg',
    '.png': 'image/png',
    '.svg': 'image/svg+xml',
    '.gif': 'image/gif',
}


class ChapterNotFoundError(Exception):
    """Raised when a requested chapter is not a document of the book."""


def open_book(epub_path) -> epub.EpubBook:
    return epub.read_epub(str(epub_path), options={'ignore_ncx': True})


def _as_book(book_or_path) -> epub.EpubBook:
    if isinstance(book_or_path, epub.EpubBook):
        return book_or_path
    return open_book(book_or_path)


def list_chapters(book_or_path) -> list[str]:
    """Document names in spine (reading) order; all documents if the spine names none."""
    book = _as_book(book_or_path)
    docs = []
    for entry in book.spine:
        item_id = entry[0] if isinstance(entry, tuple) else entry
        item = book.get_item_with_id(item_id)
        if item is not None and item.get_type() == ebooklib.ITEM_DOCUMENT:
            docs.append(item.get_name())

    if not docs:
        logger.debug('Spine lists no documents, falling back to all documents')
        docs = [item.get_name() for item in book.get_items_of_type(ebooklib.ITEM_DOCUMENT)]
    return docs


def _document(book: epub.EpubBook, doc: str):
    item = book.get_item_with_href(doc)
    if item is None or item.get_type() != ebooklib.ITEM_DOCUMENT:
        raise ChapterNotFoundError(f'Chapter not found in book: {doc}')
    return item


def _raw_html(item) -> str:
    # EpubHtml.get_content() rebuilds the document and drops its <title>
    content = item.content
    if isinstance(content, bytes):
        return content.decode('utf-8', errors='replace')
    return content or ''


def _label_from_html(html: str) -> str:
    soup = BeautifulSoup(html, 'lxml')
    for name in ('h1', 'h2', 'h3', 'title'):
        tag = soup.find(name)
        if tag:
            label = ' '.join(tag.get_text().split())
            if label:
                return label
    return ''


def chapter_labels(book_or_path, docs: list[str]) -> list[str]:
    """Human-friendly chapter labels: first heading or title, else the file name."""
    book = _as_book(book_or_path)
    labels = []
    for i, doc in enumerate(docs):
        label = ''
        item = book.get_item_with_href(doc)
        if item is not None:
            label = _label_from_html(_raw_html(item))
        if not label:
            label = PurePosixPath(doc).stem or f'Chapter {i + 1}'
        labels.append(label)
    return labels


def _language_of(block) -> str:
    if block.get(MARKER_ATTR) == TARGET:
        return TARGET
    if TRANSLATED_CLASS in (block.get('class') or []):
        return TARGET
    return SOURCE


def extract_paragraphs(html: str) -> list[ParagraphRecord]:
    """Leaf text blocks of a document as a dense, ordered paragraph stream."""
    soup = BeautifulSoup(html, 'lxml')
    paragraphs = []
    for block in soup.find_all(_PARAGRAPH_BLOCKS):
        if block.find(_PARAGRAPH_BLOCKS):
            continue
        text = ' '.join(block.get_text().split())
        if not text:
            continue
        paragraphs.append(ParagraphRecord(text=text, language=_language_of(block), index=len(paragraphs)))
    return paragraphs


def read_chapter(book_or_path, doc: str) -> ChapterDocument:
    """Load one chapter document and its paragraph stream."""
    book = _as_book(book_or_path)
    item = _document(book, doc)
    html = _raw_html(item)
    paragraphs = extract_paragraphs(html)
    logger.debug(f'{doc}: {len(paragraphs)} paragraphs')
    return ChapterDocument(
        identifier=doc,
        paragraphs=tuple(paragraphs),
        label=_label_from_html(html) or PurePosixPath(doc).stem,
    )


def _metadata(book: epub.EpubBook, namespace: str, name: str) -> list:
    try:
        return book.get_metadata(namespace, name)
    except KeyError:
        return []


def book_language(book_or_path) -> str:
    """Primary subtag of the declared dc:language, or '' when none is declared."""
    book = _as_book(book_or_path)
    for value, _ in _metadata(book, 'DC', 'language'):
        if value and value.strip():
            return value.strip().split('-')[0].lower()
    return ''


def _cover_item(book: epub.EpubBook):
    # EPUB2: <meta name="cover" content="item-id"/>, kept by ebooklib under OPF "meta"
    metas = _metadata(book, 'OPF', 'cover') + _metadata(book, 'OPF', 'meta')
    for _, attrs in metas:
        attrs = attrs or {}
        if attrs.get('name', 'cover') != 'cover':
            continue
        cover_id = attrs.get('content')
        item = book.get_item_with_id(cover_id) if cover_id else None
        if item is not None:
            return item

    images = [
        item for item in book.get_items()
        if item.get_type() in (ebooklib.ITEM_COVER, ebooklib.ITEM_IMAGE)
    ]
    # EPUB3: properties="cover-image" is loaded as a cover item
    for item in images:
        if item.get_type() == ebooklib.ITEM_COVER:
            return item
    for item in images:
        if 'cover' in (item.get_id() or '').lower() or 'cover' in item.get_name().lower():
            return item
    return None


def cover_data_url(book_or_path) -> Optional[str]:
    """The cover image as a data: URL, or None when the book has no recognizable cover."""
    book = _as_book(book_or_path)
    item = _cover_item(book)
    if item is None:
        return None
    mime = getattr(item, 'media_type', '') or _IMAGE_TYPES.get(PurePosixPath(item.get_name()).suffix.lower(), '')
    if not mime.startswith('image/'):
        return None
    encoded = base64.b64encode(item.get_content()).decode('ascii')
    return f'data:{mime};base64,{encoded}'
