"""
Upload storage: accept EPUB uploads and list the stored books.

Book names coming from requests are only ever resolved against the listing,
so a crafted name cannot reach outside the uploads folder.
"""

import logging
from datetime import datetime
from pathlib import Path

import ebooklib
from ebooklib import epub
from werkzeug.utils import secure_filename

from .models import BookFile

logger = logging.getLogger(__name__)


class InvalidBookError(Exception):
    """Raised for uploads or book names that cannot be accepted."""


class Library:
    """The uploads folder as a list of stored books."""

    def __init__(self, uploads_dir):
        self.uploads_dir = Path(uploads_dir)

    def list_books(self) -> list[BookFile]:
        """Stored EPUBs, newest first."""
        if not self.uploads_dir.is_dir():
            return []
        books = []
        for path in self.uploads_dir.iterdir():
            if path.is_file() and path.suffix.lower() == '.epub':
                stat = path.stat()
                books.append(BookFile(
                    filename=path.name,
                    size=stat.st_size,
                    uploaded_at=datetime.fromtimestamp(stat.st_mtime),
                ))
        books.sort(key=lambda b: (b.uploaded_at, b.filename), reverse=True)
        return books

    def book_names(self) -> list[str]:
        return [b.filename for b in self.list_books()]

    def resolve_book(self, name: str) -> Path:
        """Path of a listed book; anything not in the listing is rejected."""
        if not name or name not in self.book_names():
            raise InvalidBookError(f'Unknown book: {name}')
        return self.uploads_dir / name

    def store(self, file_storage) -> BookFile:
        """
        Validate and save an uploaded EPUB (a werkzeug FileStorage).

        Raises:
            InvalidBookError: For a missing name, a non-.epub name, or a file
                that does not open as an EPUB with readable documents.
        """
        original = file_storage.filename or ''
        if not original.lower().endswith('.epub'):
            raise InvalidBookError('Only EPUB files are allowed!')
        filename = secure_filename(original)
        if not filename or not filename.lower().endswith('.epub'):
            raise InvalidBookError(f'Invalid file name: {original}')

        self.uploads_dir.mkdir(parents=True, exist_ok=True)
        target = self.uploads_dir / filename
        partial = self.uploads_dir / f'.{filename}.part'
        file_storage.save(str(partial))

        try:
            book = epub.read_epub(str(partial), options={'ignore_ncx': True})
            items = list(book.get_items_of_type(ebooklib.ITEM_DOCUMENT))
        except Exception as e:
            partial.unlink(missing_ok=True)
            raise InvalidBookError(f'Invalid or corrupted EPUB file: {e}') from e
        if not items:
            partial.unlink(missing_ok=True)
            raise InvalidBookError('This EPUB has no readable content (no HTML documents found).')

        partial.replace(target)
        logger.info(f'Stored upload {filename} ({len(items)} documents)')
        stat = target.stat()
        return BookFile(
            filename=filename,
            size=stat.st_size,
            uploaded_at=datetime.fromtimestamp(stat.st_mtime),
        )
