"""
Reading progress per book, persisted as a small JSON file.

{"book.epub": {"lastChapter": "xhtml/ch01.xhtml", "lastParagraphIndex": 12}}

Every store on the same file shares one lock, so request handlers may build
their own ProgressStore without racing each other's read-modify-write.
"""

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .models import SavedProgress

logger = logging.getLogger(__name__)

_file_locks: dict[str, threading.Lock] = {}
_file_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.Lock:
    key = os.path.abspath(path)
    with _file_locks_guard:
        return _file_locks.setdefault(key, threading.Lock())


class ProgressStore:
    """Get/set the last chapter and paragraph per book."""

    def __init__(self, path):
        self.path = Path(path)
        self._lock = _lock_for(self.path)

    def _load(self) -> dict:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f'Ignoring unreadable progress file {self.path}: {e}')
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            'w', encoding='utf-8', dir=self.path.parent,
            prefix=f'.{self.path.name}.', suffix='.tmp', delete=False,
        ) as f:
            json.dump(data, f, ensure_ascii=False, indent=2)
        os.replace(f.name, self.path)

    def get(self, book: str) -> Optional[SavedProgress]:
        with self._lock:
            entry = self._load().get(book)
        if not isinstance(entry, dict) or 'lastChapter' not in entry:
            return None
        return SavedProgress(
            book=book,
            last_chapter=str(entry['lastChapter']),
            last_paragraph_index=int(entry.get('lastParagraphIndex', 0)),
        )

    def set(self, book: str, chapter: str, paragraph_index: int) -> SavedProgress:
        with self._lock:
            data = self._load()
            data[book] = {'lastChapter': chapter, 'lastParagraphIndex': int(paragraph_index)}
            self._write(data)
        logger.debug(f'Saved progress for {book}: {chapter} #{paragraph_index}')
        return SavedProgress(book=book, last_chapter=chapter, last_paragraph_index=int(paragraph_index))
