"""
Persistent translation cache.

Keys are sha256 hashes of (text, source, target); values are the provider's
reply. The whole file is loaded when the cache is opened and rewritten on
every new entry, so an interrupted run keeps everything it already paid for.
"""

import json
import logging
import os
from hashlib import sha256
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class TranslationCache:
    """JSON-backed memo of provider replies."""

    def __init__(self, path=None):
        self.path = Path(path) if path else None
        self.entries: dict[str, str] = {}
        self.hits = 0
        self.misses = 0
        if self.path and self.path.exists():
            with open(self.path, 'r', encoding='utf-8') as f:
                self.entries = json.load(f)
            logger.info(f'Loaded {len(self.entries)} cached translations from {self.path}')

    @staticmethod
    def make_key(text: str, source: str, target: str) -> str:
        canonical = json.dumps([text, source, target], ensure_ascii=True, separators=(',', ':'))
        return sha256(canonical.encode('utf-8')).hexdigest()

    def get(self, text: str, source: str, target: str) -> Optional[str]:
        key = self.make_key(text, source, target)
        if key in self.entries:
            self.hits += 1
            return self.entries[key]
        self.misses += 1
        return None

    def set(self, text: str, source: str, target: str, translation: str) -> None:
        key = self.make_key(text, source, target)
        self.entries[key] = translation
        self._save()

    def __len__(self) -> int:
        return len(self.entries)

    def _save(self) -> None:
        if not self.path:
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + '.tmp')
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump(self.entries, f, ensure_ascii=False, indent=1)
        os.replace(tmp_path, self.path)
