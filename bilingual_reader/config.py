"""
Runtime configuration for translation runs and the web app.

Defaults mirror the limits observed against the free Google Translate
endpoint; every value can be overridden from the environment or the CLI.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

# Longest request body (characters) that still fits the translate URL
DEFAULT_CHUNK_LIMIT = 4700

# Pause after each translated chapter file, in seconds
DEFAULT_COOLDOWN_SECONDS = 120.0

MISMATCH_BEST_EFFORT = 'best_effort'
MISMATCH_STRICT = 'strict'
MISMATCH_POLICIES = (MISMATCH_BEST_EFFORT, MISMATCH_STRICT)


@dataclass
class ReaderConfig:
    """All tunables for a translation run and the web front end."""
    data_dir: Path = field(default_factory=lambda: Path('data'))
    chunk_limit: int = DEFAULT_CHUNK_LIMIT
    cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS
    mismatch_policy: str = MISMATCH_BEST_EFFORT
    max_retries: int = 3
    max_upload_mb: int = 50
    work_root: Optional[Path] = None
    output_root: Optional[Path] = None

    def __post_init__(self):
        self.data_dir = Path(self.data_dir)
        if self.mismatch_policy not in MISMATCH_POLICIES:
            raise ValueError(
                f'Unknown mismatch policy {self.mismatch_policy!r}, '
                f'expected one of {", ".join(MISMATCH_POLICIES)}'
            )
        if self.chunk_limit <= 0:
            raise ValueError(f'chunk_limit must be positive, got {self.chunk_limit}')

    @property
    def uploads_dir(self) -> Path:
        return self.data_dir / 'uploads'

    @property
    def work_dir(self) -> Path:
        return Path(self.work_root) if self.work_root else self.data_dir / 'work'

    @property
    def output_dir(self) -> Path:
        return Path(self.output_root) if self.output_root else self.uploads_dir

    @property
    def cache_path(self) -> Path:
        return self.data_dir / 'translation_cache.json'

    @property
    def progress_path(self) -> Path:
        return self.data_dir / 'progress.json'

    def ensure_dirs(self) -> None:
        for path in (self.uploads_dir, self.work_dir, self.output_dir):
            path.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_env(cls, environ=None) -> 'ReaderConfig':
        """Build a config from BILINGUAL_READER_* environment variables."""
        env = os.environ if environ is None else environ
        kwargs = {}
        if env.get('BILINGUAL_READER_DATA_DIR'):
            kwargs['data_dir'] = Path(env['BILINGUAL_READER_DATA_DIR'])
        if env.get('BILINGUAL_READER_CHUNK_LIMIT'):
            kwargs['chunk_limit'] = int(env['BILINGUAL_READER_CHUNK_LIMIT'])
        if env.get('BILINGUAL_READER_COOLDOWN'):
            kwargs['cooldown_seconds'] = float(env['BILINGUAL_READER_COOLDOWN'])
        if env.get('BILINGUAL_READER_MISMATCH_POLICY'):
            kwargs['mismatch_policy'] = env['BILINGUAL_READER_MISMATCH_POLICY']
        if env.get('BILINGUAL_READER_MAX_RETRIES'):
            kwargs['max_retries'] = int(env['BILINGUAL_READER_MAX_RETRIES'])
        return cls(**kwargs)
