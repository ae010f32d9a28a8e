"""
EPUB container extract / pack.

An EPUB is a zip whose first entry must be an uncompressed 'mimetype' file.
Everything else is deflated.
"""

import logging
import os
import zipfile
from pathlib import Path

logger = logging.getLogger(__name__)

MIMETYPE = 'application/epub+zip'


def extract_epub(epub_path, dest_dir) -> Path:
    """Unpack an EPUB into dest_dir and return it."""
    epub_path = Path(epub_path)
    dest_dir = Path(dest_dir)
    if not epub_path.exists():
        raise FileNotFoundError(f'EPUB file not found: {epub_path}')

    dest_dir.mkdir(parents=True, exist_ok=True)
    root = dest_dir.resolve()
    with zipfile.ZipFile(epub_path, 'r') as zf:
        for name in zf.namelist():
            target = (dest_dir / name).resolve()
            if root != target and root not in target.parents:
                raise ValueError(f'Refusing to extract entry outside the target directory: {name}')
        zf.extractall(dest_dir)
        logger.info(f'Extracted {len(zf.namelist())} entries from {epub_path.name} to {dest_dir}')
    return dest_dir


def pack_epub(src_dir, output_path) -> Path:
    """Zip a directory tree back into an EPUB at output_path."""
    src_dir = Path(src_dir)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    if output_path.exists():
        output_path.unlink()

    mimetype_file = src_dir / 'mimetype'
    mimetype = mimetype_file.read_bytes() if mimetype_file.exists() else MIMETYPE.encode('ascii')

    count = 0
    with zipfile.ZipFile(output_path, 'w') as zf:
        zf.writestr('mimetype', mimetype, zipfile.ZIP_STORED)
        for root, dirs, files in os.walk(src_dir):
            dirs.sort()
            for f in sorted(files):
                fp = Path(root) / f
                rel = fp.relative_to(src_dir).as_posix()
                if rel == 'mimetype':
                    continue
                zf.write(fp, rel, zipfile.ZIP_DEFLATED)
                count += 1

    logger.info(f'Packed {count + 1} entries into {output_path}')
    return output_path
