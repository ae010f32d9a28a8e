import zipfile
from pathlib import Path

import pytest

CONTAINER_XML = '''<?xml version="1.0" encoding="utf-8"?>
<container version="1.0" xmlns="urn:oasis:names:tc:opendocument:xmlns:container">
  <rootfiles>
    <rootfile full-path="OEBPS/content.opf" media-type="application/oebps-package+xml"/>
  </rootfiles>
</container>
'''

# Smallest valid JPEG header; enough for a data URL
COVER_BYTES = b'\xff\xd8\xff\xe0\x00\x10JFIF\x00'


def chapter_xhtml(title: str, paragraphs: list[str], heading: str = '') -> str:
    """A chapter document with one <p> per line, the layout real books use."""
    lines = [
        '<?xml version="1.0" encoding="utf-8"?>',
        '<html xmlns="http://www.w3.org/1999/xhtml">',
        f'<head><title>{title}</title></head>',
        '<body>',
    ]
    if heading:
        lines.append(f'<h1>{heading}</h1>')
    lines.extend(f'<p>{text}</p>' for text in paragraphs)
    lines.extend(['</body>', '</html>', ''])
    return '\n'.join(lines)


def _opf(chapters, spine, cover: bool, language: str) -> str:
    manifest = [
        f'    <item id="{Path(name).stem}" href="xhtml/{name}" media-type="application/xhtml+xml"/>'
        for name in chapters
    ]
    meta = ''
    if cover:
        manifest.append('    <item id="cover-img" href="images/cover.jpg" media-type="image/jpeg"/>')
        meta = '    <meta name="cover" content="cover-img"/>\n'
    itemrefs = '\n'.join(f'    <itemref idref="{Path(name).stem}"/>' for name in spine)
    return (
        '<?xml version="1.0" encoding="utf-8"?>\n'
        '<package xmlns="http://www.idpf.org/2007/opf" version="3.0" unique-identifier="bookid">\n'
        '  <metadata xmlns:dc="http://purl.org/dc/elements/1.1/">\n'
        '    <dc:identifier id="bookid">urn:uuid:12345678-test-book</dc:identifier>\n'
        '    <dc:title>Test Book</dc:title>\n'
        f'    <dc:language>{language}</dc:language>\n'
        f'{meta}'
        '  </metadata>\n'
        '  <manifest>\n'
        + '\n'.join(manifest) + '\n'
        '  </manifest>\n'
        '  <spine>\n'
        f'{itemrefs}\n'
        '  </spine>\n'
        '</package>\n'
    )


def write_epub(path, chapters: dict, spine=None, cover: bool = False,
               language: str = 'en', extra_files: dict = None) -> Path:
    """Build an EPUB at `path` with chapters under OEBPS/xhtml/."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    spine = list(spine or chapters)
    with zipfile.ZipFile(path, 'w') as zf:
        zf.writestr('mimetype', 'application/epub+zip', zipfile.ZIP_STORED)
        zf.writestr('META-INF/container.xml', CONTAINER_XML, zipfile.ZIP_DEFLATED)
        zf.writestr('OEBPS/content.opf', _opf(chapters, spine, cover, language), zipfile.ZIP_DEFLATED)
        for name, content in chapters.items():
            zf.writestr(f'OEBPS/xhtml/{name}', content, zipfile.ZIP_DEFLATED)
        if cover:
            zf.writestr('OEBPS/images/cover.jpg', COVER_BYTES, zipfile.ZIP_DEFLATED)
        for name, content in (extra_files or {}).items():
            zf.writestr(name, content, zipfile.ZIP_DEFLATED)
    return path


def fake_translate(text: str, source: str, target: str) -> str:
    return '\n\n'.join(f'[{target}] {part}' for part in text.split('\n\n'))


@pytest.fixture
def sample_epub(tmp_path) -> Path:
    chapters = {
        'ch1.xhtml': chapter_xhtml('One', ['Hello there.', 'How are you?'], heading='Chapter One'),
        'ch2.xhtml': chapter_xhtml('Two', ['Second chapter.', 'Goodbye.']),
    }
    return write_epub(tmp_path / 'sample.epub', chapters, cover=True)
