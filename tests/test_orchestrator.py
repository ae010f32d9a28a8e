import zipfile

import pytest

from bilingual_reader.cache import TranslationCache
from bilingual_reader.config import ReaderConfig
from bilingual_reader.orchestrator import (
    BookStage,
    BookTranslationError,
    detect_content_directory,
    find_chapter_files,
    translate_book,
    work_dir_for,
)
from bilingual_reader.translator import TranslationError

from conftest import chapter_xhtml, fake_translate, write_epub


def _three_chapter_book(tmp_path):
    chapters = {
        'ch1.xhtml': chapter_xhtml('One', ['First one.', 'First two.']),
        'ch2.xhtml': chapter_xhtml('Two', ['FAIL here.', 'Second two.']),
        'ch3.xhtml': chapter_xhtml('Three', ['Third one.', 'Third two.']),
        'nav.xhtml': chapter_xhtml('Contents', ['Chapter list.', 'More list.']),
    }
    return write_epub(tmp_path / 'uploads' / 'novel.epub', chapters)


def _flaky_translate(text, source, target):
    if 'FAIL' in text:
        raise TranslationError('provider rejected the request')
    return fake_translate(text, source, target)


@pytest.fixture
def config(tmp_path):
    return ReaderConfig(data_dir=tmp_path / 'data', cooldown_seconds=0)


def test_failed_file_is_reported_after_packing(tmp_path, config):
    book = _three_chapter_book(tmp_path)

    with pytest.raises(BookTranslationError) as excinfo:
        translate_book(book, 'fr', config=config, translate=_flaky_translate, cache=TranslationCache())

    error = excinfo.value
    assert 'ch2.xhtml' in str(error)
    assert [name for name, _ in error.failures] == ['ch2.xhtml']
    assert isinstance(error.__cause__, TranslationError)
    assert error.output_path == config.output_dir / 'novel_fr.epub'

    with zipfile.ZipFile(error.output_path) as zf:
        assert 'data-bilingual=' in zf.read('OEBPS/xhtml/ch1.xhtml').decode('utf-8')
        assert 'data-bilingual=' not in zf.read('OEBPS/xhtml/ch2.xhtml').decode('utf-8')
        assert 'data-bilingual=' in zf.read('OEBPS/xhtml/ch3.xhtml').decode('utf-8')
        assert 'data-bilingual=' not in zf.read('OEBPS/xhtml/nav.xhtml').decode('utf-8')


def test_rerun_resumes_from_the_working_directory(tmp_path, config):
    book = _three_chapter_book(tmp_path)
    with pytest.raises(BookTranslationError):
        translate_book(book, 'fr', config=config, translate=_flaky_translate, cache=TranslationCache())

    result = translate_book(book, 'fr', config=config, translate=fake_translate, cache=TranslationCache())

    assert result.translated == ['ch2.xhtml']
    assert result.skipped == ['ch1.xhtml', 'ch3.xhtml']
    with zipfile.ZipFile(result.output_path) as zf:
        assert 'data-bilingual=' in zf.read('OEBPS/xhtml/ch2.xhtml').decode('utf-8')


def test_progress_stages_are_reported_in_order(tmp_path, config):
    book = _three_chapter_book(tmp_path)
    events = []

    translate_book(
        book, 'de', config=config, translate=fake_translate, cache=TranslationCache(),
        progress_callback=lambda stage, step, total, message: events.append((stage, step, total)),
    )

    stages = [stage for stage, _, _ in events]
    assert stages[0] is BookStage.NOT_STARTED
    assert stages[1] is BookStage.EXTRACTING
    assert stages[-2:] == [BookStage.REPACKAGING, BookStage.COMPLETED]
    assert [(step, total) for stage, step, total in events
            if stage is BookStage.TRANSLATING_FILES] == [(0, 3), (1, 3), (2, 3)]


def test_cooldown_sleeps_between_files(tmp_path):
    book = _three_chapter_book(tmp_path)
    config = ReaderConfig(data_dir=tmp_path / 'data', cooldown_seconds=5)
    sleeps = []

    translate_book(book, 'fr', config=config, translate=fake_translate,
                   cache=TranslationCache(), sleep=sleeps.append)

    assert sleeps == [5, 5, 5]


def test_missing_book_raises(tmp_path, config):
    with pytest.raises(BookTranslationError, match='not found'):
        translate_book(tmp_path / 'nope.epub', 'fr', config=config, translate=fake_translate)


def test_detect_content_directory_prefers_known_layouts(tmp_path):
    (tmp_path / 'OEBPS' / 'xhtml').mkdir(parents=True)
    (tmp_path / 'OEBPS' / 'xhtml' / 'a.xhtml').write_text('<p/>', encoding='utf-8')
    (tmp_path / 'OEBPS' / 'toc.html').write_text('<p/>', encoding='utf-8')

    assert detect_content_directory(tmp_path) == tmp_path / 'OEBPS' / 'xhtml'


def test_detect_content_directory_searches_unknown_layouts(tmp_path):
    deep = tmp_path / 'book' / 'content' / 'chapters'
    deep.mkdir(parents=True)
    (deep / 'c1.html').write_text('<p/>', encoding='utf-8')

    assert detect_content_directory(tmp_path) == deep


def test_detect_content_directory_without_markup(tmp_path):
    (tmp_path / 'images').mkdir()
    with pytest.raises(BookTranslationError):
        detect_content_directory(tmp_path)


def test_find_chapter_files_skips_navigation(tmp_path):
    for name in ('b.xhtml', 'a.html', 'nav.xhtml', 'style.css'):
        (tmp_path / name).write_text('', encoding='utf-8')

    assert [p.name for p in find_chapter_files(tmp_path)] == ['a.html', 'b.xhtml']


def test_second_language_gets_its_own_translation(tmp_path, config):
    book = _three_chapter_book(tmp_path)

    first = translate_book(book, 'fr', config=config, translate=fake_translate, cache=TranslationCache())
    second = translate_book(book, 'de', config=config, translate=fake_translate, cache=TranslationCache())

    assert second.skipped == []
    assert second.translated == first.translated == ['ch1.xhtml', 'ch2.xhtml', 'ch3.xhtml']
    with zipfile.ZipFile(second.output_path) as zf:
        chapter = zf.read('OEBPS/xhtml/ch1.xhtml').decode('utf-8')
    assert '[de]' in chapter
    assert '[fr]' not in chapter


def test_working_directory_is_kept_only_after_a_failure(tmp_path, config):
    book = _three_chapter_book(tmp_path)
    work_dir = work_dir_for(book, 'auto', 'fr', config.work_dir)

    with pytest.raises(BookTranslationError):
        translate_book(book, 'fr', config=config, translate=_flaky_translate, cache=TranslationCache())
    assert work_dir.is_dir()

    translate_book(book, 'fr', config=config, translate=fake_translate, cache=TranslationCache())
    assert not work_dir.exists()


def test_detect_content_directory_returns_first_match_depth_first(tmp_path):
    (tmp_path / 'a' / 'deep').mkdir(parents=True)
    (tmp_path / 'a' / 'deep' / 'x.html').write_text('<p/>', encoding='utf-8')
    (tmp_path / 'b').mkdir()
    (tmp_path / 'b' / 'y.html').write_text('<p/>', encoding='utf-8')

    assert detect_content_directory(tmp_path) == tmp_path / 'a' / 'deep'


def test_detect_content_directory_respects_the_depth_bound(tmp_path):
    deep = tmp_path / 'one' / 'two' / 'three'
    deep.mkdir(parents=True)
    (deep / 'c.html').write_text('<p/>', encoding='utf-8')

    with pytest.raises(BookTranslationError):
        detect_content_directory(tmp_path, max_depth=2)
    assert detect_content_directory(tmp_path, max_depth=3) == deep
