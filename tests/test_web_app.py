import io
import json
import shutil
import time

import pytest

import web_app
from bilingual_reader.config import ReaderConfig
from bilingual_reader.orchestrator import BookTranslationError, BookTranslationResult
from bilingual_reader.playback import MAX_SPEAK_DEPTH, RESUME_CHECK_DELAY

from conftest import chapter_xhtml, write_epub


@pytest.fixture
def config(tmp_path, monkeypatch):
    config = ReaderConfig(data_dir=tmp_path / 'data', cooldown_seconds=0)
    config.ensure_dirs()
    monkeypatch.setitem(web_app.app.config, 'READER', config)
    monkeypatch.setitem(web_app.app.config, 'TESTING', True)
    monkeypatch.setattr(web_app, '_jobs', {})
    return config


@pytest.fixture
def client(config):
    return web_app.app.test_client()


@pytest.fixture
def stored_book(config, sample_epub):
    target = config.uploads_dir / 'sample.epub'
    shutil.copy(sample_epub, target)
    return target


def _upload(client, data: bytes, filename: str):
    return client.post(
        '/upload',
        data={'epubFile': (io.BytesIO(data), filename)},
        content_type='multipart/form-data',
    )


def test_index_lists_books(client, stored_book):
    response = client.get('/')

    assert response.status_code == 200
    page = response.get_data(as_text=True)
    assert 'sample.epub' in page
    assert '/read?book=sample.epub' in page


def test_upload_accepts_an_epub(client, config, sample_epub):
    response = _upload(client, sample_epub.read_bytes(), 'New Book.epub')

    assert response.status_code == 200
    assert response.get_json() == {
        'success': True,
        'message': 'File uploaded successfully!',
        'filename': 'New_Book.epub',
    }
    assert (config.uploads_dir / 'New_Book.epub').exists()


def test_upload_rejects_bad_input(client):
    assert client.post('/upload', data={}, content_type='multipart/form-data').status_code == 400

    response = _upload(client, b'hello', 'notes.txt')
    assert response.status_code == 400
    assert response.get_json()['error'] == 'Only EPUB files are allowed!'

    response = _upload(client, b'garbage', 'broken.epub')
    assert response.status_code == 400
    assert 'Invalid or corrupted EPUB' in response.get_json()['error']


def test_upload_too_large(client, monkeypatch, sample_epub):
    monkeypatch.setitem(web_app.app.config, 'MAX_CONTENT_LENGTH', 100)

    response = _upload(client, sample_epub.read_bytes(), 'big.epub')

    assert response.status_code == 413
    assert 'File too large' in response.get_json()['error']


def test_translate_form(client, stored_book):
    assert client.get('/translate/sample.epub').status_code == 200
    assert client.get('/translate/unknown.epub').status_code == 404


def test_translate_book_validates_input(client, stored_book):
    cases = [
        {'sourceLanguage': 'en', 'targetLanguage': 'fr'},
        {'filename': 'sample.epub', 'sourceLanguage': 'en', 'targetLanguage': 'xx'},
        {'filename': 'sample.epub', 'sourceLanguage': 'xx', 'targetLanguage': 'fr'},
        {'filename': 'sample.epub', 'sourceLanguage': 'fr', 'targetLanguage': 'fr'},
        {'filename': '../sample.epub', 'sourceLanguage': 'en', 'targetLanguage': 'fr'},
    ]
    for payload in cases:
        response = client.post('/translate-book', json=payload)
        assert response.status_code == 400, payload
        assert 'error' in response.get_json()


def _run_inline(monkeypatch):
    monkeypatch.setattr(web_app, '_start_job', lambda target, *args: target(*args))


def test_translate_book_job_reports_progress_and_downloads(client, config, stored_book, monkeypatch):
    _run_inline(monkeypatch)
    calls = []

    def fake_translate_book(book_path, target, source, config, progress_callback):
        calls.append((book_path.name, source, target))
        output = config.output_dir / f'{book_path.stem}_{target}.epub'
        output.write_bytes(b'bilingual')
        return BookTranslationResult(output_path=output, translated=['ch1.xhtml'])

    monkeypatch.setattr(web_app, 'translate_book', fake_translate_book)

    response = client.post('/translate-book', data={
        'filename': 'sample.epub', 'sourceLanguage': 'en', 'targetLanguage': 'fr',
    })
    job_id = response.get_json()['job_id']

    assert calls == [('sample.epub', 'en', 'fr')]
    events = client.get(f'/progress/{job_id}').get_data(as_text=True)
    payload = json.loads(events.strip().split('data: ', 1)[1])
    assert payload['status'] == 'done'
    assert payload['progress'] == 100
    assert payload['download'] is True

    download = client.get(f'/download/{job_id}')
    assert download.status_code == 200
    assert download.data == b'bilingual'
    assert 'sample_fr.epub' in download.headers['Content-Disposition']


def test_failed_job_keeps_the_partial_book(client, config, stored_book, monkeypatch):
    _run_inline(monkeypatch)

    def failing_translate_book(book_path, target, source, config, progress_callback):
        output = config.output_dir / 'sample_de.epub'
        output.write_bytes(b'partial')
        raise BookTranslationError('Translation failed for 1 file(s): ch2.xhtml', output_path=output)

    monkeypatch.setattr(web_app, 'translate_book', failing_translate_book)

    job_id = client.post('/translate-book', json={
        'filename': 'sample.epub', 'targetLanguage': 'de',
    }).get_json()['job_id']

    job = web_app._jobs[job_id]
    assert job['status'] == 'error'
    assert 'ch2.xhtml' in job['message']
    assert client.get(f'/download/{job_id}').data == b'partial'


def test_unknown_job(client):
    assert client.get('/download/nope').status_code == 404
    events = client.get('/progress/nope').get_data(as_text=True)
    assert 'Job not found' in events


def test_read_renders_the_first_chapter(client, stored_book):
    response = client.get('/read?book=sample.epub')

    assert response.status_code == 200
    page = response.get_data(as_text=True)
    assert 'Hello there.' in page
    assert 'data:image/jpeg;base64,' in page
    assert 'Chapter One' in page


def test_read_rejects_unknown_book_or_chapter(client, stored_book):
    assert client.get('/read?book=other.epub').status_code == 404
    assert client.get('/read?book=../sample.epub').status_code == 404
    assert client.get('/read?book=sample.epub&doc=xhtml/nope.xhtml').status_code == 404


def test_read_opens_the_saved_chapter(client, stored_book):
    response = client.post('/save-progress', json={
        'book': 'sample.epub', 'doc': 'xhtml/ch2.xhtml', 'paragraphIndex': 1,
    })
    assert response.get_json() == {'success': True}

    page = client.get('/read?book=sample.epub').get_data(as_text=True)

    assert 'Second chapter.' in page
    assert 'const START_INDEX = 1;' in page


def test_save_progress_validation(client, stored_book):
    bad = [
        {'book': 'sample.epub', 'doc': 'xhtml/ch1.xhtml', 'paragraphIndex': -1},
        {'book': 'sample.epub', 'doc': 'xhtml/ch1.xhtml', 'paragraphIndex': 'x'},
        {'book': 'sample.epub', 'doc': 'xhtml/ch1.xhtml', 'paragraphIndex': True},
        {'book': 'sample.epub', 'doc': 'xhtml/zz.xhtml', 'paragraphIndex': 0},
        {'book': 'missing.epub', 'doc': 'xhtml/ch1.xhtml', 'paragraphIndex': 0},
    ]
    for payload in bad:
        assert client.post('/save-progress', json=payload).status_code == 400, payload
    assert client.post('/save-progress', data='not json').status_code == 400


def test_language_hints_from_metadata_and_filename(tmp_path):
    book = write_epub(tmp_path / 'novel_fr.epub', {'a.xhtml': chapter_xhtml('A', ['a'])}, language='en-GB')
    opened = web_app.open_book(book)

    assert web_app._language_hints(opened, 'novel_fr.epub') == {'source': 'en', 'target': 'fr'}
    assert web_app._language_hints(opened, 'novel.epub') == {'source': 'en', 'target': 'en'}


def test_second_job_for_the_same_book_and_target_is_rejected(client, stored_book, monkeypatch):
    started = []
    monkeypatch.setattr(web_app, '_start_job', lambda target, *args: started.append(args[0]))
    payload = {'filename': 'sample.epub', 'sourceLanguage': 'en', 'targetLanguage': 'fr'}

    first = client.post('/translate-book', json=payload)
    duplicate = client.post('/translate-book', json=payload)
    other_target = client.post('/translate-book', json={**payload, 'targetLanguage': 'de'})

    assert first.status_code == 200
    assert web_app._jobs[first.get_json()['job_id']]['status'] == 'queued'
    assert duplicate.status_code == 409
    assert 'already being translated' in duplicate.get_json()['error']
    assert other_target.status_code == 200
    assert len(started) == 2


def test_jobs_translate_one_at_a_time(client, stored_book, monkeypatch):
    active = []
    overlaps = []

    def slow_translate_book(book_path, target, source, config, progress_callback):
        active.append(target)
        overlaps.append(len(active))
        time.sleep(0.05)
        active.remove(target)
        output = config.output_dir / f'{book_path.stem}_{target}.epub'
        output.write_bytes(b'bilingual')
        return BookTranslationResult(output_path=output)

    monkeypatch.setattr(web_app, 'translate_book', slow_translate_book)

    job_ids = [
        client.post('/translate-book', json={'filename': 'sample.epub', 'targetLanguage': target})
        .get_json()['job_id']
        for target in ('fr', 'de', 'es')
    ]
    deadline = time.monotonic() + 10
    while time.monotonic() < deadline and any(
        web_app._jobs[job_id]['status'] != 'done' for job_id in job_ids
    ):
        time.sleep(0.01)

    assert [web_app._jobs[job_id]['status'] for job_id in job_ids] == ['done'] * 3
    assert overlaps == [1, 1, 1]


def test_reader_page_uses_the_scheduler_constants(client, stored_book):
    page = client.get('/read?book=sample.epub').get_data(as_text=True)

    assert f'const RESUME_CHECK_MS = {round(RESUME_CHECK_DELAY * 1000)};' in page
    assert f'const MAX_SPEAK_DEPTH = {MAX_SPEAK_DEPTH};' in page
