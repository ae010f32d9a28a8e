#!/usr/bin/env python3
"""
Web app for bilingual EPUB reading.

Upload an EPUB, translate it into a bilingual edition (each paragraph
preceded by its translation), and read it aloud in the browser with the
built-in speech synthesis, resuming where you left off.

Run with:
    python web_app.py

Then open http://localhost:5000 in your browser.
"""

import json
import logging
import threading
import time
import uuid
from pathlib import Path

from flask import (
    Flask, Response, abort, jsonify, render_template_string, request, send_file,
)

from bilingual_reader.chapter_extractor import (
    book_language, chapter_labels, cover_data_url, list_chapters, open_book, read_chapter,
)
from bilingual_reader.config import ReaderConfig
from bilingual_reader.library import InvalidBookError, Library
from bilingual_reader.models import LANGUAGES, SOURCE_LANGUAGES
from bilingual_reader.orchestrator import BookTranslationError, translate_book
from bilingual_reader.playback import MAX_SPEAK_DEPTH, RESUME_CHECK_DELAY
from bilingual_reader.progress import ProgressStore

logging.basicConfig(level=logging.INFO, format='%(asctime)s [%(levelname)s] %(message)s')
logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config['READER'] = ReaderConfig.from_env()
app.config['MAX_CONTENT_LENGTH'] = app.config['READER'].max_upload_mb * 1024 * 1024

# In-memory job store for SSE progress tracking
_jobs = {}  # job_id -> {status, stage, progress, message, book, source, target, result_file}
_jobs_lock = threading.Lock()

# Held for the whole of a translation, so jobs run one at a time
_translation_lock = threading.Lock()

ACTIVE_STATUSES = ('queued', 'running')

BASE_STYLE = '''
    * { box-sizing: border-box; margin: 0; padding: 0; }
    body {
        font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif;
        background: #f5f5f5; color: #333; min-height: 100vh; padding: 20px;
    }
    .page { max-width: 680px; margin: 0 auto; }
    h1 { font-size: 1.4em; margin-bottom: 4px; }
    .sub { color: #888; font-size: .9em; margin-bottom: 20px; }
    a { color: #2c7be5; text-decoration: none; }
    .card {
        background: #fff; border-radius: 12px; box-shadow: 0 2px 12px rgba(0,0,0,.08);
        padding: 24px; margin-bottom: 16px;
    }
    .section-title {
        font-weight: 600; font-size: .92em; color: #555; margin-bottom: 8px;
        text-transform: uppercase; letter-spacing: .5px;
    }
    select, input[type="file"] {
        width: 100%; padding: 8px 10px; border: 1px solid #ddd;
        border-radius: 6px; font-size: .95em; background: #fff; margin-bottom: 12px;
    }
    .btn {
        background: #2c7be5; color: #fff; border: none; padding: 12px 16px;
        border-radius: 10px; font-size: 1em; font-weight: 600; cursor: pointer;
    }
    .btn:disabled { background: #ccc; cursor: not-allowed; }
    .btn.secondary { background: #eee; color: #333; }
    .status { margin-top: 14px; padding: 14px; border-radius: 8px; font-size: .9em; display: none; }
    .status.info { display: block; background: #fff3cd; color: #856404; }
    .status.ok { display: block; background: #d4edda; color: #155724; }
    .status.err { display: block; background: #f8d7da; color: #721c24; }
    .progress-bar { height: 4px; background: #eee; border-radius: 2px; margin-top: 8px; overflow: hidden; }
    .progress-bar .fill { height: 100%; background: #2c7be5; width: 0%; transition: width .3s ease; }
'''

INDEX_PAGE = '''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Bilingual Reader</title>
    <style>{{ style|safe }}
        .book { display: flex; justify-content: space-between; align-items: center;
                padding: 10px 0; border-bottom: 1px solid #eee; }
        .book:last-child { border-bottom: none; }
        .book .name { font-weight: 600; word-break: break-all; }
        .book .meta { font-size: .78em; color: #999; }
        .book .actions a { margin-left: 12px; font-size: .9em; }
    </style>
</head>
<body>
<div class="page">
    <h1>Bilingual Reader</h1>
    <p class="sub">Translate EPUBs paragraph by paragraph and listen to them.</p>

    <div class="card">
        <div class="section-title">Upload</div>
        <form id="uploadForm">
            <input type="file" id="epubFile" name="epubFile" accept=".epub">
            <button class="btn" type="submit">Upload EPUB</button>
        </form>
        <div class="status" id="uploadStatus"></div>
    </div>

    <div class="card">
        <div class="section-title">Library</div>
        {% if books %}
            {% for b in books %}
            <div class="book">
                <div>
                    <div class="name">{{ b.filename }}</div>
                    <div class="meta">{{ b.size_formatted }} &middot; {{ b.uploaded_at.strftime('%Y-%m-%d %H:%M') }}</div>
                </div>
                <div class="actions">
                    <a href="{{ url_for('read', book=b.filename) }}">Read</a>
                    <a href="{{ url_for('translate_form', filename=b.filename) }}">Translate</a>
                </div>
            </div>
            {% endfor %}
        {% else %}
            <p class="sub">No books yet. Upload an EPUB to get started.</p>
        {% endif %}
    </div>
</div>
<script>
document.getElementById('uploadForm').addEventListener('submit', async (e) => {
    e.preventDefault();
    const input = document.getElementById('epubFile');
    const status = document.getElementById('uploadStatus');
    if (!input.files.length) { status.className = 'status err'; status.textContent = 'Choose a file first.'; return; }
    const data = new FormData();
    data.append('epubFile', input.files[0]);
    status.className = 'status info'; status.textContent = 'Uploading...';
    try {
        const resp = await fetch('{{ url_for("upload") }}', {method: 'POST', body: data});
        const body = await resp.json();
        if (!resp.ok) throw new Error(body.error || resp.statusText);
        status.className = 'status ok'; status.textContent = body.message;
        setTimeout(() => location.reload(), 600);
    } catch (err) {
        status.className = 'status err'; status.textContent = err.message;
    }
});
</script>
</body>
</html>
'''

TRANSLATE_PAGE = '''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>Translate {{ filename }}</title>
    <style>{{ style|safe }}</style>
</head>
<body>
<div class="page">
    <h1>Translate</h1>
    <p class="sub">{{ filename }} &middot; <a href="{{ url_for('index') }}">back to library</a></p>
    <div class="card">
        <form id="translateForm">
            <div class="section-title">From</div>
            <select name="sourceLanguage" id="sourceLanguage">
                {% for code, name in source_languages.items() %}
                <option value="{{ code }}">{{ name }}</option>
                {% endfor %}
            </select>
            <div class="section-title">To</div>
            <select name="targetLanguage" id="targetLanguage">
                {% for code, name in languages.items() %}
                <option value="{{ code }}"{% if code == 'fr' %} selected{% endif %}>{{ name }}</option>
                {% endfor %}
            </select>
            <button class="btn" id="startBtn" type="submit">Translate book</button>
        </form>
        <div class="progress-bar"><div class="fill" id="fill"></div></div>
        <div class="status" id="status"></div>
    </div>
</div>
<script>
const FILENAME = {{ filename|tojson }};
const status = document.getElementById('status');
document.getElementById('translateForm').addEventListener('submit', async (e) => {
    e.preventDefault();
    const btn = document.getElementById('startBtn');
    btn.disabled = true;
    status.className = 'status info'; status.textContent = 'Starting...';
    const resp = await fetch('{{ url_for("translate_book_route") }}', {
        method: 'POST', headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({
            filename: FILENAME,
            sourceLanguage: document.getElementById('sourceLanguage').value,
            targetLanguage: document.getElementById('targetLanguage').value,
        }),
    });
    const body = await resp.json();
    if (!resp.ok) { status.className = 'status err'; status.textContent = body.error; btn.disabled = false; return; }
    const events = new EventSource('/progress/' + body.job_id);
    events.onmessage = (msg) => {
        const job = JSON.parse(msg.data);
        document.getElementById('fill').style.width = job.progress + '%';
        status.textContent = job.message;
        if (job.status === 'done' || job.status === 'error') {
            events.close();
            btn.disabled = false;
            status.className = job.status === 'done' ? 'status ok' : 'status err';
            if (job.download) {
                status.innerHTML += ' <a href="/download/' + body.job_id + '">Download</a>';
            }
        }
    };
});
</script>
</body>
</html>
'''

READER_PAGE = '''
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="utf-8">
    <meta name="viewport" content="width=device-width, initial-scale=1">
    <title>{{ chapter.label or book }}</title>
    <style>{{ style|safe }}
        .toolbar { position: sticky; top: 0; background: #f5f5f5; padding: 8px 0; z-index: 2;
                   display: flex; gap: 6px; flex-wrap: wrap; align-items: center; }
        .toolbar .btn { padding: 8px 12px; font-size: .9em; }
        .toolbar select { width: auto; margin: 0; }
        .settings { display: none; }
        .settings.open { display: block; }
        .settings label { display: block; font-size: .85em; color: #555; margin: 8px 0 2px; }
        .settings input[type="range"] { width: 100%; }
        .cover { max-width: 160px; border-radius: 6px; margin-bottom: 12px; }
        .para { margin: 0 0 .8em; line-height: 1.6; cursor: pointer; border-radius: 4px; padding: 2px 4px; }
        .para.lang-source { font-style: italic; color: #666; }
        .para.speaking { background: #fff3cd; }
        body.show-source .para.lang-target, body.show-target .para.lang-source { display: none; }
        #playerError { margin-top: 8px; }
    </style>
</head>
<body>
<div class="page">
    <p class="sub"><a href="{{ url_for('index') }}">Library</a> &middot; {{ book }}</p>
    {% if cover %}<img class="cover" src="{{ cover }}" alt="Cover">{% endif %}
    <div class="toolbar">
        <select id="chapterSelect">
            {% for doc, label in chapters %}
            <option value="{{ doc }}"{% if doc == chapter.identifier %} selected{% endif %}>{{ label }}</option>
            {% endfor %}
        </select>
        <button class="btn" id="playBtn">Play</button>
        <button class="btn secondary" id="pauseBtn">Pause</button>
        <button class="btn secondary" id="resumeBtn">Resume</button>
        <button class="btn secondary" id="stopBtn">Stop</button>
        <select id="visibility">
            <option value="both">Both languages</option>
            <option value="source">Original only</option>
            <option value="target">Translation only</option>
        </select>
        <button class="btn secondary" id="settingsBtn">Settings</button>
    </div>
    <div class="card settings" id="settings">
        <label>Original speed <span id="sourceRateVal"></span></label>
        <input type="range" id="sourceRate" min="0.5" max="2" step="0.1">
        <label>Translation speed <span id="targetRateVal"></span></label>
        <input type="range" id="targetRate" min="0.5" max="2" step="0.1">
        <label>Font size <span id="fontSizeVal"></span></label>
        <input type="range" id="fontSize" min="15" max="26" step="1">
        <label>Original voice</label><select id="sourceVoice"></select>
        <label>Translation voice</label><select id="targetVoice"></select>
    </div>
    <div class="status err" id="playerError" style="display:none"></div>
    <div class="card" id="text">
        {% for p in chapter.paragraphs %}
        <p class="para lang-{{ p.language }}" data-idx="{{ p.index }}">{{ p.text }}</p>
        {% endfor %}
    </div>
</div>
<script>
const BOOK = {{ book|tojson }};
const DOC = {{ chapter.identifier|tojson }};
const PARAS = {{ paragraphs|tojson }};
const START_INDEX = {{ start_index|tojson }};
const LANG_HINT = {{ lang_hints|tojson }};
const SAVE_URL = {{ url_for('save_progress')|tojson }};
const READ_URL = {{ url_for('read')|tojson }};
const PREFS_KEY = 'bilingualReader.prefs';
// Browser twin of bilingual_reader/playback.py PlaybackScheduler; change both together
const RESUME_CHECK_MS = {{ resume_check_ms|tojson }};
const MAX_SPEAK_DEPTH = {{ max_speak_depth|tojson }};

const synth = window.speechSynthesis;
const state = {queue: [], cur: -1, userPaused: false, playing: -1, depth: 0, token: 0};
let prefs = loadPrefs();
let wakeLock = null;

function clamp(v, lo, hi) { return Math.max(lo, Math.min(hi, v)); }
function loadPrefs() {
    let p = {};
    try { p = JSON.parse(localStorage.getItem(PREFS_KEY)) || {}; } catch (e) { p = {}; }
    return {
        sourceRate: clamp(parseFloat(p.sourceRate) || 1, 0.5, 2),
        targetRate: clamp(parseFloat(p.targetRate) || 1, 0.5, 2),
        pitch: parseFloat(p.pitch) || 1,
        fontSize: clamp(parseInt(p.fontSize, 10) || 17, 15, 26),
        visibility: ['both', 'source', 'target'].includes(p.visibility) ? p.visibility : 'both',
        settingsOpen: !!p.settingsOpen,
        sourceVoice: p.sourceVoice || null,
        targetVoice: p.targetVoice || null,
    };
}
function savePrefs() { localStorage.setItem(PREFS_KEY, JSON.stringify(prefs)); }
function visible(lang) { return prefs.visibility === 'both' || prefs.visibility === lang; }
function buildQueue() { return PARAS.filter(p => visible(p.lang)).map(p => p.index); }
function idle() { return state.cur < 0 || state.cur >= state.queue.length; }
function paraEl(i) { return document.querySelector('[data-idx="' + i + '"]'); }

async function acquireWakeLock() {
    if (!('wakeLock' in navigator) || wakeLock) return;
    try {
        wakeLock = await navigator.wakeLock.request('screen');
        wakeLock.addEventListener('release', () => { wakeLock = null; });
    } catch (e) { console.debug('Wake lock unavailable', e); }
}
function releaseWakeLock() {
    if (wakeLock) { wakeLock.release().catch(() => {}); wakeLock = null; }
}

function clearHighlight() {
    document.querySelectorAll('.para.speaking').forEach(el => el.classList.remove('speaking'));
}
function highlight(i) {
    if (PARAS[i].lang !== 'target') return;
    clearHighlight();
    paraEl(i).classList.add('speaking');
    let s = i - 1;
    while (s >= 0 && !visible(PARAS[s].lang)) s--;
    paraEl(s >= 0 ? s : i).scrollIntoView({behavior: 'smooth', block: 'start'});
}
function showError(message) {
    const el = document.getElementById('playerError');
    el.textContent = message; el.style.display = 'block';
}
function saveProgress(i) {
    fetch(SAVE_URL, {
        method: 'POST', headers: {'Content-Type': 'application/json'},
        body: JSON.stringify({book: BOOK, doc: DOC, paragraphIndex: i}),
    }).catch(e => console.warn('Failed to save progress', e));
}

function play(from) {
    state.token++; synth.cancel();
    state.queue = buildQueue();
    const pos = state.queue.indexOf(from);
    state.cur = pos >= 0 ? pos : 0;
    state.userPaused = false; state.depth = 0;
    acquireWakeLock();
    speakNext();
}
function speakNext() {
    if (++state.depth > MAX_SPEAK_DEPTH) {
        stop();
        showError('Playback halted: the speech engine stopped reporting progress.');
        return;
    }
    if (idle()) { finish(); return; }
    const idx = state.queue[state.cur], p = PARAS[idx], token = ++state.token;
    const u = new SpeechSynthesisUtterance(p.text);
    if (LANG_HINT[p.lang]) u.lang = LANG_HINT[p.lang];
    u.rate = p.lang === 'target' ? prefs.targetRate : prefs.sourceRate;
    u.pitch = prefs.pitch;
    const voiceName = p.lang === 'target' ? prefs.targetVoice : prefs.sourceVoice;
    const voice = synth.getVoices().find(v => v.name === voiceName);
    if (voice) u.voice = voice;
    u.onstart = () => {
        if (token !== state.token) return;
        state.userPaused = false; state.depth = 0; state.playing = idx;
        highlight(idx);
    };
    u.onend = () => {
        if (token !== state.token) return;
        saveProgress(idx + 1);
        advance();
    };
    u.onerror = (e) => {
        if (token !== state.token) return;
        console.warn('Speech error', e.error);
        advance();
    };
    synth.speak(u);
}
function advance() {
    if (state.cur + 1 >= state.queue.length) { finish(); return; }
    state.cur++;
    speakNext();
}
function finish() {
    state.cur = state.queue.length; state.playing = -1; state.userPaused = false; state.depth = 0;
    clearHighlight(); releaseWakeLock();
}
function stop() {
    state.token++; synth.cancel();
    state.cur = -1; state.playing = -1; state.userPaused = false; state.depth = 0;
    clearHighlight(); releaseWakeLock();
}
function pause() { state.userPaused = true; synth.pause(); }
function resumeOrRestart(idx) {
    acquireWakeLock();
    synth.resume();
    const token = state.token;
    setTimeout(() => {
        if (token !== state.token || idle()) return;
        if (synth.paused || (!synth.speaking && !synth.pending)) { synth.cancel(); play(idx); }
    }, RESUME_CHECK_MS);
}
function resume() {
    if (idle()) return;
    state.userPaused = false;
    resumeOrRestart(state.queue[state.cur]);
}
function toggle() {
    if (synth.paused || state.userPaused) {
        state.userPaused = false;
        resumeOrRestart(idle() ? 0 : state.queue[state.cur]);
    } else if (synth.speaking) {
        pause();
    }
}
function clickParagraph(i) {
    if (i === state.playing && !idle()) {
        if (synth.paused || state.userPaused) { state.userPaused = false; resumeOrRestart(i); }
        else if (synth.speaking) pause();
        else play(i);
        return;
    }
    play(i);
}

function applyPrefs() {
    document.body.classList.remove('show-both', 'show-source', 'show-target');
    document.body.classList.add('show-' + prefs.visibility);
    document.getElementById('text').style.fontSize = prefs.fontSize + 'px';
    document.getElementById('settings').classList.toggle('open', prefs.settingsOpen);
    for (const key of ['sourceRate', 'targetRate', 'fontSize']) {
        document.getElementById(key).value = prefs[key];
        document.getElementById(key + 'Val').textContent = prefs[key];
    }
    document.getElementById('visibility').value = prefs.visibility;
}
function fillVoices() {
    const voices = synth.getVoices();
    for (const key of ['sourceVoice', 'targetVoice']) {
        const select = document.getElementById(key);
        select.innerHTML = '<option value="">Default</option>';
        for (const v of voices) {
            const opt = document.createElement('option');
            opt.value = v.name; opt.textContent = v.name + ' (' + v.lang + ')';
            opt.selected = v.name === prefs[key];
            select.appendChild(opt);
        }
    }
}

document.getElementById('playBtn').onclick = () => play(idle() ? START_INDEX : state.queue[state.cur]);
document.getElementById('pauseBtn').onclick = pause;
document.getElementById('resumeBtn').onclick = resume;
document.getElementById('stopBtn').onclick = stop;
document.getElementById('settingsBtn').onclick = () => {
    prefs.settingsOpen = !prefs.settingsOpen; savePrefs(); applyPrefs();
};
document.getElementById('visibility').onchange = (e) => {
    prefs.visibility = e.target.value; savePrefs(); stop(); applyPrefs();
};
document.getElementById('chapterSelect').onchange = (e) => {
    stop();
    location.href = READ_URL + '?book=' + encodeURIComponent(BOOK) + '&doc=' + encodeURIComponent(e.target.value);
};
for (const key of ['sourceRate', 'targetRate']) {
    document.getElementById(key).oninput = (e) => {
        prefs[key] = clamp(parseFloat(e.target.value), 0.5, 2); savePrefs(); applyPrefs();
    };
}
document.getElementById('fontSize').oninput = (e) => {
    prefs.fontSize = clamp(parseInt(e.target.value, 10), 15, 26); savePrefs(); applyPrefs();
};
for (const key of ['sourceVoice', 'targetVoice']) {
    document.getElementById(key).onchange = (e) => { prefs[key] = e.target.value || null; savePrefs(); };
}
document.querySelectorAll('.para').forEach(el => {
    el.addEventListener('click', () => clickParagraph(parseInt(el.dataset.idx, 10)));
});
document.addEventListener('keydown', (e) => {
    if (e.code !== 'Space' || ['INPUT', 'SELECT', 'TEXTAREA', 'BUTTON'].includes(e.target.tagName)) return;
    e.preventDefault();
    toggle();
});
document.addEventListener('visibilitychange', () => {
    if (document.visibilityState === 'visible' && (synth.speaking || synth.paused)) acquireWakeLock();
});
window.addEventListener('beforeunload', () => { synth.cancel(); releaseWakeLock(); });
synth.onvoiceschanged = fillVoices;

applyPrefs();
fillVoices();
const startEl = paraEl(START_INDEX);
if (START_INDEX > 0 && startEl) startEl.scrollIntoView({block: 'start'});
</script>
</body>
</html>
'''


def _config() -> ReaderConfig:
    return app.config['READER']


def _library() -> Library:
    return Library(_config().uploads_dir)


def _progress_store() -> ProgressStore:
    return ProgressStore(_config().progress_path)


def _start_job(target, *args):
    thread = threading.Thread(target=target, args=args, daemon=True)
    thread.start()


def _language_hints(book, filename: str) -> dict:
    """Speech language hints: the book's declared language and the _<target> filename suffix."""
    source = book_language(book)
    stem = Path(filename).stem
    target = stem.rsplit('_', 1)[-1] if '_' in stem else ''
    if target not in LANGUAGES:
        target = ''
    return {'source': source, 'target': target or source}


@app.errorhandler(413)
def too_large(e):
    return jsonify({'error': f'File too large. Maximum size is {_config().max_upload_mb}MB.'}), 413


@app.route('/')
def index():
    return render_template_string(INDEX_PAGE, style=BASE_STYLE, books=_library().list_books())


@app.route('/upload', methods=['POST'])
def upload():
    file = request.files.get('epubFile')
    if file is None or not file.filename:
        return jsonify({'error': 'No file uploaded'}), 400
    try:
        stored = _library().store(file)
    except InvalidBookError as e:
        logger.warning(f'Rejected upload {file.filename}: {e}')
        return jsonify({'error': str(e)}), 400
    return jsonify({
        'success': True,
        'message': 'File uploaded successfully!',
        'filename': stored.filename,
    })


@app.route('/translate/<path:filename>')
def translate_form(filename):
    try:
        _library().resolve_book(filename)
    except InvalidBookError:
        abort(404)
    return render_template_string(
        TRANSLATE_PAGE,
        style=BASE_STYLE,
        filename=filename,
        languages=LANGUAGES,
        source_languages=SOURCE_LANGUAGES,
    )


def _run_translation(job_id, book_path, source, target, config):
    """Background translation worker."""
    job = _jobs[job_id]

    def progress(stage, step, total, message):
        job['stage'] = stage.value
        job['progress'] = int(step / total * 100) if total else 0
        job['message'] = message

    try:
        with _translation_lock:
            job['status'] = 'running'
            job['message'] = 'Starting...'
            result = translate_book(
                book_path, target, source=source, config=config, progress_callback=progress,
            )
    except BookTranslationError as e:
        logger.exception('Translation failed')
        job['status'] = 'error'
        job['message'] = f'Translation failed: {e}'
        if e.output_path is not None and Path(e.output_path).exists():
            job['result_file'] = str(e.output_path)
        return
    except Exception as e:
        logger.exception('Translation failed')
        job['status'] = 'error'
        job['message'] = f'Translation failed: {e}'
        return

    job['status'] = 'done'
    job['progress'] = 100
    job['message'] = f'Done! Created {result.output_path.name}'
    job['result_file'] = str(result.output_path)


@app.route('/translate-book', methods=['POST'])
def translate_book_route():
    data = request.get_json(silent=True) or request.form
    filename = (data.get('filename') or '').strip()
    source = (data.get('sourceLanguage') or 'auto').strip()
    target = (data.get('targetLanguage') or '').strip()

    if not filename or not target:
        return jsonify({'error': 'filename and targetLanguage are required'}), 400
    if source not in SOURCE_LANGUAGES:
        return jsonify({'error': f'Unsupported source language: {source}'}), 400
    if target not in LANGUAGES:
        return jsonify({'error': f'Unsupported target language: {target}'}), 400
    if source == target:
        return jsonify({'error': 'Source and target languages must differ'}), 400
    try:
        book_path = _library().resolve_book(filename)
    except InvalidBookError as e:
        return jsonify({'error': str(e)}), 400

    with _jobs_lock:
        for job in _jobs.values():
            if (job['status'] in ACTIVE_STATUSES
                    and (job['book'], job['target']) == (filename, target)):
                return jsonify({'error': f'{filename} is already being translated to {target}'}), 409
        job_id = str(uuid.uuid4())[:8]
        _jobs[job_id] = {
            'status': 'queued',
            'stage': 'not_started',
            'progress': 0,
            'message': 'Waiting for the previous translation to finish...',
            'book': filename,
            'source': source,
            'target': target,
            'result_file': None,
        }
    logger.info(f'Job {job_id}: translating {filename} ({source} -> {target})')
    _start_job(_run_translation, job_id, book_path, source, target, _config())
    return jsonify({'job_id': job_id})


def _job_payload(job) -> dict:
    return {
        'status': job['status'],
        'stage': job['stage'],
        'progress': job['progress'],
        'message': job['message'],
        'download': bool(job['result_file']),
    }


@app.route('/progress/<job_id>')
def progress(job_id):
    """SSE endpoint for real-time progress updates."""
    def stream():
        while True:
            job = _jobs.get(job_id)
            if not job:
                yield f"data: {json.dumps({'status': 'error', 'message': 'Job not found'})}\n\n"
                break

            yield f'data: {json.dumps(_job_payload(job))}\n\n'

            if job['status'] in ('done', 'error'):
                break
            time.sleep(0.5)

    return Response(stream(), mimetype='text/event-stream',
                    headers={'Cache-Control': 'no-cache', 'X-Accel-Buffering': 'no'})


@app.route('/download/<job_id>')
def download(job_id):
    """Download the translated (or partially translated) EPUB."""
    job = _jobs.get(job_id)
    if not job:
        return 'Job not found', 404
    if not job['result_file']:
        return 'Job not ready', 400
    path = Path(job['result_file'])
    return send_file(path, as_attachment=True, download_name=path.name)


@app.route('/read')
def read():
    name = request.args.get('book', '')
    try:
        book_path = _library().resolve_book(name)
    except InvalidBookError:
        abort(404)

    book = open_book(book_path)
    docs = list_chapters(book)
    if not docs:
        abort(404)

    saved = _progress_store().get(name)
    doc = request.args.get('doc')
    if doc is not None and doc not in docs:
        abort(404)
    if doc is None:
        doc = saved.last_chapter if saved and saved.last_chapter in docs else docs[0]
    start_index = saved.last_paragraph_index if saved and saved.last_chapter == doc else 0

    chapter = read_chapter(book, doc)
    return render_template_string(
        READER_PAGE,
        style=BASE_STYLE,
        book=name,
        chapter=chapter,
        chapters=list(zip(docs, chapter_labels(book, docs))),
        paragraphs=[p.to_dict() for p in chapter.paragraphs],
        start_index=min(start_index, max(len(chapter) - 1, 0)),
        cover=cover_data_url(book),
        lang_hints=_language_hints(book, name),
        resume_check_ms=round(RESUME_CHECK_DELAY * 1000),
        max_speak_depth=MAX_SPEAK_DEPTH,
    )


@app.route('/save-progress', methods=['POST'])
def save_progress():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        return jsonify({'error': 'Expected a JSON body'}), 400
    name, doc, index = data.get('book'), data.get('doc'), data.get('paragraphIndex')
    if not isinstance(index, int) or isinstance(index, bool) or index < 0:
        return jsonify({'error': 'paragraphIndex must be a non-negative integer'}), 400
    try:
        book_path = _library().resolve_book(name)
    except InvalidBookError as e:
        return jsonify({'error': str(e)}), 400
    if doc not in list_chapters(book_path):
        return jsonify({'error': f'Unknown chapter: {doc}'}), 400

    _progress_store().set(name, doc, index)
    return jsonify({'success': True})


if __name__ == '__main__':
    _config().ensure_dirs()
    print('Starting server at http://localhost:5000')
    print('Open this URL in your browser to upload an EPUB file.')
    app.run(host='0.0.0.0', port=5000, debug=False)
