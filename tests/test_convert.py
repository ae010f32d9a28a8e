from pathlib import Path

import pytest

import convert
from bilingual_reader.config import MISMATCH_STRICT
from bilingual_reader.orchestrator import BookTranslationError, BookTranslationResult


@pytest.fixture
def calls(monkeypatch):
    recorded = []

    def fake_translate_book(input_path, target, source, config):
        recorded.append((input_path, target, source, config))
        return BookTranslationResult(
            output_path=config.output_dir / f'{input_path.stem}_{target}.epub',
            translated=['ch1.xhtml'],
        )

    monkeypatch.setattr(convert, 'translate_book', fake_translate_book)
    return recorded


def test_flags_map_onto_the_config(tmp_path, sample_epub, calls, capsys):
    convert.main([
        str(sample_epub), '--target', 'de', '--source', 'en',
        '-o', str(tmp_path / 'out'), '--work-dir', str(tmp_path / 'work'),
        '--cooldown', '0', '--chunk-limit', '1000', '--strict-pairing',
    ])

    input_path, target, source, config = calls[0]
    assert (input_path, target, source) == (sample_epub, 'de', 'en')
    assert config.output_dir == tmp_path / 'out'
    assert config.work_dir == tmp_path / 'work'
    assert config.cooldown_seconds == 0
    assert config.chunk_limit == 1000
    assert config.mismatch_policy == MISMATCH_STRICT
    assert f'Output written to: {tmp_path / "out" / "sample_de.epub"}' in capsys.readouterr().out


def test_output_defaults_to_the_input_folder(sample_epub, calls):
    convert.main([str(sample_epub), '--target', 'fr'])

    assert calls[0][3].output_dir == sample_epub.parent


def test_missing_input_exits_with_error(tmp_path, calls, capsys):
    with pytest.raises(SystemExit) as excinfo:
        convert.main([str(tmp_path / 'missing.epub'), '--target', 'fr'])

    assert excinfo.value.code == 1
    assert 'Input file not found' in capsys.readouterr().err
    assert calls == []


def test_partial_failure_exits_with_error(tmp_path, sample_epub, monkeypatch, capsys):
    partial = tmp_path / 'sample_fr.epub'
    partial.write_bytes(b'partial')

    def failing(input_path, target, source, config):
        raise BookTranslationError('Translation failed for 1 file(s): ch2.xhtml', output_path=partial)

    monkeypatch.setattr(convert, 'translate_book', failing)

    with pytest.raises(SystemExit) as excinfo:
        convert.main([str(sample_epub), '--target', 'fr'])

    assert excinfo.value.code == 1
    captured = capsys.readouterr()
    assert 'ch2.xhtml' in captured.err
    assert f'Partial output written to: {Path(partial)}' in captured.out
