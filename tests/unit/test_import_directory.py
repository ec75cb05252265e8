import importlib.util
from pathlib import Path

import pytest

SCRIPT = Path(__file__).resolve().parents[2] / 'scripts' / 'import_directory.py'


@pytest.fixture
def cli(monkeypatch, tmp_path):
    monkeypatch.setenv('RECORD_BACKEND', 'memory')
    monkeypatch.setenv('BLOB_BACKEND', 'local')
    monkeypatch.setenv('BLOB_LOCAL_ROOT', str(tmp_path / 'blobs'))
    spec = importlib.util.spec_from_file_location('import_directory', SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def lesson_dir(tmp_path, make_image):
    d = tmp_path / 'lesson'
    d.mkdir()
    (d / 'a.mp3').write_bytes(b'ID3audio')
    (d / 'a.png').write_bytes(make_image())
    (d / 'b.png').write_bytes(make_image(color=(0, 0, 255)))
    return d


def _blob_files(tmp_path):
    root = tmp_path / 'blobs'
    return [p for p in root.rglob('*') if p.is_file()] if root.exists() else []


def test_memory_backend_is_refused(cli, lesson_dir, tmp_path, capsys):
    assert cli.main(['7', str(lesson_dir), '--choices', '2']) == 2
    assert 'RECORD_BACKEND=memory' in capsys.readouterr().err
    assert _blob_files(tmp_path) == []


def test_memory_backend_with_explicit_flag(cli, lesson_dir, tmp_path, capsys):
    assert cli.main(['7', str(lesson_dir), '--choices', '2', '--allow-memory']) == 0
    out = capsys.readouterr()
    assert 'Warning' in out.err
    assert '"succeeded": 1' in out.out
    assert len(_blob_files(tmp_path)) == 3
