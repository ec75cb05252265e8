import os
import pytest
from io import BytesIO
from unittest.mock import MagicMock
from pathlib import Path

from dotenv import load_dotenv

# load test env first
env_path = Path(__file__).resolve().parents[1] / '.env.test'
if env_path.exists():
    load_dotenv(env_path)

os.environ.setdefault('TESTING', '1')
os.environ.setdefault('IMAGE_RETRY_WAIT', '0')
os.environ.setdefault('BLOB_RETRY_ATTEMPTS', '2')


@pytest.fixture(autouse=True)
def silence_logger(monkeypatch):
    # Patch any project logger acquisition to avoid noisy logs
    try:
        import modules.utils.logger as logger_mod
        monkeypatch.setattr(logger_mod, 'get_logger', lambda *a, **k: MagicMock())
    except Exception:
        pass
    yield


def _image_bytes(size=(100, 100), color=(255, 0, 0), fmt='PNG', mode='RGB'):
    from PIL import Image
    img = Image.new(mode, size, color=color)
    buf = BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


@pytest.fixture
def make_image():
    """Factory for encoded images: make_image(size=(w, h), color=(r, g, b), fmt='PNG')."""
    return _image_bytes


@pytest.fixture
def sample_image_bytes():
    return _image_bytes(fmt='JPEG')


@pytest.fixture
def make_upload():
    from modules.flashcards import UploadedFile

    def _make(name, data=None, mime_type=None, color=(0, 128, 255)):
        if mime_type is None:
            mime_type = 'audio/mpeg' if name.endswith(('.mp3', '.wav', '.ogg')) else 'image/png'
        if data is None:
            data = b'ID3fake-audio-' + name.encode() if mime_type.startswith('audio/') else _image_bytes(color=color)
        return UploadedFile(display_name=name, mime_type=mime_type, data=data)

    return _make


@pytest.fixture
def batch_files(make_upload):
    """Build a batch from audio and image names; each image gets its own color."""

    def _build(audio_names, image_names):
        files = [make_upload(n) for n in audio_names]
        for i, n in enumerate(image_names):
            files.append(make_upload(n, color=((i * 40) % 256, (i * 90) % 256, (i * 150) % 256)))
        return files

    return _build


@pytest.fixture
def blob_store(tmp_path):
    from modules.storage import LocalBlobStore
    return LocalBlobStore(root=str(tmp_path / 'blobs'), url_prefix='/uploads')


@pytest.fixture
def record_store():
    from modules.storage import InMemoryRecordStore
    return InMemoryRecordStore()


@pytest.fixture
def assembler(blob_store, record_store):
    from modules.flashcards import FlashcardAssembler
    return FlashcardAssembler(blob_store, record_store)


@pytest.fixture
def mock_boto3_client(monkeypatch):
    from tests.fixtures.mock_aws import fake_boto3_client, MockS3Client

    client = MockS3Client()

    def fake_client(name, *a, **kw):
        if name == 's3':
            return client
        return fake_boto3_client(name, *a, **kw)

    monkeypatch.setattr('boto3.client', fake_client)
    return client


@pytest.fixture
def mock_redis_client(monkeypatch):
    from tests.fixtures.mock_redis import MockRedisClient

    client = MockRedisClient()
    monkeypatch.setattr('redis.Redis', lambda *a, **k: client)
    monkeypatch.setattr('redis.from_url', lambda *a, **k: client)
    return client


@pytest.fixture
def mock_postgres_pool():
    from tests.fixtures.mock_postgres import MockPool
    return MockPool()


@pytest.fixture
def app_client(monkeypatch, blob_store, record_store):
    from fastapi.testclient import TestClient
    import main as service_main
    from modules.utils import task_manager as tm_mod

    monkeypatch.setattr(tm_mod, 'redis', None)
    monkeypatch.setattr(tm_mod.TaskManager, '_instance', None)
    monkeypatch.setitem(service_main.STORES, 'blob', blob_store)
    monkeypatch.setitem(service_main.STORES, 'record', record_store)
    with TestClient(service_main.app) as client:
        yield client
