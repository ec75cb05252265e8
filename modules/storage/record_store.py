import os
import json
import threading
import itertools
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import BaseModel, Field

from modules.storage.blob_store import BlobReference
from modules.utils.logger import get_logger

LOG = get_logger()

RECORD_BACKEND = os.getenv('RECORD_BACKEND', 'memory')
DB_POOL_MIN = int(os.getenv('DB_POOL_MIN', '1'))
DB_POOL_MAX = int(os.getenv('DB_POOL_MAX', '5'))


class RecordStoreError(Exception):
    """Raised when a flashcard record cannot be written or read."""


class FlashcardRecord(BaseModel):
    id: int
    lesson_id: str
    audio_ref: BlobReference
    image_choices: List[BlobReference]
    correct_image_index: int = Field(..., ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class RecordStore:
    backend = 'abstract'

    def insert_flashcard(self, lesson_id: str, audio_ref: BlobReference, image_refs: List[BlobReference], correct_index: int) -> FlashcardRecord:
        raise NotImplementedError

    def list_flashcards(self, lesson_id: str) -> List[FlashcardRecord]:
        raise NotImplementedError

    def get_flashcard(self, flashcard_id: int) -> Optional[FlashcardRecord]:
        raise NotImplementedError

    def delete_flashcard(self, flashcard_id: int) -> Optional[FlashcardRecord]:
        raise NotImplementedError

    def check(self) -> str:
        return 'ok'


def _validate_choice(image_refs: List[BlobReference], correct_index: int):
    if not image_refs:
        raise RecordStoreError('image_choices must not be empty')
    if not 0 <= correct_index < len(image_refs):
        raise RecordStoreError(f'correct_index {correct_index} outside 0..{len(image_refs) - 1}')


class InMemoryRecordStore(RecordStore):
    backend = 'memory'

    def __init__(self):
        self._records = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def insert_flashcard(self, lesson_id, audio_ref, image_refs, correct_index):
        _validate_choice(image_refs, correct_index)
        with self._lock:
            record = FlashcardRecord(
                id=next(self._ids),
                lesson_id=str(lesson_id),
                audio_ref=audio_ref,
                image_choices=list(image_refs),
                correct_image_index=correct_index,
            )
            self._records[record.id] = record
        LOG.info('flashcard_inserted', extra={'flashcard_id': record.id, 'lesson_id': record.lesson_id})
        return record

    def list_flashcards(self, lesson_id):
        with self._lock:
            return [r for r in self._records.values() if r.lesson_id == str(lesson_id)]

    def get_flashcard(self, flashcard_id):
        with self._lock:
            return self._records.get(flashcard_id)

    def delete_flashcard(self, flashcard_id):
        with self._lock:
            return self._records.pop(flashcard_id, None)


class PostgresRecordStore(RecordStore):
    """Flashcard rows in Postgres, see scripts/init_db.py for the table."""

    backend = 'postgres'

    def __init__(self, pool=None):
        if pool is None:
            from psycopg2 import pool as pg_pool
            pool = pg_pool.ThreadedConnectionPool(
                DB_POOL_MIN,
                DB_POOL_MAX,
                host=os.getenv('DB_HOST', 'localhost'),
                port=int(os.getenv('DB_PORT', '5432')),
                dbname=os.getenv('DB_NAME', 'lingocards'),
                user=os.getenv('DB_USER', 'postgres'),
                password=os.getenv('DB_PASSWORD', ''),
                connect_timeout=5,
            )
        self._pool = pool
        LOG.info('PostgresRecordStore initialized')

    def _run(self, query: str, params=None, fetch: str = None):
        conn = self._pool.getconn()
        cur = None
        try:
            cur = conn.cursor()
            cur.execute(query, params)
            if fetch == 'one':
                rows = cur.fetchone()
            elif fetch == 'all':
                rows = cur.fetchall()
            else:
                rows = None
            conn.commit()
            return rows
        except Exception as e:
            conn.rollback()
            LOG.exception('postgres_query_failed', exc_info=True)
            raise RecordStoreError(str(e))
        finally:
            if cur is not None:
                cur.close()
            self._pool.putconn(conn)

    @staticmethod
    def _row_to_record(row) -> FlashcardRecord:
        flashcard_id, lesson_id, audio_key, audio_url, choices, correct_index, backend, created_at = row
        if isinstance(choices, str):
            choices = json.loads(choices)
        return FlashcardRecord(
            id=flashcard_id,
            lesson_id=str(lesson_id),
            audio_ref=BlobReference(key=audio_key, url=audio_url, backend=backend),
            image_choices=[BlobReference(**c) for c in choices],
            correct_image_index=correct_index,
            created_at=created_at,
        )

    _COLUMNS = 'id, lesson_id, audio_key, audio_url, image_choices, correct_image_index, blob_backend, created_at'

    def insert_flashcard(self, lesson_id, audio_ref, image_refs, correct_index):
        from psycopg2.extras import Json

        _validate_choice(image_refs, correct_index)
        row = self._run(
            f"INSERT INTO flashcards (lesson_id, audio_key, audio_url, image_choices, correct_image_index, blob_backend) "
            f"VALUES (%s, %s, %s, %s, %s, %s) RETURNING {self._COLUMNS}",
            (lesson_id, audio_ref.key, audio_ref.url, Json([r.model_dump() for r in image_refs]), correct_index, audio_ref.backend),
            fetch='one',
        )
        if not row:
            raise RecordStoreError('insert returned no row')
        record = self._row_to_record(row)
        LOG.info('flashcard_inserted', extra={'flashcard_id': record.id, 'lesson_id': record.lesson_id})
        return record

    def list_flashcards(self, lesson_id):
        rows = self._run(f'SELECT {self._COLUMNS} FROM flashcards WHERE lesson_id = %s ORDER BY id', (lesson_id,), fetch='all')
        return [self._row_to_record(r) for r in rows or []]

    def get_flashcard(self, flashcard_id):
        row = self._run(f'SELECT {self._COLUMNS} FROM flashcards WHERE id = %s', (flashcard_id,), fetch='one')
        return self._row_to_record(row) if row else None

    def delete_flashcard(self, flashcard_id):
        row = self._run(f'DELETE FROM flashcards WHERE id = %s RETURNING {self._COLUMNS}', (flashcard_id,), fetch='one')
        return self._row_to_record(row) if row else None

    def check(self) -> str:
        try:
            self._run('SELECT 1', fetch='one')
            return 'ok'
        except RecordStoreError as e:
            return f'error: {str(e)}'

    def close(self):
        self._pool.closeall()


def get_record_store(backend: str = None) -> RecordStore:
    backend = (backend or os.getenv('RECORD_BACKEND', RECORD_BACKEND)).lower()
    if backend == 'postgres':
        return PostgresRecordStore()
    if backend == 'memory':
        return InMemoryRecordStore()
    raise RecordStoreError(f'Unknown RECORD_BACKEND: {backend}')
