import json
from datetime import datetime, timezone

import pytest

from modules.storage import BlobReference, InMemoryRecordStore, PostgresRecordStore, RecordStoreError, get_record_store


def _ref(key):
    return BlobReference(key=key, url=f'/uploads/{key}', backend='local')


def _row(flashcard_id=1, lesson_id='l1', correct=1):
    choices = [_ref('i0.png').model_dump(), _ref('i1.png').model_dump()]
    return (flashcard_id, lesson_id, 'a.mp3', '/uploads/a.mp3', choices, correct, 'local', datetime(2024, 1, 1, tzinfo=timezone.utc))


def test_memory_insert_list_delete(record_store):
    r1 = record_store.insert_flashcard('l1', _ref('a.mp3'), [_ref('x.png'), _ref('y.png')], 1)
    r2 = record_store.insert_flashcard('l2', _ref('b.mp3'), [_ref('z.png'), _ref('w.png')], 0)
    assert r1.id != r2.id
    assert record_store.list_flashcards('l1') == [r1]
    assert record_store.get_flashcard(r2.id) == r2
    assert record_store.delete_flashcard(r1.id) == r1
    assert record_store.delete_flashcard(r1.id) is None
    assert record_store.list_flashcards('l1') == []


@pytest.mark.parametrize('refs,index', [([], 0), ([_ref('x.png')], 1), ([_ref('x.png')], -1)])
def test_memory_rejects_invalid_choice(record_store, refs, index):
    with pytest.raises(RecordStoreError):
        record_store.insert_flashcard('l1', _ref('a.mp3'), refs, index)


def test_postgres_insert_returns_record(mock_postgres_pool):
    store = PostgresRecordStore(pool=mock_postgres_pool)
    mock_postgres_pool.conn.rows.append(_row())
    record = store.insert_flashcard('l1', _ref('a.mp3'), [_ref('i0.png'), _ref('i1.png')], 1)

    assert record.id == 1
    assert record.image_choices[1].key == 'i1.png'
    assert record.correct_image_index == 1
    query, params = mock_postgres_pool.conn.queries[-1]
    assert query.startswith('INSERT INTO flashcards')
    assert params[0] == 'l1'
    assert params[1] == 'a.mp3'
    assert [c['key'] for c in params[3].adapted] == ['i0.png', 'i1.png']
    # choices are stored as reference objects, not bare URL strings
    assert params[3].adapted[0] == {'key': 'i0.png', 'url': '/uploads/i0.png', 'backend': 'local'}
    assert mock_postgres_pool.conn.commits == 1
    assert mock_postgres_pool.returned == 1


def test_postgres_reads_json_text_choices(mock_postgres_pool):
    store = PostgresRecordStore(pool=mock_postgres_pool)
    row = list(_row(flashcard_id=5))
    row[4] = json.dumps(row[4])
    mock_postgres_pool.conn.rows.append(tuple(row))
    record = store.get_flashcard(5)
    assert record.id == 5
    assert record.audio_ref.url == '/uploads/a.mp3'


def test_postgres_list_and_delete(mock_postgres_pool):
    store = PostgresRecordStore(pool=mock_postgres_pool)
    mock_postgres_pool.conn.rows.extend([_row(1), _row(2)])
    assert [r.id for r in store.list_flashcards('l1')] == [1, 2]
    assert store.delete_flashcard(9) is None
    assert mock_postgres_pool.conn.queries[-1][0].startswith('DELETE FROM flashcards')


def test_postgres_error_rolls_back(mock_postgres_pool):
    store = PostgresRecordStore(pool=mock_postgres_pool)
    mock_postgres_pool.conn.fail_next = True
    with pytest.raises(RecordStoreError):
        store.insert_flashcard('l1', _ref('a.mp3'), [_ref('x.png'), _ref('y.png')], 0)
    assert mock_postgres_pool.conn.rollbacks == 1
    assert mock_postgres_pool.returned == 1


def test_postgres_check_and_close(mock_postgres_pool):
    store = PostgresRecordStore(pool=mock_postgres_pool)
    assert store.check() == 'ok'
    mock_postgres_pool.conn.fail_next = True
    assert store.check().startswith('error:')
    store.close()
    assert mock_postgres_pool.closed


def test_get_record_store():
    assert isinstance(get_record_store('memory'), InMemoryRecordStore)
    with pytest.raises(RecordStoreError):
        get_record_store('sqlite')
