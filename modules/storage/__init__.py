"""Storage collaborators for imported flashcards: blob bytes and flashcard rows."""

from .blob_store import (
	BlobStore,
	BlobReference,
	BlobStoreError,
	LocalBlobStore,
	S3BlobStore,
	get_blob_store,
)
from .record_store import (
	RecordStore,
	RecordStoreError,
	FlashcardRecord,
	InMemoryRecordStore,
	PostgresRecordStore,
	get_record_store,
)

__all__ = [
	'BlobStore',
	'BlobReference',
	'BlobStoreError',
	'LocalBlobStore',
	'S3BlobStore',
	'get_blob_store',
	'RecordStore',
	'RecordStoreError',
	'FlashcardRecord',
	'InMemoryRecordStore',
	'PostgresRecordStore',
	'get_record_store',
]
