"""Bulk import of audio/image flashcards into a lesson.

For every audio file the assembler finds the image with the same base name,
normalizes it, claims wrong-answer images from the rest of the batch,
stores all bytes and inserts one flashcard row. A failing card is reported
and the batch carries on.
"""
from __future__ import annotations

import os
import time
import uuid
import random
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from PIL import ImageColor
from pydantic import BaseModel, Field, ValidationError, field_validator

from modules.flashcards.distractors import DistractorPool, build_answer_set
from modules.flashcards.errors import (
    FailureKind,
    FlashcardImportError,
    ImageProcessingError,
    ImportValidationError,
    StorageError,
)
from modules.flashcards.normalizer import IMAGE_BACKGROUND, IMAGE_MAX_DIMENSION, NormalizedImage, normalize_image
from modules.flashcards.pair_matcher import REUSED_IMAGE_REASON, MatchedPair, match_pairs
from modules.flashcards.report import BatchReport, ItemOutcome
from modules.flashcards.uploads import UploadedFile, UploadedItem, classify_uploads
from modules.storage.blob_store import BlobReference, BlobStore
from modules.storage.record_store import FlashcardRecord, RecordStore
from modules.utils.logger import get_logger, log_import_batch, log_import_item

LOG = get_logger()

FLASHCARD_CHOICES_PER_CARD = int(os.getenv('FLASHCARD_CHOICES_PER_CARD', '4'))
IMPORT_MAX_WORKERS = int(os.getenv('IMPORT_MAX_WORKERS', '1'))
TIMEOUT_REASON = 'not processed: import deadline exceeded'

ProgressCallback = Callable[[int, int], None]


class ImportOptions(BaseModel):
    choices_per_card: int = Field(FLASHCARD_CHOICES_PER_CARD, ge=2)
    max_image_dimension: int = Field(IMAGE_MAX_DIMENSION, ge=1)
    background: str = IMAGE_BACKGROUND
    max_workers: int = Field(IMPORT_MAX_WORKERS, ge=1)
    timeout_seconds: Optional[float] = Field(None, gt=0)
    # fixes shuffling and answer positions; leave unset in production
    seed: Optional[int] = None

    @field_validator('background')
    @classmethod
    def valid_color(cls, v):
        try:
            ImageColor.getrgb(v)
        except ValueError:
            raise ValueError(f'invalid color: {v}')
        return v


def _coerce_options(options: Union[ImportOptions, Mapping[str, Any], None]) -> ImportOptions:
    if options is None:
        return ImportOptions()
    if isinstance(options, ImportOptions):
        return options
    try:
        return ImportOptions(**{k: v for k, v in dict(options).items() if v is not None})
    except (ValidationError, TypeError) as e:
        raise ImportValidationError(f'invalid import options: {e}') from e


def validate_request(lesson_id, options=None):
    """Check arguments of an import before any work starts.

    Returns (lesson id as str, ImportOptions); raises ImportValidationError.
    """
    if lesson_id is None or not str(lesson_id).strip():
        raise ImportValidationError('lesson_id is required')
    return str(lesson_id), _coerce_options(options)


def _coerce_files(files: Iterable[Any]) -> List[UploadedFile]:
    if files is None:
        raise ImportValidationError('files must be a sequence of uploads')
    out = []
    try:
        for f in files:
            out.append(f if isinstance(f, UploadedFile) else UploadedFile(**dict(f)))
    except (ValidationError, TypeError, ValueError) as e:
        raise ImportValidationError(f'invalid upload entry: {e}') from e
    return out


class FlashcardAssembler:
    def __init__(self, blob_store: BlobStore, record_store: RecordStore):
        self.blob_store = blob_store
        self.record_store = record_store

    def import_batch(self, lesson_id: str, files: Iterable[Any], options=None, progress: Optional[ProgressCallback] = None) -> BatchReport:
        """Create flashcards for ``lesson_id`` from a flat list of uploads.

        Args:
            lesson_id: lesson receiving the flashcards
            files: UploadedFile objects or mappings with display_name, mime_type, data
            options: ImportOptions or a mapping of its fields
            progress: called with (finished pairs, total pairs) after each pair

        Returns:
            BatchReport with one item per audio file, in upload order.

        Raises:
            ImportValidationError: missing lesson id, malformed uploads or options.
                Nothing else escapes; per-card problems end up in the report.
        """
        lesson_id, opts = validate_request(lesson_id, options)
        uploads = _coerce_files(files)

        start = time.time()
        deadline = time.monotonic() + opts.timeout_seconds if opts.timeout_seconds else None
        rng = random.Random(opts.seed)

        audio, images, skipped = classify_uploads(uploads)
        pairs, unmatched, reused = match_pairs(audio, images)
        pool = DistractorPool(images, reserved_base_names={p.audio_item.base_name for p in pairs})
        LOG.info('import_batch_start', extra={'lesson_id': lesson_id, 'audio': len(audio), 'images': len(images), 'pairs': len(pairs), 'unmatched': len(unmatched), 'reused': len(reused), 'skipped': len(skipped)})

        outcomes: Dict[int, ItemOutcome] = {}
        for miss in unmatched:
            name = miss.audio_item.display_name
            outcomes[id(miss.audio_item)] = ItemOutcome.failure(name, FailureKind.UNMATCHED_AUDIO, miss.reason)
            log_import_item(lesson_id, name, 'failure', 0, FailureKind.UNMATCHED_AUDIO.value, miss.reason)
        for pair in reused:
            name = pair.audio_item.display_name
            outcomes[id(pair.audio_item)] = ItemOutcome.failure(name, FailureKind.INSUFFICIENT_DISTRACTORS, REUSED_IMAGE_REASON)
            log_import_item(lesson_id, name, 'failure', 0, FailureKind.INSUFFICIENT_DISTRACTORS.value, REUSED_IMAGE_REASON)

        total = len(audio)
        state = {'timed_out': False, 'done': len(unmatched) + len(reused), 'next': 0}
        lock = threading.Lock()

        def next_pair() -> Optional[MatchedPair]:
            with lock:
                if state['next'] >= len(pairs):
                    return None
                if deadline is not None and time.monotonic() >= deadline:
                    state['timed_out'] = True
                    return None
                state['next'] += 1
                return pairs[state['next'] - 1]

        def worker():
            while True:
                pair = next_pair()
                if pair is None:
                    return
                outcome = self._process_pair(lesson_id, pair, pool, opts, rng)
                with lock:
                    outcomes[id(pair.audio_item)] = outcome
                    state['done'] += 1
                    # reported under the lock so counts reach the callback in order
                    if progress is not None:
                        try:
                            progress(state['done'], total)
                        except Exception:
                            LOG.warning('import_progress_callback_failed', exc_info=True)

        workers = min(opts.max_workers, len(pairs))
        if workers <= 1:
            worker()
        else:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='flashcard-import') as ex:
                for fut in [ex.submit(worker) for _ in range(workers)]:
                    fut.result()

        for pair in pairs:
            if id(pair.audio_item) not in outcomes:
                outcomes[id(pair.audio_item)] = ItemOutcome.failure(pair.audio_item.display_name, FailureKind.BATCH_TIMEOUT, TIMEOUT_REASON)

        report = BatchReport(
            lesson_id=lesson_id,
            items=[outcomes[id(a)] for a in audio],
            skipped_files=skipped,
            timed_out=state['timed_out'],
        )
        duration_ms = int((time.time() - start) * 1000)
        log_import_batch(lesson_id, report.total_pairs, report.succeeded, report.failed, duration_ms, timed_out=report.timed_out, skipped_files=len(skipped))
        return report

    def _process_pair(self, lesson_id: str, pair: MatchedPair, pool: DistractorPool, opts: ImportOptions, rng: random.Random) -> ItemOutcome:
        name = pair.audio_item.display_name
        start = time.time()
        claimed: List[UploadedItem] = []
        try:
            correct = self._normalize(pair.correct_image, opts)
            claimed = pool.claim(opts.choices_per_card - 1, rng)
            distractors = []
            for item in claimed:
                try:
                    distractors.append(self._normalize(item, opts))
                except ImageProcessingError:
                    pool.mark_corrupt(item)
                    raise
            answer = build_answer_set(correct, distractors, rng)
            record = self._persist(lesson_id, pair.audio_item, answer.images, answer.correct_index)
        except FlashcardImportError as e:
            pool.release(claimed)
            duration_ms = int((time.time() - start) * 1000)
            log_import_item(lesson_id, name, 'failure', duration_ms, e.kind.value, str(e))
            return ItemOutcome.failure(name, e.kind, str(e))
        except Exception as e:
            LOG.exception('import_item_unexpected_error', exc_info=True, extra={'audio_name': name})
            pool.release(claimed)
            return ItemOutcome.failure(name, FailureKind.STORAGE, f'unexpected error: {e}')
        duration_ms = int((time.time() - start) * 1000)
        log_import_item(lesson_id, name, 'success', duration_ms)
        return ItemOutcome.success(name, record)

    def _normalize(self, item: UploadedItem, opts: ImportOptions) -> NormalizedImage:
        try:
            result = normalize_image(item.data, opts.max_image_dimension, opts.background)
        except ImageProcessingError as e:
            raise ImageProcessingError(f'{item.display_name}: {e}') from e
        if not result.extension:
            result = result.model_copy(update={'extension': item.extension})
        return result

    @staticmethod
    def _key(lesson_id: str, kind: str, extension: str) -> str:
        return f'lessons/{lesson_id}/{kind}/{uuid.uuid4().hex}{extension}'

    def _persist(self, lesson_id: str, audio: UploadedItem, images: List[NormalizedImage], correct_index: int) -> FlashcardRecord:
        # every blob must exist before the row that points at it
        written: List[BlobReference] = []
        try:
            audio_ref = self.blob_store.put(self._key(lesson_id, 'audio', audio.extension), audio.data, audio.content_type)
            written.append(audio_ref)
            image_refs = []
            for img in images:
                ref = self.blob_store.put(self._key(lesson_id, 'images', img.extension), img.data, img.content_type)
                written.append(ref)
                image_refs.append(ref)
            return self.record_store.insert_flashcard(lesson_id, audio_ref, image_refs, correct_index)
        except Exception as e:
            self._cleanup(written)
            raise StorageError(f'storage write failed: {e}') from e

    def _cleanup(self, refs: List[BlobReference]):
        for ref in refs:
            try:
                self.blob_store.delete(ref)
            except Exception as e:
                LOG.warning('blob_cleanup_failed', extra={'key': ref.key, 'error': str(e)})


def import_batch(lesson_id: str, files, options=None, blob_store: BlobStore = None, record_store: RecordStore = None, progress: Optional[ProgressCallback] = None) -> BatchReport:
    """Run one import with the configured (or given) storage backends."""
    from modules.storage import get_blob_store, get_record_store

    assembler = FlashcardAssembler(blob_store or get_blob_store(), record_store or get_record_store())
    return assembler.import_batch(lesson_id, files, options=options, progress=progress)
