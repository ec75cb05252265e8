import os
import time
import uuid
import signal
import asyncio
from datetime import datetime, timezone
from typing import Optional, List

from fastapi import FastAPI, Request, Response, UploadFile, File, Form
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic_settings import BaseSettings

from modules.flashcards import (
    FlashcardAssembler,
    ImportValidationError,
    UploadedFile,
    BatchReport,
)
from modules.flashcards.assembler import validate_request
from modules.storage import get_blob_store, get_record_store, BlobStoreError, RecordStoreError
from modules.utils import get_logger, log_error, log_request, set_request_context, TaskManager, TaskStatus

LOG = get_logger()


class Settings(BaseSettings):
    HOST: str = os.getenv('HOST', '0.0.0.0')
    PORT: int = int(os.getenv('PORT', '8000'))
    ENVIRONMENT: str = os.getenv('ENVIRONMENT', 'development')
    LOG_LEVEL: str = os.getenv('LOG_LEVEL', 'INFO')
    CORS_ORIGIN: str = os.getenv('CORS_ORIGIN', '*')
    MAX_UPLOAD_SIZE_MB: int = int(os.getenv('MAX_UPLOAD_SIZE_MB', '20'))
    IMPORT_TIMEOUT_SECONDS: float = float(os.getenv('IMPORT_TIMEOUT_SECONDS', '300'))
    REDIS_REQUIRED_FOR_READY: bool = os.getenv('REDIS_REQUIRED_FOR_READY', 'false').lower() in ('1', 'true', 'yes')


settings = Settings()

app = FastAPI(title='LingoCards Import Service', version='1.0.0', description='Bulk audio/image flashcard import for lessons')

origins = [o.strip() for o in settings.CORS_ORIGIN.split(',') if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# storage backends are created on first use so tests can swap them in
STORES = {}
_BACKGROUND_TASKS = set()


def _blob_store():
    if 'blob' not in STORES:
        STORES['blob'] = get_blob_store()
    return STORES['blob']


def _record_store():
    if 'record' not in STORES:
        STORES['record'] = get_record_store()
    return STORES['record']


def _assembler() -> FlashcardAssembler:
    return FlashcardAssembler(_blob_store(), _record_store())


def _request_id(request: Optional[Request]) -> str:
    rid = getattr(request.state, 'request_id', None) if request is not None else None
    return rid or os.urandom(8).hex()


def _error(status_code: int, error: str, details: str, request_id: str, **extra) -> JSONResponse:
    body = {'success': False, 'error': error, 'details': details, 'request_id': request_id}
    body.update(extra)
    return JSONResponse(status_code=status_code, content=body)


def _report_status(report: BatchReport) -> TaskStatus:
    if report.failed == 0:
        return TaskStatus.COMPLETED
    if report.succeeded == 0:
        return TaskStatus.FAILED
    return TaskStatus.PARTIAL_SUCCESS


@app.middleware('http')
async def add_request_id_and_logging(request: Request, call_next):
    request_id = request.headers.get('x-request-id') or os.urandom(8).hex()
    request.state.request_id = request_id
    set_request_context(request_id)
    start = time.time()
    LOG.info('http_request_start', extra={'method': request.method, 'path': request.url.path, 'request_id': request_id, 'client': request.client.host if request.client else None})
    try:
        response: Response = await call_next(request)
    except Exception:
        LOG.exception('Unhandled exception in request', exc_info=True)
        body = {'success': False, 'error': {'message': 'Internal server error', 'request_id': request_id}}
        return JSONResponse(status_code=500, content=body)
    duration = int((time.time() - start) * 1000)
    log_request(request_id, request.method, request.url.path, response.status_code, duration, ip=request.client.host if request.client else None)
    response.headers['X-Request-ID'] = request_id
    return response


@app.get('/health')
async def health():
    return {'status': 'ok', 'timestamp': datetime.now(timezone.utc).isoformat(), 'service': 'flashcard-import'}


def _check(fn):
    try:
        return fn().check()
    except Exception as e:
        return f'error: {str(e)}'


def _check_redis():
    tm = TaskManager.get_instance()
    return 'ok' if tm.uses_redis else 'error: using in-memory task store'


@app.get('/ready')
async def ready():
    services = {
        'records': _check(_record_store),
        'blobs': _check(_blob_store),
        'redis': _check_redis(),
    }
    ready_ok = not services['records'].startswith('error') and not services['blobs'].startswith('error')
    if settings.REDIS_REQUIRED_FOR_READY and services['redis'].startswith('error'):
        ready_ok = False
    status_code = 200 if ready_ok else 503
    return JSONResponse(status_code=status_code, content={'status': 'ready' if ready_ok else 'not ready', 'services': services})


async def _read_uploads(files: List[UploadFile]) -> List[UploadedFile]:
    max_bytes = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    uploads = []
    for f in files:
        data = await f.read()
        if len(data) > max_bytes:
            raise ValueError(f'{f.filename} exceeds {settings.MAX_UPLOAD_SIZE_MB} MB')
        uploads.append(UploadedFile(display_name=f.filename or '', mime_type=f.content_type, data=data))
    return uploads


@app.post('/lessons/{lesson_id}/flashcards/import')
async def import_flashcards(
    lesson_id: str,
    request: Request,
    files: List[UploadFile] = File(...),
    choices_per_card: Optional[int] = Form(None),
    max_image_dimension: Optional[int] = Form(None),
    timeout_seconds: Optional[float] = Form(None),
    await_result: bool = Form(True),
):
    request_id = _request_id(request)
    try:
        uploads = await _read_uploads(files)
    except ValueError as e:
        return _error(413, 'Upload too large', str(e), request_id)

    options = {
        'choices_per_card': choices_per_card,
        'max_image_dimension': max_image_dimension,
        'timeout_seconds': timeout_seconds or settings.IMPORT_TIMEOUT_SECONDS,
    }
    assembler = _assembler()
    LOG.info('import_request', extra={'request_id': request_id, 'lesson_id': lesson_id, 'files': len(uploads), 'await_result': await_result})

    if await_result:
        try:
            report = await asyncio.to_thread(assembler.import_batch, lesson_id, uploads, options)
        except ImportValidationError as e:
            return _error(400, 'Invalid import request', str(e), request_id)
        except Exception as e:
            LOG.exception('import_unknown_error', exc_info=True)
            return _error(500, 'Unexpected error', str(e), request_id)
        body = {'success': True, 'status': _report_status(report).value, 'report': report.model_dump(mode='json'), 'request_id': request_id}
        return JSONResponse(status_code=200, content=body)

    # validate synchronously so bad options still get a 400
    try:
        validate_request(lesson_id, options)
    except ImportValidationError as e:
        return _error(400, 'Invalid import request', str(e), request_id)

    task_id = uuid.uuid4().hex
    tm = TaskManager.get_instance()
    tm.create_task(task_id, lesson_id, metadata={'files': len(uploads), 'request_id': request_id})

    def _run():
        tm.update_status(task_id, TaskStatus.PROCESSING)
        report = assembler.import_batch(lesson_id, uploads, options, progress=lambda done, total: tm.update_progress(task_id, done, total))
        result = report.model_dump(mode='json')
        status = _report_status(report)
        if status is TaskStatus.COMPLETED:
            tm.complete_task(task_id, result)
        elif status is TaskStatus.PARTIAL_SUCCESS:
            tm.complete_partial(task_id, result)
        else:
            tm.fail_task(task_id, 'no flashcards were created', result)

    async def _bg_wrapper():
        try:
            await asyncio.to_thread(_run)
        except Exception as e:
            log_error(e, {'task_id': task_id, 'lesson_id': lesson_id})
            tm.fail_task(task_id, f'import failed: {e}')

    task = asyncio.create_task(_bg_wrapper())
    _BACKGROUND_TASKS.add(task)
    task.add_done_callback(_BACKGROUND_TASKS.discard)
    return JSONResponse(status_code=202, content={'success': True, 'task_id': task_id, 'message': 'Import started (background)', 'request_id': request_id})


@app.get('/imports/status/{task_id}')
async def import_status(task_id: str, request: Request):
    request_id = _request_id(request)
    task = TaskManager.get_instance().get_task(task_id)
    if not task:
        return _error(404, 'Task not found', f'no import task {task_id}', request_id, task_id=task_id)
    return JSONResponse(status_code=200, content={'success': True, **task, 'request_id': request_id})


@app.get('/lessons/{lesson_id}/flashcards')
async def list_flashcards(lesson_id: str, request: Request):
    request_id = _request_id(request)
    try:
        records = await asyncio.to_thread(_record_store().list_flashcards, lesson_id)
    except RecordStoreError as e:
        LOG.exception('list_flashcards_failed', exc_info=True)
        return _error(500, 'Failed to fetch flashcards', str(e), request_id)
    return {'success': True, 'lesson_id': lesson_id, 'flashcards': [r.model_dump(mode='json') for r in records], 'request_id': request_id}


@app.delete('/flashcards/{flashcard_id}')
async def delete_flashcard(flashcard_id: int, request: Request):
    request_id = _request_id(request)
    try:
        record = await asyncio.to_thread(_record_store().delete_flashcard, flashcard_id)
    except RecordStoreError as e:
        LOG.exception('delete_flashcard_failed', exc_info=True)
        return _error(500, 'Failed to delete flashcard', str(e), request_id)
    if record is None:
        return _error(404, 'Flashcard not found', f'no flashcard {flashcard_id}', request_id)

    orphaned = []
    blobs = _blob_store()
    for ref in [record.audio_ref, *record.image_choices]:
        try:
            await asyncio.to_thread(blobs.delete, ref)
        except BlobStoreError:
            LOG.warning('flashcard_blob_delete_failed', extra={'key': ref.key, 'flashcard_id': flashcard_id})
            orphaned.append(ref.key)
    LOG.info('flashcard_deleted', extra={'flashcard_id': flashcard_id, 'orphaned_blobs': len(orphaned)})
    return {'success': True, 'flashcard_id': flashcard_id, 'orphaned_blobs': orphaned, 'request_id': request_id}


@app.on_event('startup')
async def on_startup():
    LOG.info('Import service starting', extra={'env': settings.ENVIRONMENT})
    try:
        _blob_store()
        LOG.info('Blob store ready', extra={'backend': STORES['blob'].backend})
    except Exception:
        LOG.exception('blob_store_init_failed', exc_info=True)
    try:
        _record_store()
        LOG.info('Record store ready', extra={'backend': STORES['record'].backend})
    except Exception:
        LOG.exception('record_store_init_failed', exc_info=True)


@app.on_event('shutdown')
async def on_shutdown():
    LOG.info('Import service shutting down')
    record_store = STORES.get('record')
    if record_store is not None and hasattr(record_store, 'close'):
        try:
            record_store.close()
        except Exception:
            LOG.warning('record_store_close_failed')


def _install_signal_handlers(loop: Optional[asyncio.AbstractEventLoop] = None):
    if loop is None:
        loop = asyncio.get_event_loop()

    def _handler(signum, frame):
        LOG.info('Received shutdown signal', extra={'signal': signum})
        loop.call_soon_threadsafe(loop.stop)

    signal.signal(signal.SIGTERM, _handler)
    signal.signal(signal.SIGINT, _handler)


if __name__ == '__main__':
    import uvicorn

    _install_signal_handlers()
    workers = int(os.getenv('WORKERS', '1'))
    if settings.ENVIRONMENT == 'development':
        workers = 1
    reload_enabled = (settings.ENVIRONMENT == 'development') and (workers == 1)

    uvicorn.run(
        'main:app',
        host=settings.HOST,
        port=settings.PORT,
        log_level=settings.LOG_LEVEL.lower(),
        reload=reload_enabled,
        workers=workers,
    )
