import os
import sys
import logging
import pathlib
import contextvars
from logging.handlers import RotatingFileHandler
from pythonjsonlogger import jsonlogger

_request_ctx_var = contextvars.ContextVar('request_ctx', default={})


def set_request_context(request_id: str, user_id: str = None):
    _request_ctx_var.set({'request_id': request_id, 'user_id': user_id})


def get_request_context():
    return _request_ctx_var.get()


def _inject_request_context(record):
    ctx = get_request_context()
    record.request_id = ctx.get('request_id')
    record.user_id = ctx.get('user_id')
    return True


def get_logger(name: str = 'flashcard_import'):
    LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
    LOG_FORMAT = os.getenv('LOG_FORMAT', 'json')
    # default to a relative logs directory so local dev doesn't require /app
    LOG_FILE_PATH = os.getenv('LOG_FILE_PATH', 'logs')
    LOG_MAX_SIZE = int(os.getenv('LOG_MAX_SIZE', str(10 * 1024 * 1024)))
    LOG_MAX_FILES = int(os.getenv('LOG_MAX_FILES', '7'))

    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    logger.setLevel(LOG_LEVEL.upper())
    log_path = pathlib.Path(LOG_FILE_PATH)
    if not log_path.is_absolute():
        log_path = pathlib.Path(os.getcwd()) / log_path
    log_path.mkdir(parents=True, exist_ok=True)

    ch = logging.StreamHandler(sys.stdout)
    if LOG_FORMAT == 'json':
        fmt = jsonlogger.JsonFormatter('%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s')
    else:
        fmt = logging.Formatter('%(asctime)s %(levelname)s %(name)s %(message)s')
    ch.setFormatter(fmt)
    logger.addHandler(ch)

    combined = RotatingFileHandler(log_path / 'combined.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
    combined.setFormatter(fmt)
    logger.addHandler(combined)

    errors = RotatingFileHandler(log_path / 'error.log', maxBytes=LOG_MAX_SIZE, backupCount=LOG_MAX_FILES)
    errors.setLevel(logging.ERROR)
    errors.setFormatter(fmt)
    logger.addHandler(errors)

    f = logging.Filter()
    f.filter = _inject_request_context
    logger.addFilter(f)

    logging.captureWarnings(True)

    return logger


def log_request(request_id: str, method: str, path: str, status_code: int, duration_ms: float, ip: str = None):
    logger = get_logger()
    logger.info('http_request', extra={'request_id': request_id, 'method': method, 'path': path, 'status_code': status_code, 'duration_ms': duration_ms, 'ip': ip})


def log_error(error: Exception, context: dict = None):
    logger = get_logger()
    logger.exception('error', exc_info=True, extra=context or {})


def log_import_item(lesson_id: str, audio_name: str, outcome: str, duration_ms: float, error_kind: str = None, reason: str = None):
    logger = get_logger()
    extra = {
        'lesson_id': lesson_id,
        'audio_name': audio_name,
        'outcome': outcome,
        'duration_ms': duration_ms,
    }
    if outcome == 'success':
        logger.info('import_item_succeeded', extra=extra)
    else:
        extra.update({'error_kind': error_kind, 'reason': reason})
        logger.warning('import_item_failed', extra=extra)


def log_import_batch(lesson_id: str, total_pairs: int, succeeded: int, failed: int, duration_ms: float, timed_out: bool = False, skipped_files: int = 0):
    logger = get_logger()
    logger.info('import_batch_complete', extra={
        'lesson_id': lesson_id,
        'total_pairs': total_pairs,
        'succeeded': succeeded,
        'failed': failed,
        'timed_out': timed_out,
        'skipped_files': skipped_files,
        'duration_ms': duration_ms,
    })


def log_blob_operation(operation: str, key: str, size_bytes: int = None, backend: str = None):
    logger = get_logger()
    logger.info('blob_operation', extra={
        'operation': operation,
        'key': key,
        'size_bytes': size_bytes,
        'backend': backend,
    })
