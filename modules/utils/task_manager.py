import os
import json
import time
from enum import Enum
from typing import Optional, Dict, Any

try:
    import redis
except ImportError:
    redis = None

from modules.utils.logger import get_logger

LOG = get_logger()

TASK_TTL_SECONDS = int(os.getenv('TASK_TTL_SECONDS', '86400'))
REDIS_URL = os.getenv('REDIS_URL', None)


class TaskStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'
    PARTIAL_SUCCESS = 'partial_success'


class TaskManager:
    """Tracks background import jobs.

    Uses Redis when reachable so status survives across workers, otherwise an
    in-process dict.
    """

    _instance = None

    def __init__(self):
        self._use_redis = False
        self._client = None
        self._in_memory: Dict[str, Dict[str, Any]] = {}
        try:
            if redis is not None and REDIS_URL:
                self._client = redis.from_url(REDIS_URL, decode_responses=True)
                self._client.ping()
                self._use_redis = True
                LOG.info('TaskManager using Redis', extra={'redis_url': REDIS_URL})
            elif redis is not None and os.getenv('REDIS_HOST'):
                self._client = redis.Redis(host=os.getenv('REDIS_HOST'), port=int(os.getenv('REDIS_PORT', '6379')), password=os.getenv('REDIS_PASSWORD') or None, decode_responses=True)
                self._client.ping()
                self._use_redis = True
                LOG.info('TaskManager using Redis host', extra={'redis_host': os.getenv('REDIS_HOST')})
            else:
                LOG.info('TaskManager using in-memory store')
        except Exception as e:
            LOG.warning('Redis not available for TaskManager, using in-memory store', extra={'error': str(e)})
            self._use_redis = False
            self._client = None

    @classmethod
    def get_instance(cls):
        if cls._instance is None:
            cls._instance = TaskManager()
        return cls._instance

    @property
    def uses_redis(self) -> bool:
        return self._use_redis

    def _key(self, task_id: str) -> str:
        return f'import_task:{task_id}'

    def _save(self, task_id: str, obj: Dict[str, Any]):
        obj['updated_at'] = int(time.time())
        try:
            if self._use_redis and self._client:
                self._client.set(self._key(task_id), json.dumps(obj))
                self._client.expire(self._key(task_id), TASK_TTL_SECONDS)
            else:
                self._in_memory[task_id] = obj
        except Exception as e:
            LOG.warning('task_save_failed', extra={'task_id': task_id, 'error': str(e)})
            self._in_memory[task_id] = obj

    def create_task(self, task_id: str, lesson_id: str, metadata: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        now = int(time.time())
        obj = {
            'task_id': task_id,
            'lesson_id': lesson_id,
            'status': TaskStatus.PENDING.value,
            'processed': 0,
            'total': 0,
            'result': None,
            'error_message': None,
            'metadata': metadata or {},
            'created_at': now,
            'updated_at': now,
        }
        self._save(task_id, obj)
        LOG.info('task_created', extra={'task_id': task_id, 'lesson_id': lesson_id})
        return obj

    def get_task(self, task_id: str) -> Optional[Dict[str, Any]]:
        try:
            if self._use_redis and self._client:
                raw = self._client.get(self._key(task_id))
                if not raw:
                    return self._in_memory.get(task_id)
                return json.loads(raw)
            return self._in_memory.get(task_id)
        except Exception as e:
            LOG.warning('task_get_failed', extra={'task_id': task_id, 'error': str(e)})
            return self._in_memory.get(task_id)

    def update_status(self, task_id: str, status: TaskStatus, error_msg: Optional[str] = None):
        task = self.get_task(task_id)
        if not task:
            LOG.warning('update_status_task_not_found', extra={'task_id': task_id})
            return None
        task['status'] = status.value if isinstance(status, TaskStatus) else status
        if error_msg is not None:
            task['error_message'] = error_msg
        self._save(task_id, task)
        LOG.info('task_status_updated', extra={'task_id': task_id, 'status': task['status']})
        return task

    def update_progress(self, task_id: str, processed: int, total: int):
        task = self.get_task(task_id)
        if not task:
            LOG.warning('update_progress_task_not_found', extra={'task_id': task_id})
            return None
        task['processed'] = int(processed)
        task['total'] = int(total)
        self._save(task_id, task)
        LOG.debug('task_progress_updated', extra={'task_id': task_id, 'processed': processed, 'total': total})
        return task

    def _finish(self, task_id: str, status: TaskStatus, final_result: Optional[Dict[str, Any]]):
        task = self.get_task(task_id)
        if not task:
            LOG.warning('finish_task_not_found', extra={'task_id': task_id, 'status': status.value})
            return None
        task['status'] = status.value
        if final_result is not None:
            task['result'] = final_result
            task['processed'] = task['total'] = final_result.get('total_pairs', task.get('total', 0))
        self._save(task_id, task)
        LOG.info('task_finished', extra={'task_id': task_id, 'status': status.value})
        return task

    def complete_task(self, task_id: str, final_result: Optional[Dict[str, Any]] = None):
        return self._finish(task_id, TaskStatus.COMPLETED, final_result)

    def complete_partial(self, task_id: str, final_result: Optional[Dict[str, Any]] = None):
        """Mark a task as partial success (some items failed but others produced flashcards)."""
        return self._finish(task_id, TaskStatus.PARTIAL_SUCCESS, final_result)

    def fail_task(self, task_id: str, error_msg: str, final_result: Optional[Dict[str, Any]] = None):
        task = self._finish(task_id, TaskStatus.FAILED, final_result)
        if task is None:
            return None
        task['error_message'] = error_msg
        self._save(task_id, task)
        LOG.error('task_failed', extra={'task_id': task_id, 'error': error_msg})
        return task
