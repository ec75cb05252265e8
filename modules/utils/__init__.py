"""Utility subpackage: logging and background task tracking"""

from .logger import (
	get_logger,
	log_request,
	log_error,
	log_import_item,
	log_import_batch,
	log_blob_operation,
	set_request_context,
	get_request_context,
)
from .task_manager import TaskManager, TaskStatus

__all__ = [
	'get_logger',
	'log_request',
	'log_error',
	'log_import_item',
	'log_import_batch',
	'log_blob_operation',
	'set_request_context',
	'get_request_context',
	'TaskManager',
	'TaskStatus',
]
