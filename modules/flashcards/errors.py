from enum import Enum


class FailureKind(str, Enum):
    UNMATCHED_AUDIO = 'unmatched_audio'
    IMAGE_PROCESSING = 'image_processing'
    INSUFFICIENT_DISTRACTORS = 'insufficient_distractors'
    STORAGE = 'storage'
    BATCH_TIMEOUT = 'batch_timeout'


class FlashcardImportError(Exception):
    kind: FailureKind = None


class ImportValidationError(FlashcardImportError):
    """Invalid arguments to an import; raised before any file is processed."""


class ImageProcessingError(FlashcardImportError):
    kind = FailureKind.IMAGE_PROCESSING


class InsufficientDistractorsError(FlashcardImportError):
    kind = FailureKind.INSUFFICIENT_DISTRACTORS


class StorageError(FlashcardImportError):
    kind = FailureKind.STORAGE
