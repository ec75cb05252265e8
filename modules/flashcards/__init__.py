"""
Bulk flashcard import: pairs uploaded audio with images of the same name,
adds wrong-answer images from the batch and stores multiple-choice cards.
"""

from .errors import (
	FailureKind,
	FlashcardImportError,
	ImportValidationError,
	ImageProcessingError,
	InsufficientDistractorsError,
	StorageError,
)
from .uploads import UploadedFile, UploadedItem, MimeCategory, classify_uploads
from .pair_matcher import MatchedPair, UnmatchedAudio, match_pairs
from .normalizer import NormalizedImage, normalize_image
from .distractors import AnswerSet, DistractorPool, build_answer_set
from .report import BatchReport, ItemOutcome
from .assembler import FlashcardAssembler, ImportOptions, import_batch

__all__ = [
	'FailureKind',
	'FlashcardImportError',
	'ImportValidationError',
	'ImageProcessingError',
	'InsufficientDistractorsError',
	'StorageError',
	'UploadedFile',
	'UploadedItem',
	'MimeCategory',
	'classify_uploads',
	'MatchedPair',
	'UnmatchedAudio',
	'match_pairs',
	'NormalizedImage',
	'normalize_image',
	'AnswerSet',
	'DistractorPool',
	'build_answer_set',
	'BatchReport',
	'ItemOutcome',
	'FlashcardAssembler',
	'ImportOptions',
	'import_batch',
]
