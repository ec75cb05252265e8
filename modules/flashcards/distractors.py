import random
import threading
from typing import Any, Iterable, List, Optional

from pydantic import BaseModel, model_validator

from modules.flashcards.errors import InsufficientDistractorsError
from modules.flashcards.uploads import UploadedItem
from modules.utils.logger import get_logger

LOG = get_logger()

INSUFFICIENT_REASON = 'not enough distinct images for choices'


class AnswerSet(BaseModel):
    images: List[Any]
    correct_index: int

    @model_validator(mode='after')
    def index_in_range(self):
        if not 0 <= self.correct_index < len(self.images):
            raise ValueError(f'correct_index {self.correct_index} outside 0..{len(self.images) - 1}')
        return self


class DistractorPool:
    """Batch-wide registry of images that may still serve as wrong answers.

    An image is offered on at most one card per batch. Images whose base name
    is the pairing key of a matched pair are correct answers and are never
    handed out. ``claim`` is atomic so concurrent cards cannot take the same
    image.
    """

    def __init__(self, images: Iterable[UploadedItem], reserved_base_names: Iterable[str] = ()):
        self._images = list(images)
        self._position = {id(img): i for i, img in enumerate(self._images)}
        reserved = set(reserved_base_names)
        self._reserved = {i for i, img in enumerate(self._images) if img.base_name in reserved}
        self._claimed = set()
        self._corrupt = set()
        self._lock = threading.Lock()

    def _eligible(self) -> List[int]:
        blocked = self._reserved | self._claimed | self._corrupt
        return [i for i in range(len(self._images)) if i not in blocked]

    def available(self) -> int:
        with self._lock:
            return len(self._eligible())

    def claim(self, count: int, rng: Optional[random.Random] = None) -> List[UploadedItem]:
        """Claim ``count`` random eligible images, or none at all.

        Raises:
            InsufficientDistractorsError: fewer than ``count`` images are eligible.
        """
        rng = rng or random
        with self._lock:
            candidates = self._eligible()
            if len(candidates) < count:
                raise InsufficientDistractorsError(f'{INSUFFICIENT_REASON} (need {count}, {len(candidates)} available)')
            rng.shuffle(candidates)
            chosen = candidates[:count]
            self._claimed.update(chosen)
        return [self._images[i] for i in chosen]

    def release(self, items: Iterable[UploadedItem]):
        """Return claims of a card that was not persisted."""
        with self._lock:
            for item in items:
                pos = self._position.get(id(item))
                if pos is not None and pos not in self._corrupt:
                    self._claimed.discard(pos)

    def mark_corrupt(self, item: UploadedItem):
        with self._lock:
            pos = self._position.get(id(item))
            if pos is not None:
                self._corrupt.add(pos)
                self._claimed.discard(pos)
        LOG.info('distractor_marked_corrupt', extra={'image': item.display_name})


def build_answer_set(correct: Any, distractors: List[Any], rng: Optional[random.Random] = None) -> AnswerSet:
    """Insert ``correct`` at a uniformly random position among ``distractors``."""
    rng = rng or random
    index = rng.randint(0, len(distractors))
    images = list(distractors)
    images.insert(index, correct)
    return AnswerSet(images=images, correct_index=index)
