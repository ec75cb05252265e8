from typing import List, Optional

from pydantic import BaseModel, Field, computed_field

from modules.flashcards.errors import FailureKind
from modules.storage.record_store import FlashcardRecord


class ItemOutcome(BaseModel):
    audio_display_name: str
    outcome: str
    record: Optional[FlashcardRecord] = None
    error_kind: Optional[FailureKind] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, audio_display_name: str, record: FlashcardRecord) -> 'ItemOutcome':
        return cls(audio_display_name=audio_display_name, outcome='success', record=record)

    @classmethod
    def failure(cls, audio_display_name: str, kind: FailureKind, reason: str) -> 'ItemOutcome':
        return cls(audio_display_name=audio_display_name, outcome='failure', error_kind=kind, reason=reason)

    @property
    def ok(self) -> bool:
        return self.outcome == 'success'


class BatchReport(BaseModel):
    """Per-item result of one import, in the order the audio files were uploaded."""

    lesson_id: str
    items: List[ItemOutcome] = Field(default_factory=list)
    skipped_files: List[str] = Field(default_factory=list)
    timed_out: bool = False

    @computed_field
    @property
    def total_pairs(self) -> int:
        return len(self.items)

    @computed_field
    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.ok)

    @computed_field
    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if not i.ok)

    def records(self) -> List[FlashcardRecord]:
        return [i.record for i in self.items if i.ok]

    def failures(self) -> List[ItemOutcome]:
        return [i for i in self.items if not i.ok]
