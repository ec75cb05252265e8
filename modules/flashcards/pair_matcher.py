from typing import Dict, List, Tuple

from pydantic import BaseModel, model_validator

from modules.flashcards.uploads import UploadedItem

NO_MATCH_REASON = 'no matching image found'
REUSED_IMAGE_REASON = 'matching image is already the answer of an earlier audio file'


class MatchedPair(BaseModel):
    audio_item: UploadedItem
    correct_image: UploadedItem

    @model_validator(mode='after')
    def same_base_name(self):
        if self.audio_item.base_name != self.correct_image.base_name:
            raise ValueError('audio and image base names differ')
        return self


class UnmatchedAudio(BaseModel):
    audio_item: UploadedItem
    reason: str = NO_MATCH_REASON


def match_pairs(audio_items: List[UploadedItem], image_items: List[UploadedItem]) -> Tuple[List[MatchedPair], List[UnmatchedAudio], List[MatchedPair]]:
    """Pair every audio item with the image that has exactly the same base name.

    Names are compared as uploaded: case-sensitive and without decoding
    percent escapes, so ``caf%C3%A9.mp3`` only pairs with ``caf%C3%A9.png``.
    When several images share a base name the first one in input order wins.
    An image is the correct answer of at most one card, so a later audio
    file with an already-paired base name comes back in the third list: it
    has its image, but that image is spoken for.

    Returns (pairs, unmatched audio, pairs whose image is already used),
    each in audio input order.
    """
    by_name: Dict[str, UploadedItem] = {}
    for image in image_items:
        by_name.setdefault(image.base_name, image)

    pairs: List[MatchedPair] = []
    unmatched: List[UnmatchedAudio] = []
    reused: List[MatchedPair] = []
    paired_names = set()
    for audio in audio_items:
        image = by_name.get(audio.base_name)
        if image is None:
            unmatched.append(UnmatchedAudio(audio_item=audio))
        elif audio.base_name in paired_names:
            reused.append(MatchedPair(audio_item=audio, correct_image=image))
        else:
            paired_names.add(audio.base_name)
            pairs.append(MatchedPair(audio_item=audio, correct_image=image))
    return pairs, unmatched, reused
