"""Classification of raw uploads into audio and image items.

Every downstream step works on UploadedItem and never looks at raw file
names or MIME strings again.
"""
from __future__ import annotations

import mimetypes
import pathlib
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict


class MimeCategory(str, Enum):
    AUDIO = 'audio'
    IMAGE = 'image'


class UploadedFile(BaseModel):
    display_name: str
    mime_type: Optional[str] = None
    data: bytes


class UploadedItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    display_name: str
    mime_category: MimeCategory
    data: bytes
    base_name: str
    extension: str
    content_type: str


def split_name(display_name: str) -> Tuple[str, str]:
    """Return (base name, extension) using the last dot of the file name only."""
    name = pathlib.PurePosixPath(display_name.replace('\\', '/')).name
    if '.' in name and not name.startswith('.'):
        base, ext = name.rsplit('.', 1)
        return base, f'.{ext.lower()}'
    return name, ''


def _resolve_content_type(display_name: str, mime_type: Optional[str]) -> Optional[str]:
    mime = (mime_type or '').split(';')[0].strip().lower()
    if not mime or mime == 'application/octet-stream':
        guessed, _ = mimetypes.guess_type(display_name)
        mime = (guessed or '').lower()
    return mime or None


def classify_upload(upload: UploadedFile) -> Optional[UploadedItem]:
    content_type = _resolve_content_type(upload.display_name, upload.mime_type)
    if not content_type:
        return None
    major = content_type.split('/', 1)[0]
    if major not in ('audio', 'image'):
        return None
    base, ext = split_name(upload.display_name)
    return UploadedItem(
        display_name=upload.display_name,
        mime_category=MimeCategory(major),
        data=upload.data,
        base_name=base,
        extension=ext,
        content_type=content_type,
    )


def classify_uploads(files: List[UploadedFile]) -> Tuple[List[UploadedItem], List[UploadedItem], List[str]]:
    """Split uploads into (audio items, image items, skipped display names), keeping input order."""
    audio: List[UploadedItem] = []
    images: List[UploadedItem] = []
    skipped: List[str] = []
    for upload in files:
        item = classify_upload(upload)
        if item is None:
            skipped.append(upload.display_name)
        elif item.mime_category is MimeCategory.AUDIO:
            audio.append(item)
        else:
            images.append(item)
    return audio, images, skipped
