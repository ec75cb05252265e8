"""Image normalization for flashcard answer choices.

Images larger than the bounding box are shrunk with their aspect ratio kept
and centered on a square canvas of the background color. Images already
inside the box are returned byte-for-byte. Every result is decoded again
before it is handed back.

Environment variables:
- IMAGE_MAX_DIMENSION (default 500)
- IMAGE_BACKGROUND (default #ffffff)
- IMAGE_RETRY_ATTEMPTS (default 3)
- IMAGE_RETRY_WAIT (default 0.1, seconds multiplier for exponential backoff)
"""
from __future__ import annotations

import io
import os
import time
from typing import Tuple, Union

from PIL import Image, ImageColor, ImageOps, UnidentifiedImageError
from pydantic import BaseModel
from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception

from modules.flashcards.errors import ImageProcessingError
from modules.utils.logger import get_logger

LOG = get_logger()

IMAGE_MAX_DIMENSION = int(os.getenv('IMAGE_MAX_DIMENSION', '500'))
IMAGE_BACKGROUND = os.getenv('IMAGE_BACKGROUND', '#ffffff')
IMAGE_RETRY_ATTEMPTS = int(os.getenv('IMAGE_RETRY_ATTEMPTS', '3'))
IMAGE_RETRY_WAIT = float(os.getenv('IMAGE_RETRY_WAIT', '0.1'))

_EXTENSIONS = {
    'JPEG': '.jpg',
    'PNG': '.png',
    'GIF': '.gif',
    'WEBP': '.webp',
    'BMP': '.bmp',
    'TIFF': '.tiff',
}


class NormalizedImage(BaseModel):
    data: bytes
    content_type: str
    extension: str
    width: int
    height: int
    resized: bool = False


def _is_transient(exc: BaseException) -> bool:
    # undecodable content will not get better on a second attempt
    return isinstance(exc, OSError) and not isinstance(exc, UnidentifiedImageError)


def parse_background(color: Union[str, Tuple[int, int, int]]) -> Tuple[int, int, int]:
    if isinstance(color, tuple):
        return color[:3]
    try:
        return ImageColor.getrgb(color)[:3]
    except ValueError as e:
        raise ImageProcessingError(f'invalid background color: {color}') from e


def _open(data: bytes) -> Image.Image:
    img = Image.open(io.BytesIO(data))
    img.load()
    return img


def _verify(data: bytes) -> Tuple[int, int]:
    try:
        with Image.open(io.BytesIO(data)) as probe:
            probe.verify()
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            return img.size
    except Exception as e:
        raise ImageProcessingError(f'normalized image failed verification: {e}') from e


def _fit_on_canvas(img: Image.Image, max_dimension: int, background: Tuple[int, int, int]) -> Image.Image:
    img = ImageOps.exif_transpose(img)
    has_alpha = img.mode in ('RGBA', 'LA') or (img.mode == 'P' and 'transparency' in img.info)
    img = img.convert('RGBA' if has_alpha else 'RGB')
    img.thumbnail((max_dimension, max_dimension), Image.Resampling.LANCZOS)
    canvas = Image.new('RGB', (max_dimension, max_dimension), background)
    offset = ((max_dimension - img.width) // 2, (max_dimension - img.height) // 2)
    canvas.paste(img, offset, img if has_alpha else None)
    return canvas


@retry(stop=stop_after_attempt(IMAGE_RETRY_ATTEMPTS), wait=wait_exponential(multiplier=IMAGE_RETRY_WAIT, max=2), retry=retry_if_exception(_is_transient), reraise=True)
def _normalize_once(data: bytes, max_dimension: int, background: Tuple[int, int, int]) -> NormalizedImage:
    img = _open(data)
    fmt = img.format or 'PNG'
    width, height = img.size
    if width <= max_dimension and height <= max_dimension:
        _verify(data)
        return NormalizedImage(
            data=data,
            content_type=Image.MIME.get(fmt, 'application/octet-stream'),
            extension=_EXTENSIONS.get(fmt, ''),
            width=width,
            height=height,
        )

    canvas = _fit_on_canvas(img, max_dimension, background)
    out_fmt = 'JPEG' if fmt == 'JPEG' else 'PNG'
    buf = io.BytesIO()
    if out_fmt == 'JPEG':
        canvas.save(buf, format='JPEG', quality=90)
    else:
        canvas.save(buf, format='PNG', optimize=True)
    out = buf.getvalue()
    out_w, out_h = _verify(out)
    return NormalizedImage(
        data=out,
        content_type=Image.MIME[out_fmt],
        extension=_EXTENSIONS[out_fmt],
        width=out_w,
        height=out_h,
        resized=True,
    )


def normalize_image(data: bytes, max_dimension: int = None, background=None) -> NormalizedImage:
    """Fit one image inside a ``max_dimension`` square.

    Args:
        data: raw image bytes
        max_dimension: bounding box edge in pixels
        background: fill color for padding, name/hex string or RGB tuple

    Returns:
        NormalizedImage

    Raises:
        ImageProcessingError: the image could not be decoded or re-encoded,
            after retrying transient I/O errors.
    """
    if max_dimension is None:
        max_dimension = IMAGE_MAX_DIMENSION
    if max_dimension < 1:
        raise ImageProcessingError(f'invalid max_dimension: {max_dimension}')
    if not data:
        raise ImageProcessingError('empty image data')
    rgb = parse_background(background if background is not None else IMAGE_BACKGROUND)
    start = time.time()
    try:
        result = _normalize_once(data, max_dimension, rgb)
    except ImageProcessingError:
        raise
    except Exception as e:
        LOG.warning('image_normalize_failed', extra={'error': str(e), 'size_bytes': len(data)})
        raise ImageProcessingError(f'image could not be processed: {e}') from e
    duration = int((time.time() - start) * 1000)
    LOG.info('image_normalized', extra={'resized': result.resized, 'width': result.width, 'height': result.height, 'duration_ms': duration})
    return result
