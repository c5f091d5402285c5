from __future__ import annotations

import base64
import binascii
import io
import logging
import os
from typing import Any, Optional

from PIL import Image, ImageOps

from core.errors import InvalidImage

log = logging.getLogger(__name__)


def _open(source: Any) -> Image.Image:
    if isinstance(source, Image.Image):
        return source
    if isinstance(source, (bytes, bytearray, memoryview)):
        return Image.open(io.BytesIO(bytes(source)))
    if isinstance(source, str) and source.startswith("data:image"):
        # {"url": "data:image/jpeg;base64,..."} style uploads
        _header, b64_data = source.split(",", 1)
        return Image.open(io.BytesIO(base64.b64decode(b64_data, validate=True)))
    if isinstance(source, (str, os.PathLike)):
        return Image.open(source)
    raise InvalidImage(f"unsupported image input: {type(source).__name__}")


def downscale(image: Image.Image, max_dimension: int) -> Image.Image:
    """Resize keeping aspect ratio so the longest side is <= max_dimension."""
    width, height = image.size
    if max(width, height) <= max_dimension:
        return image

    scale = max_dimension / max(width, height)
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def decode_image(source: Any, max_dimension: Optional[int] = None) -> Image.Image:
    """
    Turn raw input into an upright RGB PIL image.

    Accepts a PIL image, raw bytes, a base64 `data:image/...` URL or a path.
    Anything that cannot be decoded raises `InvalidImage`.
    """
    if source is None:
        raise InvalidImage("no image provided")

    try:
        image = _open(source)
        image.load()
        image = ImageOps.exif_transpose(image).convert("RGB")
    except InvalidImage:
        raise
    except (OSError, ValueError, binascii.Error, Image.DecompressionBombError) as e:
        raise InvalidImage(f"could not decode image: {e}", {"cause": e.__class__.__name__}) from e

    if max_dimension:
        image = downscale(image, max_dimension)

    log.info("[DECODE] %dx%d", image.width, image.height)
    return image
