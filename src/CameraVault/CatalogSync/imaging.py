"""Image decoding and JPEG rendering for the asset cache."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

__all__ = ["ImageDecodeError", "RenderedImage", "render_image"]


class ImageDecodeError(Exception):
    """Raised when downloaded bytes are not a decodable image."""


@dataclass(frozen=True)
class RenderedImage:
    """JPEG encodings of one source image."""

    full: bytes
    thumbnail: bytes
    width: int
    height: int


def _to_rgb(img: Image.Image) -> Image.Image:
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _encode_jpeg(img: Image.Image, quality: int) -> bytes:
    buffer = io.BytesIO()
    img.save(buffer, format="JPEG", quality=quality, optimize=True, progressive=True)
    return buffer.getvalue()


def render_image(
    data: bytes,
    *,
    image_size: Tuple[int, int] = (1200, 900),
    thumbnail_size: Tuple[int, int] = (400, 300),
    image_quality: int = 90,
    thumbnail_quality: int = 85,
) -> RenderedImage:
    """Decode ``data`` and produce the full image plus a cover-cropped thumbnail.

    The full image is shrunk to fit inside ``image_size`` keeping its aspect
    ratio and is never enlarged. The thumbnail fills ``thumbnail_size`` exactly,
    cropping around the centre.

    Raises:
        ImageDecodeError: If Pillow cannot identify or decode the bytes
    """
    try:
        with Image.open(io.BytesIO(data)) as opened:
            opened.load()
            img = _to_rgb(ImageOps.exif_transpose(opened) or opened).copy()
    except (UnidentifiedImageError, OSError, Image.DecompressionBombError, ValueError) as e:
        raise ImageDecodeError(f"cannot decode image: {e}") from e

    full = img.copy()
    full.thumbnail(image_size, Image.Resampling.LANCZOS)

    thumb = ImageOps.fit(img, thumbnail_size, Image.Resampling.LANCZOS)

    return RenderedImage(
        full=_encode_jpeg(full, image_quality),
        thumbnail=_encode_jpeg(thumb, thumbnail_quality),
        width=full.width,
        height=full.height,
    )
