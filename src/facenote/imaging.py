"""Photo pipeline: raw image -> compact data URL, and the placeholder picture.

Photos are shrunk so the longer side fits ``max_size`` (never enlarged),
flattened to RGB and stored as a base64 JPEG data URL.
"""

from __future__ import annotations

import base64
import io
import logging
from pathlib import Path
from typing import Union

from PIL import Image, ImageOps, UnidentifiedImageError

from facenote.errors import ImageDecodeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 240
DEFAULT_QUALITY = 70

ImageSource = Union[bytes, str, Path]

_PLACEHOLDER_SVG = """\
<svg width="{w}" height="{h}" xmlns="http://www.w3.org/2000/svg">
  <rect width="100%" height="100%" fill="#f3f4f6"/>
  <text x="50%" y="50%" font-family="Arial, sans-serif" font-size="14" fill="#9ca3af" \
text-anchor="middle" dy=".3em">{w}×{h}</text>
</svg>"""


def _open(raw: ImageSource) -> Image.Image:
    if isinstance(raw, (bytes, bytearray)):
        if not raw:
            raise ImageDecodeError("Image data is empty")
        return Image.open(io.BytesIO(raw))
    return Image.open(Path(raw))


def encode_image(
    raw: ImageSource,
    *,
    max_size: int = DEFAULT_MAX_SIZE,
    quality: int = DEFAULT_QUALITY,
) -> str:
    """Compress an image into a ``data:image/jpeg;base64,...`` string.

    Raises ImageDecodeError if the input cannot be read as an image.
    """
    try:
        with _open(raw) as img:
            img.load()
            img = ImageOps.exif_transpose(img)
            img.thumbnail((max_size, max_size), Image.Resampling.LANCZOS)

            if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
                rgba = img.convert("RGBA")
                flat = Image.new("RGB", rgba.size, (255, 255, 255))
                flat.paste(rgba, mask=rgba.getchannel("A"))
                img = flat
            elif img.mode != "RGB":
                img = img.convert("RGB")

            buf = io.BytesIO()
            img.save(buf, format="JPEG", quality=quality)
    except (UnidentifiedImageError, Image.DecompressionBombError) as e:
        raise ImageDecodeError(f"Unreadable image: {e}") from e
    except OSError as e:
        raise ImageDecodeError(f"Failed to load image: {e}") from e

    encoded = base64.b64encode(buf.getvalue()).decode("ascii")
    logger.debug("Encoded photo %dx%d (%d bytes)", img.width, img.height, len(encoded))
    return f"data:image/jpeg;base64,{encoded}"


def placeholder_image(width: int = 150, height: int = 150) -> str:
    """Grey SVG placeholder labelled with its size, as a data URL."""
    w = width if isinstance(width, int) and width > 0 else 150
    h = height if isinstance(height, int) and height > 0 else 150
    svg = _PLACEHOLDER_SVG.format(w=w, h=h)
    encoded = base64.b64encode(svg.encode("utf-8")).decode("ascii")
    return f"data:image/svg+xml;base64,{encoded}"
