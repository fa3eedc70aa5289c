"""Image decode boundary and payload encoding helpers."""
import base64
import binascii
import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
from PIL import Image, UnidentifiedImageError

from . import settings
from .errors import ImageDecodeError

logger = logging.getLogger("inpaint_studio.imaging")

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "WEBP": "image/webp",
    "TIFF": "image/tiff",
}


@dataclass(frozen=True)
class ImagePayload:
    """Encoded image as uploaded, with its decoded native size."""
    data: bytes
    mime_type: str
    width: int
    height: int
    filename: str = "image"

    def to_image(self) -> Image.Image:
        """Decode to an RGBA Pillow image."""
        with Image.open(io.BytesIO(self.data)) as img:
            return img.convert("RGBA")


def decode_image(
    data: bytes,
    mime_type: Optional[str] = None,
    filename: Optional[str] = None,
    max_bytes: int = None,
) -> ImagePayload:
    """Validate and decode uploaded bytes.

    Raises:
        ImageDecodeError: empty, oversized, non-image MIME type, or not
            decodable by Pillow.
    """
    if max_bytes is None:
        max_bytes = settings.MAX_UPLOAD_BYTES

    if not data:
        raise ImageDecodeError("Image file is empty")
    if len(data) > max_bytes:
        raise ImageDecodeError(
            f"Image is too large ({len(data)} bytes, limit {max_bytes} bytes)"
        )
    if mime_type and not mime_type.startswith("image/"):
        raise ImageDecodeError(f"Unsupported file type: {mime_type}")

    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            detected = _FORMAT_MIME.get(img.format or "")
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
        raise ImageDecodeError(f"Failed to load image: {e}") from e

    if width <= 0 or height <= 0:
        raise ImageDecodeError("Image has no pixels")

    payload = ImagePayload(
        data=data,
        mime_type=mime_type or detected or "application/octet-stream",
        width=width,
        height=height,
        filename=filename or "image",
    )
    logger.debug("Decoded %s image %dx%d (%d bytes)", payload.mime_type, width, height, len(data))
    return payload


def fit_image(payload: ImagePayload, size: Tuple[int, int]) -> np.ndarray:
    """Resample the payload to ``size`` and return an (H, W, 4) uint8 array."""
    image = payload.to_image()
    if image.size != size:
        image = image.resize(size, Image.BILINEAR)
    return np.array(image, dtype=np.uint8)


def encode_png(array: np.ndarray) -> bytes:
    """Encode an RGBA/RGB/L uint8 array as PNG bytes."""
    buffer = io.BytesIO()
    Image.fromarray(array.astype(np.uint8)).save(buffer, format="PNG")
    return buffer.getvalue()


def decode_png(data: bytes) -> np.ndarray:
    with Image.open(io.BytesIO(data)) as img:
        return np.array(img.convert("RGBA"), dtype=np.uint8)


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


def decode_data_url(value: str) -> Tuple[bytes, str]:
    """Decode a ``data:`` URL or bare base64 string into (bytes, mime type).

    Bare base64 is sniffed with Pillow for its MIME type.
    """
    mime_type = None
    payload = value
    if value.startswith("data:"):
        header, _, payload = value.partition(",")
        mime_type = header[len("data:"):].split(";")[0] or None

    try:
        data = base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Result image is not valid base64: {e}") from e

    if mime_type is None:
        try:
            with Image.open(io.BytesIO(data)) as img:
                mime_type = _FORMAT_MIME.get(img.format or "")
        except (UnidentifiedImageError, OSError):
            mime_type = None

    return data, mime_type or "application/octet-stream"
