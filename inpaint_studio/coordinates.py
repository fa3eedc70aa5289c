"""Display-space to canvas-space coordinate mapping."""
from dataclasses import dataclass
from typing import Tuple

from . import settings


@dataclass(frozen=True)
class DisplayRect:
    """Bounding rectangle of the canvas as it is displayed."""
    left: float
    top: float
    width: float
    height: float


def _scales(rect: DisplayRect, native_width: int, native_height: int) -> Tuple[float, float]:
    if rect.width <= 0 or rect.height <= 0:
        raise ValueError(f"Display rect must have a positive size, got {rect.width}x{rect.height}")
    return native_width / rect.width, native_height / rect.height


def to_image_space(
    pointer_x: float,
    pointer_y: float,
    rect: DisplayRect,
    native_width: int,
    native_height: int,
) -> Tuple[float, float]:
    """Map a pointer position in display space to canvas pixel space.

    Horizontal and vertical scale factors are independent, so a canvas that
    is stretched non-uniformly on screen still maps correctly. No rounding
    is applied.
    """
    scale_x, scale_y = _scales(rect, native_width, native_height)
    return (pointer_x - rect.left) * scale_x, (pointer_y - rect.top) * scale_y


def to_display_space(
    image_x: float,
    image_y: float,
    rect: DisplayRect,
    native_width: int,
    native_height: int,
) -> Tuple[float, float]:
    """Inverse of :func:`to_image_space`."""
    scale_x, scale_y = _scales(rect, native_width, native_height)
    return image_x / scale_x + rect.left, image_y / scale_y + rect.top


def fit_within(
    width: int,
    height: int,
    max_width: int = None,
    max_height: int = None,
) -> Tuple[int, int]:
    """Scale (width, height) down to fit the canvas box, never up.

    Aspect ratio is preserved and fractional sizes are truncated.
    """
    if max_width is None:
        max_width = settings.CANVAS_MAX_WIDTH
    if max_height is None:
        max_height = settings.CANVAS_MAX_HEIGHT
    if max_width <= 0 or max_height <= 0:
        raise ValueError(f"Canvas box must be positive, got {max_width}x{max_height}")

    if width > max_width or height > max_height:
        ratio = min(max_width / width, max_height / height)
        width = width * ratio
        height = height * ratio

    # Tolerate float error such as 799.9999 for an exact 800
    return max(1, int(width + 1e-6)), max(1, int(height + 1e-6))
