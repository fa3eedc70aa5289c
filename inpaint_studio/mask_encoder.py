"""Binary mask encoding from the painted canvas surface."""
from typing import Optional

import numpy as np

from .imaging import encode_png

# Marker colour thresholds. The remote service and stored history rely on
# these, so they are fixed.
RED_MIN = 200
GREEN_MAX = 100
BLUE_MAX = 100

MASK_WHITE = np.array([255, 255, 255, 255], dtype=np.uint8)
MASK_BLACK = np.array([0, 0, 0, 255], dtype=np.uint8)


def marked_pixels(surface: np.ndarray) -> np.ndarray:
    """Boolean (H, W) array of pixels showing the red marker colour."""
    r = surface[..., 0]
    g = surface[..., 1]
    b = surface[..., 2]
    return (r > RED_MIN) & (g < GREEN_MAX) & (b < BLUE_MAX)


def encode_mask(surface: np.ndarray) -> Optional[np.ndarray]:
    """Classify every surface pixel and build the strict black/white mask.

    Args:
        surface: (H, W, 3) or (H, W, 4) uint8 composite of image and strokes

    Returns:
        (H, W, 4) uint8 mask where marked pixels are opaque white and all
        others opaque black, or None if nothing is marked.
    """
    marked = marked_pixels(surface)
    if not marked.any():
        return None

    mask = np.empty(marked.shape + (4,), dtype=np.uint8)
    mask[:] = MASK_BLACK
    mask[marked] = MASK_WHITE
    return mask


def mask_to_png(mask: np.ndarray) -> bytes:
    """PNG transport encoding of a mask from :func:`encode_mask`."""
    return encode_png(mask)
