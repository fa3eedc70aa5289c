"""Freehand stroke engine with mark and erase tools.

The canvas surface is kept as two layers: the fitted base image and a
single-channel coverage layer holding the strokes. Mark sets coverage and
erase clears it, so erasing always restores the exact base pixel no matter
in which order strokes were drawn. The visible surface is composited on
read.
"""
import logging
import math
from enum import Enum
from typing import Callable, Optional, Tuple

import cv2
import numpy as np

from .coordinates import fit_within
from .imaging import ImagePayload, fit_image
from .mask_encoder import encode_mask, mask_to_png

logger = logging.getLogger("inpaint_studio.strokes")

Point = Tuple[float, float]
MaskListener = Callable[[Optional[np.ndarray]], None]

MIN_BRUSH_RADIUS = 5
MAX_BRUSH_RADIUS = 100
BRUSH_STEP = 5
DEFAULT_BRUSH_RADIUS = 30

# Semi-transparent saturated red, painted source-over
MARK_COLOR = np.array([255.0, 0.0, 0.0], dtype=np.float32)
MARK_ALPHA = 0.6

# Sub-pixel precision bits for cv2 drawing
_SHIFT = 4
_ONE = 1 << _SHIFT

# Pointer positions beyond this many pixels from the origin are rejected
MAX_COORDINATE = 1e6


class Tool(str, Enum):
    """Stroke tools."""
    MARK = "mark"
    ERASE = "erase"


def clamp_brush_radius(radius: float) -> int:
    return int(max(MIN_BRUSH_RADIUS, min(MAX_BRUSH_RADIUS, round(radius))))


def valid_point(pos: Point) -> bool:
    """True if both coordinates are finite and within ``MAX_COORDINATE``."""
    return all(math.isfinite(v) and abs(v) <= MAX_COORDINATE for v in pos)


def _check_point(pos: Point):
    if not valid_point(pos):
        raise ValueError(f"Pointer position out of range: {pos}")


class StrokeEngine:
    """Accumulates pointer strokes on a canvas surface."""

    KEY_BINDINGS = {
        "b": "select_mark",
        "e": "select_erase",
        "[": "decrease_brush",
        "]": "increase_brush",
    }

    def __init__(
        self,
        base: np.ndarray,
        on_mask_change: Optional[MaskListener] = None,
        brush_radius: int = DEFAULT_BRUSH_RADIUS,
    ):
        if base.ndim != 3 or base.shape[2] != 4:
            raise ValueError(f"Base layer must be (H, W, 4), got {base.shape}")

        self._base = base.astype(np.uint8)
        self._base.setflags(write=False)
        self._coverage = np.zeros(base.shape[:2], dtype=np.uint8)
        self._on_mask_change = on_mask_change

        self.tool = Tool.MARK
        self._brush_radius = clamp_brush_radius(brush_radius)
        self.enabled = True
        self.has_mark = False
        self.mask: Optional[np.ndarray] = None

        self._stroke_tool: Optional[Tool] = None
        self._last_point: Optional[Point] = None
        self._samples = 0

    @classmethod
    def from_payload(
        cls,
        payload: ImagePayload,
        on_mask_change: Optional[MaskListener] = None,
        max_width: int = None,
        max_height: int = None,
    ) -> "StrokeEngine":
        """Build an engine whose surface is the payload fitted to the canvas box."""
        size = fit_within(payload.width, payload.height, max_width, max_height)
        logger.info(
            "Canvas surface %dx%d for %dx%d image",
            size[0], size[1], payload.width, payload.height,
        )
        return cls(fit_image(payload, size), on_mask_change=on_mask_change)

    # ------------------------------------------------------------------
    # Surface
    # ------------------------------------------------------------------
    @property
    def width(self) -> int:
        return self._base.shape[1]

    @property
    def height(self) -> int:
        return self._base.shape[0]

    @property
    def base(self) -> np.ndarray:
        return self._base

    @property
    def coverage(self) -> np.ndarray:
        """Copy of the stroke coverage layer (255 where marked)."""
        return self._coverage.copy()

    def composite(self) -> np.ndarray:
        """Composite the mark overlay over the base layer as (H, W, 4) uint8."""
        out = self._base.copy()
        covered = self._coverage > 0
        if not covered.any():
            return out

        base = self._base[covered].astype(np.float32) / 255.0
        base_rgb = base[:, :3]
        base_a = base[:, 3:4]
        src_rgb = MARK_COLOR / 255.0

        out_a = MARK_ALPHA + base_a * (1.0 - MARK_ALPHA)
        out_rgb = (src_rgb * MARK_ALPHA + base_rgb * base_a * (1.0 - MARK_ALPHA)) / out_a

        blended = np.concatenate([out_rgb, out_a], axis=1)
        out[covered] = np.clip(np.rint(blended * 255.0), 0, 255).astype(np.uint8)
        return out

    # ------------------------------------------------------------------
    # Tool state
    # ------------------------------------------------------------------
    @property
    def brush_radius(self) -> int:
        return self._brush_radius

    @brush_radius.setter
    def brush_radius(self, value: float):
        self._brush_radius = clamp_brush_radius(value)

    @property
    def is_drawing(self) -> bool:
        return self._stroke_tool is not None

    def select_mark(self):
        self.tool = Tool.MARK

    def select_erase(self):
        self.tool = Tool.ERASE

    def decrease_brush(self):
        self.brush_radius = self._brush_radius - BRUSH_STEP

    def increase_brush(self):
        self.brush_radius = self._brush_radius + BRUSH_STEP

    def handle_key(self, key: str) -> bool:
        """Apply a keyboard shortcut. Returns True if the key was consumed."""
        if not self.enabled or not key:
            return False
        action = self.KEY_BINDINGS.get(key.lower())
        if action is None:
            return False
        getattr(self, action)()
        return True

    # ------------------------------------------------------------------
    # Strokes
    # ------------------------------------------------------------------
    def begin_stroke(self, pos: Point) -> bool:
        """Start a stroke and paint its first disc.

        Rejected while disabled or while another stroke is active.

        Raises:
            ValueError: ``pos`` is not finite or lies beyond ``MAX_COORDINATE``.
        """
        _check_point(pos)
        if not self.enabled or self.is_drawing:
            return False

        self._stroke_tool = self.tool
        self._last_point = None
        self._samples = 0
        self._paint(pos)
        return True

    def continue_stroke(self, pos: Point):
        _check_point(pos)
        if not self.is_drawing:
            return
        self._paint(pos)

    def end_stroke(self) -> bool:
        """Finish the active stroke and regenerate the mask once."""
        if not self.is_drawing:
            return False

        tool = self._stroke_tool
        self._stroke_tool = None
        self._last_point = None
        if tool == Tool.MARK:
            self.has_mark = True

        logger.debug("%s stroke ended after %d samples", tool.value, self._samples)
        self._regenerate_mask()
        return True

    # Leaving the surface mid-stroke commits it
    cancel_stroke = end_stroke

    def clear(self):
        """Discard every stroke and regenerate the (now empty) mask."""
        self._coverage[:] = 0
        self._stroke_tool = None
        self._last_point = None
        self.has_mark = False
        self._regenerate_mask()

    def restore(self, mask: np.ndarray):
        """Seed the coverage layer from a previously encoded mask of the same size."""
        if mask.shape[:2] != self._coverage.shape:
            raise ValueError(f"Mask shape {mask.shape[:2]} does not match canvas {self._coverage.shape}")
        self._coverage = np.where(mask[..., 0] > 127, 255, 0).astype(np.uint8)
        self._stroke_tool = None
        self._last_point = None
        self.has_mark = bool(self._coverage.any())
        self.mask = mask.astype(np.uint8) if self.has_mark else None

    def _paint(self, pos: Point):
        value = 255 if self._stroke_tool == Tool.MARK else 0
        radius = self._brush_radius
        center = (int(round(pos[0] * _ONE)), int(round(pos[1] * _ONE)))

        if self._last_point is not None:
            # Join consecutive samples so fast strokes leave no gaps
            cv2.line(
                self._coverage,
                self._last_point,
                center,
                value,
                thickness=2 * radius,
                lineType=cv2.LINE_8,
                shift=_SHIFT,
            )
        cv2.circle(
            self._coverage,
            center,
            radius * _ONE,
            value,
            thickness=-1,
            lineType=cv2.LINE_8,
            shift=_SHIFT,
        )
        self._last_point = center
        self._samples += 1

    def _regenerate_mask(self):
        self.mask = encode_mask(self.composite())
        if self._on_mask_change is not None:
            self._on_mask_change(self.mask)

    @property
    def mask_png(self) -> Optional[bytes]:
        return None if self.mask is None else mask_to_png(self.mask)
