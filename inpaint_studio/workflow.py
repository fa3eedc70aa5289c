"""Workflow state machine: upload -> mark -> configure -> result.

One ``Workflow`` owns the current image, stroke engine, mask, result and
iteration count. All mutation goes through the named transitions below,
which check their guards and then notify subscribers with a fresh
``WorkflowSnapshot``.
"""
import logging
from enum import Enum
from typing import Callable, List, Optional

import numpy as np

from . import settings
from .client import InpaintClient
from .errors import (
    HistoryEntryNotFound,
    InvalidTransitionError,
    PreconditionError,
    SubmissionError,
)
from .history import HistoryEntry, HistoryStore
from .imaging import ImagePayload, decode_image, decode_png
from .mask_encoder import mask_to_png
from .schemas import WorkflowSnapshot, iteration_description, iteration_label
from .strokes import StrokeEngine, Tool

logger = logging.getLogger("inpaint_studio.workflow")

MIN_ITERATIONS = 1
MAX_ITERATIONS = 5
SUBMISSION_FAILED_NOTICE = "Inpainting failed. Please try again."


class Stage(str, Enum):
    UPLOAD = "upload"
    MARK = "mark"
    CONFIGURE = "configure"
    RESULT = "result"


STAGE_ORDER = [Stage.UPLOAD, Stage.MARK, Stage.CONFIGURE, Stage.RESULT]


def clamp_iterations(value: int) -> int:
    return int(max(MIN_ITERATIONS, min(MAX_ITERATIONS, value)))


class Workflow:
    """Single-session orchestrator for mask authoring and inpainting."""

    def __init__(
        self,
        client: Optional[InpaintClient] = None,
        history: Optional[HistoryStore] = None,
        iterations: int = None,
    ):
        self.client = client or InpaintClient()
        self.history = history if history is not None else HistoryStore()

        self._stage = Stage.UPLOAD
        self._processing = False
        self._image: Optional[ImagePayload] = None
        self._engine: Optional[StrokeEngine] = None
        self._mask: Optional[bytes] = None
        self._result: Optional[str] = None
        self._job_id: Optional[str] = None
        self._iterations = clamp_iterations(
            settings.DEFAULT_ITERATIONS if iterations is None else iterations
        )
        self._notice: Optional[str] = None
        # Bumped whenever the current image is replaced
        self._generation = 0
        self._subscribers: List[Callable[[WorkflowSnapshot], None]] = []

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------
    @property
    def stage(self) -> Stage:
        return self._stage

    @property
    def processing(self) -> bool:
        return self._processing

    @property
    def image(self) -> Optional[ImagePayload]:
        return self._image

    @property
    def engine(self) -> Optional[StrokeEngine]:
        return self._engine

    @property
    def mask(self) -> Optional[bytes]:
        return self._mask

    @property
    def result(self) -> Optional[str]:
        return self._result

    @property
    def job_id(self) -> Optional[str]:
        return self._job_id

    @property
    def iterations(self) -> int:
        return self._iterations

    @property
    def notice(self) -> Optional[str]:
        return self._notice

    @property
    def can_advance(self) -> bool:
        return (
            self._stage == Stage.MARK
            and not self._processing
            and self._image is not None
            and self._mask is not None
        )

    @property
    def can_submit(self) -> bool:
        return (
            self._stage == Stage.CONFIGURE
            and not self._processing
            and self._image is not None
            and self._mask is not None
        )

    def step_status(self, stage: Stage) -> str:
        """Progress indicator status of ``stage``: completed, active or pending."""
        current = STAGE_ORDER.index(self._stage)
        index = STAGE_ORDER.index(stage)
        if index < current:
            return "completed"
        if index == current:
            return "active"
        return "pending"

    # ------------------------------------------------------------------
    # Observation
    # ------------------------------------------------------------------
    def subscribe(self, callback: Callable[[WorkflowSnapshot], None]) -> Callable[[], None]:
        """Register a listener; returns a function that unregisters it."""
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def snapshot(self) -> WorkflowSnapshot:
        engine = self._engine
        return WorkflowSnapshot(
            stage=self._stage.value,
            processing=self._processing,
            step_status={s.value: self.step_status(s) for s in STAGE_ORDER},
            has_image=self._image is not None,
            image_width=self._image.width if self._image else None,
            image_height=self._image.height if self._image else None,
            canvas_width=engine.width if engine else None,
            canvas_height=engine.height if engine else None,
            has_mask=self._mask is not None,
            can_advance=self.can_advance,
            can_clear=bool(engine and engine.enabled and engine.has_mark),
            engine_enabled=bool(engine and engine.enabled),
            tool=engine.tool.value if engine else None,
            brush_radius=engine.brush_radius if engine else None,
            iterations=self._iterations,
            iteration_label=iteration_label(self._iterations),
            iteration_description=iteration_description(self._iterations),
            job_id=self._job_id,
            has_result=self._result is not None,
            notice=self._notice,
            history_size=len(self.history),
        )

    def _changed(self):
        if self._engine is not None:
            self._engine.enabled = self._stage == Stage.MARK and not self._processing
        snapshot = self.snapshot()
        for callback in list(self._subscribers):
            callback(snapshot)

    def _enter(self, stage: Stage):
        if stage != self._stage:
            logger.info("Workflow %s -> %s", self._stage.value, stage.value)
        self._stage = stage
        self._changed()

    def _require_idle(self, action: str):
        if self._processing:
            raise InvalidTransitionError(f"Cannot {action} while a submission is processing")

    def _require_image_and_mask(self, action: str):
        if self._image is None or self._mask is None:
            raise PreconditionError(f"Cannot {action} without an image and a mask")

    # ------------------------------------------------------------------
    # Upload
    # ------------------------------------------------------------------
    def load_image(
        self,
        data: bytes,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> ImagePayload:
        """Decode an upload and move to the mark stage.

        Raises:
            ImageDecodeError: the bytes were rejected; nothing changes.
            InvalidTransitionError: not in the upload stage.
        """
        if self._stage != Stage.UPLOAD:
            raise InvalidTransitionError("Start a new image before uploading")

        payload = decode_image(data, mime_type=mime_type, filename=filename)
        self._replace_image(payload)
        self._enter(Stage.MARK)
        return payload

    def new_image(self):
        """Drop the image, mask and result and return to upload. Always legal."""
        self._generation += 1
        self._image = None
        self._engine = None
        self._mask = None
        self._result = None
        self._job_id = None
        self._processing = False
        self._notice = None
        self._enter(Stage.UPLOAD)

    def _replace_image(self, payload: ImagePayload):
        self._generation += 1
        self._image = payload
        self._engine = StrokeEngine.from_payload(payload, on_mask_change=self._on_mask_change)
        self._mask = None
        self._result = None
        self._job_id = None
        self._processing = False
        self._notice = None

    # ------------------------------------------------------------------
    # Mark
    # ------------------------------------------------------------------
    def _on_mask_change(self, mask: Optional[np.ndarray]):
        self._mask = None if mask is None else mask_to_png(mask)
        logger.debug("Mask regenerated: %s", "present" if self._mask else "empty")
        self._changed()

    def set_tool(self, tool: Tool):
        engine = self.editable_engine()
        engine.tool = Tool(tool)
        self._changed()

    def set_brush_radius(self, radius: int):
        engine = self.editable_engine()
        engine.brush_radius = radius
        self._changed()

    def handle_key(self, key: str) -> bool:
        """Forward a keyboard shortcut to the engine; inert outside marking."""
        if self._engine is None or not self._engine.handle_key(key):
            return False
        self._changed()
        return True

    def clear_mask(self):
        self.editable_engine().clear()

    def editable_engine(self) -> StrokeEngine:
        if self._stage != Stage.MARK or self._engine is None:
            raise InvalidTransitionError("The mask can only be edited in the mark stage")
        self._require_idle("edit the mask")
        return self._engine

    def advance_to_configure(self):
        """Explicit mark -> configure once a mask exists."""
        if self._stage != Stage.MARK:
            raise InvalidTransitionError(f"Cannot configure from {self._stage.value}")
        self._require_idle("configure")
        self._require_image_and_mask("configure")
        self._enter(Stage.CONFIGURE)

    def edit_mask(self):
        """Re-enter marking from configure or result."""
        if self._stage not in (Stage.CONFIGURE, Stage.RESULT):
            raise InvalidTransitionError(f"Cannot edit the mask from {self._stage.value}")
        self._require_idle("edit the mask")
        if self._image is None:
            raise PreconditionError("Cannot edit a mask without an image")
        if self._engine is None:
            self._engine = StrokeEngine.from_payload(self._image, on_mask_change=self._on_mask_change)
        self._enter(Stage.MARK)

    # ------------------------------------------------------------------
    # Configure
    # ------------------------------------------------------------------
    def set_iterations(self, iterations: int) -> int:
        """Set the iteration count, clamped to 1-5."""
        if self._stage != Stage.CONFIGURE:
            raise InvalidTransitionError("Iterations can only be changed in the configure stage")
        self._require_idle("change iterations")
        self._iterations = clamp_iterations(iterations)
        self._changed()
        return self._iterations

    def change_settings(self):
        """Result -> configure, keeping image and mask."""
        if self._stage != Stage.RESULT:
            raise InvalidTransitionError(f"Cannot change settings from {self._stage.value}")
        self._require_idle("change settings")
        self._require_image_and_mask("change settings")
        self._enter(Stage.CONFIGURE)

    async def submit(self) -> Optional[HistoryEntry]:
        """Send the current image and mask for inpainting.

        Moves to result/processing, awaits the client, then either shows the
        result and records a history entry, or reverts to configure with a
        notice. A response that arrives after the image was replaced is
        still recorded in history but leaves the current session alone.

        Returns:
            The new history entry, or None if the submission failed.
        """
        if self._stage != Stage.CONFIGURE:
            raise InvalidTransitionError(f"Cannot submit from {self._stage.value}")
        self._require_idle("submit")
        self._require_image_and_mask("submit")

        generation = self._generation
        image, mask, iterations = self._image, self._mask, self._iterations

        self._processing = True
        self._notice = None
        self._enter(Stage.RESULT)
        logger.info("Submitting %dx%d image with %d iterations", image.width, image.height, iterations)

        try:
            response = await self.client.submit(image, mask, iterations)
        except SubmissionError as e:
            logger.warning("Inpainting failed: %s", e)
            if generation == self._generation:
                self._processing = False
                self._notice = SUBMISSION_FAILED_NOTICE
                self._enter(Stage.CONFIGURE)
            return None

        entry = HistoryEntry(
            id=response.job_id,
            source=image,
            result_image=response.result_image,
            mask=mask,
            iterations=iterations,
        )
        self.history.append(entry)

        if generation != self._generation:
            logger.info("Job %s finished for a replaced image; kept in history only", entry.id)
            self._changed()
            return entry

        self._processing = False
        self._result = entry.result_image
        self._job_id = entry.id
        self._changed()
        return entry

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------
    def select_history(self, entry_id: str) -> HistoryEntry:
        """Restore a history entry straight into the result stage."""
        entry = self.history.select(entry_id)
        if entry is None:
            raise HistoryEntryNotFound(entry_id)

        self._replace_image(entry.source)
        self._engine.restore(decode_png(entry.mask))
        self._mask = entry.mask
        self._result = entry.result_image
        self._job_id = entry.id
        self._iterations = clamp_iterations(entry.iterations)
        self._enter(Stage.RESULT)
        return entry
