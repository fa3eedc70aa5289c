"""Pydantic schemas for the remote service and the session API."""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


ITERATION_LEVELS = {
    1: ("Quick", "Fastest processing, basic refinement"),
    2: ("Balanced", "Good balance of speed and quality"),
    3: ("Detailed", "Recommended for most cases"),
    4: ("Enhanced", "Higher quality, slower processing"),
    5: ("Ultra", "Maximum quality, slowest processing"),
}


def iteration_label(count: int) -> str:
    return ITERATION_LEVELS.get(count, ("Custom", ""))[0]


def iteration_description(count: int) -> str:
    return ITERATION_LEVELS.get(count, ("Custom", ""))[1]


# ----------------------------------------------------------------------
# Remote service
# ----------------------------------------------------------------------
class InpaintResponse(BaseModel):
    result_image: str  # Data URL or base64 encoded image
    job_id: Optional[str] = None

    @field_validator("job_id", mode="before")
    @classmethod
    def _stringify_job_id(cls, value: Any) -> Any:
        # Job ids are opaque; some services send them as numbers
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


class JobStatus(BaseModel):
    model_config = ConfigDict(extra="allow")

    job_id: Optional[str] = None
    status: str

    @field_validator("job_id", mode="before")
    @classmethod
    def _stringify_job_id(cls, value: Any) -> Any:
        if isinstance(value, int) and not isinstance(value, bool):
            return str(value)
        return value


# ----------------------------------------------------------------------
# Session API
# ----------------------------------------------------------------------
class WorkflowSnapshot(BaseModel):
    stage: str
    processing: bool
    step_status: Dict[str, str]
    has_image: bool
    image_width: Optional[int] = None
    image_height: Optional[int] = None
    canvas_width: Optional[int] = None
    canvas_height: Optional[int] = None
    has_mask: bool
    can_advance: bool
    can_clear: bool
    engine_enabled: bool
    tool: Optional[str] = None
    brush_radius: Optional[int] = None
    iterations: int
    iteration_label: str
    iteration_description: str
    job_id: Optional[str] = None
    has_result: bool
    notice: Optional[str] = None
    history_size: int


class DisplayRectModel(BaseModel):
    left: float = Field(default=0.0, allow_inf_nan=False)
    top: float = Field(default=0.0, allow_inf_nan=False)
    width: float = Field(gt=0, allow_inf_nan=False)
    height: float = Field(gt=0, allow_inf_nan=False)


class PointerSample(BaseModel):
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)


class StrokeRequest(BaseModel):
    """One complete stroke: press at the first sample, release after the last."""
    points: List[PointerSample] = Field(min_length=1)
    display: Optional[DisplayRectModel] = None  # Omitted: points are canvas pixels
    tool: Optional[str] = None
    brush_radius: Optional[int] = None


class KeyRequest(BaseModel):
    key: str


class ToolRequest(BaseModel):
    tool: str


class BrushRequest(BaseModel):
    brush_radius: int


class HistoryItem(BaseModel):
    id: str
    created_at: datetime
    iterations: int
    iteration_label: str
    source_mime_type: str
    source_width: int
    source_height: int


class SessionResponse(BaseModel):
    success: bool
    data: Optional[WorkflowSnapshot] = None
    message: Optional[str] = None
    error: Optional[str] = None
