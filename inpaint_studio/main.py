"""Inpaint Studio session service - drives the mask workflow over HTTP."""
import logging
from contextlib import asynccontextmanager
from typing import List

import httpx
from fastapi import FastAPI, File, Form, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import settings
from .client import InpaintClient
from .coordinates import DisplayRect, to_image_space
from .errors import (
    HistoryEntryNotFound,
    ImageDecodeError,
    InvalidTransitionError,
    PreconditionError,
)
from .history import HistoryStore
from .imaging import decode_data_url
from .schemas import (
    BrushRequest,
    HistoryItem,
    JobStatus,
    KeyRequest,
    SessionResponse,
    StrokeRequest,
    ToolRequest,
    WorkflowSnapshot,
    iteration_label,
)
from .strokes import Tool, valid_point
from .workflow import Workflow

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger("inpaint_studio.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage the session workflow and its HTTP client."""
    client = InpaintClient()
    app.state.workflow = Workflow(client=client, history=HistoryStore())
    yield
    await client.close()


app = FastAPI(
    title="Inpaint Studio",
    description="Mask authoring and inpainting workflow service",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(InvalidTransitionError)
@app.exception_handler(PreconditionError)
async def transition_error_handler(request: Request, exc: Exception):
    return JSONResponse(status_code=409, content={"success": False, "error": str(exc)})


def _workflow(request: Request) -> Workflow:
    return request.app.state.workflow


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy", "inpaint_api": settings.INPAINT_API_URL}


@app.get("/session", response_model=WorkflowSnapshot)
async def get_session(request: Request):
    return _workflow(request).snapshot()


@app.post("/session/image", response_model=SessionResponse)
async def upload_image(request: Request, image: UploadFile = File(...)):
    """Load an image and move to the mark stage."""
    workflow = _workflow(request)
    data = await image.read()
    try:
        workflow.load_image(data, mime_type=image.content_type, filename=image.filename)
    except ImageDecodeError as e:
        logger.info("Rejected upload %s: %s", image.filename, e)
        raise HTTPException(status_code=400, detail=str(e))

    return SessionResponse(success=True, data=workflow.snapshot(), message="Image loaded")


@app.post("/session/strokes", response_model=SessionResponse)
async def draw_stroke(request: Request, stroke: StrokeRequest):
    """Apply one complete stroke.

    Points are pointer positions in display space when ``display`` is given,
    otherwise canvas pixel positions.
    """
    workflow = _workflow(request)
    engine = workflow.editable_engine()

    points = [(p.x, p.y) for p in stroke.points]
    if stroke.display is not None:
        rect = DisplayRect(**stroke.display.model_dump())
        points = [to_image_space(x, y, rect, engine.width, engine.height) for x, y in points]
    if not all(valid_point(p) for p in points):
        raise HTTPException(status_code=422, detail="Stroke point out of range")

    if stroke.tool is not None:
        engine.tool = _parse_tool(stroke.tool)
    if stroke.brush_radius is not None:
        engine.brush_radius = stroke.brush_radius

    engine.begin_stroke(points[0])
    for point in points[1:]:
        engine.continue_stroke(point)
    engine.end_stroke()

    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/keys", response_model=SessionResponse)
async def press_key(request: Request, body: KeyRequest):
    workflow = _workflow(request)
    handled = workflow.handle_key(body.key)
    return SessionResponse(
        success=handled,
        data=workflow.snapshot(),
        error=None if handled else f"Key {body.key!r} ignored",
    )


@app.post("/session/tool", response_model=SessionResponse)
async def select_tool(request: Request, body: ToolRequest):
    workflow = _workflow(request)
    workflow.set_tool(_parse_tool(body.tool))
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/brush", response_model=SessionResponse)
async def set_brush(request: Request, body: BrushRequest):
    workflow = _workflow(request)
    workflow.set_brush_radius(body.brush_radius)
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/clear", response_model=SessionResponse)
async def clear_mask(request: Request):
    workflow = _workflow(request)
    workflow.clear_mask()
    return SessionResponse(success=True, data=workflow.snapshot(), message="Mask cleared")


@app.get("/session/mask")
async def get_mask(request: Request):
    mask = _workflow(request).mask
    if mask is None:
        raise HTTPException(status_code=404, detail="No mask drawn")
    return Response(content=mask, media_type="image/png")


@app.post("/session/configure", response_model=SessionResponse)
async def advance_to_configure(request: Request):
    workflow = _workflow(request)
    workflow.advance_to_configure()
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/iterations", response_model=SessionResponse)
async def set_iterations(request: Request, iterations: int = Form(...)):
    workflow = _workflow(request)
    workflow.set_iterations(iterations)
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/submit", response_model=SessionResponse)
async def submit(request: Request):
    """Submit the current image and mask; waits for the remote result."""
    workflow = _workflow(request)
    entry = await workflow.submit()
    if entry is None:
        return SessionResponse(success=False, data=workflow.snapshot(), error=workflow.notice)
    return SessionResponse(
        success=True,
        data=workflow.snapshot(),
        message=f"Inpainting job {entry.id} completed",
    )


@app.post("/session/edit-mask", response_model=SessionResponse)
async def edit_mask(request: Request):
    workflow = _workflow(request)
    workflow.edit_mask()
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/settings", response_model=SessionResponse)
async def change_settings(request: Request):
    workflow = _workflow(request)
    workflow.change_settings()
    return SessionResponse(success=True, data=workflow.snapshot())


@app.post("/session/new", response_model=SessionResponse)
async def new_image(request: Request):
    workflow = _workflow(request)
    workflow.new_image()
    return SessionResponse(success=True, data=workflow.snapshot())


@app.get("/session/result")
async def get_result(request: Request):
    """Decoded result image, for download or clipboard export."""
    result = _workflow(request).result
    if result is None:
        raise HTTPException(status_code=404, detail="No result available")
    try:
        data, mime_type = decode_data_url(result)
    except ValueError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return Response(content=data, media_type=mime_type)


@app.get("/history", response_model=List[HistoryItem])
async def list_history(request: Request):
    return [
        HistoryItem(
            id=entry.id,
            created_at=entry.created_at,
            iterations=entry.iterations,
            iteration_label=iteration_label(entry.iterations),
            source_mime_type=entry.source.mime_type,
            source_width=entry.source.width,
            source_height=entry.source.height,
        )
        for entry in _workflow(request).history
    ]


@app.post("/history/{entry_id}/select", response_model=SessionResponse)
async def select_history(request: Request, entry_id: str):
    workflow = _workflow(request)
    try:
        workflow.select_history(entry_id)
    except HistoryEntryNotFound:
        raise HTTPException(status_code=404, detail="History entry not found")
    return SessionResponse(success=True, data=workflow.snapshot())


@app.get("/jobs/{job_id}", response_model=JobStatus)
async def job_status(request: Request, job_id: str):
    """Pass through a job status lookup to the inpainting service."""
    try:
        return await _workflow(request).client.get_job_status(job_id)
    except httpx.HTTPError as e:
        logger.warning("Job status lookup for %s failed: %s", job_id, e)
        raise HTTPException(status_code=502, detail=f"Job status lookup failed: {e}")


def _parse_tool(value: str) -> Tool:
    try:
        return Tool(value.lower())
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown tool: {value}")
