"""
HTTP endpoints for the emotion detection page.
"""
import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import HTMLResponse, Response, StreamingResponse

from facecam.config import Settings
from facecam.view import EmotionDetectionView

router = APIRouter()
settings = Settings()
logger = logging.getLogger(__name__)

PAGE_PATH = Path(__file__).resolve().parent / "static" / "index.html"
BOUNDARY = "frame"


def _view(request: Request) -> EmotionDetectionView:
    return request.app.state.view


@router.get("/", response_class=HTMLResponse)
async def index():
    """The page: status line, toggle button, video pane and emotion card."""
    return HTMLResponse(PAGE_PATH.read_text(encoding="utf-8"))


@router.get("/view/state")
async def view_state(request: Request):
    """
    Current view state plus what the page should display for it.

    Returns:
        dict: {"state": ViewState, "ui": UiState}
    """
    view = _view(request)
    state = view.snapshot()
    return {"state": state.model_dump(mode="json"), "ui": view.ui().model_dump(mode="json")}


@router.post("/camera/start")
async def camera_start(request: Request):
    view = _view(request)
    if not view.models_loaded:
        raise HTTPException(status_code=409, detail="Models not loaded")
    logger.debug("[api] /camera/start")
    await view.start()
    return {"status": view.camera_state.value}


@router.post("/camera/stop")
async def camera_stop(request: Request):
    view = _view(request)
    logger.debug("[api] /camera/stop")
    await view.stop()
    return {"status": view.camera_state.value}


@router.post("/camera/toggle")
async def camera_toggle(request: Request):
    view = _view(request)
    if not view.models_loaded:
        raise HTTPException(status_code=409, detail="Models not loaded")
    state = await view.toggle()
    return {"status": state.value}


@router.get("/frame.jpg")
async def frame_jpg(request: Request):
    """One composited frame (video + overlay)."""
    jpeg = await _view(request).render_jpeg()
    if jpeg is None:
        raise HTTPException(status_code=404, detail="Camera is not active")
    return Response(content=jpeg, media_type="image/jpeg")


async def mjpeg_frames(view: EmotionDetectionView, fps: float):
    """Multipart JPEG parts until capture stops."""
    delay = 1.0 / max(1.0, fps)
    while view.capture_active:
        jpeg = await view.render_jpeg()
        if jpeg is not None:
            yield (
                f"--{BOUNDARY}\r\nContent-Type: image/jpeg\r\nContent-Length: {len(jpeg)}\r\n\r\n".encode()
                + jpeg + b"\r\n"
            )
        await asyncio.sleep(delay)


@router.get("/video.mjpg")
async def video_mjpg(request: Request):
    """Live composited video as MJPEG; ends when capture stops."""
    view = _view(request)
    if not view.capture_active:
        raise HTTPException(status_code=404, detail="Camera is not active")
    return StreamingResponse(
        mjpeg_frames(view, settings.STREAM_FPS),
        media_type=f"multipart/x-mixed-replace; boundary={BOUNDARY}",
    )
