# facecam/view.py
"""
EmotionDetectionView: the webcam emotion overlay component.

Coordinates four things:
- model lifecycle (shared one-shot ModelGate, start is disabled until it succeeds)
- camera lifecycle (idle -> requesting -> active -> idle)
- a supervised detection loop, one DeepFace call per DETECTION_INTERVAL while active
- the transparent overlay redrawn on every applied detection

View state is only mutated on the event loop; blocking work (model builds,
opening the camera, DeepFace inference) runs in worker threads. Results are
tagged with the capture session and tick number, and anything that arrives
after its session ended or behind a newer tick is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Callable, List, Optional

import numpy as np

from facecam.camera import CameraStream, open_camera
from facecam.config import Settings
from facecam.expressions import (
    detect_all_faces_with_expressions,
    pick_top_expression,
    resize_results,
    to_percent,
)
from facecam.model_gate import ModelGate, get_model_gate
from facecam.models import CameraState, FaceDetection, UiState, ViewState
from facecam.overlay import (
    OverlaySurface,
    composite,
    draw_detections,
    draw_face_expressions,
    encode_jpeg,
    fit_to_display,
)

logger = logging.getLogger(__name__)

STATUS_LOADING = "Loading models... please wait"
STATUS_LOADED = "Models loaded successfully!"
START_LABEL = "Start Camera"
STOP_LABEL = "Stop Camera"


def build_ui(state: ViewState) -> UiState:
    """What the page shows for a given view state."""
    capturing = state.capture_active and state.models_loaded
    return UiState(
        status_text=STATUS_LOADED if state.models_loaded else STATUS_LOADING,
        button_label=STOP_LABEL if capturing else START_LABEL,
        button_action="stop" if capturing else "start",
        button_disabled=(not state.models_loaded) or state.camera_state is CameraState.REQUESTING,
        show_video=state.capture_active,
        show_emotion_card=bool(state.emotion),
        confidence_bar_width=f"{state.confidence}%",
    )


class EmotionDetectionView:
    """Webcam + DeepFace emotion overlay with explicit start/stop and mount/unmount."""
    def __init__(
        self,
        settings: Settings,
        gate: Optional[ModelGate] = None,
        open_camera_fn: Optional[Callable[[Settings], CameraStream]] = None,
        detector: Optional[Callable[[np.ndarray, Settings], List[FaceDetection]]] = None,
    ):
        self.s = settings
        self.gate = gate or get_model_gate(settings)
        self._open_camera = open_camera_fn or open_camera
        self._detect = detector or detect_all_faces_with_expressions
        self.surface = OverlaySurface(*settings.display_size)

        self.models_loaded = False
        self.camera_state = CameraState.IDLE
        self.emotion = ""
        self.confidence = 0
        self._faces: List[FaceDetection] = []

        self._stream: Optional[CameraStream] = None
        self._detection_task: Optional[asyncio.Task] = None
        self._models_task: Optional[asyncio.Task] = None
        self._session = 0
        self._tick = 0
        self._applied_tick = 0

    # ---- state ----
    @property
    def capture_active(self) -> bool:
        return self.camera_state is CameraState.ACTIVE and self._stream is not None

    @property
    def stream(self) -> CameraStream | None:
        return self._stream

    @property
    def detection_task(self) -> asyncio.Task | None:
        return self._detection_task

    def snapshot(self) -> ViewState:
        result = self.gate.result
        return ViewState(
            models_loaded=self.models_loaded,
            models_error=(result.error if result is not None and not result.ok else None),
            camera_state=self.camera_state,
            capture_active=self.capture_active,
            emotion=self.emotion,
            confidence=self.confidence,
            faces=len(self._faces),
            tick=self._applied_tick,
        )

    def ui(self) -> UiState:
        return build_ui(self.snapshot())

    # ---- mount / unmount ----
    async def mount(self):
        """Begin loading models in the background (once)."""
        if self._models_task is None:
            self._models_task = asyncio.create_task(self._load_models())

    async def wait_until_ready(self) -> bool:
        await self.mount()
        with suppress(asyncio.CancelledError):
            await self._models_task
        return self.models_loaded

    async def unmount(self):
        """Cancel a pending model wait and release the camera if it is still held."""
        task = self._models_task
        if task is not None and not task.done():
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task
        await self.stop()

    async def _load_models(self):
        result = await self.gate.wait()
        if result.ok:
            self.models_loaded = True
            logger.info("[view] models ready; capture enabled")
        else:
            # no retry: start stays disabled for the lifetime of this view
            logger.error(f"[view] models failed to load: {result.error}")

    # ---- camera ----
    async def start(self) -> bool:
        """Open the camera and begin detection. Returns True once capture is active."""
        if not self.models_loaded:
            logger.warning("[view] start ignored: models not loaded")
            return False
        if self.camera_state is not CameraState.IDLE:
            return self.capture_active

        self._session += 1
        session = self._session
        self.camera_state = CameraState.REQUESTING
        logger.debug(f"[view] requesting camera session={session}")
        try:
            stream = await asyncio.to_thread(self._open_camera, self.s)
        except Exception:
            logger.exception("[view] camera access failed; staying idle")
            if session == self._session:
                self.camera_state = CameraState.IDLE
            return False

        if session != self._session:
            # stopped (or unmounted) while the device was opening
            logger.debug(f"[view] dropping camera opened for ended session={session}")
            await asyncio.to_thread(stream.release)
            return False

        self._stream = stream
        stream.play()
        self.camera_state = CameraState.ACTIVE
        self._on_play(session)
        return True

    async def stop(self):
        """Cancel detection, stop all tracks and clear the reading. No-op when idle."""
        if self.camera_state is CameraState.REQUESTING:
            self._session += 1
            self.camera_state = CameraState.IDLE
            return
        if self._stream is None:
            return

        self._session += 1
        task, self._detection_task = self._detection_task, None
        try:
            if task is not None:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
                except Exception:
                    logger.exception("[view] detection loop had died with an error")
        finally:
            stream, self._stream = self._stream, None
            self.camera_state = CameraState.IDLE
            self._faces = []
            self.emotion = ""
            self.confidence = 0
            self.surface.clear()
            await asyncio.to_thread(stream.release)
            logger.info("[view] capture stopped")

    async def toggle(self) -> CameraState:
        if self.camera_state is CameraState.IDLE:
            await self.start()
        else:
            await self.stop()
        return self.camera_state

    # ---- detection loop ----
    def _on_play(self, session: int):
        self._detection_task = asyncio.create_task(self._detection_loop(session))
        logger.info(f"[view] capture active; detecting every {self.s.DETECTION_INTERVAL}s")

    async def _detection_loop(self, session: int):
        """One detection at a time; the next tick is scheduled after the previous resolves."""
        loop = asyncio.get_running_loop()
        period = self.s.DETECTION_INTERVAL
        while session == self._session:
            started = loop.time()
            try:
                await self._detect_tick(session)
            except Exception:
                # covers the detector, rescaling and drawing; the loop keeps running
                logger.exception(f"[view] detection tick={self._tick} failed; skipping")
            await asyncio.sleep(max(0.0, period - (loop.time() - started)))

    async def _detect_tick(self, session: int) -> bool:
        stream = self._stream
        frame = stream.read() if stream is not None else None
        if frame is None:
            return False

        self._tick += 1
        tick = self._tick
        self.surface.match_dimensions(*self.s.display_size)
        faces = await asyncio.to_thread(self._detect, frame, self.s)

        h, w = frame.shape[:2]
        resized = resize_results(faces, (w, h), self.s.display_size)
        return self._apply(session, tick, resized)

    def _apply(self, session: int, tick: int, faces: List[FaceDetection]) -> bool:
        if session != self._session or tick <= self._applied_tick:
            logger.debug(f"[view] discarding stale result tick={tick} session={session}")
            return False
        self._applied_tick = tick
        self._faces = faces

        self.surface.clear()
        top = None
        if faces:
            draw_detections(self.surface, faces)
            draw_face_expressions(self.surface, faces, self.s.EXPRESSION_MIN_CONFIDENCE)
            top = pick_top_expression(faces[0].expressions)

        if top is not None:
            self.emotion, self.confidence = top[0], to_percent(top[1])
        else:
            self.emotion, self.confidence = "", 0
        return True

    # ---- rendering ----
    def render_frame(self, overlay: Optional[OverlaySurface] = None) -> np.ndarray | None:
        """Current video frame at display size with the overlay blended in."""
        stream = self._stream
        frame = stream.read() if stream is not None else None
        if frame is None:
            return None
        overlay = overlay or self.surface
        return composite(fit_to_display(frame, overlay.size), overlay)

    def _encode_frame(self, overlay: OverlaySurface) -> bytes | None:
        frame = self.render_frame(overlay)
        if frame is None:
            return None
        return encode_jpeg(frame, self.s.JPEG_QUALITY)

    async def render_jpeg(self) -> bytes | None:
        """JPEG of render_frame(), encoded off the event loop."""
        if self._stream is None:
            return None
        # snapshot on the loop so a concurrent _apply cannot tear the overlay
        overlay = self.surface.copy()
        return await asyncio.to_thread(self._encode_frame, overlay)
