"""
Pydantic data models for view state and API IO.
"""
from __future__ import annotations
from enum import Enum
from pydantic import BaseModel, Field
from typing import Dict, List, Optional, Literal

class Box(BaseModel):
    x: float
    y: float
    w: float
    h: float

    def scaled(self, sx: float, sy: float) -> "Box":
        return Box(x=self.x * sx, y=self.y * sy, w=self.w * sx, h=self.h * sy)

class FaceDetection(BaseModel):
    box: Box
    score: float = 1.0
    # expression label -> probability in 0..1, in the library's label order
    expressions: Dict[str, float] = Field(default_factory=dict)

class ModelBundle(BaseModel):
    name: str
    task: Literal["face_detector", "facial_recognition", "facial_attribute"]

class ModelLoadResult(BaseModel):
    ok: bool
    error: Optional[str] = None
    loaded: List[str] = Field(default_factory=list)


# view state


class CameraState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    ACTIVE = "active"

class ViewState(BaseModel):
    models_loaded: bool = False
    models_error: Optional[str] = None
    camera_state: CameraState = CameraState.IDLE
    capture_active: bool = False
    emotion: str = ""
    confidence: int = 0
    faces: int = 0
    tick: int = 0

class UiState(BaseModel):
    status_text: str
    button_label: str
    button_action: Literal["start", "stop"]
    button_disabled: bool
    show_video: bool
    show_emotion_card: bool
    confidence_bar_width: str = "0%"
