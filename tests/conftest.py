import asyncio
import time

import numpy as np
import pytest

from facecam.camera import CameraStream
from facecam.config import Settings
from facecam.model_gate import ModelGate
from facecam.models import Box, FaceDetection


class DummyCap:
    """Stands in for cv2.VideoCapture: 320x240 grey frames, ~200 fps."""
    def __init__(self, opened=True, frame_ok=True):
        self.opened = opened
        self.frame_ok = frame_ok
        self.released = False
        self.props = {}
        self.frame = np.full((240, 320, 3), 50, dtype=np.uint8)
    def isOpened(self): return self.opened
    def read(self):
        time.sleep(0.005)
        if not self.frame_ok or self.released:
            return False, None
        return True, self.frame.copy()
    def get(self, prop): return self.props.get(prop, 0)
    def set(self, prop, value):
        self.props[prop] = value
        return True
    def release(self): self.released = True


def face(expressions, x=10, y=20, w=40, h=50, score=0.9):
    return FaceDetection(box=Box(x=x, y=y, w=w, h=h), score=score, expressions=expressions)


async def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def settings():
    return Settings(DETECTION_INTERVAL=0.02, MODEL_DIR="models-test")


@pytest.fixture
def ready_gate(settings):
    return ModelGate(settings, builder=lambda bundle: None)


@pytest.fixture
def caps():
    """Every DummyCap handed out by the fake camera opener."""
    return []


@pytest.fixture
def fake_open(caps):
    def _open(settings):
        cap = DummyCap()
        caps.append(cap)
        ok, frame = cap.read()
        return CameraStream(cap, settings.CAMERA_INDEX, first_frame=frame)
    return _open
