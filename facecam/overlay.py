
"""Overlay rendering helpers.

- OverlaySurface: transparent drawing surface the size of the displayed video
- draw_detections / draw_face_expressions: boxes, scores and expression labels
- composite: blend the surface onto a video frame of identical size
- encode_jpeg: frame -> JPEG bytes for streaming
"""
from __future__ import annotations
import cv2
import numpy as np
from typing import List, Tuple

from facecam.models import FaceDetection

BOX_COLOR = (0, 255, 0)          # BGR
TEXT_COLOR = (255, 255, 255)
FONT = cv2.FONT_HERSHEY_SIMPLEX


class OverlaySurface:
    """RGBA canvas (BGRA channel order, alpha 0 = transparent)."""
    def __init__(self, width: int, height: int):
        self.pixels = np.zeros((int(height), int(width), 4), dtype=np.uint8)

    @property
    def size(self) -> Tuple[int, int]:
        h, w = self.pixels.shape[:2]
        return w, h

    def match_dimensions(self, width: int, height: int) -> None:
        """Resize the surface (dropping its contents) unless it already matches."""
        if self.size != (int(width), int(height)):
            self.pixels = np.zeros((int(height), int(width), 4), dtype=np.uint8)

    def copy(self) -> "OverlaySurface":
        dup = OverlaySurface(0, 0)
        dup.pixels = self.pixels.copy()
        return dup

    def clear(self) -> None:
        self.pixels[:] = 0

    def is_blank(self) -> bool:
        return not bool(self.pixels[..., 3].any())


def _clamped_rect(face: FaceDetection, w: int, h: int) -> Tuple[int, int, int, int]:
    x, y = int(round(face.box.x)), int(round(face.box.y))
    fw, fh = int(round(face.box.w)), int(round(face.box.h))
    # clamp to surface bounds
    x = max(0, min(x, w - 1)); y = max(0, min(y, h - 1))
    fw = max(0, min(fw, w - x)); fh = max(0, min(fh, h - y))
    return x, y, fw, fh


def draw_detections(surface: OverlaySurface,
                    faces: List[FaceDetection],
                    color: Tuple[int, int, int] = BOX_COLOR) -> None:
    """Draw a box per face with its detection score above it."""
    w, h = surface.size
    bgra = tuple(color) + (255,)
    for face in faces:
        x, y, fw, fh = _clamped_rect(face, w, h)
        cv2.rectangle(surface.pixels, (x, y), (x + fw, y + fh), bgra, 2)
        cv2.putText(surface.pixels, f"{face.score:.2f}", (x, max(12, y - 6)),
                    FONT, 0.5, bgra, 1, cv2.LINE_AA)


def draw_face_expressions(surface: OverlaySurface,
                          faces: List[FaceDetection],
                          min_confidence: float = 0.1,
                          color: Tuple[int, int, int] = TEXT_COLOR) -> None:
    """List each face's expressions (best first) under its box."""
    w, h = surface.size
    bgra = tuple(color) + (255,)
    for face in faces:
        x, y, fw, fh = _clamped_rect(face, w, h)
        shown = sorted(
            ((k, v) for k, v in face.expressions.items() if v >= min_confidence),
            key=lambda kv: kv[1], reverse=True,
        )
        line_y = y + fh + 18
        for label, score in shown:
            if line_y >= h:
                break
            cv2.putText(surface.pixels, f"{label} ({score:.2f})", (x, line_y),
                        FONT, 0.5, bgra, 1, cv2.LINE_AA)
            line_y += 18


def fit_to_display(frame: np.ndarray, size: Tuple[int, int]) -> np.ndarray:
    w, h = size
    if frame.shape[1] == w and frame.shape[0] == h:
        return frame
    return cv2.resize(frame, (w, h), interpolation=cv2.INTER_AREA)


def composite(frame: np.ndarray, surface: OverlaySurface) -> np.ndarray:
    """Alpha-blend the surface onto a BGR frame of exactly the same size."""
    w, h = surface.size
    if frame.shape[:2] != (h, w):
        raise ValueError(
            f"Overlay {w}x{h} does not match frame {frame.shape[1]}x{frame.shape[0]}"
        )
    if surface.is_blank():
        return frame.copy()
    alpha = surface.pixels[..., 3:4].astype(np.float32) / 255.0
    blended = frame.astype(np.float32) * (1.0 - alpha) + surface.pixels[..., :3].astype(np.float32) * alpha
    return blended.astype(np.uint8)


def encode_jpeg(image: np.ndarray, quality: int = 80) -> bytes:
    ok, buf = cv2.imencode(".jpg", image, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise RuntimeError("JPEG encoding failed")
    return buf.tobytes()
