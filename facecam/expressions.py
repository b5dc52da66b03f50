"""
Face + expression detection with DeepFace.
"""
# facecam/expressions.py
from __future__ import annotations
from typing import Dict, List, Mapping, Optional, Tuple
import logging
import math

import numpy as np

from facecam.config import Settings
from facecam.models import Box, FaceDetection

logger = logging.getLogger(__name__)


def detect_all_faces_with_expressions(frame: np.ndarray, settings: Settings) -> List[FaceDetection]:
    """
    Run DeepFace on one frame and return every face with its expression map.

    Geometry is in the frame's pixel space; expression scores are 0..1 and keep
    DeepFace's label order (angry, disgust, fear, happy, sad, surprise, neutral).
    """
    # Lazy import for easier testing and to avoid loading heavy stacks too early
    from deepface import DeepFace

    res = DeepFace.analyze(
        frame,
        actions=["emotion"],
        enforce_detection=False,
        detector_backend=settings.DETECTOR_BACKEND,
        silent=True,
    )
    res = res if isinstance(res, list) else ([res] if isinstance(res, dict) else [])

    faces: List[FaceDetection] = []
    for r in res:
        face = _to_detection(r)
        if face is not None:
            faces.append(face)
    logger.debug(f"[detect] faces_detected={len(faces)}")
    return faces


def _to_detection(r: Mapping) -> Optional[FaceDetection]:
    # With enforce_detection=False DeepFace answers "no face" with a
    # whole-image region and face_confidence 0
    reg = (r or {}).get("region") or {}
    w = float(reg.get("w", 0) or 0)
    h = float(reg.get("h", 0) or 0)
    if w <= 0 or h <= 0:
        return None
    conf = r.get("face_confidence")
    if conf is not None and float(conf) <= 0:
        return None

    emo = r.get("emotion")
    expressions: Dict[str, float] = {}
    if isinstance(emo, dict):
        # DeepFace reports percentages
        expressions = {str(k): float(v) / 100.0 for k, v in emo.items()}
    elif isinstance(r.get("dominant_emotion"), str):
        expressions = {r["dominant_emotion"]: 1.0}

    return FaceDetection(
        box=Box(x=float(reg.get("x", 0) or 0), y=float(reg.get("y", 0) or 0), w=w, h=h),
        score=float(conf) if conf is not None else 1.0,
        expressions=expressions,
    )


def resize_results(faces: List[FaceDetection],
                   frame_size: Tuple[int, int],
                   display_size: Tuple[int, int]) -> List[FaceDetection]:
    """Rescale detection geometry from frame pixels (w, h) to display pixels (w, h)."""
    fw, fh = frame_size
    dw, dh = display_size
    if fw <= 0 or fh <= 0:
        raise ValueError(f"Invalid frame size: {frame_size}")
    sx, sy = dw / float(fw), dh / float(fh)
    return [f.model_copy(update={"box": f.box.scaled(sx, sy)}) for f in faces]


def pick_top_expression(expressions: Mapping[str, float]) -> Optional[Tuple[str, float]]:
    """
    Highest-scoring (label, score); on ties the label met first wins.
    Returns None for an empty map.
    """
    best: Optional[Tuple[str, float]] = None
    for label, score in expressions.items():
        if best is None or score > best[1]:
            best = (label, float(score))
    return best


def to_percent(score: float) -> int:
    """0..1 score as an integer percentage, rounding halves up."""
    return max(0, min(100, int(math.floor(float(score) * 100 + 0.5))))
