"""
Configuration for the emotion detection view.
"""
from pydantic import BaseModel
import os

class Settings(BaseModel):
    """
    Runtime settings with environment-variable overrides.
    """
    MODEL_DIR: str = os.getenv("MODEL_DIR", "models")
    DETECTOR_BACKEND: str = os.getenv("DETECTOR_BACKEND", "opencv")
    RECOGNITION_MODEL: str = os.getenv("RECOGNITION_MODEL", "Facenet")
    EXPRESSION_MODEL: str = os.getenv("EXPRESSION_MODEL", "Emotion")

    CAMERA_INDEX: int = int(os.getenv("CAMERA_INDEX", "0"))
    CAMERA_MIN_WIDTH: int = int(os.getenv("CAMERA_MIN_WIDTH", "300"))
    DISPLAY_WIDTH: int = int(os.getenv("DISPLAY_WIDTH", "640"))
    DISPLAY_HEIGHT: int = int(os.getenv("DISPLAY_HEIGHT", "480"))

    DETECTION_INTERVAL: float = float(os.getenv("DETECTION_INTERVAL", "0.1"))
    EXPRESSION_MIN_CONFIDENCE: float = float(os.getenv("EXPRESSION_MIN_CONFIDENCE", "0.1"))
    STREAM_FPS: float = float(os.getenv("STREAM_FPS", "15"))
    JPEG_QUALITY: int = int(os.getenv("JPEG_QUALITY", "80"))
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    def __init__(self, **data):
        super().__init__(**data)
        # DeepFace backend names are lower-case ("opencv", "retinaface", ...)
        backend = (self.DETECTOR_BACKEND or "opencv").strip().split()[0].lower()
        object.__setattr__(self, "DETECTOR_BACKEND", backend)
        level = (self.LOG_LEVEL or "INFO").strip().upper()
        object.__setattr__(self, "LOG_LEVEL", level)
        object.__setattr__(self, "DETECTION_INTERVAL", max(0.01, float(self.DETECTION_INTERVAL)))
        object.__setattr__(self, "JPEG_QUALITY", max(1, min(100, int(self.JPEG_QUALITY))))

    @property
    def display_size(self) -> tuple[int, int]:
        return self.DISPLAY_WIDTH, self.DISPLAY_HEIGHT
