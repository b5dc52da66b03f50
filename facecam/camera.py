"""
Camera access: open a capture device and play it in the background.

A CameraStream owns one cv2.VideoCapture. Playback runs on a daemon thread
that keeps only the most recent frame; release() stops that thread and the
device, after which the stream has no active tracks.
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import cv2
import numpy as np

from facecam.config import Settings
from facecam.errors import CameraAccessError

logger = logging.getLogger(__name__)


class CameraStream:
    """Live video from one capture device."""
    def __init__(self, cap, index: int, first_frame: Optional[np.ndarray] = None):
        self._cap = cap
        self.index = index
        self._frame: Optional[np.ndarray] = first_frame
        self._lock = threading.Lock()
        self._run = False
        self._released = False
        self._cap_closed = False
        self._thread: Optional[threading.Thread] = None
        self.join_timeout = 1.0

    # ---- lifecycle ----
    def play(self):
        if self._run or self._released:
            return
        self._run = True
        self._thread = threading.Thread(target=self._read_loop, name=f"camera-{self.index}", daemon=True)
        self._thread.start()

    def release(self):
        """Stop every track. Safe to call more than once."""
        self._released = True
        self._run = False
        thread, self._thread = self._thread, None
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout=self.join_timeout)
            if thread.is_alive():
                # VideoCapture is not thread-safe: the reader closes it once read() returns
                logger.warning(f"[camera] reader for index {self.index} still blocked in read(); "
                               "device will be released when it returns")
                return
        self._close_capture()

    def _close_capture(self):
        with self._lock:
            if self._cap_closed:
                return
            self._cap_closed = True
        self._cap.release()
        logger.info(f"[camera] released camera index {self.index}")

    @property
    def playing(self) -> bool:
        return self._run and not self._released

    @property
    def active_tracks(self) -> int:
        return 0 if self._released else 1

    def read(self) -> np.ndarray | None:
        """Latest frame (BGR) or None before the first one arrives."""
        with self._lock:
            return self._frame

    @property
    def frame_size(self) -> tuple[int, int] | None:
        frame = self.read()
        if frame is None:
            return None
        h, w = frame.shape[:2]
        return w, h

    # ---- loop ----
    def _read_loop(self):
        while self._run:
            ok, frame = self._cap.read()
            if not ok or frame is None:
                time.sleep(0.01)
                continue
            # frames are replaced, never mutated, so readers can keep references
            with self._lock:
                self._frame = frame
        if self._released:
            self._close_capture()


def open_camera(settings: Settings) -> CameraStream:
    """
    Open the configured camera and grab a first frame (blocking).

    The width hint asks the device for at least CAMERA_MIN_WIDTH pixels.

    Raises:
        CameraAccessError: device missing, busy, or not permitted.
    """
    idx = settings.CAMERA_INDEX
    logger.debug(f"[camera] opening index={idx} min_width={settings.CAMERA_MIN_WIDTH}")
    cap = cv2.VideoCapture(idx)
    if not cap.isOpened():
        cap.release()
        raise CameraAccessError(f"Could not open camera index {idx}")

    width = cap.get(cv2.CAP_PROP_FRAME_WIDTH) or 0
    if width < settings.CAMERA_MIN_WIDTH:
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, settings.CAMERA_MIN_WIDTH)

    ok, frame = cap.read()
    if not ok or frame is None:
        cap.release()
        raise CameraAccessError(f"Camera index {idx} delivered no frames")

    logger.info(f"[camera] opened index={idx} frame={frame.shape[1]}x{frame.shape[0]}")
    return CameraStream(cap, idx, first_frame=frame)
