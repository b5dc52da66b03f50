
"""Run the emotion overlay in a local window.

Usage:
    python scripts/serve.py         # (browser page at http://127.0.0.1:8000)
    python scripts/live_overlay.py  # (same view in an OpenCV window)

Press 'q' to quit the window.
"""
import argparse
import asyncio
import logging

import cv2

from facecam.config import Settings
from facecam.view import EmotionDetectionView

logger = logging.getLogger(__name__)
WINDOW = "Face Emotion Detection (q to quit)"


async def run_live_overlay(settings: Settings, view: EmotionDetectionView | None = None) -> None:
    view = view or EmotionDetectionView(settings)
    await view.mount()
    try:
        if not await view.wait_until_ready():
            logger.error("[live] models did not load; nothing to show")
            return
        if not await view.start():
            logger.error("[live] camera unavailable")
            return
        while view.capture_active:
            frame = view.render_frame()
            if frame is not None:
                if view.emotion:
                    cv2.putText(frame, f"{view.emotion} {view.confidence}%", (10, 30),
                                cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 255, 255), 2, cv2.LINE_AA)
                cv2.imshow(WINDOW, frame)
            if (cv2.waitKey(1) & 0xFF) == ord("q"):
                break
            await asyncio.sleep(0.01)
    finally:
        await view.unmount()
        cv2.destroyAllWindows()


if __name__ == '__main__':
    p = argparse.ArgumentParser()
    p.add_argument("--camera", type=int, default=None, help="Camera index")
    args = p.parse_args()
    s = Settings() if args.camera is None else Settings(CAMERA_INDEX=args.camera)
    logging.basicConfig(level=s.LOG_LEVEL)
    asyncio.run(run_live_overlay(s))
