"""
FastAPI application entrypoint.
"""
import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI

from api.routes import router, settings
from facecam.config import Settings
from facecam.view import EmotionDetectionView

logger = logging.getLogger(__name__)


def create_app(view_factory: Optional[Callable[[Settings], EmotionDetectionView]] = None) -> FastAPI:
    """
    Build the app. The view is mounted on startup (models start loading) and
    unmounted on shutdown (camera released).
    """
    factory = view_factory or EmotionDetectionView

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        view = factory(settings)
        app.state.view = view
        await view.mount()
        logger.info("[api] view mounted")
        try:
            yield
        finally:
            await view.unmount()
            logger.info("[api] view unmounted")

    application = FastAPI(title="Face Emotion Detection", version="1.0.0", lifespan=lifespan)
    application.include_router(router)

    @application.get("/health")
    def health() -> dict:
        """
        Health check endpoint.

        Returns:
            dict: Simple status payload.
        """
        return {"status": "ok"}

    return application


logging.basicConfig(level=settings.LOG_LEVEL)
app = create_app()
