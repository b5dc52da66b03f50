"""
Model loading gate (lazy, one-shot, shared).

The three DeepFace bundles are built once per process and model directory.
Every consumer awaits the same load and receives the same ModelLoadResult.
"""
from __future__ import annotations
import asyncio
import logging
import os
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from facecam.config import Settings
from facecam.errors import ModelLoadError
from facecam.models import ModelBundle, ModelLoadResult

logger = logging.getLogger(__name__)

_gates: Dict[Tuple, "ModelGate"] = {}


def model_bundles(settings: Settings) -> List[ModelBundle]:
    """Fast detector, recognition net and expression net, in load order."""
    return [
        ModelBundle(name=settings.DETECTOR_BACKEND, task="face_detector"),
        ModelBundle(name=settings.RECOGNITION_MODEL, task="facial_recognition"),
        ModelBundle(name=settings.EXPRESSION_MODEL, task="facial_attribute"),
    ]


def build_model(bundle: ModelBundle) -> None:
    """
    Build one bundle with DeepFace (downloads weights into DEEPFACE_HOME on first use).

    Raises:
        ModelLoadError: DeepFace could not be imported or the model could not be built.
    """
    try:
        # Lazy import so tests can swap sys.modules['deepface']
        from deepface import DeepFace
        DeepFace.build_model(model_name=bundle.name, task=bundle.task)
    except Exception as e:
        raise ModelLoadError(f"Could not load {bundle.task} model '{bundle.name}': {e}") from e


class ModelGate:
    """Loads all bundles concurrently once and remembers the outcome."""
    def __init__(self, settings: Settings, builder: Optional[Callable[[ModelBundle], None]] = None):
        self.s = settings
        self.bundles = model_bundles(settings)
        self._builder = builder or build_model
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[ModelLoadResult] = None

    @property
    def result(self) -> ModelLoadResult | None:
        return self._result

    @property
    def loaded(self) -> bool:
        return bool(self._result is not None and self._result.ok)

    def start(self) -> asyncio.Task:
        """Kick off loading on the running loop; later calls return the same task."""
        loop = asyncio.get_running_loop()
        if self._task is not None and self._result is None and (
            self._task.done() or self._task.get_loop() is not loop
        ):
            # load was cancelled or its loop went away (e.g. app restarted); load again here
            self._task = None
        if self._task is None:
            self._task = loop.create_task(self._load())
        return self._task

    async def wait(self) -> ModelLoadResult:
        if self._result is not None:
            return self._result
        # shield: one consumer giving up must not cancel the shared load
        return await asyncio.shield(self.start())

    async def _load(self) -> ModelLoadResult:
        model_dir = Path(self.s.MODEL_DIR).resolve()
        os.environ["DEEPFACE_HOME"] = str(model_dir)
        names = [b.name for b in self.bundles]
        logger.info(f"[models] loading {names} from {model_dir}")
        try:
            await asyncio.gather(*(asyncio.to_thread(self._builder, b) for b in self.bundles))
        except Exception as e:
            logger.exception("[models] model loading failed; capture stays disabled")
            self._result = ModelLoadResult(ok=False, error=str(e))
        else:
            logger.info("[models] all models loaded")
            self._result = ModelLoadResult(ok=True, loaded=names)
        return self._result


def get_model_gate(settings: Settings) -> ModelGate:
    """Process-wide gate for this model directory and bundle set."""
    key = (str(Path(settings.MODEL_DIR).resolve()),) + tuple(
        (b.name, b.task) for b in model_bundles(settings)
    )
    gate = _gates.get(key)
    if gate is None:
        gate = _gates[key] = ModelGate(settings)
    return gate
