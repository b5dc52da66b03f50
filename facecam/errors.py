"""
Failure kinds of the emotion detection view.

Both are logged and never retried; the view stays in its prior state.
"""


class ModelLoadError(RuntimeError):
    """One of the model bundles could not be built."""


class CameraAccessError(RuntimeError):
    """The capture device is unavailable or refused to deliver frames."""
