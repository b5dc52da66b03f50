import asyncio
import threading

import numpy as np
import pytest

from facecam.errors import CameraAccessError, ModelLoadError
from facecam.model_gate import ModelGate
from facecam.models import CameraState
from facecam.view import EmotionDetectionView, STATUS_LOADED, STATUS_LOADING
from conftest import face, wait_for


def make_view(settings, gate, fake_open, faces=None, detector=None):
    holder = {"faces": faces if faces is not None else []}
    def detect(frame, s):
        return list(holder["faces"])
    view = EmotionDetectionView(settings, gate=gate, open_camera_fn=fake_open, detector=detector or detect)
    return view, holder


@pytest.mark.asyncio
async def test_start_disabled_until_models_loaded(settings, fake_open):
    release = threading.Event()
    gate = ModelGate(settings, builder=lambda b: release.wait(2))
    view, _ = make_view(settings, gate, fake_open)

    await view.mount()
    ui = view.ui()
    assert ui.button_disabled and ui.button_label == "Start Camera"
    assert ui.status_text == STATUS_LOADING
    assert await view.start() is False

    release.set()
    assert await view.wait_until_ready()
    ui = view.ui()
    assert not ui.button_disabled
    assert ui.status_text == STATUS_LOADED
    await view.unmount()


@pytest.mark.asyncio
async def test_model_failure_keeps_capture_disabled(settings, fake_open, caps):
    def builder(bundle):
        raise ModelLoadError("no weights")
    view, _ = make_view(settings, ModelGate(settings, builder=builder), fake_open)

    assert await view.wait_until_ready() is False
    state = view.snapshot()
    assert not state.models_loaded
    assert "no weights" in state.models_error
    assert view.ui().status_text == STATUS_LOADING
    assert view.ui().button_disabled
    assert await view.start() is False
    assert caps == []


@pytest.mark.asyncio
async def test_stop_when_idle_is_noop(settings, ready_gate, fake_open):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.wait_until_ready()
    before = view.snapshot()
    await view.stop()
    await view.stop()
    assert view.snapshot() == before
    assert view.camera_state is CameraState.IDLE


@pytest.mark.asyncio
async def test_start_then_stop_releases_everything(settings, ready_gate, fake_open, caps):
    view, _ = make_view(settings, ready_gate, fake_open,
                        faces=[face({"happy": 0.2, "sad": 0.7, "neutral": 0.1})])
    await view.wait_until_ready()
    assert await view.start()
    assert view.capture_active and view.camera_state is CameraState.ACTIVE
    stream, task = view.stream, view.detection_task
    assert stream.playing and task is not None and not task.done()

    await wait_for(lambda: view.emotion == "sad")
    assert view.confidence == 70
    assert view.ui().show_emotion_card and view.ui().button_label == "Stop Camera"

    await view.stop()
    assert stream.active_tracks == 0 and caps[0].released
    assert task.cancelled() or task.done()
    assert view.detection_task is None and view.stream is None
    assert view.emotion == "" and view.confidence == 0
    assert view.surface.is_blank()
    assert not view.capture_active and not view.ui().show_video


@pytest.mark.asyncio
async def test_zero_faces_clears_reading(settings, ready_gate, fake_open):
    view, holder = make_view(settings, ready_gate, fake_open,
                             faces=[face({"happy": 0.9, "neutral": 0.1})])
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: view.emotion == "happy")
    assert view.confidence == 90
    assert not view.surface.is_blank()

    holder["faces"] = []
    await wait_for(lambda: view.emotion == "")
    assert view.confidence == 0
    assert not view.ui().show_emotion_card
    assert view.surface.is_blank()
    await view.unmount()


@pytest.mark.asyncio
async def test_tie_uses_first_face_first_key(settings, ready_gate, fake_open):
    faces = [face({"happy": 0.5, "sad": 0.5}), face({"angry": 0.99}, x=200)]
    view, _ = make_view(settings, ready_gate, fake_open, faces=faces)
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: view.emotion != "")
    assert view.emotion == "happy" and view.confidence == 50
    assert view.snapshot().faces == 2
    await view.unmount()


@pytest.mark.asyncio
async def test_geometry_rescaled_to_display(settings, ready_gate, fake_open):
    # DummyCap frames are 320x240, display is 640x480
    view, _ = make_view(settings, ready_gate, fake_open, faces=[face({"happy": 1.0}, x=10, y=20, w=40, h=50)])
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: view.emotion == "happy")
    box = view._faces[0].box
    assert (box.x, box.y, box.w, box.h) == (20, 40, 80, 100)
    assert view.surface.size == (640, 480)
    frame = view.render_frame()
    assert frame.shape == (480, 640, 3)
    assert (await view.render_jpeg())[:2] == b"\xff\xd8"
    await view.unmount()


@pytest.mark.asyncio
async def test_unmount_while_capturing_stops_tracks(settings, ready_gate, fake_open, caps):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.mount()
    await view.wait_until_ready()
    await view.start()
    stream = view.stream
    await view.unmount()
    assert stream.active_tracks == 0
    assert caps[0].released
    assert view.detection_task is None


@pytest.mark.asyncio
async def test_unmount_cancels_pending_model_wait(settings, fake_open):
    release = threading.Event()
    gate = ModelGate(settings, builder=lambda b: release.wait(2))
    view, _ = make_view(settings, gate, fake_open)
    await view.mount()
    await view.unmount()
    release.set()
    await gate.wait()
    assert not view.models_loaded


@pytest.mark.asyncio
async def test_camera_failure_stays_idle(settings, ready_gate):
    def refuse(s):
        raise CameraAccessError("permission denied")
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=refuse, detector=lambda f, s: [])
    await view.wait_until_ready()
    assert await view.start() is False
    assert view.camera_state is CameraState.IDLE
    assert view.detection_task is None and view.stream is None


@pytest.mark.asyncio
async def test_stop_while_requesting_releases_late_stream(settings, ready_gate, fake_open, caps):
    gate_open = threading.Event()
    def slow_open(s):
        gate_open.wait(2)
        return fake_open(s)
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=slow_open, detector=lambda f, s: [])
    await view.wait_until_ready()

    starting = asyncio.create_task(view.start())
    await wait_for(lambda: view.camera_state is CameraState.REQUESTING)
    assert view.ui().button_disabled
    await view.stop()
    assert view.camera_state is CameraState.IDLE

    gate_open.set()
    assert await starting is False
    assert caps[0].released
    assert view.stream is None and view.detection_task is None


@pytest.mark.asyncio
async def test_result_after_stop_is_discarded(settings, ready_gate, fake_open):
    entered = threading.Event()
    finish = threading.Event()
    def slow_detect(frame, s):
        entered.set()
        finish.wait(2)
        return [face({"happy": 0.99})]
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=fake_open, detector=slow_detect)
    await view.wait_until_ready()
    await view.start()
    await wait_for(entered.is_set)

    await view.stop()
    finish.set()
    await asyncio.sleep(0.1)
    assert view.emotion == "" and view.confidence == 0
    assert view.surface.is_blank()


@pytest.mark.asyncio
async def test_stale_tick_is_discarded(settings, ready_gate, fake_open):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.wait_until_ready()
    session = view._session
    assert view._apply(session, 5, [face({"sad": 0.8})])
    assert not view._apply(session, 4, [face({"happy": 0.9})])
    assert not view._apply(session + 1, 6, [face({"happy": 0.9})])
    assert view.emotion == "sad" and view.snapshot().tick == 5


@pytest.mark.asyncio
async def test_ticks_never_overlap(settings, ready_gate, fake_open):
    lock = threading.Lock()
    stats = {"running": 0, "max": 0, "calls": 0}
    def slow_detect(frame, s):
        with lock:
            stats["running"] += 1
            stats["calls"] += 1
            stats["max"] = max(stats["max"], stats["running"])
        threading.Event().wait(0.05)  # slower than DETECTION_INTERVAL
        with lock:
            stats["running"] -= 1
        return []
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=fake_open, detector=slow_detect)
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: stats["calls"] >= 4)
    await view.unmount()
    assert stats["max"] == 1


@pytest.mark.asyncio
async def test_detection_error_is_skipped(settings, ready_gate, fake_open):
    calls = {"n": 0}
    def flaky(frame, s):
        calls["n"] += 1
        if calls["n"] == 1:
            raise RuntimeError("backend hiccup")
        return [face({"surprise": 0.6, "fear": 0.4})]
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=fake_open, detector=flaky)
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: view.emotion == "surprise")
    assert view.confidence == 60
    await view.unmount()


@pytest.mark.asyncio
async def test_toggle(settings, ready_gate, fake_open):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.wait_until_ready()
    assert await view.toggle() is CameraState.ACTIVE
    assert await view.toggle() is CameraState.IDLE


@pytest.mark.asyncio
async def test_bad_geometry_does_not_kill_loop(settings, ready_gate, fake_open, caps):
    calls = {"n": 0}
    def detect(frame, s):
        calls["n"] += 1
        return [face({"happy": 0.9}, x=float("inf"))]
    view = EmotionDetectionView(settings, gate=ready_gate, open_camera_fn=fake_open, detector=detect)
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: calls["n"] >= 3)
    assert not view.detection_task.done()

    await view.stop()
    assert caps[0].released
    assert view.camera_state is CameraState.IDLE and view.stream is None


@pytest.mark.asyncio
async def test_apply_error_then_stop_releases_camera(monkeypatch, settings, ready_gate, fake_open, caps):
    view, _ = make_view(settings, ready_gate, fake_open, faces=[face({"sad": 0.6})])
    applied = {"n": 0}
    def broken_apply(session, tick, faces):
        applied["n"] += 1
        raise RuntimeError("draw failed")
    monkeypatch.setattr(view, "_apply", broken_apply)
    await view.wait_until_ready()
    await view.start()
    await wait_for(lambda: applied["n"] >= 2)

    await view.stop()
    assert caps[0].released and view.stream is None
    assert view.camera_state is CameraState.IDLE
    assert view.emotion == "" and view.confidence == 0


@pytest.mark.asyncio
async def test_stop_after_loop_died_releases_camera(settings, ready_gate, fake_open, caps):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.wait_until_ready()
    await view.start()
    view.detection_task.cancel()

    async def died():
        raise OverflowError("cannot convert float infinity to integer")
    view._detection_task = asyncio.create_task(died())
    await asyncio.sleep(0.01)

    await view.stop()
    assert caps[0].released
    assert view.camera_state is CameraState.IDLE and view.detection_task is None


@pytest.mark.asyncio
async def test_render_jpeg_encodes_off_loop(monkeypatch, settings, ready_gate, fake_open):
    view, _ = make_view(settings, ready_gate, fake_open)
    await view.wait_until_ready()
    assert await view.render_jpeg() is None
    await view.start()

    seen = {}
    encode = view._encode_frame
    def record(overlay):
        seen["thread"] = threading.current_thread()
        seen["overlay"] = overlay
        return encode(overlay)
    monkeypatch.setattr(view, "_encode_frame", record)

    jpeg = await view.render_jpeg()
    assert jpeg[:2] == b"\xff\xd8"
    assert seen["thread"] is not threading.main_thread()
    assert seen["overlay"] is not view.surface
    assert seen["overlay"].size == view.surface.size
    await view.unmount()
