"""Unit tests for CameraStateController."""

import random
import threading

import pytest

from vrcam_bridge.osc.camera_state import (
    FOV_RANGE,
    CameraState,
    CameraStateController,
    ZoomRange,
)
from vrcam_bridge.osc.codec import OscMessage
from vrcam_bridge.osc.routing import OscRouting
from vrcam_bridge.osc.transport import OscDispatcher


class TestDefaults:

    def test_initial_state(self):
        controller = CameraStateController()
        assert controller.snapshot() == CameraState(0.0, 1.6, 0.0, 0.0, 0.0, 0.0, 45.0)

    def test_initial_zoom_is_clamped(self):
        controller = CameraStateController(initial=CameraState(zoom=500.0))
        assert controller.snapshot().zoom == 150.0

    def test_inverted_zoom_range_rejected(self):
        with pytest.raises(ValueError):
            ZoomRange(10.0, 5.0)


class TestMutation:

    def test_apply_delta_only_touches_given_fields(self):
        controller = CameraStateController()
        state = controller.apply_delta({"x": 1.5, "yaw": -5})
        assert state.x == 1.5
        assert state.yaw == -5.0
        assert state.y == 1.6
        assert state.zoom == 45.0

    def test_apply_delta_accumulates(self):
        controller = CameraStateController()
        controller.apply_delta({"z": -0.5})
        controller.apply_delta({"z": -0.5})
        assert controller.snapshot().z == -1.0

    def test_apply_absolute_overwrites(self):
        controller = CameraStateController()
        controller.apply_delta({"x": 3})
        state = controller.apply_absolute({"x": -1, "pitch": 12.5})
        assert state.x == -1.0
        assert state.pitch == 12.5

    def test_zoom_clamped_after_delta(self):
        controller = CameraStateController()
        assert controller.apply_delta({"zoom": 1000}).zoom == 150.0
        assert controller.apply_delta({"zoom": -1000}).zoom == 20.0

    def test_zoom_clamped_after_absolute(self):
        controller = CameraStateController()
        assert controller.apply_absolute({"zoom": 5}).zoom == 20.0

    def test_fov_range(self):
        controller = CameraStateController(zoom_range=FOV_RANGE)
        assert controller.apply_absolute({"zoom": 0}).zoom == 1.0
        assert controller.apply_absolute({"zoom": 200}).zoom == 179.0

    def test_nan_zoom_is_clamped(self):
        controller = CameraStateController()
        assert controller.apply_absolute({"zoom": float("nan")}).zoom == 20.0

    def test_unknown_field_rejected_without_mutation(self):
        controller = CameraStateController()
        before = controller.snapshot()
        with pytest.raises(ValueError):
            controller.apply_delta({"x": 1, "warp": 9})
        assert controller.snapshot() == before

    def test_random_sequence_never_leaves_range(self):
        rng = random.Random(1234)
        controller = CameraStateController()
        for _ in range(500):
            change = {"zoom": rng.uniform(-400, 400)}
            if rng.random() < 0.5:
                state = controller.apply_delta(change)
            else:
                state = controller.apply_absolute(change)
            assert 20.0 <= state.zoom <= 150.0
            assert 20.0 <= controller.snapshot().zoom <= 150.0


class TestSnapshot:

    def test_snapshot_is_immutable(self):
        controller = CameraStateController()
        snapshot = controller.snapshot()
        with pytest.raises(AttributeError):
            snapshot.x = 5.0  # type: ignore[misc]

    def test_snapshot_not_affected_by_later_mutation(self):
        controller = CameraStateController()
        snapshot = controller.snapshot()
        controller.apply_delta({"x": 2})
        assert snapshot.x == 0.0

    def test_concurrent_deltas_are_not_lost(self):
        controller = CameraStateController()

        def worker():
            for _ in range(1000):
                controller.apply_delta({"x": 1})

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert controller.snapshot().x == 4000.0


class TestBroadcast:

    def test_broadcast_sends_pose_then_zoom(self, recording_sender):
        routing = OscRouting(host="10.0.0.2", port=9001)
        controller = CameraStateController(recording_sender, routing)
        controller.apply_absolute({"x": 1, "y": 2, "z": 3, "pitch": 4, "yaw": 5, "roll": 6, "zoom": 60})

        assert controller.broadcast() == 2
        pose, zoom = recording_sender.sent
        assert pose.target == ("10.0.0.2", 9001)
        assert pose.address == "/usercamera/Pose"
        assert pose.types == "ffffff"
        assert pose.args == (1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
        assert zoom.address == "/usercamera/Zoom"
        assert zoom.args == (60.0,)

    def test_empty_zoom_address_skips_zoom(self, recording_sender):
        routing = OscRouting(address_zoom="")
        controller = CameraStateController(recording_sender, routing)
        controller.broadcast()
        assert recording_sender.addresses() == ["/usercamera/Pose"]

    def test_broadcast_uses_updated_routing(self, recording_sender):
        controller = CameraStateController(recording_sender)
        controller.routing = controller.routing.with_updates(port=9100, address_pose="/cam/pose")
        controller.broadcast()
        assert recording_sender.sent[0].target == ("127.0.0.1", 9100)
        assert recording_sender.sent[0].address == "/cam/pose"

    def test_failed_send_does_not_raise(self):
        from tests.infrastructure.mocks.osc_mocks import RecordingSender

        controller = CameraStateController(RecordingSender(succeed=False))
        assert controller.broadcast() == 0

    def test_broadcast_without_sender(self):
        assert CameraStateController().broadcast() == 0

    def test_send_flying(self, recording_sender):
        controller = CameraStateController(recording_sender)
        controller.send_flying(False)
        controller.send_flying(True)
        assert [(m.address, m.types) for m in recording_sender.sent] == [
            ("/usercamera/Flying", "F"),
            ("/usercamera/Flying", "T"),
        ]


class TestInbound:

    def test_pose_feedback_sets_absolute_values(self, recording_sender):
        controller = CameraStateController(recording_sender)
        controller.handle_pose_message(OscMessage("/usercamera/Pose", "ffffff", (1.0, 2.0, 3.0, 4.0, 5.0, 6.0)))
        state = controller.snapshot()
        assert (state.x, state.y, state.z, state.pitch, state.yaw, state.roll) == (1.0, 2.0, 3.0, 4.0, 5.0, 6.0)
        assert recording_sender.sent == []

    def test_short_pose_ignored(self):
        controller = CameraStateController()
        before = controller.snapshot()
        controller.handle_pose_message(OscMessage("/usercamera/Pose", "fff", (1.0, 2.0, 3.0)))
        assert controller.snapshot() == before

    def test_non_numeric_pose_ignored(self):
        controller = CameraStateController()
        before = controller.snapshot()
        controller.handle_pose_message(OscMessage("/usercamera/Pose", "ffffsf", (1.0, 2.0, 3.0, 4.0, "x", 6.0)))
        assert controller.snapshot() == before

    def test_zoom_feedback_is_clamped(self):
        controller = CameraStateController()
        controller.handle_zoom_message(OscMessage("/usercamera/Zoom", "f", (400.0,)))
        assert controller.snapshot().zoom == 150.0

    def test_boolean_zoom_ignored(self):
        controller = CameraStateController()
        controller.handle_zoom_message(OscMessage("/usercamera/Zoom", "T", (True,)))
        assert controller.snapshot().zoom == 45.0

    def test_register_handlers(self):
        controller = CameraStateController()
        dispatcher = OscDispatcher()
        controller.register_handlers(dispatcher)
        assert dispatcher.dispatch(OscMessage("/usercamera/Zoom", "i", (80,)))
        assert controller.snapshot().zoom == 80.0
        assert not dispatcher.dispatch(OscMessage("/other", "", ()))
