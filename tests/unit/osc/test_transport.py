"""Tests for OSC UDP transport over the loopback interface."""

import asyncio
import logging

import pytest

from vrcam_bridge.osc.camera_state import CameraStateController
from vrcam_bridge.osc.codec import OscMessage, encode
from vrcam_bridge.osc.routing import OscRouting
from vrcam_bridge.osc.transport import OscDispatcher, OscReceiver, OscSender


class TestDispatcher:

    def test_exact_address_routing(self):
        seen = []
        dispatcher = OscDispatcher()
        dispatcher.map("/a", seen.append)
        assert dispatcher.dispatch(OscMessage("/a"))
        assert not dispatcher.dispatch(OscMessage("/b"))
        assert [m.address for m in seen] == ["/a"]

    def test_default_handler(self):
        seen = []
        dispatcher = OscDispatcher()
        dispatcher.set_default_handler(seen.append)
        assert dispatcher.dispatch(OscMessage("/anything"))
        assert len(seen) == 1

    def test_unmap(self):
        dispatcher = OscDispatcher()
        dispatcher.map("/a", lambda m: None)
        dispatcher.unmap("/a")
        assert not dispatcher.dispatch(OscMessage("/a"))

    def test_handler_exception_is_logged(self, caplog):
        def boom(message):
            raise RuntimeError("handler failed")

        dispatcher = OscDispatcher()
        dispatcher.map("/a", boom)
        with caplog.at_level(logging.ERROR):
            assert dispatcher.dispatch(OscMessage("/a"))
        assert "OSC handler for /a failed" in caplog.text


class TestReceiverDatagrams:

    def test_malformed_datagram_is_counted_and_logged(self, caplog):
        receiver = OscReceiver(OscDispatcher())
        with caplog.at_level(logging.WARNING):
            receiver.handle_datagram(b"no terminator", ("127.0.0.1", 5555))
        assert receiver.malformed_count == 1
        assert receiver.received_count == 0
        assert "Received invalid OSC message from 127.0.0.1:5555" in caplog.text

    def test_valid_datagram_after_malformed_is_dispatched(self):
        seen = []
        dispatcher = OscDispatcher()
        dispatcher.map("/a", seen.append)
        receiver = OscReceiver(dispatcher)
        receiver.handle_datagram(b"bad", ("127.0.0.1", 1))
        receiver.handle_datagram(encode("/a", "i", [1]), ("127.0.0.1", 1))
        assert len(seen) == 1
        assert seen[0].arguments == (1,)

    def test_strict_receiver_drops_unknown_tags(self):
        seen = []
        dispatcher = OscDispatcher()
        dispatcher.set_default_handler(seen.append)
        receiver = OscReceiver(dispatcher, strict=True)
        receiver.handle_datagram(b"/a\x00\x00,x\x00\x00", ("127.0.0.1", 1))
        assert seen == []
        assert receiver.malformed_count == 1


class TestSender:

    def test_send_when_closed_returns_false(self):
        sender = OscSender()
        assert sender.send(("127.0.0.1", 9000), "/a", "f", [1.0]) is False
        assert sender.failed_count == 1

    @pytest.mark.asyncio
    async def test_encode_error_returns_false(self):
        sender = OscSender()
        await sender.open()
        try:
            assert sender.send(("127.0.0.1", 9000), "/a", "i", [2 ** 40]) is False
            assert sender.failed_count == 1
        finally:
            sender.close()


class TestLoopback:

    @pytest.mark.asyncio
    async def test_send_and_receive(self):
        received = asyncio.Queue()
        dispatcher = OscDispatcher()
        dispatcher.set_default_handler(received.put_nowait)
        receiver = OscReceiver(dispatcher, "127.0.0.1", 0)
        sender = OscSender()
        await receiver.start()
        await sender.open()
        try:
            assert sender.send(receiver.bound_address, "/test", "fsT", [2.5, "ok"])
            message = await asyncio.wait_for(received.get(), timeout=2.0)
        finally:
            sender.close()
            receiver.stop()

        assert message == OscMessage("/test", "fsT", (2.5, "ok", True))
        assert sender.sent_count == 1
        assert not receiver.is_running

    @pytest.mark.asyncio
    async def test_inbound_feedback_updates_controller(self):
        controller = CameraStateController()
        dispatcher = OscDispatcher()
        controller.register_handlers(dispatcher)
        receiver = OscReceiver(dispatcher, "127.0.0.1", 0)
        sender = OscSender()
        await receiver.start()
        await sender.open()
        try:
            sender.send(receiver.bound_address, "/usercamera/Zoom", "f", [75.0])
            for _ in range(200):
                if controller.snapshot().zoom == 75.0:
                    break
                await asyncio.sleep(0.01)
        finally:
            sender.close()
            receiver.stop()

        assert controller.snapshot().zoom == 75.0

    @pytest.mark.asyncio
    async def test_broadcast_reaches_target(self):
        received = asyncio.Queue()
        dispatcher = OscDispatcher()
        dispatcher.set_default_handler(received.put_nowait)
        receiver = OscReceiver(dispatcher, "127.0.0.1", 0)
        await receiver.start()
        host, port = receiver.bound_address
        sender = OscSender()
        await sender.open()
        try:
            controller = CameraStateController(sender, OscRouting(host=host, port=port))
            controller.apply_delta({"x": 1})
            controller.broadcast()
            pose = await asyncio.wait_for(received.get(), timeout=2.0)
            zoom = await asyncio.wait_for(received.get(), timeout=2.0)
        finally:
            sender.close()
            receiver.stop()

        assert pose.address == "/usercamera/Pose"
        assert pose.arguments[0] == 1.0
        assert zoom.arguments == (45.0,)
