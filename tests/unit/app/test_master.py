"""Tests for the bridge entry point and application wiring."""

import argparse
import asyncio

import pytest

from vrcam_bridge.app.master import BridgeApp, cli_overrides, main_async, parse_args
from vrcam_bridge.cli.common import host_port, port_number, positive_float
from vrcam_bridge.core.config import load_config
from vrcam_bridge.errors import CaptureExhaustedError, ConfigError
from vrcam_bridge.relay.capture_manager import CaptureState
from tests.infrastructure.mocks.capture_mocks import FakeBackend, make_jpeg, wait_until


def _local_config(**raw):
    values = {
        "osc.listen_host": "127.0.0.1",
        "osc.listen_port": "0",
        "relay.host": "127.0.0.1",
        "relay.port": "0",
        "relay.interval_ms": "5",
    }
    values.update(raw)
    return load_config(values, environ={})


# =============================================================================
# Command line
# =============================================================================

class TestParseArgs:

    def test_defaults_leave_config_in_charge(self):
        args = parse_args([])
        assert args.log_level is None
        assert args.config is None
        assert args.enable_osc and args.enable_relay
        assert all(value is None for value in cli_overrides(args).values())

    def test_flags_map_to_config_keys(self):
        args = parse_args([
            "--osc-target", "10.0.0.5:9001",
            "--osc-listen-port", "9100",
            "--relay-port", "8080",
            "--capture-mode", "stream",
            "--sender", "Cam2",
            "--stream-url", "rtmp://x/live",
            "--log-level", "DEBUG",
            "--no-relay",
        ])
        overrides = cli_overrides(args)
        assert overrides["osc.target_host"] == "10.0.0.5"
        assert overrides["osc.target_port"] == 9001
        assert overrides["osc.listen_port"] == 9100
        assert overrides["relay.port"] == 8080
        assert overrides["capture.mode"] == "stream"
        assert overrides["capture.sender"] == "Cam2"
        assert overrides["capture.stream_url"] == "rtmp://x/live"
        assert overrides["logging.level"] == "debug"
        assert args.enable_relay is False

    def test_overrides_flow_into_config(self):
        args = parse_args(["--relay-port", "8081", "--capture-mode", "desktop"])
        config = load_config({"relay.port": "7000"}, cli_overrides(args), environ={})
        assert config.relay.port == 8081
        assert config.capture.forced_backend == "desktop"

    def test_bad_capture_mode_exits(self):
        with pytest.raises(SystemExit):
            parse_args(["--capture-mode", "webcam"])


class TestArgumentTypes:

    def test_host_port(self):
        assert host_port("192.168.0.2:9000") == ("192.168.0.2", 9000)
        assert host_port("9001") == ("127.0.0.1", 9001)

    @pytest.mark.parametrize("value", ["0", "70000", "port"])
    def test_port_number_rejects(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            port_number(value)

    def test_positive_float(self):
        assert positive_float("0.5") == 0.5
        with pytest.raises(argparse.ArgumentTypeError):
            positive_float("-1")


# =============================================================================
# Application lifecycle
# =============================================================================

class TestBridgeApp:

    @pytest.mark.asyncio
    async def test_start_wires_osc_and_relay(self):
        backend = FakeBackend("sender", 1, chunks=[make_jpeg(1)])
        app = BridgeApp(_local_config(), backends=[backend])
        try:
            await app.start()
            assert app.receiver.is_running
            assert app.sender.is_open
            assert app.server.is_running
            assert app.manager.state is CaptureState.ACTIVE
            assert app.multiplexer.latest.data == make_jpeg(1)
            assert app.control.get_state()["cfg"]["oscPort"] == 9000
        finally:
            await app.shutdown()

        assert not app.receiver.is_running
        assert not app.server.is_running
        assert not app.sender.is_open
        assert not backend.is_running

    @pytest.mark.asyncio
    async def test_initial_state_from_config(self):
        config = _local_config(**{"osc.initial_zoom": "300", "osc.initial_pose": "1,2,3,0,90,0"})
        app = BridgeApp(config, enable_relay=False)
        try:
            await app.start()
            state = app.controller.snapshot()
        finally:
            await app.shutdown()
        assert state.zoom == 150.0
        assert (state.x, state.y, state.z, state.yaw) == (1.0, 2.0, 3.0, 90.0)
        assert app.server is None

    @pytest.mark.asyncio
    async def test_capture_exhausted_propagates(self):
        backends = [FakeBackend("a", 1, probe_timeout=0.05), FakeBackend("b", 2, fail_start=True)]
        app = BridgeApp(_local_config(), enable_osc=False, backends=backends)
        try:
            with pytest.raises(CaptureExhaustedError):
                await app.start()
            assert app.manager.state is CaptureState.FAILED
        finally:
            await app.shutdown()
        assert not app.server.is_running

    @pytest.mark.asyncio
    async def test_forced_backend_missing_raises_config_error(self):
        backends = [FakeBackend("sender", 1, chunks=[make_jpeg(1)])]
        app = BridgeApp(_local_config(**{"capture.mode": "desktop"}), enable_osc=False, backends=backends)
        try:
            with pytest.raises(ConfigError):
                await app.run()
        finally:
            await app.shutdown()
        assert backends[0].start_count == 0

    @pytest.mark.asyncio
    async def test_forced_mode_from_config(self):
        a = FakeBackend("sender", 1, chunks=[make_jpeg(1)])
        b = FakeBackend("desktop", 4, chunks=[make_jpeg(2)])
        app = BridgeApp(_local_config(**{"capture.mode": "desktop"}), enable_osc=False, backends=[a, b])
        try:
            await app.start()
            assert app.manager.active_backend is b
            assert a.start_count == 0
        finally:
            await app.shutdown()

    @pytest.mark.asyncio
    async def test_run_until_shutdown_requested(self):
        app = BridgeApp(_local_config(), enable_relay=False)
        task = asyncio.create_task(app.run())
        await wait_until(lambda: app.receiver is not None and app.receiver.is_running)
        app.request_shutdown()
        app.request_shutdown()
        await asyncio.wait_for(task, 2.0)
        await app.shutdown()
        assert app.shutdown_event.is_set()

    @pytest.mark.asyncio
    async def test_shutdown_during_startup_does_not_wait_for_capture(self):
        silent = FakeBackend("sender", 1, probe_timeout=30.0)
        app = BridgeApp(_local_config(), enable_osc=False, backends=[silent])
        task = asyncio.create_task(app.run())
        await wait_until(lambda: silent.is_running)

        app.request_shutdown()
        await asyncio.wait_for(task, 2.0)
        await app.shutdown()

        assert not silent.is_running
        assert app.manager.state is CaptureState.IDLE
        assert not app.server.is_running


class TestMainAsync:

    @pytest.mark.asyncio
    async def test_config_error_exits_with_2(self, tmp_path, capsys):
        config_file = tmp_path / "config.txt"
        config_file.write_text("capture.mode = webcam\n", encoding="utf-8")
        assert await main_async(["--config", str(config_file), "--no-console"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    @pytest.mark.asyncio
    async def test_stream_mode_without_url_exits_with_2(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv("STREAM_URL", raising=False)
        monkeypatch.delenv("CAPTURE_MODE", raising=False)
        config_file = tmp_path / "config.txt"
        config_file.write_text("capture.mode = stream\ncapture.stream_url = ''\n", encoding="utf-8")
        assert await main_async(["--config", str(config_file), "--no-console"]) == 2
        assert "capture.stream_url is empty" in capsys.readouterr().err
