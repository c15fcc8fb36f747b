import argparse
import asyncio
import sys
from typing import Any, Dict, List, Optional

from vrcam_bridge.cli.common import (
    add_common_cli_arguments,
    host_port,
    install_exception_handlers,
    install_signal_handlers,
    port_number,
)
from vrcam_bridge.core.asyncio_utils import cancel_and_wait
from vrcam_bridge.core.config import CAPTURE_BACKEND_NAMES, CAPTURE_MODE_AUTO, BridgeConfig, load_config
from vrcam_bridge.core.config_manager import get_config_manager
from vrcam_bridge.core.logging_config import configure_logging
from vrcam_bridge.core.logging_utils import get_module_logger
from vrcam_bridge.core.paths import CONFIG_PATH
from vrcam_bridge.errors import CaptureExhaustedError, ConfigError
from vrcam_bridge.osc import (
    CameraState,
    CameraStateController,
    ControlSurface,
    OscDispatcher,
    OscReceiver,
    OscRouting,
    OscSender,
    ZoomRange,
)
from vrcam_bridge.relay import (
    CaptureBackend,
    CaptureSourceManager,
    FrameMultiplexer,
    RelayServer,
    build_backends,
)


logger = get_module_logger("Bridge")


class BridgeApp:
    """Owns every long-lived component and brings them up and down in order."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        enable_osc: bool = True,
        enable_relay: bool = True,
        backends: Optional[List[CaptureBackend]] = None,
    ):
        self.config = config
        self.enable_osc = enable_osc
        self.enable_relay = enable_relay
        self._backends = backends

        self.sender: Optional[OscSender] = None
        self.receiver: Optional[OscReceiver] = None
        self.controller: Optional[CameraStateController] = None
        self.control: Optional[ControlSurface] = None

        self.multiplexer: Optional[FrameMultiplexer] = None
        self.manager: Optional[CaptureSourceManager] = None
        self.server: Optional[RelayServer] = None

        self.shutdown_event = asyncio.Event()

    async def start(self) -> None:
        """Start OSC, then the relay. Raises CaptureExhaustedError if no backend works."""
        if self.enable_osc:
            await self._start_osc()
        if self.enable_relay:
            await self._start_relay()

    async def _start_osc(self) -> None:
        osc = self.config.osc
        routing = OscRouting(
            host=osc.target_host,
            port=osc.target_port,
            address_pose=osc.address_pose,
            address_zoom=osc.address_zoom,
        )
        x, y, z, pitch, yaw, roll = osc.initial_pose

        self.sender = OscSender()
        await self.sender.open()
        self.controller = CameraStateController(
            self.sender,
            routing,
            initial=CameraState(x, y, z, pitch, yaw, roll, zoom=osc.initial_zoom),
            zoom_range=ZoomRange(osc.zoom_min, osc.zoom_max),
        )
        self.control = ControlSurface(self.controller)

        dispatcher = OscDispatcher()
        self.controller.register_handlers(dispatcher)
        self.receiver = OscReceiver(
            dispatcher,
            osc.listen_host,
            osc.listen_port,
            strict=osc.strict_decoding,
        )
        await self.receiver.start()
        logger.info("OSC sender: %s:%d", routing.host, routing.port)

    async def _start_relay(self) -> None:
        capture = self.config.capture
        relay = self.config.relay

        self.multiplexer = FrameMultiplexer(interval=relay.interval, boundary=relay.boundary)
        backends = self._backends if self._backends is not None else build_backends(capture)
        self.manager = CaptureSourceManager(
            backends,
            self.multiplexer.publish,
            forced=capture.forced_backend,
            on_failure=self._on_capture_failure,
        )
        self.server = RelayServer(self.multiplexer, self.manager, relay)
        await self.server.start()

        if capture.mode == CAPTURE_MODE_AUTO:
            logger.info("Target sender: %s", capture.sender)
            logger.info("Stream URL: %s", capture.stream_url or "<none>")
        await self.manager.start()

    async def _on_capture_failure(self, backend: CaptureBackend, reason: str) -> None:
        logger.error(
            "Video capture from %s is down (%s); restart the bridge once the source is back",
            backend.name,
            reason,
        )

    def request_shutdown(self) -> None:
        if not self.shutdown_event.is_set():
            logger.info("Shutdown requested")
            self.shutdown_event.set()

    async def run(self) -> None:
        """Start everything, then wait for a shutdown request.

        A shutdown request that arrives while backends are still being tried
        cancels the startup; :meth:`shutdown` cleans up what did start.
        """
        starting = asyncio.create_task(self.start(), name="bridge-start")
        stopping = asyncio.create_task(self.shutdown_event.wait(), name="bridge-shutdown")
        try:
            await asyncio.wait({starting, stopping}, return_when=asyncio.FIRST_COMPLETED)
            if starting.done():
                starting.result()
                await stopping
            else:
                logger.info("Shutdown requested during startup")
        finally:
            await cancel_and_wait(starting)
            await cancel_and_wait(stopping)

    async def shutdown(self) -> None:
        logger.info("Shutting down...")
        if self.receiver is not None:
            self.receiver.stop()
        if self.server is not None:
            await self.server.stop()
        if self.manager is not None:
            await self.manager.stop()
        if self.sender is not None:
            self.sender.close()
        logger.info("Shutdown complete")


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="VR camera bridge - OSC camera control plus an MJPEG video relay"
    )
    add_common_cli_arguments(parser, include_config=True, default_log_level="info")
    # Let the config file decide unless the flag is given.
    parser.set_defaults(log_level=None)

    parser.add_argument(
        "--osc-listen-port",
        type=port_number,
        default=None,
        help="UDP port to receive OSC feedback on (default: 9000)",
    )
    parser.add_argument(
        "--osc-target",
        type=host_port,
        default=None,
        metavar="HOST:PORT",
        help="Where camera updates are sent (default: 127.0.0.1:9000)",
    )
    parser.add_argument(
        "--relay-port",
        type=port_number,
        default=None,
        help="HTTP port of the MJPEG relay (default: 8888)",
    )
    parser.add_argument(
        "--capture-mode",
        choices=(CAPTURE_MODE_AUTO,) + CAPTURE_BACKEND_NAMES,
        default=None,
        help="Pin one capture backend instead of probing in priority order",
    )
    parser.add_argument(
        "--sender",
        type=str,
        default=None,
        help="Name of the video sender to capture first (default: VRCSender1)",
    )
    parser.add_argument(
        "--stream-url",
        type=str,
        default=None,
        help="Network stream to fall back to",
    )
    parser.add_argument(
        "--no-relay",
        dest="enable_relay",
        action="store_false",
        default=True,
        help="Run the OSC side only",
    )
    parser.add_argument(
        "--no-osc",
        dest="enable_osc",
        action="store_false",
        default=True,
        help="Run the video relay only",
    )

    return parser.parse_args(argv)


def cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Map parsed flags onto config keys; unset flags map to None."""
    target_host, target_port = args.osc_target if args.osc_target else (None, None)
    return {
        "osc.listen_port": args.osc_listen_port,
        "osc.target_host": target_host,
        "osc.target_port": target_port,
        "relay.port": args.relay_port,
        "capture.mode": args.capture_mode,
        "capture.sender": args.sender,
        "capture.stream_url": args.stream_url,
        "logging.level": args.log_level,
    }


async def main_async(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)

    config_path = args.config or CONFIG_PATH
    raw = await get_config_manager().read_config_async(config_path)
    try:
        config = load_config(raw, cli_overrides(args))
    except ConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    configure_logging(
        config.logging.level,
        force=True,
        console=args.console_output,
        log_file=args.log_file or config.logging.file,
    )
    install_exception_handlers(logger.logger, asyncio.get_running_loop())

    logger.info("=" * 60)
    logger.info("VR camera bridge starting")
    logger.info("=" * 60)
    logger.info("Config file: %s", config_path)
    logger.info("Capture mode: %s", config.capture.mode)

    app = BridgeApp(config, enable_osc=args.enable_osc, enable_relay=args.enable_relay)
    install_signal_handlers(app.request_shutdown)

    exit_code = 0
    try:
        await app.run()
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        exit_code = 2
    except CaptureExhaustedError as exc:
        logger.critical("%s", exc)
        exit_code = 1
    except OSError as exc:
        logger.critical("Failed to start: %s", exc)
        exit_code = 1
    finally:
        await app.shutdown()

    logger.info("VR camera bridge stopped")
    return exit_code


def main(argv: Optional[list[str]] = None) -> int:
    try:
        return asyncio.run(main_async(argv))
    except KeyboardInterrupt:
        print("\nInterrupted by user")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
