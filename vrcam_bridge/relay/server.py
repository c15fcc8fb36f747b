"""
Relay Server - aiohttp server re-streaming captured frames as MJPEG.

Endpoints:
- GET /mjpeg   multipart/x-mixed-replace stream of the latest frame
- GET /        small HTML preview page
- GET /status  capture and viewer counters as JSON
"""

import html
from typing import Optional

from aiohttp import web

from vrcam_bridge.core.config import RelaySettings
from vrcam_bridge.core.logging_utils import get_module_logger

from .capture_manager import CaptureSourceManager
from .multiplexer import FrameMultiplexer


logger = get_module_logger("RelayServer")

_PAGE = """<!DOCTYPE html>
<html>
<head><title>VR Camera Stream</title></head>
<body>
  <h1>VR Camera Stream</h1>
  <img src="/mjpeg" style="max-width: 100%; height: auto;" />
  <p>Source: {source}</p>
</body>
</html>
"""


class RelayServer:
    """
    HTTP front for the frame multiplexer.

    Each ``/mjpeg`` request attaches one viewer to the multiplexer and
    holds the response open until the viewer goes away. Stopping the
    server stops the capture backend and closes every viewer.
    """

    def __init__(
        self,
        multiplexer: FrameMultiplexer,
        manager: Optional[CaptureSourceManager] = None,
        settings: Optional[RelaySettings] = None,
    ):
        self.multiplexer = multiplexer
        self.manager = manager
        self.settings = settings or RelaySettings()
        self.host = self.settings.host
        self.port = self.settings.port

        self._app: Optional[web.Application] = None
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._running = False

    def create_app(self) -> web.Application:
        app = web.Application()
        app["relay"] = self
        app.router.add_get("/", self.handle_index)
        app.router.add_get("/mjpeg", self.handle_mjpeg)
        app.router.add_get("/status", self.handle_status)
        return app

    async def start(self) -> None:
        """Start serving (non-blocking)."""
        if self._running:
            logger.warning("Relay server already running")
            return

        self._app = self.create_app()
        self._runner = web.AppRunner(self._app, access_log=None)
        await self._runner.setup()

        self._site = web.TCPSite(self._runner, self.host, self.port)
        await self._site.start()

        self._running = True
        logger.info("MJPEG relay running on %s/mjpeg", self.url)

    async def stop(self) -> None:
        if not self._running:
            return

        logger.info("Stopping relay server...")

        if self.manager is not None:
            await self.manager.stop()
        await self.multiplexer.close()

        if self._site:
            await self._site.stop()
            self._site = None

        if self._runner:
            await self._runner.cleanup()
            self._runner = None

        self._app = None
        self._running = False

        logger.info("Relay server stopped")

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    # ------------------------------------------------------------------
    # Handlers

    async def handle_mjpeg(self, request: web.Request) -> web.StreamResponse:
        response = web.StreamResponse(
            status=200,
            headers={
                "Content-Type": f"multipart/x-mixed-replace; boundary={self.multiplexer.boundary}",
                "Cache-Control": "no-cache",
                "Connection": "close",
            },
        )
        await response.prepare(request)

        viewer = self.multiplexer.attach(response.write)
        logger.debug("Viewer %d connected from %s", viewer.viewer_id, request.remote)
        try:
            await viewer.wait_closed()
        finally:
            await self.multiplexer.detach(viewer)
            logger.debug("Stream ended after %d frames", viewer.frames_sent)
        return response

    async def handle_index(self, request: web.Request) -> web.Response:
        return web.Response(
            text=_PAGE.format(source=html.escape(self._source_label())),
            content_type="text/html",
        )

    async def handle_status(self, request: web.Request) -> web.Response:
        manager = self.manager
        backend = manager.active_backend if manager else None
        return web.json_response({
            "state": manager.state.value if manager else "disabled",
            "backend": backend.name if backend else None,
            "frames": self.multiplexer.frame_count,
            "viewers": self.multiplexer.viewer_count,
        })

    def _source_label(self) -> str:
        if self.manager is None:
            return "no capture configured"
        backend = self.manager.active_backend
        if backend is None:
            return f"none ({self.manager.state.value})"
        return backend.describe()
