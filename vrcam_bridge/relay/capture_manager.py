"""
Capture Source Manager - picks one working capture backend and keeps it fed.

States:
- IDLE: nothing running
- PROBING: a candidate is on trial; it must produce a complete frame
  within its probe timeout or the next candidate is tried
- ACTIVE: a backend has produced frames and owns the relay
- RESTARTING: an auto-restart backend died; waiting to relaunch it
- FAILED: every candidate failed to probe, or an Active backend without
  auto-restart died

Every backend lifecycle signal (started, data, errored, exited) is turned
into a :class:`BackendEvent` and handled by :meth:`_handle_event`, the one
place where state transitions happen. At most one backend is alive at a
time: the previous one is always stopped before the next is launched.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Sequence

from vrcam_bridge.core.asyncio_utils import cancel_and_wait, create_logged_task
from vrcam_bridge.core.logging_utils import get_module_logger
from vrcam_bridge.errors import BackendError, CaptureExhaustedError, CaptureStoppedError, ConfigError

from .backends import CaptureBackend
from .demuxer import FrameDemuxer, FrameSink


class CaptureState(Enum):
    IDLE = "idle"
    PROBING = "probing"
    ACTIVE = "active"
    RESTARTING = "restarting"
    FAILED = "failed"


class BackendEventKind(Enum):
    STARTED = "started"
    DATA = "data"
    ERRORED = "errored"
    EXITED = "exited"


@dataclass(frozen=True)
class BackendEvent:
    kind: BackendEventKind
    backend: CaptureBackend
    data: bytes = b""
    error: Optional[BaseException] = None
    returncode: Optional[int] = None

    def describe(self) -> str:
        if self.kind is BackendEventKind.ERRORED:
            return f"error: {self.error}"
        if self.kind is BackendEventKind.EXITED:
            return f"exited with code {self.returncode}"
        return self.kind.value


FailureCallback = Callable[[CaptureBackend, str], Awaitable[None]]
StateListener = Callable[[CaptureState, Optional[CaptureBackend]], None]


class CaptureSourceManager:

    def __init__(
        self,
        backends: Sequence[CaptureBackend],
        sink: FrameSink,
        *,
        forced: Optional[str] = None,
        on_failure: Optional[FailureCallback] = None,
    ):
        self.logger = get_module_logger("CaptureSourceManager")
        self.backends: List[CaptureBackend] = sorted(backends, key=lambda b: b.descriptor.priority)
        self.forced = forced
        self.on_failure = on_failure
        self._sink = sink
        self._listeners: List[StateListener] = []

        if forced and forced not in {b.name for b in self.backends}:
            raise ConfigError(f"Forced capture backend {forced!r} is not configured")

        self.state = CaptureState.IDLE
        self.active_backend: Optional[CaptureBackend] = None
        self.demuxer: Optional[FrameDemuxer] = None
        self.failure_reason: Optional[str] = None
        self.restart_count = 0

        self._current: Optional[CaptureBackend] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._recovery_task: Optional[asyncio.Task] = None
        self._probe_result: Optional[asyncio.Future] = None
        self._probe_failure: Optional[str] = None
        self._closing = False

    # ------------------------------------------------------------------
    # Public API

    def add_state_listener(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def candidates(self) -> List[CaptureBackend]:
        if self.forced:
            return [b for b in self.backends if b.name == self.forced]
        return list(self.backends)

    @property
    def frame_count(self) -> int:
        return self.demuxer.frame_count if self.demuxer else 0

    async def start(self) -> CaptureBackend:
        """Probe candidates in priority order until one produces a frame.

        Raises :class:`CaptureExhaustedError` if none does, or
        :class:`CaptureStoppedError` if :meth:`stop` interrupts the search.
        """
        if self.state is not CaptureState.IDLE:
            raise RuntimeError(f"Capture manager already started (state: {self.state.value})")
        self._closing = False

        candidates = self.candidates()
        if self.forced:
            self.logger.info("Capture mode pinned to %s", self.forced)
        else:
            self.logger.info(
                "Starting capture with automatic fallback: %s",
                " -> ".join(b.name for b in candidates),
            )

        attempted: List[str] = []
        for index, backend in enumerate(candidates, start=1):
            if self._closing:
                break
            attempted.append(backend.name)
            self.logger.info("[%d/%d] Probing %s", index, len(candidates), backend.describe())
            if await self._probe(backend):
                return backend
            if self._closing:
                break
            self.logger.info("%s produced no frames (%s), trying next backend", backend.name, self._probe_failure)

        if self._closing:
            self.logger.info("Capture stopped while trying %s", attempted[-1] if attempted else "nothing")
            raise CaptureStoppedError(attempted)

        self.failure_reason = "no capture backend produced a frame"
        self._set_state(CaptureState.FAILED)
        raise CaptureExhaustedError(attempted)

    async def stop(self) -> None:
        """Terminate the running backend and return to IDLE."""
        self._closing = True
        if self._recovery_task is not asyncio.current_task():
            await cancel_and_wait(self._recovery_task)
        self._recovery_task = None
        if self._probe_result is not None and not self._probe_result.done():
            self._probe_failure = "stopped"
            self._probe_result.set_result(False)
        backend = self.active_backend
        await self._teardown()
        if backend is not None:
            # A cancelled recovery may have left it half-stopped.
            await backend.stop()
        self.active_backend = None
        if self.state is not CaptureState.IDLE:
            self._set_state(CaptureState.IDLE)

    # ------------------------------------------------------------------
    # Probing

    async def _probe(self, backend: CaptureBackend) -> bool:
        self._probe_result = asyncio.get_running_loop().create_future()
        self._probe_failure = None
        self._set_state(CaptureState.PROBING, backend)
        self._launch(backend)

        timeout = backend.descriptor.probe_timeout
        try:
            ok = await asyncio.wait_for(self._probe_result, timeout=timeout)
        except asyncio.TimeoutError:
            ok = False
            self._probe_failure = f"no frame within {timeout:.1f}s"
        finally:
            self._probe_result = None

        if ok and self._current is backend and not self._closing:
            self.active_backend = backend
            self._set_state(CaptureState.ACTIVE, backend)
            self.logger.info("Capture active: %s", backend.describe())
            return True

        await self._teardown()
        return False

    # ------------------------------------------------------------------
    # Backend plumbing

    def _launch(self, backend: CaptureBackend) -> None:
        self.demuxer = FrameDemuxer(self._on_frame)
        self._current = backend
        self._pump_task = create_logged_task(
            self._pump(backend),
            logger=self.logger,
            context=f"capture-{backend.name}",
        )

    async def _teardown(self) -> None:
        """Stop whatever backend is current; its later events are ignored."""
        backend, pump = self._current, self._pump_task
        self._current = None
        self._pump_task = None
        await cancel_and_wait(pump)
        if backend is not None:
            await backend.stop()

    async def _pump(self, backend: CaptureBackend) -> None:
        try:
            await backend.start()
        except BackendError as exc:
            self._handle_event(BackendEvent(BackendEventKind.ERRORED, backend, error=exc))
            return
        self._handle_event(BackendEvent(BackendEventKind.STARTED, backend))

        try:
            while True:
                chunk = await backend.read()
                if not chunk:
                    break
                self._handle_event(BackendEvent(BackendEventKind.DATA, backend, data=chunk))
        except (OSError, BackendError) as exc:
            self._handle_event(BackendEvent(BackendEventKind.ERRORED, backend, error=exc))
            return

        returncode = await backend.wait()
        self._handle_event(BackendEvent(BackendEventKind.EXITED, backend, returncode=returncode))

    def _on_frame(self, frame: bytes) -> None:
        self._sink(frame)
        if self._probe_result is not None and not self._probe_result.done():
            self._probe_result.set_result(True)
        elif self.state is CaptureState.RESTARTING and self._current is not None:
            self.active_backend = self._current
            self._set_state(CaptureState.ACTIVE, self._current)
            self.logger.info("Capture resumed: %s", self._current.describe())

    # ------------------------------------------------------------------
    # Transitions

    def _handle_event(self, event: BackendEvent) -> None:
        if event.backend is not self._current:
            return

        if event.kind is BackendEventKind.STARTED:
            self.logger.debug("%s started", event.backend.name)
        elif event.kind is BackendEventKind.DATA:
            if self.demuxer is not None:
                self.demuxer.feed(event.data)
        elif self.state is CaptureState.PROBING:
            self._probe_failure = event.describe()
            if self._probe_result is not None and not self._probe_result.done():
                self._probe_result.set_result(False)
        elif self.state in (CaptureState.ACTIVE, CaptureState.RESTARTING) and not self._closing:
            self._current = None
            self._recovery_task = create_logged_task(
                self._recover(event.backend, self._pump_task, event.describe()),
                logger=self.logger,
                context=f"recover-{event.backend.name}",
            )

    async def _recover(self, backend: CaptureBackend, pump: Optional[asyncio.Task], reason: str) -> None:
        self.logger.error("Capture backend %s stopped unexpectedly (%s)", backend.name, reason)
        if pump is self._pump_task:
            self._pump_task = None
        await cancel_and_wait(pump)
        await backend.stop()

        if not backend.descriptor.auto_restart:
            self.active_backend = None
            self.failure_reason = f"{backend.name} {reason}"
            self._set_state(CaptureState.FAILED, backend)
            self.logger.error("Capture failed; %s does not auto-restart", backend.name)
            if self.on_failure is not None:
                await self.on_failure(backend, reason)
            return

        self._set_state(CaptureState.RESTARTING, backend)
        delay = backend.descriptor.restart_delay
        self.logger.info("Restarting %s in %.1fs", backend.name, delay)
        await asyncio.sleep(delay)
        if self._closing:
            return
        self.restart_count += 1
        self._launch(backend)

    def _set_state(self, state: CaptureState, backend: Optional[CaptureBackend] = None) -> None:
        if state is self.state and state is not CaptureState.PROBING:
            return
        self.logger.debug(
            "State %s -> %s%s",
            self.state.value,
            state.value,
            f" ({backend.name})" if backend else "",
        )
        self.state = state
        for listener in self._listeners:
            listener(state, backend)


__all__ = [
    "BackendEvent",
    "BackendEventKind",
    "CaptureSourceManager",
    "CaptureState",
]
