"""UDP send/receive for OSC, built on asyncio datagram endpoints."""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Optional, Sequence, Tuple

from vrcam_bridge.core.logging_utils import LoggerLike, ensure_structured_logger
from vrcam_bridge.errors import MalformedMessage, OscEncodeError

from .codec import OscMessage, TypeCodes, decode, encode

Address = Tuple[str, int]
OscHandler = Callable[[OscMessage], None]


class _SenderProtocol(asyncio.DatagramProtocol):

    def __init__(self, logger) -> None:
        self._logger = logger

    def error_received(self, exc: Exception) -> None:
        self._logger.warning("OSC send error: %s", exc)


class OscSender:
    """Fire-and-forget OSC sender.

    Failures are logged and dropped; :meth:`send` never raises.
    """

    def __init__(self, *, logger: LoggerLike = None) -> None:
        self.logger = ensure_structured_logger(logger, fallback_name="OscSender")
        self._transport: Optional[asyncio.DatagramTransport] = None
        self.sent_count = 0
        self.failed_count = 0

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    async def open(self) -> None:
        if self.is_open:
            return
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _SenderProtocol(self.logger),
            local_addr=("0.0.0.0", 0),
        )
        self._transport = transport

    def close(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None

    def send(self, target: Address, address: str, types: TypeCodes, args: Sequence[Any] = ()) -> bool:
        """Encode and send one message. Returns False if it was dropped."""
        try:
            datagram = encode(address, types, args)
        except OscEncodeError as exc:
            self.failed_count += 1
            self.logger.warning("Failed to build OSC message %s: %s", address, exc)
            return False

        if not self.is_open:
            self.failed_count += 1
            self.logger.warning("OSC sender is closed; dropping %s", address)
            return False

        try:
            self._transport.sendto(datagram, target)
        except OSError as exc:
            self.failed_count += 1
            self.logger.warning("OSC send to %s:%s failed: %s", target[0], target[1], exc)
            return False

        self.sent_count += 1
        return True


class OscDispatcher:
    """Routes decoded messages to handlers by exact address."""

    def __init__(self, *, logger: LoggerLike = None) -> None:
        self.logger = ensure_structured_logger(logger, fallback_name="OscDispatcher")
        self._handlers: Dict[str, OscHandler] = {}
        self._default: Optional[OscHandler] = None

    def map(self, address: str, handler: OscHandler) -> None:
        self._handlers[address] = handler

    def unmap(self, address: str) -> None:
        self._handlers.pop(address, None)

    def set_default_handler(self, handler: Optional[OscHandler]) -> None:
        self._default = handler

    def dispatch(self, message: OscMessage) -> bool:
        """Call the handler for ``message``. Returns True if one was found."""
        handler = self._handlers.get(message.address, self._default)
        if handler is None:
            return False
        try:
            handler(message)
        except Exception:
            self.logger.exception("OSC handler for %s failed", message.address)
        return True


class _ReceiverProtocol(asyncio.DatagramProtocol):

    def __init__(self, receiver: "OscReceiver") -> None:
        self._receiver = receiver

    def datagram_received(self, data: bytes, addr: Address) -> None:
        self._receiver.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._receiver.logger.warning("OSC receive error: %s", exc)


class OscReceiver:
    """Listens on a UDP port and feeds decoded messages to a dispatcher."""

    def __init__(
        self,
        dispatcher: OscDispatcher,
        host: str = "0.0.0.0",
        port: int = 9000,
        *,
        strict: bool = False,
        logger: LoggerLike = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.host = host
        self.port = port
        self.strict = strict
        self.logger = ensure_structured_logger(logger, fallback_name="OscReceiver")
        self._transport: Optional[asyncio.DatagramTransport] = None
        self.received_count = 0
        self.malformed_count = 0

    @property
    def is_running(self) -> bool:
        return self._transport is not None and not self._transport.is_closing()

    @property
    def bound_address(self) -> Optional[Address]:
        if self._transport is None:
            return None
        return self._transport.get_extra_info("sockname")[:2]

    async def start(self) -> None:
        if self.is_running:
            self.logger.warning("OSC receiver already running")
            return
        loop = asyncio.get_running_loop()
        transport, _ = await loop.create_datagram_endpoint(
            lambda: _ReceiverProtocol(self),
            local_addr=(self.host, self.port),
        )
        self._transport = transport
        bound = self.bound_address
        self.logger.info("Listening for OSC messages on %s:%d", bound[0], bound[1])

    def stop(self) -> None:
        if self._transport is not None:
            self._transport.close()
            self._transport = None
            self.logger.info("OSC receiver stopped")

    def handle_datagram(self, data: bytes, addr: Address) -> None:
        try:
            message = decode(data, strict=self.strict)
        except MalformedMessage as exc:
            self.malformed_count += 1
            self.logger.warning(
                "Received invalid OSC message from %s:%s (%s)", addr[0], addr[1], exc.reason
            )
            return

        self.received_count += 1
        self.logger.debug(
            "%s: (%s)",
            message.address,
            ", ".join(f"{a:.6f}" if isinstance(a, float) else repr(a) for a in message.arguments),
        )
        self.dispatcher.dispatch(message)


__all__ = ["OscDispatcher", "OscHandler", "OscReceiver", "OscSender"]
