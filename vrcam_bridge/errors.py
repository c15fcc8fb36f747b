"""Exception types raised across the bridge."""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for every error raised by vrcam_bridge."""


class ConfigError(BridgeError, ValueError):
    """A configuration value is invalid and has no safe default."""


class MalformedMessage(BridgeError, ValueError):
    """An OSC datagram's address or type-tag block lacks its NUL terminator."""

    def __init__(self, reason: str, datagram: bytes = b"") -> None:
        super().__init__(reason)
        self.reason = reason
        self.datagram = datagram


class OscEncodeError(BridgeError, ValueError):
    """An outbound OSC argument cannot be represented on the wire."""


class BackendError(BridgeError):
    """A capture backend misbehaved."""


class BackendStartError(BackendError):
    """A capture backend could not be launched at all."""


class CaptureExhaustedError(BackendError):
    """Every configured capture backend failed its probe; no video is possible."""

    def __init__(self, attempted: list[str]) -> None:
        names = ", ".join(attempted) if attempted else "none configured"
        super().__init__(f"No capture backend produced a frame (tried: {names})")
        self.attempted = list(attempted)


class CaptureStoppedError(BackendError):
    """``stop()`` was called before any capture backend went active."""

    def __init__(self, attempted: list[str]) -> None:
        super().__init__("Capture stopped before a backend went active")
        self.attempted = list(attempted)


__all__ = [
    "BackendError",
    "BackendStartError",
    "BridgeError",
    "CaptureExhaustedError",
    "CaptureStoppedError",
    "ConfigError",
    "MalformedMessage",
    "OscEncodeError",
]
