"""Encoder/decoder for OSC 1.0 messages as carried in single UDP datagrams.

Wire layout of a message::

    address  NUL-terminated, padded to a multiple of 4 bytes
    ,tags    NUL-terminated, padded to a multiple of 4 bytes
    args     one field per type tag, in tag order

Supported argument types when decoding:

    f   4-byte big-endian IEEE-754 float
    i   4-byte big-endian two's-complement integer
    s   NUL-terminated string, padded to a multiple of 4
    b   4-byte big-endian length, raw bytes, padded to a multiple of 4
    T/F boolean carried in the tag itself, no payload bytes

The codec treats the address as opaque text; pattern matching is the
dispatcher's job.
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from typing import Any, Sequence, Union

from vrcam_bridge.errors import MalformedMessage, OscEncodeError

_FLOAT = struct.Struct(">f")
_INT = struct.Struct(">i")
_NUL = b"\x00"

# Type codes the encoder writes natively; anything else is sent as a string.
ENCODABLE_TYPES = frozenset("fisTF")
DECODABLE_TYPES = frozenset("fisbTF")

OscArgument = Union[float, int, str, bytes, bool]
TypeCodes = Union[str, Sequence[str]]


@dataclass(frozen=True)
class OscMessage:
    """A decoded OSC message.

    ``types`` is the type-tag string as received (without the leading
    comma); ``arguments`` holds the values that could be resolved from it.
    The two can differ in length when a message is truncated or carries
    tags this codec does not understand.
    """

    address: str
    types: str = ""
    arguments: tuple[OscArgument, ...] = ()

    def __len__(self) -> int:
        return len(self.arguments)


def _align(offset: int) -> int:
    return (offset + 3) & ~3


def _padded(raw: bytes) -> bytes:
    """NUL-terminate ``raw`` and pad it to a 4-byte boundary."""
    terminated = raw + _NUL
    return terminated + _NUL * (_align(len(terminated)) - len(terminated))


def _encode_text(text: str, what: str) -> bytes:
    if "\x00" in text:
        raise OscEncodeError(f"{what} must not contain NUL characters")
    return _padded(text.encode("utf-8"))


# ---------------------------------------------------------------------------
# Decoding


def decode(datagram: bytes, *, strict: bool = False) -> OscMessage:
    """Decode one OSC message.

    Raises :class:`MalformedMessage` only when the address or the type-tag
    block has no NUL terminator. A datagram that ends mid-argument yields
    the arguments decoded so far.

    Unknown type tags are skipped without consuming payload bytes, which
    matches the peers this bridge talks to but can misalign later
    arguments. Pass ``strict=True`` to reject such messages (and type-tag
    blocks missing their leading comma) instead.
    """

    data = bytes(datagram)
    end = len(data)

    nul = data.find(_NUL)
    if nul < 0:
        raise MalformedMessage("address pattern is not NUL-terminated", data)
    address = data[:nul].decode("utf-8", errors="replace")
    offset = _align(nul + 1)

    if offset >= end:
        return OscMessage(address)

    nul = data.find(_NUL, offset)
    if nul < 0:
        raise MalformedMessage("type tag block is not NUL-terminated", data)
    tag = data[offset:nul].decode("ascii", errors="replace")
    offset = _align(nul + 1)

    if not tag.startswith(","):
        if strict:
            raise MalformedMessage("type tag block does not start with ','", data)
        return OscMessage(address)

    types = tag[1:]
    arguments: list[OscArgument] = []

    for code in types:
        if code == "f":
            if offset + 4 > end:
                break
            arguments.append(_FLOAT.unpack_from(data, offset)[0])
            offset += 4
        elif code == "i":
            if offset + 4 > end:
                break
            arguments.append(_INT.unpack_from(data, offset)[0])
            offset += 4
        elif code == "s":
            nul = data.find(_NUL, offset)
            if nul < 0:
                break
            arguments.append(data[offset:nul].decode("utf-8", errors="replace"))
            offset = _align(nul + 1)
        elif code == "b":
            if offset + 4 > end:
                break
            size = _INT.unpack_from(data, offset)[0]
            start = offset + 4
            if size < 0 or start + size > end:
                break
            arguments.append(data[start:start + size])
            offset = _align(start + size)
        elif code == "T":
            arguments.append(True)
        elif code == "F":
            arguments.append(False)
        elif strict:
            raise MalformedMessage(f"unsupported type tag {code!r}", data)

    return OscMessage(address, types, tuple(arguments))


# ---------------------------------------------------------------------------
# Encoding


def encode(address: str, types: TypeCodes, args: Sequence[Any] = ()) -> bytes:
    """Build an OSC message.

    ``args`` lines up with ``types`` by position. ``T`` and ``F`` carry no
    payload, so their slots in ``args`` may hold anything or be missing
    from the end of the sequence. Type codes other than ``f``, ``i``,
    ``s``, ``T`` and ``F`` fall back to sending ``str(value)`` tagged as
    ``s``.
    """

    wire_types: list[str] = []
    payload: list[bytes] = []

    for index, code in enumerate(types):
        if len(code) != 1:
            raise OscEncodeError(f"type code must be a single character, got {code!r}")
        if code in ("T", "F"):
            wire_types.append(code)
            continue
        if index >= len(args):
            raise OscEncodeError(f"missing argument {index} for type {code!r}")
        value = args[index]

        if code == "f":
            try:
                payload.append(_FLOAT.pack(float(value)))
            except (TypeError, ValueError, OverflowError, struct.error) as exc:
                raise OscEncodeError(f"argument {index} ({value!r}) is not a 32-bit float") from exc
        elif code == "i":
            try:
                payload.append(_INT.pack(int(value)))
            except (TypeError, ValueError, OverflowError, struct.error) as exc:
                raise OscEncodeError(f"argument {index} ({value!r}) is not a 32-bit integer") from exc
        else:
            payload.append(_encode_text(str(value), f"argument {index}"))
            code = "s"
        wire_types.append(code)

    return b"".join([
        _encode_text(address, "address"),
        _encode_text("," + "".join(wire_types), "type tags"),
        *payload,
    ])


__all__ = [
    "DECODABLE_TYPES",
    "ENCODABLE_TYPES",
    "OscArgument",
    "OscMessage",
    "decode",
    "encode",
]
