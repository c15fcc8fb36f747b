"""Stand-in OSC sender that records messages instead of sending them."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple


@dataclass
class SentMessage:
    target: Tuple[str, int]
    address: str
    types: str
    args: Tuple[Any, ...]


class RecordingSender:
    """Duck-types :class:`vrcam_bridge.osc.transport.OscSender`."""

    def __init__(self, *, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[SentMessage] = []

    def send(self, target, address: str, types, args: Sequence[Any] = ()) -> bool:
        self.sent.append(SentMessage(tuple(target), address, "".join(types), tuple(args)))
        return self.succeed

    def addresses(self) -> List[str]:
        return [message.address for message in self.sent]

    def clear(self) -> None:
        self.sent.clear()
