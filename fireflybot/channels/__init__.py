"""Chat transport seam.

The dispatcher only sees ``InboundMessage`` values arriving on a queue and
the two outbound operations of ``ChatChannel``. The Matrix implementation
lives in ``fireflybot.channels.matrix``.
"""

from dataclasses import dataclass
from typing import Protocol

TEXT_MSGTYPE = "m.text"


class ChannelError(Exception):
    """Sending into the chat room failed."""
    pass


@dataclass(frozen=True)
class InboundMessage:
    """A room message, reduced to what command handling needs."""

    room_id: str
    event_id: str
    sender: str            # full id, e.g. '@alice:example.org'
    sender_name: str       # localpart, e.g. 'alice'
    timestamp_ms: int      # server-assigned origin timestamp
    body: str
    msgtype: str = TEXT_MSGTYPE

    @property
    def is_text(self) -> bool:
        return self.msgtype == TEXT_MSGTYPE


class ChatChannel(Protocol):
    async def send_message(self, room_id: str, text: str) -> None: ...

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> None: ...


def localpart(user_id: str) -> str:
    """'@alice:example.org' -> 'alice'"""
    return user_id.lstrip("@").split(":", 1)[0]


__all__ = [
    "ChannelError",
    "ChatChannel",
    "InboundMessage",
    "TEXT_MSGTYPE",
    "localpart",
]
