"""Matrix channel — matrix-nio client that feeds room messages onto a queue.

Only the configured room is watched. One initial sync runs before
listening starts, so messages sent while the bot was offline are never
replayed as commands.

End-to-end encrypted rooms need the `e2e` extra of matrix-nio (libolm). Without
it, encrypted messages cannot be read; each one is logged as a warning and
dropped.
"""

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional

from nio import (
    AsyncClient,
    JoinError,
    LoginResponse,
    MatrixRoom,
    MegolmEvent,
    RoomMessage,
    RoomSendError,
    SyncError,
)

from . import ChannelError, InboundMessage, localpart

logger = logging.getLogger("fireflybot.channels.matrix")

CACHE_DIR = "matrix-firefly-bot"
BOT_NAME = "firefly bot"

_SYNC_TIMEOUT_MS = 30000


def default_store_path() -> Path:
    """$XDG_DATA_HOME/matrix-firefly-bot, falling back to ~/.local/share."""
    data_home = os.environ.get("XDG_DATA_HOME") or os.path.expanduser("~/.local/share")
    return Path(data_home) / CACHE_DIR


def to_inbound(room: MatrixRoom, event: RoomMessage) -> InboundMessage:
    """Reduce a nio room message event to an InboundMessage."""
    content = event.source.get("content", {})
    return InboundMessage(
        room_id=room.room_id,
        event_id=event.event_id,
        sender=event.sender,
        sender_name=localpart(event.sender),
        timestamp_ms=event.server_timestamp,
        body=content.get("body", ""),
        msgtype=content.get("msgtype", ""),
    )


class MatrixChannel:
    """Matrix transport for the bot.

    Usage:
        channel = MatrixChannel(homeserver, user, password, room_id, queue)
        await channel.start()      # login + initial sync
        await channel.listen()     # runs until stop()
    """

    def __init__(
        self,
        homeserver_url: str,
        username: str,
        password: str,
        room_id: str,
        queue: "asyncio.Queue[Optional[InboundMessage]]",
        store_path: Optional[Path] = None,
    ):
        self.room_id = room_id
        self._password = password
        self._queue = queue
        self._store_path = store_path or default_store_path()
        self._store_path.mkdir(parents=True, exist_ok=True)
        self.client = AsyncClient(
            homeserver_url, username, store_path=str(self._store_path),
        )

    async def start(self):
        """Log in, join the room and run the initial sync.

        Raises:
            ChannelError: Login or the initial sync failed
        """
        logger.info("Initializing...")

        response = await self.client.login(self._password, device_name=BOT_NAME)
        if not isinstance(response, LoginResponse):
            raise ChannelError(f"Matrix login failed: {response}")
        logger.info(f"Logged in as {response.user_id} (device {response.device_id})")

        joined = await self.client.join(self.room_id)
        if isinstance(joined, JoinError):
            logger.warning(f"Could not join {self.room_id}: {joined.message}")

        sync = await self.client.sync(timeout=_SYNC_TIMEOUT_MS, full_state=True)
        if isinstance(sync, SyncError):
            raise ChannelError(f"Initial sync failed: {sync.message}")

        # Registered after the initial sync so history is never dispatched
        self.client.add_event_callback(self._on_room_message, RoomMessage)
        self.client.add_event_callback(self._on_encrypted, MegolmEvent)

    async def listen(self):
        """Sync until stopped, forwarding new room messages to the queue."""
        logger.info("Listening for messages...")
        await self.client.sync_forever(timeout=_SYNC_TIMEOUT_MS)

    async def stop(self):
        self.client.stop_sync_forever()
        await self.client.close()
        logger.info("Matrix channel stopped.")

    async def _on_room_message(self, room: MatrixRoom, event: RoomMessage):
        if room.room_id != self.room_id:
            return
        if event.sender == self.client.user_id:
            return
        self._queue.put_nowait(to_inbound(room, event))

    async def _on_encrypted(self, room: MatrixRoom, event: MegolmEvent):
        # Only undecryptable events get here; nio hands decrypted ones to RoomMessage
        if room.room_id != self.room_id:
            return
        logger.warning(
            f"Cannot decrypt event {event.event_id} from {event.sender} in {room.room_id}; "
            f"end-to-end encrypted rooms need matrix-nio[e2e]. Message dropped."
        )

    # ── Outbound ─────────────────────────────────────────────

    async def send_message(self, room_id: str, text: str) -> None:
        await self._send(room_id, "m.room.message", {"msgtype": "m.text", "body": text})

    async def send_reaction(self, room_id: str, event_id: str, key: str) -> None:
        content = {
            "m.relates_to": {
                "rel_type": "m.annotation",
                "event_id": event_id,
                "key": key,
            }
        }
        await self._send(room_id, "m.reaction", content)

    async def _send(self, room_id: str, event_type: str, content: dict):
        response = await self.client.room_send(room_id, event_type, content)
        if isinstance(response, RoomSendError):
            raise ChannelError(f"Failed to send {event_type} to {room_id}: {response.message}")
