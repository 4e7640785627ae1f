"""
Board change broadcast.

Keeps the open notification channels (websockets) of each user and pushes
``items:changed`` to all of them after a board mutation commits. Delivery is
best-effort: a channel that errors or is too slow to take the event is
dropped from the table during the broadcast.

The table is local to this process. Running several server processes needs
a cross-process fan-out in front of it.
"""

import asyncio
from typing import Any, Dict, Optional, Set
from uuid import UUID

from loguru import logger
from starlette.websockets import WebSocketState

from clawkpit.core.config import settings

ITEMS_CHANGED = {"type": "items:changed"}


def _is_open(channel: Any) -> bool:
    return (
        getattr(channel, "client_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
        and getattr(channel, "application_state", WebSocketState.CONNECTED) == WebSocketState.CONNECTED
    )


class BoardBroadcastHub:
    """Per-user channel sets.

    Set mutations run on the event loop without awaiting, so they never
    interleave. A broadcast hands the event to all of a user's channels at
    once and waits at most ``send_timeout`` seconds for the slowest one.
    """

    def __init__(self, send_timeout: Optional[float] = None):
        self._channels: Dict[str, Set[Any]] = {}
        self.send_timeout = send_timeout if send_timeout is not None else settings.BOARD_SEND_TIMEOUT_SECONDS

    def register(self, user_id: UUID, channel: Any) -> None:
        key = str(user_id)
        self._channels.setdefault(key, set()).add(channel)
        logger.info(f"Board channel registered for user {key}. Open channels: {len(self._channels[key])}")

    def unregister(self, user_id: UUID, channel: Any) -> None:
        key = str(user_id)
        channels = self._channels.get(key)
        if channels is None:
            return
        channels.discard(channel)
        if not channels:
            del self._channels[key]
        logger.info(f"Board channel unregistered for user {key}")

    def connection_count(self, user_id: UUID) -> int:
        return len(self._channels.get(str(user_id), ()))

    async def _send(self, channel: Any, event: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(channel.send_json(event), timeout=self.send_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"Board channel did not accept an event within {self.send_timeout}s; dropping it")
        except Exception as e:
            logger.warning(f"Failed to send board event to channel: {e}")
        return False

    async def broadcast(self, user_id: UUID, event: Dict[str, Any]) -> int:
        """
        Send ``event`` to every open channel of ``user_id``.

        Channels that are closed or did not take the event are removed.

        Returns:
            Number of channels the event was handed to
        """
        key = str(user_id)
        channels = list(self._channels.get(key, ()))
        if not channels:
            return 0

        stale = [channel for channel in channels if not _is_open(channel)]
        targets = [channel for channel in channels if _is_open(channel)]
        sent = await asyncio.gather(*(self._send(channel, event) for channel in targets))
        stale.extend(channel for channel, ok in zip(targets, sent) if not ok)

        current = self._channels.get(key)
        if current is not None:
            current.difference_update(stale)
            if not current:
                del self._channels[key]
        return sum(sent)

    async def notify_items_changed(self, user_id: UUID) -> None:
        await self.broadcast(user_id, ITEMS_CHANGED)


# Global hub instance
board_hub = BoardBroadcastHub()
