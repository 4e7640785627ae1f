"""
Tests for board change broadcast.
"""

import asyncio
import time
from uuid import uuid4

import pytest
from starlette.websockets import WebSocketState

from clawkpit.models.item import Tag
from clawkpit.schemas.item import ItemUpdate
from clawkpit.services.agent_content_service import agent_content_service
from clawkpit.services.board_broadcast import ITEMS_CHANGED, BoardBroadcastHub, board_hub
from clawkpit.services.item_service import item_service
from clawkpit.utils.exceptions import DropNoteRequired
from tests.factories import create_test_item


class FakeChannel:
    """Stands in for a websocket: records what it is sent."""

    def __init__(self, fail: bool = False):
        self.client_state = WebSocketState.CONNECTED
        self.application_state = WebSocketState.CONNECTED
        self.fail = fail
        self.sent = []

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)


class StuckChannel(FakeChannel):
    """A peer that stopped reading: sends never complete."""

    async def send_json(self, data):
        await asyncio.Event().wait()


@pytest.mark.asyncio
async def test_broadcast_reaches_every_channel_of_user():
    hub = BoardBroadcastHub()
    user_id = uuid4()
    first, second = FakeChannel(), FakeChannel()
    hub.register(user_id, first)
    hub.register(user_id, second)

    delivered = await hub.broadcast(user_id, ITEMS_CHANGED)

    assert delivered == 2
    assert first.sent == [{"type": "items:changed"}]
    assert second.sent == [{"type": "items:changed"}]


@pytest.mark.asyncio
async def test_broadcast_is_scoped_to_user():
    hub = BoardBroadcastHub()
    mine, theirs = FakeChannel(), FakeChannel()
    user_id = uuid4()
    hub.register(user_id, mine)
    hub.register(uuid4(), theirs)

    await hub.notify_items_changed(user_id)

    assert mine.sent == [ITEMS_CHANGED]
    assert theirs.sent == []


@pytest.mark.asyncio
async def test_broadcast_without_channels_is_noop():
    hub = BoardBroadcastHub()
    assert await hub.broadcast(uuid4(), ITEMS_CHANGED) == 0


@pytest.mark.asyncio
async def test_failed_and_closed_channels_are_pruned():
    hub = BoardBroadcastHub()
    user_id = uuid4()
    healthy, broken, closed = FakeChannel(), FakeChannel(fail=True), FakeChannel()
    closed.client_state = WebSocketState.DISCONNECTED
    for channel in (healthy, broken, closed):
        hub.register(user_id, channel)

    delivered = await hub.broadcast(user_id, ITEMS_CHANGED)

    assert delivered == 1
    assert hub.connection_count(user_id) == 1
    assert closed.sent == []


@pytest.mark.asyncio
async def test_last_failed_channel_drops_user_entry():
    hub = BoardBroadcastHub()
    user_id = uuid4()
    hub.register(user_id, FakeChannel(fail=True))

    assert await hub.broadcast(user_id, ITEMS_CHANGED) == 0
    assert str(user_id) not in hub._channels


def test_unregister_cleans_up():
    hub = BoardBroadcastHub()
    user_id = uuid4()
    channel = FakeChannel()
    hub.register(user_id, channel)
    assert hub.connection_count(user_id) == 1

    hub.unregister(user_id, channel)
    hub.unregister(user_id, channel)

    assert hub.connection_count(user_id) == 0
    assert hub._channels == {}


# Mutations notify the owner's channels

@pytest.mark.asyncio
async def test_item_mutations_notify_owner(db_session, user_caller, other_user):
    mine, theirs = FakeChannel(), FakeChannel()
    board_hub.register(user_caller.user_id, mine)
    board_hub.register(other_user.id, theirs)

    item = await create_test_item(db_session, user_caller)
    await item_service.update_item(db_session, user_caller, item.id, ItemUpdate(title="Renamed"))

    assert mine.sent == [ITEMS_CHANGED, ITEMS_CHANGED]
    assert theirs.sent == []


@pytest.mark.asyncio
async def test_failed_mutation_does_not_notify(db_session, user_caller):
    item_id = (await create_test_item(db_session, user_caller, tag=Tag.TO_USE)).id
    channel = FakeChannel()
    board_hub.register(user_caller.user_id, channel)

    with pytest.raises(DropNoteRequired):
        await item_service.drop_item(db_session, user_caller, item_id)

    assert channel.sent == []


@pytest.mark.asyncio
async def test_agent_push_notifies_owner(db_session, agent_caller):
    channel = FakeChannel()
    board_hub.register(agent_caller.user_id, channel)

    await agent_content_service.push_markdown(db_session, agent_caller, "# Fresh")

    assert channel.sent == [ITEMS_CHANGED]


@pytest.mark.asyncio
async def test_stuck_channel_does_not_hold_up_the_others():
    hub = BoardBroadcastHub(send_timeout=0.05)
    user_id = uuid4()
    healthy, stuck = FakeChannel(), StuckChannel()
    hub.register(user_id, healthy)
    hub.register(user_id, stuck)

    started = time.monotonic()
    delivered = await hub.broadcast(user_id, ITEMS_CHANGED)

    assert time.monotonic() - started < 1
    assert delivered == 1
    assert healthy.sent == [ITEMS_CHANGED]
    assert hub.connection_count(user_id) == 1

    # The stuck channel is gone, so the next broadcast is not delayed by it
    await hub.broadcast(user_id, ITEMS_CHANGED)
    assert healthy.sent == [ITEMS_CHANGED, ITEMS_CHANGED]
