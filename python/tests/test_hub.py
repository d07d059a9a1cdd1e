"""Tests for the in-memory fan-out hub.

Tests cover:
- publish() before the hub is running drops the event
- Delivery to every member of every target channel, one copy each
- Per-conversation ordering by event seq
- Slow-subscriber eviction without affecting others
- Thread-safe publish from request threads
"""

import asyncio
from uuid import uuid4

import pytest
import pytest_asyncio

from parley.realtime.channels import ChannelKey
from parley.realtime.events import RealtimeEvent
from parley.realtime.hub import FanoutHub
from parley.realtime.sequencer import ConversationSequencer


def _event(conversation_id, seq=None, event_type="message_updated", **data):
    return RealtimeEvent(type=event_type, conversation_id=conversation_id, seq=seq, data=data)


async def _drain(queue: asyncio.Queue) -> list:
    """Let scheduled callbacks run, then take everything queued."""
    await asyncio.sleep(0.01)
    frames = []
    while not queue.empty():
        frames.append(queue.get_nowait())
    return frames


@pytest_asyncio.fixture
async def hub():
    hub = FanoutHub(queue_size=8, reorder_window_s=0.05)
    hub.bind(asyncio.get_running_loop())
    yield hub
    hub.unbind()


def test_publish_without_loop_is_dropped():
    hub = FanoutHub()

    assert hub.publish(_event(uuid4(), seq=1), [ChannelKey.conversation(uuid4())]) is False


@pytest.mark.asyncio
async def test_connect_joins_personal_channel(hub: FanoutHub):
    user_id = uuid4()

    subscriber = hub.connect(user_id)

    assert hub.members(ChannelKey.user(user_id)) == [subscriber]
    assert hub.subscriber_count == 1


@pytest.mark.asyncio
async def test_publish_reaches_channel_members(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    first, second, outsider = hub.connect(uuid4()), hub.connect(uuid4()), hub.connect(uuid4())
    hub.join(first, channel)
    hub.join(second, channel)

    assert hub.publish(_event(cid, seq=1), [channel]) is True

    assert len(await _drain(first.queue)) == 1
    assert len(await _drain(second.queue)) == 1
    assert await _drain(outsider.queue) == []


@pytest.mark.asyncio
async def test_one_copy_across_channels(hub: FanoutHub):
    cid, user_id = uuid4(), uuid4()
    subscriber = hub.connect(user_id)
    hub.join(subscriber, ChannelKey.conversation(cid))

    hub.publish(_event(cid, seq=1), [ChannelKey.conversation(cid), ChannelKey.user(user_id)])

    frames = await _drain(subscriber.queue)
    assert len(frames) == 1
    assert frames[0]["conversation_id"] == str(cid)


@pytest.mark.asyncio
async def test_channel_kinds_do_not_collide(hub: FanoutHub):
    shared_id = uuid4()
    user_subscriber = hub.connect(shared_id)

    hub.publish(_event(shared_id, seq=1), [ChannelKey.conversation(shared_id)])

    assert await _drain(user_subscriber.queue) == []


@pytest.mark.asyncio
async def test_events_delivered_in_seq_order(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, channel)

    for seq in (1, 3, 2, 4):
        hub.publish(_event(cid, seq=seq), [channel])

    frames = await _drain(subscriber.queue)
    assert [f["seq"] for f in frames] == [1, 2, 3, 4]


@pytest.mark.asyncio
async def test_first_commit_arriving_late_is_not_lost(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, channel)

    hub.publish(_event(cid, seq=2), [channel])
    assert await _drain(subscriber.queue) == []

    hub.publish(_event(cid, seq=1), [channel])

    assert [f["seq"] for f in await _drain(subscriber.queue)] == [1, 2]


@pytest.mark.asyncio
async def test_sweep_releases_events_behind_lost_seq(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, channel)
    hub.publish(_event(cid, seq=1), [channel])
    hub.publish(_event(cid, seq=3), [channel])

    assert [f["seq"] for f in await _drain(subscriber.queue)] == [1]

    await asyncio.sleep(0.1)
    hub.sweep()

    assert [f["seq"] for f in await _drain(subscriber.queue)] == [3]


@pytest.mark.asyncio
async def test_typing_events_skip_ordering(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    sender, receiver = hub.connect(uuid4()), hub.connect(uuid4())
    hub.join(sender, channel)
    hub.join(receiver, channel)

    hub.publish_ephemeral(_event(cid, event_type="user_typing"), [channel], exclude=sender)

    assert receiver.queue.get_nowait()["type"] == "user_typing"
    assert sender.queue.empty()
    assert hub.sequencer.tracked_conversations() == 0


@pytest.mark.asyncio
async def test_slow_subscriber_evicted(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    slow, healthy = hub.connect(uuid4()), hub.connect(uuid4())
    hub.join(slow, channel)
    hub.join(healthy, channel)

    for seq in range(1, hub.queue_size + 2):
        hub.publish(_event(cid, seq=seq), [channel])
        # The healthy client keeps up
        await asyncio.sleep(0)
        while not healthy.queue.empty():
            healthy.queue.get_nowait()

    await asyncio.sleep(0.01)

    assert hub.evicted_count == 1
    assert slow.closed is True
    assert hub.members(channel) == [healthy]
    assert await slow.next_frame() is None
    assert healthy.closed is False


@pytest.mark.asyncio
async def test_disconnect_releases_memberships(hub: FanoutHub):
    cid, user_id = uuid4(), uuid4()
    subscriber = hub.connect(user_id)
    hub.join(subscriber, ChannelKey.conversation(cid))

    hub.disconnect(subscriber)

    assert hub.members(ChannelKey.conversation(cid)) == []
    assert hub.members(ChannelKey.user(user_id)) == []
    assert hub.subscriber_count == 0


@pytest.mark.asyncio
async def test_leave_stops_delivery(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, channel)
    hub.leave(subscriber, channel)

    hub.publish(_event(cid, seq=1), [channel])

    assert await _drain(subscriber.queue) == []


@pytest.mark.asyncio
async def test_publish_from_worker_thread(hub: FanoutHub):
    cid = uuid4()
    channel = ChannelKey.conversation(cid)
    subscriber = hub.connect(uuid4())
    hub.join(subscriber, channel)

    accepted = await asyncio.to_thread(hub.publish, _event(cid, seq=1), [channel])

    assert accepted is True
    frame = await asyncio.wait_for(subscriber.queue.get(), timeout=1)
    assert frame["seq"] == 1


@pytest.mark.asyncio
async def test_unbind_closes_subscribers():
    hub = FanoutHub(sequencer=ConversationSequencer())
    hub.bind(asyncio.get_running_loop())
    subscriber = hub.connect(uuid4())

    hub.unbind()

    assert hub.is_bound is False
    assert await subscriber.next_frame() is None
