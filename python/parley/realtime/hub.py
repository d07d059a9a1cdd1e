"""In-memory fan-out hub for live clients.

The hub owns the registry of live subscribers and their channel
memberships. It is ephemeral: rebuilt from connections as they arrive,
never persisted, and never consulted for message state.

Threading model:
- All registry and queue operations run on the hub's event loop
- publish() may be called from any thread (sync route handlers run in a
  thread pool); it hands the event to the loop with call_soon_threadsafe
  and returns immediately

Backpressure:
- Each subscriber has a bounded queue. A subscriber whose queue is full is
  evicted (memberships released, queue drained, close sentinel enqueued)
  so one slow client never delays the others.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

from parley.logging import get_logger
from parley.realtime.channels import ChannelKey
from parley.realtime.events import RealtimeEvent
from parley.realtime.sequencer import ConversationSequencer

logger = get_logger(__name__)

DEFAULT_QUEUE_SIZE = 256


@dataclass(eq=False)
class Subscriber:
    """One live client connection."""

    user_id: UUID
    queue: asyncio.Queue
    id: str = field(default_factory=lambda: uuid4().hex)
    channels: set[ChannelKey] = field(default_factory=set)
    closed: bool = False

    async def next_frame(self) -> dict[str, Any] | None:
        """Wait for the next frame; None means the hub closed this subscriber."""
        if self.closed and self.queue.empty():
            return None
        return await self.queue.get()


class FanoutHub:
    def __init__(
        self,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        reorder_window_s: float = 1.0,
        sequencer: ConversationSequencer | None = None,
    ):
        self.queue_size = queue_size
        self.sequencer: ConversationSequencer[tuple[RealtimeEvent, tuple[ChannelKey, ...]]] = (
            sequencer or ConversationSequencer(reorder_window_s=reorder_window_s)
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._channels: dict[ChannelKey, dict[str, Subscriber]] = {}
        self._subscribers: dict[str, Subscriber] = {}
        self.evicted_count = 0

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the hub to the event loop that serves websocket connections."""
        self._loop = loop

    def unbind(self) -> None:
        for subscriber in list(self._subscribers.values()):
            self._close(subscriber)
        self._loop = None

    @property
    def is_bound(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    async def run_sweeper(self, interval_s: float) -> None:
        """Periodically release events held behind expired sequence gaps."""
        while True:
            await asyncio.sleep(interval_s)
            self.sweep()

    def sweep(self) -> None:
        for _, (event, channels) in self.sequencer.flush_expired():
            self._deliver(event, channels)

    # =========================================================================
    # Membership (event loop only)
    # =========================================================================

    def connect(self, user_id: UUID) -> Subscriber:
        """Register a connection and subscribe it to its personal channel."""
        subscriber = Subscriber(user_id=user_id, queue=asyncio.Queue(maxsize=self.queue_size))
        self._subscribers[subscriber.id] = subscriber
        self.join(subscriber, ChannelKey.user(user_id))
        logger.info("fanout_subscriber_connected", subscriber_id=subscriber.id)
        return subscriber

    def join(self, subscriber: Subscriber, channel: ChannelKey) -> None:
        if subscriber.closed:
            return
        self._channels.setdefault(channel, {})[subscriber.id] = subscriber
        subscriber.channels.add(channel)

    def leave(self, subscriber: Subscriber, channel: ChannelKey) -> None:
        members = self._channels.get(channel)
        if members is not None:
            members.pop(subscriber.id, None)
            if not members:
                del self._channels[channel]
        subscriber.channels.discard(channel)

    def disconnect(self, subscriber: Subscriber) -> None:
        """Release every membership of a connection."""
        self._release(subscriber)
        subscriber.closed = True
        logger.info("fanout_subscriber_disconnected", subscriber_id=subscriber.id)

    def members(self, channel: ChannelKey) -> list[Subscriber]:
        return list(self._channels.get(channel, {}).values())

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    # =========================================================================
    # Publishing
    # =========================================================================

    def publish(self, event: RealtimeEvent, channels: list[ChannelKey]) -> bool:
        """Schedule an event for delivery; safe from any thread, never blocks.

        Returns:
            False if the hub is not running and the event was dropped.
        """
        loop = self._loop
        if loop is None or loop.is_closed():
            logger.warning(
                "fanout_publish_dropped",
                reason="hub_not_running",
                event_type=event.type,
                conversation_id=str(event.conversation_id),
            )
            return False
        try:
            loop.call_soon_threadsafe(self._dispatch, event, tuple(channels))
        except RuntimeError as e:
            # Loop closed between the check and the call
            logger.warning("fanout_publish_failed", event_type=event.type, error=str(e))
            return False
        return True

    def publish_ephemeral(
        self,
        event: RealtimeEvent,
        channels: list[ChannelKey],
        exclude: Subscriber | None = None,
    ) -> None:
        """Deliver an unordered event immediately (event loop only)."""
        self._deliver(event, tuple(channels), exclude=exclude)

    def _dispatch(self, event: RealtimeEvent, channels: tuple[ChannelKey, ...]) -> None:
        if event.seq is None:
            self._deliver(event, channels)
            return
        for ready_event, ready_channels in self.sequencer.push(
            event.conversation_id, event.seq, (event, channels)
        ):
            self._deliver(ready_event, ready_channels)

    def _deliver(
        self,
        event: RealtimeEvent,
        channels: tuple[ChannelKey, ...],
        exclude: Subscriber | None = None,
    ) -> None:
        # A subscriber on several of the channels gets one copy
        recipients: dict[str, Subscriber] = {}
        for channel in channels:
            recipients.update(self._channels.get(channel, {}))
        if exclude is not None:
            recipients.pop(exclude.id, None)
        if not recipients:
            return

        frame = event.to_frame()
        for subscriber in recipients.values():
            try:
                subscriber.queue.put_nowait(frame)
            except asyncio.QueueFull:
                self._evict(subscriber)

    def _evict(self, subscriber: Subscriber) -> None:
        self.evicted_count += 1
        logger.warning(
            "fanout_subscriber_evicted",
            subscriber_id=subscriber.id,
            user_id=str(subscriber.user_id),
            queue_size=self.queue_size,
        )
        self._close(subscriber)

    def _close(self, subscriber: Subscriber) -> None:
        self._release(subscriber)
        subscriber.closed = True
        while not subscriber.queue.empty():
            subscriber.queue.get_nowait()
        subscriber.queue.put_nowait(None)

    def _release(self, subscriber: Subscriber) -> None:
        for channel in list(subscriber.channels):
            self.leave(subscriber, channel)
        self._subscribers.pop(subscriber.id, None)
