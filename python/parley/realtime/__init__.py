"""Realtime fan-out: channel keys, events, ordering and the hub."""

from parley.realtime.channels import ChannelKey, ChannelKind
from parley.realtime.events import RealtimeEvent
from parley.realtime.hub import FanoutHub, Subscriber
from parley.realtime.sequencer import ConversationSequencer

__all__ = [
    "ChannelKey",
    "ChannelKind",
    "ConversationSequencer",
    "FanoutHub",
    "RealtimeEvent",
    "Subscriber",
]
