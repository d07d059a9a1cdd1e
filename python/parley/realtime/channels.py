"""Typed channel keys for the fan-out hub."""

from dataclasses import dataclass
from enum import Enum
from uuid import UUID


class ChannelKind(str, Enum):
    CONVERSATION = "conversation"
    USER = "user"


@dataclass(frozen=True)
class ChannelKey:
    """A hub channel: one conversation, or one user's personal channel.

    The kind is part of the key, so a conversation and a user that happen
    to share an id never collide.
    """

    kind: ChannelKind
    id: UUID

    @classmethod
    def conversation(cls, conversation_id: UUID) -> "ChannelKey":
        return cls(ChannelKind.CONVERSATION, conversation_id)

    @classmethod
    def user(cls, user_id: UUID) -> "ChannelKey":
        return cls(ChannelKind.USER, user_id)

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"
