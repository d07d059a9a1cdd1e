"""Per-conversation reorder buffer.

Request threads publish after their transaction commits, so two commits on
the same conversation can reach the hub in the opposite order. Every event
carries the conversation version it committed at (consecutive integers,
starting at 1), and the sequencer releases events in version order:

- the expected next version is released together with any buffered run
- a future version is buffered until the gap fills
- a gap that stays open longer than the reorder window is skipped (the
  missing event was lost, e.g. its publisher died after commit)
- a version below the expected one is stale and dropped

The expected version of a conversation the sequencer is not tracking comes
from its watermark (the next version recorded when the conversation went
idle). Version 1 needs no baseline. Any other version of an unknown
conversation is held for the reorder window, so an earlier commit still in
flight is released first; the oldest held version then becomes the baseline.

The sequencer is not thread-safe; the hub only calls it from its event loop.
"""

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Generic, TypeVar
from uuid import UUID

from parley.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

FIRST_SEQ = 1
DEFAULT_IDLE_TTL_S = 300.0
DEFAULT_WATERMARK_LIMIT = 100_000


@dataclass
class _ConversationState(Generic[T]):
    # None until the baseline is known
    expected: int | None
    buffered: dict[int, tuple[T, float]] = field(default_factory=dict)
    last_activity: float = 0.0


class ConversationSequencer(Generic[T]):
    def __init__(
        self,
        reorder_window_s: float = 1.0,
        idle_ttl_s: float = DEFAULT_IDLE_TTL_S,
        clock: Callable[[], float] = time.monotonic,
        watermark_limit: int = DEFAULT_WATERMARK_LIMIT,
    ):
        self.reorder_window_s = reorder_window_s
        self.idle_ttl_s = idle_ttl_s
        self.watermark_limit = watermark_limit
        self._clock = clock
        self._states: dict[UUID, _ConversationState[T]] = {}
        self._watermarks: OrderedDict[UUID, int] = OrderedDict()
        self.stale_count = 0
        self.skipped_count = 0

    def push(self, conversation_id: UUID, seq: int, item: T) -> list[T]:
        """Accept an event; return the items now releasable, in order."""
        now = self._clock()
        state = self._states.get(conversation_id)

        if state is None:
            state = _ConversationState(expected=self._watermarks.pop(conversation_id, None))
            self._states[conversation_id] = state
        state.last_activity = now

        if state.expected is None and seq == FIRST_SEQ:
            state.expected = FIRST_SEQ

        if seq in state.buffered or (state.expected is not None and seq < state.expected):
            self.stale_count += 1
            logger.warning(
                "fanout_stale_event_dropped",
                conversation_id=str(conversation_id),
                seq=seq,
                expected=state.expected,
            )
            return []

        if state.expected is None or seq > state.expected:
            state.buffered[seq] = (item, now)
            return []

        state.expected = seq + 1
        return [item, *self._drain(state)]

    def flush_expired(self) -> list[tuple[UUID, T]]:
        """Skip gaps older than the reorder window and release what follows.

        Also settles the baseline of conversations whose first held event
        has waited out the window, and forgets conversations idle longer
        than the idle TTL (keeping their watermark).
        """
        now = self._clock()
        released: list[tuple[UUID, T]] = []

        for conversation_id, state in list(self._states.items()):
            if state.buffered:
                oldest = min(arrived for _, arrived in state.buffered.values())
                if now - oldest >= self.reorder_window_s:
                    next_seq = min(state.buffered)
                    if state.expected is None:
                        logger.debug(
                            "fanout_sequence_baseline_set",
                            conversation_id=str(conversation_id),
                            seq=next_seq,
                        )
                    else:
                        self.skipped_count += next_seq - state.expected
                        logger.warning(
                            "fanout_sequence_gap_skipped",
                            conversation_id=str(conversation_id),
                            missing_from=state.expected,
                            missing_to=next_seq - 1,
                        )
                    state.expected = next_seq
                    released.extend((conversation_id, item) for item in self._drain(state))
            elif now - state.last_activity >= self.idle_ttl_s:
                del self._states[conversation_id]
                if state.expected is not None:
                    self._remember(conversation_id, state.expected)

        return released

    def pending(self, conversation_id: UUID) -> int:
        """Number of events buffered for a conversation."""
        state = self._states.get(conversation_id)
        return len(state.buffered) if state else 0

    def tracked_conversations(self) -> int:
        return len(self._states)

    def _remember(self, conversation_id: UUID, expected: int) -> None:
        self._watermarks[conversation_id] = expected
        self._watermarks.move_to_end(conversation_id)
        while len(self._watermarks) > self.watermark_limit:
            self._watermarks.popitem(last=False)

    def _drain(self, state: _ConversationState[T]) -> list[T]:
        items = []
        while state.expected in state.buffered:
            item, _ = state.buffered.pop(state.expected)
            items.append(item)
            state.expected += 1
        return items
