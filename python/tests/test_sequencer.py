"""Tests for the per-conversation reorder buffer."""

from uuid import uuid4

from parley.realtime.sequencer import ConversationSequencer


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _sequencer(window=1.0, idle_ttl=300.0):
    clock = FakeClock()
    return ConversationSequencer(reorder_window_s=window, idle_ttl_s=idle_ttl, clock=clock), clock


class TestInOrder:
    def test_first_version_released_immediately(self):
        sequencer, _ = _sequencer()
        cid = uuid4()

        assert sequencer.push(cid, 1, "e1") == ["e1"]
        assert sequencer.push(cid, 2, "e2") == ["e2"]

    def test_conversations_are_independent(self):
        sequencer, _ = _sequencer()
        a, b = uuid4(), uuid4()

        assert sequencer.push(a, 1, "a1") == ["a1"]
        assert sequencer.push(b, 1, "b1") == ["b1"]
        assert sequencer.push(a, 2, "a2") == ["a2"]
        assert sequencer.tracked_conversations() == 2


class TestReordering:
    def test_future_event_waits_for_gap(self):
        sequencer, _ = _sequencer()
        cid = uuid4()
        sequencer.push(cid, 1, "e1")

        assert sequencer.push(cid, 3, "e3") == []
        assert sequencer.pending(cid) == 1
        assert sequencer.push(cid, 2, "e2") == ["e2", "e3"]
        assert sequencer.pending(cid) == 0

    def test_longer_run_released_in_order(self):
        sequencer, _ = _sequencer()
        cid = uuid4()
        sequencer.push(cid, 1, "e1")

        for seq in (5, 3, 4):
            assert sequencer.push(cid, seq, f"e{seq}") == []

        assert sequencer.push(cid, 2, "e2") == ["e2", "e3", "e4", "e5"]

    def test_stale_event_dropped(self):
        sequencer, _ = _sequencer()
        cid = uuid4()
        sequencer.push(cid, 1, "e1")
        sequencer.push(cid, 2, "e2")

        assert sequencer.push(cid, 1, "e1-again") == []
        assert sequencer.stale_count == 1

    def test_duplicate_buffered_event_dropped(self):
        sequencer, _ = _sequencer()
        cid = uuid4()
        sequencer.push(cid, 1, "e1")
        sequencer.push(cid, 3, "e3")

        assert sequencer.push(cid, 3, "e3-again") == []
        assert sequencer.stale_count == 1
        assert sequencer.push(cid, 2, "e2") == ["e2", "e3"]


class TestFlushExpired:
    def test_gap_skipped_after_window(self):
        sequencer, clock = _sequencer(window=1.0)
        cid = uuid4()
        sequencer.push(cid, 1, "e1")
        sequencer.push(cid, 3, "e3")
        sequencer.push(cid, 4, "e4")

        clock.advance(0.5)
        assert sequencer.flush_expired() == []

        clock.advance(0.6)
        assert sequencer.flush_expired() == [(cid, "e3"), (cid, "e4")]
        assert sequencer.skipped_count == 1

    def test_late_event_after_skip_is_stale(self):
        sequencer, clock = _sequencer(window=1.0)
        cid = uuid4()
        sequencer.push(cid, 1, "e1")
        sequencer.push(cid, 3, "e3")
        clock.advance(2)
        sequencer.flush_expired()

        assert sequencer.push(cid, 2, "e2") == []
        assert sequencer.push(cid, 4, "e4") == ["e4"]

    def test_only_first_gap_skipped_per_sweep(self):
        sequencer, clock = _sequencer(window=1.0)
        cid = uuid4()
        sequencer.push(cid, 1, "e1")
        sequencer.push(cid, 3, "e3")
        clock.advance(2)
        sequencer.push(cid, 5, "e5")

        assert sequencer.flush_expired() == [(cid, "e3")]
        assert sequencer.pending(cid) == 1

        clock.advance(2)
        assert sequencer.flush_expired() == [(cid, "e5")]

    def test_idle_conversations_forgotten_but_resume_in_order(self):
        sequencer, clock = _sequencer(idle_ttl=10.0)
        cid = uuid4()
        sequencer.push(cid, 1, "e1")

        clock.advance(11)
        sequencer.flush_expired()

        assert sequencer.tracked_conversations() == 0
        # The watermark survives, so the next version is released at once
        assert sequencer.push(cid, 2, "e2") == ["e2"]
        assert sequencer.push(cid, 1, "e1-again") == []

    def test_watermarks_are_bounded(self):
        clock = FakeClock()
        sequencer = ConversationSequencer(
            reorder_window_s=1.0, idle_ttl_s=10.0, clock=clock, watermark_limit=1
        )
        first, second = uuid4(), uuid4()
        sequencer.push(first, 1, "a1")
        sequencer.push(second, 1, "b1")

        clock.advance(11)
        sequencer.flush_expired()

        assert sequencer.push(second, 2, "b2") == ["b2"]
        # The oldest watermark was evicted; its next version waits for the window
        assert sequencer.push(first, 2, "a2") == []


class TestUnknownBaseline:
    def test_later_version_waits_for_earlier_in_flight(self):
        sequencer, _ = _sequencer()
        cid = uuid4()

        assert sequencer.push(cid, 2, "v2") == []
        assert sequencer.push(cid, 1, "v1") == ["v1", "v2"]

    def test_versions_held_until_baseline_known(self):
        sequencer, _ = _sequencer()
        cid = uuid4()

        assert sequencer.push(cid, 8, "e8") == []
        assert sequencer.push(cid, 7, "e7") == []
        assert sequencer.pending(cid) == 2

    def test_baseline_settles_after_window(self):
        sequencer, clock = _sequencer(window=1.0)
        cid = uuid4()
        sequencer.push(cid, 6, "e6")
        sequencer.push(cid, 5, "e5")

        clock.advance(0.5)
        assert sequencer.flush_expired() == []

        clock.advance(0.6)
        assert sequencer.flush_expired() == [(cid, "e5"), (cid, "e6")]
        assert sequencer.skipped_count == 0
        assert sequencer.push(cid, 7, "e7") == ["e7"]
        assert sequencer.push(cid, 4, "e4") == []

    def test_duplicate_while_held_dropped(self):
        sequencer, _ = _sequencer()
        cid = uuid4()
        sequencer.push(cid, 3, "e3")

        assert sequencer.push(cid, 3, "e3-again") == []
        assert sequencer.stale_count == 1
