"""
Unit tests for ShutdownSignal and SessionGroup.
"""

import threading
import time

import pytest

from bbsserver.core.signals import SessionGroup, ShutdownSignal


class TestShutdownSignal:
    """Tests for ShutdownSignal."""

    def test_initially_clear(self):
        signal = ShutdownSignal()
        assert not signal.is_set()
        assert not signal

    def test_trigger_once(self):
        signal = ShutdownSignal()
        assert signal.trigger() is True
        assert signal.is_set()
        assert bool(signal)

    def test_second_trigger_is_noop(self):
        signal = ShutdownSignal()
        signal.trigger()
        assert signal.trigger() is False
        assert signal.is_set()

    def test_concurrent_triggers_only_one_wins(self):
        signal = ShutdownSignal()
        results = []
        barrier = threading.Barrier(8)

        def trigger():
            barrier.wait()
            results.append(signal.trigger())

        threads = [threading.Thread(target=trigger) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert results.count(True) == 1

    def test_wait_wakes_up(self):
        signal = ShutdownSignal()
        threading.Timer(0.05, signal.trigger).start()
        assert signal.wait(2.0)

    def test_wait_times_out(self):
        assert not ShutdownSignal().wait(0.01)


class TestSessionGroup:
    """Tests for SessionGroup."""

    def test_empty_group_waits_immediately(self):
        assert SessionGroup().wait(0)

    def test_add_done(self):
        group = SessionGroup()
        a, b = object(), object()
        group.add(a)
        group.add(b)
        assert len(group) == 2
        group.done(a)
        assert group.snapshot() == [b]
        assert not group.wait(0.01)
        group.done(b)
        assert group.wait(0)

    def test_done_twice_raises(self):
        group = SessionGroup()
        member = object()
        group.add(member)
        group.done(member)
        with pytest.raises(RuntimeError):
            group.done(member)

    def test_wait_returns_when_last_member_done(self):
        group = SessionGroup()
        members = [object() for _ in range(5)]
        for m in members:
            group.add(m)

        def finish():
            for m in members:
                time.sleep(0.01)
                group.done(m)

        threading.Thread(target=finish).start()
        assert group.wait(2.0)
        assert len(group) == 0
