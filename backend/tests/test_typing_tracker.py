"""Typing indicator expiry."""

import asyncio

from classhub.engine import TypingTracker


async def test_entry_expires():
    changes = []
    tracker = TypingTracker(0.05, on_change=changes.append)

    tracker.mark("u1", "Bob")
    assert tracker.names == ["Bob"]
    await asyncio.sleep(0.1)

    assert "u1" not in tracker
    assert changes == [["Bob"], []]


async def test_renewal_cancels_previous_timer():
    tracker = TypingTracker(0.1)

    tracker.mark("u1", "Bob")
    await asyncio.sleep(0.06)
    tracker.mark("u1", "Bob")
    await asyncio.sleep(0.06)

    # The first timer would have fired by now
    assert "u1" in tracker
    await asyncio.sleep(0.1)
    assert "u1" not in tracker


async def test_clear_is_a_noop_for_missing_entries():
    changes = []
    tracker = TypingTracker(1.0, on_change=changes.append)

    assert not tracker.clear("nobody")
    tracker.mark("u1", "Bob")
    assert tracker.clear("u1")
    assert not tracker.clear("u1")

    assert changes == [["Bob"], []]
    tracker.close()


async def test_one_entry_per_sender():
    tracker = TypingTracker(1.0)

    tracker.mark("u1", "Bob")
    tracker.mark("u2", "Sara")
    tracker.mark("u1", "Bob")

    assert sorted(tracker.names) == ["Bob", "Sara"]
    tracker.close()
    assert len(tracker) == 0
