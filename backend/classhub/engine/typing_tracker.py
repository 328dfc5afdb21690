"""Who is typing right now, with per-sender expiry timers."""

import asyncio
from typing import Callable


class TypingTracker:
    """
    One entry per sender, each with its own expiry timer.

    Marking a sender again cancels the previous timer. Clearing a sender
    that has no entry is a no-op, as is a timer firing after its entry was
    cleared.
    """

    def __init__(self, expiry_seconds: float, on_change: Callable[[list[str]], None] | None = None):
        self.expiry_seconds = expiry_seconds
        self._on_change = on_change
        self._entries: dict[str, tuple[str, asyncio.TimerHandle]] = {}

    def __contains__(self, sender_id: str) -> bool:
        return sender_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self._entries.values()]

    def mark(self, sender_id: str, sender_name: str) -> None:
        previous = self._entries.get(sender_id)
        if previous is not None:
            previous[1].cancel()
        loop = asyncio.get_running_loop()
        handle = loop.call_later(self.expiry_seconds, self._expire, sender_id)
        self._entries[sender_id] = (sender_name, handle)
        if previous is None or previous[0] != sender_name:
            self._notify()

    def clear(self, sender_id: str) -> bool:
        entry = self._entries.pop(sender_id, None)
        if entry is None:
            return False
        entry[1].cancel()
        self._notify()
        return True

    def _expire(self, sender_id: str) -> None:
        if self._entries.pop(sender_id, None) is not None:
            self._notify()

    def close(self) -> None:
        for _, handle in self._entries.values():
            handle.cancel()
        self._entries.clear()

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change(self.names)
