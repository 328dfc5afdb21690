"""
Realtime broker.

Three channel kinds, mirroring what the views subscribe to:

- change streams: one per table, carrying RowChange notifications that the
  gateway publishes after each committed write
- presence channels: participants track a small heartbeat record under a
  key; members receive sync (full dump), join and leave events
- broadcast channels: ephemeral fan-out, nothing persisted, no delivery
  guarantee

Every subscription owns a queue and a pump task, so each handler sees its
events one at a time and in publish order, and publishers never block on
slow subscribers.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from itertools import count
from typing import Any, Literal

from classhub.schemas.realtime import RowChange

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None]]

_ids = count(1)


class Subscription:
    """A handler attached to one topic, fed through its own queue."""

    def __init__(self, broker: "RealtimeBroker", topic: str, handler: Handler):
        self.id = next(_ids)
        self.topic = topic
        self._broker = broker
        self._handler = handler
        self._queue: asyncio.Queue = asyncio.Queue()
        self._closed = False
        # Delivered but not yet handled
        self.pending = 0
        self._idle = asyncio.Event()
        self._idle.set()
        self._task = asyncio.create_task(self._pump(), name=f"realtime:{topic}:{self.id}")

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, event: Any) -> None:
        if not self._closed:
            self.pending += 1
            self._idle.clear()
            self._queue.put_nowait(event)

    async def _pump(self) -> None:
        while not self._closed:
            event = await self._queue.get()
            try:
                await self._handler(event)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime handler failed on %s", self.topic)
            finally:
                self._handled()

    def _handled(self) -> None:
        self.pending -= 1
        if self.pending <= 0:
            self.pending = 0
            self._idle.set()

    async def join(self) -> None:
        """Wait until every queued event has been handled."""
        if not self._closed:
            await self._idle.wait()

    def _discard_pending(self) -> None:
        while not self._queue.empty():
            self._queue.get_nowait()
            self._handled()

    async def unsubscribe(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._broker._detach(self)
        self._discard_pending()
        if asyncio.current_task() is self._task:
            # Unsubscribed from inside its own handler; the pump exits after it returns
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


@dataclass
class PresenceEvent:
    """Presence notification delivered to channel members."""

    kind: Literal["sync", "join", "leave"]
    key: str | None = None
    presences: list[dict] = field(default_factory=list)
    state: dict[str, list[dict]] = field(default_factory=dict)


class PresenceMember:
    """One participant's membership in a presence channel."""

    def __init__(self, channel: "_PresenceChannel", subscription: Subscription):
        self._channel = channel
        self.subscription = subscription
        self.key: str | None = None
        self.meta: dict | None = None

    async def track(self, key: str, meta: dict) -> None:
        """Announce this member under key. Until this runs nobody sees it online."""
        self._channel.track(self, key, meta)

    async def leave(self) -> None:
        self._channel.untrack(self)
        self._channel.members.discard(self)
        await self.subscription.unsubscribe()


class _PresenceChannel:
    def __init__(self, name: str):
        self.name = name
        self.members: set[PresenceMember] = set()

    def state(self) -> dict[str, list[dict]]:
        state: dict[str, list[dict]] = {}
        for member in self.members:
            if member.key is not None:
                state.setdefault(member.key, []).append(dict(member.meta or {}))
        return state

    def _fan_out(self, event: PresenceEvent) -> None:
        for member in list(self.members):
            member.subscription.deliver(event)

    def track(self, member: PresenceMember, key: str, meta: dict) -> None:
        member.key = key
        member.meta = dict(meta)
        self._fan_out(PresenceEvent(kind="join", key=key, presences=[dict(meta)]))
        self._fan_out(PresenceEvent(kind="sync", state=self.state()))

    def untrack(self, member: PresenceMember) -> None:
        if member.key is None:
            return
        key, meta = member.key, member.meta or {}
        member.key = None
        member.meta = None
        self._fan_out(PresenceEvent(kind="leave", key=key, presences=[dict(meta)]))
        self._fan_out(PresenceEvent(kind="sync", state=self.state()))


class RealtimeBroker:
    """Process-wide hub for change streams, presence and broadcast channels."""

    def __init__(self):
        self._topics: dict[str, set[Subscription]] = {}
        self._presence: dict[str, _PresenceChannel] = {}

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    def _attach(self, topic: str, handler: Handler) -> Subscription:
        subscription = Subscription(self, topic, handler)
        self._topics.setdefault(topic, set()).add(subscription)
        return subscription

    def _detach(self, subscription: Subscription) -> None:
        subscribers = self._topics.get(subscription.topic)
        if subscribers is not None:
            subscribers.discard(subscription)
            if not subscribers:
                del self._topics[subscription.topic]

    def subscriber_count(self, topic: str) -> int:
        return len(self._topics.get(topic, ()))

    async def subscribe_changes(self, table: str, handler: Handler) -> Subscription:
        """Receive RowChange notifications for one table."""
        return self._attach(f"changes:{table}", handler)

    async def subscribe_broadcast(self, channel: str, handler: Handler) -> Subscription:
        """Receive ephemeral payloads sent on a broadcast channel."""
        return self._attach(f"broadcast:{channel}", handler)

    async def join_presence(self, channel: str, handler: Handler) -> PresenceMember:
        """
        Join a presence channel.

        The new member immediately receives a sync with the current state.
        """
        presence = self._presence.setdefault(channel, _PresenceChannel(channel))
        subscription = self._attach(f"presence:{channel}", handler)
        member = PresenceMember(presence, subscription)
        presence.members.add(member)
        subscription.deliver(PresenceEvent(kind="sync", state=presence.state()))
        return member

    # -------------------------------------------------------------------------
    # Publishing
    # -------------------------------------------------------------------------

    def publish_change(self, change: RowChange) -> None:
        for subscription in list(self._topics.get(f"changes:{change.table}", ())):
            subscription.deliver(change)

    def broadcast(self, channel: str, payload: dict, *, exclude: Subscription | None = None) -> None:
        for subscription in list(self._topics.get(f"broadcast:{channel}", ())):
            if subscription is not exclude:
                subscription.deliver(payload)

    def presence_state(self, channel: str) -> dict[str, list[dict]]:
        presence = self._presence.get(channel)
        return presence.state() if presence else {}

    async def drain(self) -> None:
        """Wait until every subscription has handled everything queued so far."""
        while True:
            pending = [
                s for subs in list(self._topics.values()) for s in list(subs)
                if not s.closed and s.pending
            ]
            if not pending:
                return
            await asyncio.gather(*(s.join() for s in pending))

    async def close(self) -> None:
        """Drop every subscription and presence member."""
        for channel in list(self._presence.values()):
            for member in list(channel.members):
                await member.leave()
        for subscription in [s for subs in list(self._topics.values()) for s in list(subs)]:
            await subscription.unsubscribe()
        self._presence.clear()


# Singleton instance
broker = RealtimeBroker()
