"""In-process realtime channels: row changes, presence and broadcast."""

from classhub.realtime.broker import (
    PresenceEvent,
    PresenceMember,
    RealtimeBroker,
    Subscription,
    broker,
)

__all__ = ["PresenceEvent", "PresenceMember", "RealtimeBroker", "Subscription", "broker"]
