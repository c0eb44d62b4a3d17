"""Realtime broadcast channel used to fan cash-out updates out to sessions."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional
import asyncio
import time

import structlog

logger = structlog.get_logger()

CASHOUT_UPDATE = "cashout_update"
WEATHER_UPDATE = "weather_update"


@dataclass
class BroadcastMessage:
    """Standardized message carried by a broadcast channel."""
    event: str
    payload: dict[str, Any]
    timestamp: float = field(default_factory=time.time)


Callback = Callable[[BroadcastMessage], Any]


class Subscription:
    """Handle returned by ``subscribe``; ``close()`` detaches the callback."""

    def __init__(self, channel: "BroadcastChannel", event: str,
                 callback: Callback) -> None:
        self.channel = channel
        self.event = event
        self.callback = callback
        self.closed = False

    def close(self) -> None:
        if self.closed:
            return
        self.channel.unsubscribe(self)
        self.closed = True


class BroadcastChannel(ABC):
    """Abstract pub/sub channel keyed by event name."""

    @abstractmethod
    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        """Send ``payload`` to every subscriber of ``event``."""

    @abstractmethod
    def subscribe(self, event: str, callback: Callback) -> Subscription:
        """Register ``callback`` for ``event``."""

    @abstractmethod
    def unsubscribe(self, subscription: Subscription) -> None:
        """Detach a subscription."""


class LocalBroadcastChannel(BroadcastChannel):
    """In-process channel: callbacks run in the publisher's event loop."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[Subscription]] = {}
        self.published: list[BroadcastMessage] = []

    async def publish(self, event: str, payload: dict[str, Any]) -> None:
        message = BroadcastMessage(event=event, payload=payload)
        self.published.append(message)
        for sub in list(self._subscribers.get(event, [])):
            try:
                result = sub.callback(message)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.warning("broadcast_callback_error", event=event,
                               error=str(e))

    def subscribe(self, event: str, callback: Callback) -> Subscription:
        sub = Subscription(self, event, callback)
        self._subscribers.setdefault(event, []).append(sub)
        return sub

    def unsubscribe(self, subscription: Subscription) -> None:
        subs = self._subscribers.get(subscription.event, [])
        if subscription in subs:
            subs.remove(subscription)

    def subscriber_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._subscribers.get(event, []))
        return sum(len(s) for s in self._subscribers.values())
