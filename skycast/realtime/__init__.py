from .channel import (
    BroadcastChannel,
    BroadcastMessage,
    LocalBroadcastChannel,
    Subscription,
    CASHOUT_UPDATE,
    WEATHER_UPDATE,
)

__all__ = [
    "BroadcastChannel",
    "BroadcastMessage",
    "LocalBroadcastChannel",
    "Subscription",
    "CASHOUT_UPDATE",
    "WEATHER_UPDATE",
]
