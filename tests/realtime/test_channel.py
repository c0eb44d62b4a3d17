from unittest.mock import MagicMock

import pytest

from skycast.realtime import (
    CASHOUT_UPDATE, WEATHER_UPDATE, BroadcastMessage, LocalBroadcastChannel,
)


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_of_event_only():
    channel = LocalBroadcastChannel()
    cashout, weather = MagicMock(), MagicMock()
    channel.subscribe(CASHOUT_UPDATE, cashout)
    channel.subscribe(WEATHER_UPDATE, weather)

    await channel.publish(CASHOUT_UPDATE, {"updated_ids": ["b1"]})

    cashout.assert_called_once()
    message = cashout.call_args.args[0]
    assert isinstance(message, BroadcastMessage)
    assert message.payload == {"updated_ids": ["b1"]}
    weather.assert_not_called()


@pytest.mark.asyncio
async def test_async_callbacks_awaited():
    channel = LocalBroadcastChannel()
    seen = []

    async def on_update(message):
        seen.append(message.event)

    channel.subscribe(WEATHER_UPDATE, on_update)
    await channel.publish(WEATHER_UPDATE, {})
    assert seen == [WEATHER_UPDATE]


@pytest.mark.asyncio
async def test_closed_subscription_stops_delivery():
    channel = LocalBroadcastChannel()
    callback = MagicMock()
    sub = channel.subscribe(CASHOUT_UPDATE, callback)
    sub.close()
    sub.close()
    await channel.publish(CASHOUT_UPDATE, {})
    callback.assert_not_called()
    assert channel.subscriber_count() == 0


@pytest.mark.asyncio
async def test_failing_callback_does_not_block_others():
    channel = LocalBroadcastChannel()
    good = MagicMock()
    channel.subscribe(CASHOUT_UPDATE, MagicMock(side_effect=RuntimeError("x")))
    channel.subscribe(CASHOUT_UPDATE, good)
    await channel.publish(CASHOUT_UPDATE, {})
    good.assert_called_once()
    assert len(channel.published) == 1
