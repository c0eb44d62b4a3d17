import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from structlog.testing import capture_logs

from skycast.cashout.engine import PollingOrchestrator
from skycast.cashout.state import CashoutValuation, Wager, WagerLeg
from skycast.realtime.channel import (
    CASHOUT_UPDATE, WEATHER_UPDATE, LocalBroadcastChannel,
)


def make_wager(bet_id: str, **kwargs) -> Wager:
    defaults = dict(
        id=bet_id, bet_type="bet", stake=100, odds=5.0,
        created_at=1_700_000_000.0, legs=[WagerLeg("London", "rain", "yes")],
    )
    defaults.update(kwargs)
    return Wager(**defaults)


class FakeValuation:
    """Valuation stub: fixed amounts per wager, optionally gated."""

    def __init__(self, amounts, fail=()):
        self.provider = MagicMock()
        self.amounts = dict(amounts)
        self.fail = set(fail)
        self.calls = []
        self.gate = asyncio.Event()
        self.gate.set()

    async def valuate(self, wager, now=None, observations=None):
        self.calls.append(wager.id)
        await self.gate.wait()
        if wager.id in self.fail:
            raise RuntimeError("valuation exploded")
        return CashoutValuation(
            bet_id=wager.id, amount=self.amounts[wager.id], percentage=60,
            time_bonus_pct=5, weather_bonus_pct=5, reasoning="Early cash-out.",
        )


def make_store(wagers):
    store = MagicMock()
    store.list_open_wagers = AsyncMock(return_value=wagers)
    return store


def make_orchestrator(wagers, valuation, channel=None):
    return PollingOrchestrator(
        user_id="u1", store=make_store(wagers), valuation=valuation,
        channel=channel or LocalBroadcastChannel(), interval=3600,
    )


async def spin(n: int = 10) -> None:
    for _ in range(n):
        await asyncio.sleep(0)


@pytest.mark.asyncio
async def test_tick_values_every_pending_wager():
    val = FakeValuation({"b1": 100, "b2": 200})
    orch = make_orchestrator([make_wager("b1"), make_wager("b2")], val)
    result = await orch.tick()
    assert {k: v.amount for k, v in result.items()} == {"b1": 100, "b2": 200}
    assert orch.latest == result
    assert orch.last_global_update is not None


@pytest.mark.asyncio
async def test_concurrent_triggers_join_inflight_pass():
    val = FakeValuation({"b1": 100, "b2": 200})
    val.gate.clear()
    orch = make_orchestrator([make_wager("b1"), make_wager("b2")], val)

    first = asyncio.ensure_future(orch.tick())
    await spin()
    assert orch.is_updating
    second = asyncio.ensure_future(orch.tick())
    await spin()
    val.gate.set()
    r1, r2 = await asyncio.gather(first, second)

    assert r1 is r2
    assert sorted(val.calls) == ["b1", "b2"]
    orch.store.list_open_wagers.assert_awaited_once_with("u1")
    assert not orch.is_updating


@pytest.mark.asyncio
async def test_failed_wager_is_omitted():
    val = FakeValuation({"b1": 100, "b2": 200}, fail={"b2"})
    orch = make_orchestrator([make_wager("b1"), make_wager("b2")], val)
    result = await orch.tick()
    assert list(result) == ["b1"]


@pytest.mark.asyncio
async def test_non_pending_wagers_skipped():
    val = FakeValuation({"b1": 100, "b2": 200})
    orch = make_orchestrator([], val)
    result = await orch.tick([make_wager("b1"), make_wager("b2", result="win")])
    assert list(result) == ["b1"]
    assert val.calls == ["b1"]


@pytest.mark.asyncio
async def test_pass_broadcasts_updated_ids():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    await orch.tick()
    assert len(channel.published) == 1
    msg = channel.published[0]
    assert msg.event == CASHOUT_UPDATE
    assert msg.payload["updated_ids"] == ["b1"]
    assert msg.payload["event"] == CASHOUT_UPDATE


@pytest.mark.asyncio
async def test_trend_tracked_across_passes():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    first = await orch.tick()
    assert first["b1"].trend == "stable"
    val.amounts["b1"] = 150
    second = await orch.tick()
    assert second["b1"].trend == "up"
    assert second["b1"].previous_amount == 100
    val.amounts["b1"] = 90
    third = await orch.tick()
    assert third["b1"].trend == "down"


@pytest.mark.asyncio
async def test_subscribers_receive_results_and_can_unsubscribe():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    seen = []

    async def on_update(valuations):
        seen.append(set(valuations))

    unsubscribe = orch.subscribe(on_update)
    await orch.tick()
    unsubscribe()
    await orch.tick()
    assert seen == [{"b1"}]


@pytest.mark.asyncio
async def test_subscriber_error_does_not_block_broadcast():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    orch.subscribe(MagicMock(side_effect=RuntimeError("bad subscriber")))
    result = await orch.tick()
    assert "b1" in result
    assert len(channel.published) == 1


@pytest.mark.asyncio
async def test_weather_update_requests_pass():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    await orch.start()
    orch.trigger_now = MagicMock()
    await channel.publish(WEATHER_UPDATE, {"city": "London"})
    orch.trigger_now.assert_called_once()
    await orch.stop()


@pytest.mark.asyncio
async def test_trigger_now_runs_pass():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    result = await orch.trigger_now()
    assert "b1" in result
    orch.store.list_open_wagers.assert_awaited_once()


@pytest.mark.asyncio
async def test_stop_cancels_timer_and_detaches():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    await orch.start()
    assert orch.is_running
    assert channel.subscriber_count(WEATHER_UPDATE) == 1
    await orch.stop()
    assert not orch.is_running
    assert channel.subscriber_count(WEATHER_UPDATE) == 0


@pytest.mark.asyncio
async def test_results_discarded_after_stop():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    val.gate.clear()
    orch = make_orchestrator([make_wager("b1")], val, channel)
    pending = asyncio.ensure_future(orch.tick())
    await spin()
    await orch.stop()
    val.gate.set()
    assert await pending == {}
    assert orch.latest == {}
    assert channel.published == []


@pytest.mark.asyncio
async def test_refresh_one_uses_fresh_wager():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    await orch.tick()
    val.amounts["b1"] = 60
    refreshed = await orch.refresh_one("b1", make_wager("b1", stake=50))
    assert refreshed.amount == 60
    assert refreshed.trend == "down"
    assert orch.latest["b1"] is refreshed


@pytest.mark.asyncio
async def test_refresh_unknown_wager_returns_none():
    orch = make_orchestrator([], FakeValuation({}))
    assert await orch.refresh_one("missing") is None


@pytest.mark.asyncio
async def test_close_wager_drops_state():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    await orch.tick()
    orch.close_wager("b1")
    assert "b1" not in orch.latest
    assert orch.trend.previous("b1") is None


@pytest.mark.asyncio
async def test_refresh_during_pass_keeps_wager_in_results():
    val = FakeValuation({"b1": 100, "b2": 200})
    orch = make_orchestrator([make_wager("b1"), make_wager("b2")], val)
    await orch.tick()

    val.gate.clear()
    pending = asyncio.ensure_future(orch.tick())
    await spin()
    val.gate.set()
    val.amounts["b1"] = 120
    refreshed = await orch.refresh_one("b1")
    result = await pending

    assert refreshed.amount == 120
    assert set(result) == {"b1", "b2"}
    assert result["b1"] is refreshed
    assert orch.latest["b1"] is refreshed


@pytest.mark.asyncio
async def test_interval_loop_runs_passes():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    orch.interval = 0.01
    await orch.start()
    for _ in range(200):
        if orch.store.list_open_wagers.await_count >= 3:
            break
        await asyncio.sleep(0.01)
    await orch.stop()
    assert orch.store.list_open_wagers.await_count >= 3


@pytest.mark.asyncio
async def test_weather_triggered_failure_is_logged():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    await orch.start()
    orch.store.list_open_wagers.side_effect = RuntimeError("db gone")

    with capture_logs() as logs:
        await channel.publish(WEATHER_UPDATE, {"city": "London"})
        await spin()

    await orch.stop()
    errors = [e for e in logs if e["event"] == "cashout_tick_error"]
    assert len(errors) == 1
    assert errors[0]["error"] == "db gone"


@pytest.mark.asyncio
async def test_trigger_now_failure_resolves_empty():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    orch.store.list_open_wagers.side_effect = RuntimeError("db gone")
    assert await orch.trigger_now() == {}


@pytest.mark.asyncio
async def test_stopped_orchestrator_ignores_ticks_and_refreshes():
    channel = LocalBroadcastChannel()
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val, channel)
    await orch.start()
    await orch.stop()
    published = len(channel.published)
    calls = orch.store.list_open_wagers.await_count

    assert await orch.tick() == {}
    assert await orch.refresh_one("b1") is None
    assert len(channel.published) == published
    assert orch.store.list_open_wagers.await_count == calls


@pytest.mark.asyncio
async def test_restart_after_stop_resumes():
    val = FakeValuation({"b1": 100})
    orch = make_orchestrator([make_wager("b1")], val)
    await orch.start()
    await orch.stop()
    result = await orch.start()
    await orch.stop()
    assert "b1" in result
