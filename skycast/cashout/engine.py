# skycast/cashout/engine.py
from __future__ import annotations

import asyncio
import contextlib
import time
from typing import Any, Callable, Optional

import structlog

from skycast.cashout.observations import ObservationCache
from skycast.cashout.state import CashoutValuation, Wager
from skycast.cashout.trend import TrendTracker
from skycast.exceptions import InvalidWager
from skycast.realtime.channel import (
    CASHOUT_UPDATE, WEATHER_UPDATE, BroadcastChannel, BroadcastMessage,
    Subscription,
)

logger = structlog.get_logger()

Subscriber = Callable[[dict[str, CashoutValuation]], Any]


class PollingOrchestrator:
    """Recomputes cash-out offers for one user's open wagers.

    Two triggers feed the same single-flight pass: the interval loop
    (``schedule_tick``) and weather broadcasts (``trigger_now``). A trigger
    that arrives while a pass is running joins that pass instead of
    starting another.
    """

    def __init__(
        self, *,
        user_id: str,
        store: Any,
        valuation: Any,
        channel: BroadcastChannel,
        trend: Optional[TrendTracker] = None,
        interval: float = 30.0,
    ) -> None:
        self.user_id = user_id
        self.store = store
        self.valuation = valuation
        self.channel = channel
        self.trend = trend or TrendTracker()
        self.interval = interval

        self.latest: dict[str, CashoutValuation] = {}
        self.last_global_update: Optional[float] = None

        self._wagers: dict[str, Wager] = {}
        self._subscribers: list[Subscriber] = []
        self._inflight: Optional[asyncio.Task] = None
        self._timer: Optional[asyncio.Task] = None
        self._weather_sub: Optional[Subscription] = None
        self._sequence = 0
        self._generation = 0
        self._stopped = False
        self._triggered: set[asyncio.Future] = set()

    # ── Lifecycle ───────────────────────────────────────────────────

    async def start(self) -> dict[str, CashoutValuation]:
        """Attach to weather broadcasts, start polling, run a first pass."""
        self._stopped = False
        if self._weather_sub is None:
            self._weather_sub = self.channel.subscribe(
                WEATHER_UPDATE, self._on_weather_update)
        self.schedule_tick()
        logger.info("cashout_orchestrator_started", user_id=self.user_id,
                    interval=self.interval)
        return await self.tick()

    async def stop(self) -> None:
        """Cancel the timer and detach; in-flight results are discarded.

        A stopped orchestrator answers later ticks and refreshes with
        nothing until it is started again.
        """
        self._stopped = True
        self._generation += 1
        if self._weather_sub is not None:
            self._weather_sub.close()
            self._weather_sub = None
        if self._timer is not None:
            self._timer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._timer
            self._timer = None
        logger.info("cashout_orchestrator_stopped", user_id=self.user_id)

    @property
    def is_running(self) -> bool:
        return self._timer is not None and not self._timer.done()

    @property
    def is_updating(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """Register a consumer of each consolidated result map."""
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)
        return _unsubscribe

    # ── Triggers ────────────────────────────────────────────────────

    def schedule_tick(self) -> None:
        if self.is_running:
            return
        self._timer = asyncio.ensure_future(self._interval_loop())

    def trigger_now(self) -> asyncio.Future:
        """Request an out-of-cycle pass without waiting for it."""
        future = asyncio.ensure_future(self._safe_tick())
        self._triggered.add(future)
        future.add_done_callback(self._triggered.discard)
        return future

    async def _interval_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            await self._safe_tick()

    async def _safe_tick(self) -> dict[str, CashoutValuation]:
        try:
            return await self.tick()
        except Exception as exc:
            logger.error("cashout_tick_error", user_id=self.user_id,
                         error=str(exc))
            return {}

    def _on_weather_update(self, message: BroadcastMessage) -> None:
        logger.debug("weather_update_received", user_id=self.user_id)
        self.trigger_now()

    # ── Recomputation ───────────────────────────────────────────────

    async def tick(
        self, open_wagers: Optional[list[Wager]] = None,
    ) -> dict[str, CashoutValuation]:
        """Run (or join) the single in-flight recomputation pass."""
        if self._stopped:
            return {}
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.ensure_future(self._pass(open_wagers))
        else:
            logger.debug("cashout_pass_coalesced", user_id=self.user_id)
        return await asyncio.shield(self._inflight)

    async def _pass(
        self, open_wagers: Optional[list[Wager]],
    ) -> dict[str, CashoutValuation]:
        generation = self._generation
        if open_wagers is None:
            open_wagers = await self.store.list_open_wagers(self.user_id)
        pending = [w for w in open_wagers if w.is_pending]

        self._wagers = {w.id: w for w in pending}
        for bet_id in self.trend.retain(set(self._wagers)):
            logger.debug("trend_reset", bet_id=bet_id)

        self._sequence += 1
        sequence = self._sequence
        now = time.time()
        cache = ObservationCache(self.valuation.provider)
        results = await asyncio.gather(
            *(self._valuate_one(w, now, cache) for w in pending))

        if generation != self._generation:
            logger.info("cashout_pass_discarded", user_id=self.user_id)
            return {}

        valuations: dict[str, CashoutValuation] = {}
        for wager, valuation in zip(pending, results):
            if valuation is None:
                continue
            if self._apply_trend(valuation, sequence):
                valuations[wager.id] = valuation
            elif wager.id in self.latest:
                # a refresh_one landed mid-pass; its result is newer
                valuations[wager.id] = self.latest[wager.id]

        self.latest = valuations
        self.last_global_update = now
        logger.info("cashout_pass_done", user_id=self.user_id,
                    wagers=len(pending), valued=len(valuations),
                    cities=len(cache))
        await self._publish(valuations, now)
        return valuations

    async def refresh_one(
        self, bet_id: str, wager: Optional[Wager] = None,
    ) -> Optional[CashoutValuation]:
        """Recompute a single wager outside the polling cycle.

        A fresh ``wager`` (e.g. after a partial cash-out) replaces the
        cached copy.
        """
        if self._stopped:
            return None
        if wager is not None:
            self._wagers[bet_id] = wager
        wager = self._wagers.get(bet_id)
        if wager is None or not wager.is_pending:
            return None
        generation = self._generation
        self._sequence += 1
        sequence = self._sequence
        valuation = await self._valuate_one(
            wager, time.time(), ObservationCache(self.valuation.provider))
        if valuation is None or generation != self._generation:
            return None
        if not self._apply_trend(valuation, sequence):
            return None
        self.latest = {**self.latest, bet_id: valuation}
        return valuation

    def close_wager(self, bet_id: str) -> None:
        """Drop local state for a wager that just settled."""
        self._wagers.pop(bet_id, None)
        self.latest.pop(bet_id, None)
        self.trend.reset(bet_id)

    def _apply_trend(self, valuation: CashoutValuation, sequence: int) -> bool:
        result = self.trend.classify(valuation.bet_id, valuation.amount, sequence)
        if result.stale:
            logger.debug("stale_valuation_dropped", bet_id=valuation.bet_id,
                         sequence=sequence)
            return False
        valuation.trend = result.trend
        valuation.previous_amount = result.previous_amount
        valuation.sequence = sequence
        return True

    async def _valuate_one(
        self, wager: Wager, now: float, cache: ObservationCache,
    ) -> Optional[CashoutValuation]:
        try:
            return await self.valuation.valuate(wager, now=now, observations=cache)
        except InvalidWager as e:
            logger.warning("invalid_wager", bet_id=wager.id, error=str(e))
        except Exception as e:
            logger.error("valuation_failed", bet_id=wager.id, error=str(e))
        return None

    async def _publish(
        self, valuations: dict[str, CashoutValuation], now: float,
    ) -> None:
        for callback in list(self._subscribers):
            try:
                result = callback(valuations)
                if asyncio.iscoroutine(result):
                    await result
            except Exception as e:
                logger.error("cashout_subscriber_error", error=str(e))
        try:
            await self.channel.publish(CASHOUT_UPDATE, {
                "event": CASHOUT_UPDATE,
                "timestamp": now,
                "updated_ids": list(valuations),
            })
        except Exception as e:
            logger.warning("cashout_broadcast_failed", error=str(e))
