# skycast/cashout/history.py
"""Back-filled cash-out curve for charting.

Replays the valuation formula at evenly spaced instants between placement
and now, holding the current weather bonus fixed.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from skycast.cashout.observations import ObservationCache
from skycast.cashout.state import Wager
from skycast.cashout.valuation import (
    CashoutValuationEngine, validate_wager, weakest_leg,
)

POINT_SPACING_SECONDS = 5 * 60
MAX_POINTS = 10


@dataclass(frozen=True, slots=True)
class CashoutHistoryPoint:
    timestamp: float
    amount: int
    percentage: int
    time_bonus_pct: int
    weather_bonus_pct: int
    label: str


def point_count(created_at: float, now: float) -> int:
    """One point per five minutes of age, at least 2 and at most 10."""
    elapsed = max(now - created_at, 0.0)
    return min(MAX_POINTS, int(elapsed // POINT_SPACING_SECONDS) + 2)


def generate_history(
    engine: CashoutValuationEngine, wager: Wager, weather_bonus: float,
    now: Optional[float] = None,
) -> list[CashoutHistoryPoint]:
    validate_wager(wager)
    if now is None:
        now = time.time()
    n = point_count(wager.created_at, now)
    points = []
    for i in range(n):
        ts = wager.created_at + (now - wager.created_at) * i / (n - 1)
        v = engine.compose(wager, weather_bonus, ts)
        if i == 0:
            label = "Start"
        elif i == n - 1:
            label = "Now"
        else:
            label = datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%H:%M")
        points.append(CashoutHistoryPoint(
            timestamp=ts,
            amount=v.amount,
            percentage=v.percentage,
            time_bonus_pct=v.time_bonus_pct,
            weather_bonus_pct=v.weather_bonus_pct,
            label=label,
        ))
    return points


async def cashout_history(
    engine: CashoutValuationEngine, wager: Wager, now: Optional[float] = None,
) -> list[CashoutHistoryPoint]:
    """Fetch the current weather once, then replay the curve."""
    validate_wager(wager)
    cache = ObservationCache(engine.provider)
    model = engine.weather_models[wager.kind]
    observed = await asyncio.gather(*(cache.get(leg.city) for leg in wager.legs))
    bonus = weakest_leg(
        model.weather_bonus(obs, leg.prediction_type, leg.prediction_value)
        for leg, obs in zip(wager.legs, observed)
    )
    return generate_history(engine, wager, bonus, now)
