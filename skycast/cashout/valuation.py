# skycast/cashout/valuation.py
"""Dynamic cash-out valuation.

An offer is a bounded share of the wager's potential win::

    raw    = BASE_RATE + time_bonus + weather_bonus
    total  = min(raw, CAP)
    amount = floor(potential_win * total)

Multi-leg wagers (parlays, combined bets) use a lower base and cap, and
their weather bonus is the weakest leg's. Each call starts from scratch:
there is no state carried between valuations.
"""
from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import structlog

from config.validators import validate_calibration
from skycast.cashout.observations import ObservationCache
from skycast.cashout.state import CashoutValuation, Wager
from skycast.cashout.time_decay import DEFAULT_WINDOW_SECONDS, TimeDecayModel
from skycast.cashout.weather_confidence import WeatherConfidenceModel
from skycast.exceptions import InvalidWager
from skycast.feeds.base import WeatherSignalProvider

logger = structlog.get_logger()

TIME_CLOSE = 0.20
TIME_PROGRESSING = 0.10
WEATHER_STRONG = 0.10
WEATHER_SOME = 0.05

# (min total, phrase), checked top-down
_QUALITY = {
    "single": ((0.85, "Excellent cash-out value."),
               (0.75, "Good cash-out value."),
               (0.65, "Fair cash-out value.")),
    "multi": ((0.80, "Excellent cash-out value."),
              (0.70, "Good cash-out value."),
              (0.60, "Fair cash-out value.")),
}
_EARLY = "Early cash-out."

_NOUNS = {"bet": "Bet", "parlay": "Parlay", "combined_bet": "Combined bet"}


@dataclass(frozen=True)
class Calibration:
    base_rate: float
    time_scale: float
    weather_scale: float
    cap: float

    def __post_init__(self) -> None:
        validate_calibration(
            self.base_rate, self.time_scale, self.weather_scale, self.cap)

    @classmethod
    def from_settings(cls, kind: str) -> "Calibration":
        from config.settings import settings
        prefix = "CASHOUT_SINGLE_" if kind == "single" else "CASHOUT_MULTI_"
        return cls(
            base_rate=getattr(settings, prefix + "BASE_RATE"),
            time_scale=getattr(settings, prefix + "TIME_SCALE"),
            weather_scale=getattr(settings, prefix + "WEATHER_SCALE"),
            cap=getattr(settings, prefix + "CAP"),
        )


SINGLE_CALIBRATION = Calibration(0.40, 0.30, 0.15, 0.85)
MULTI_CALIBRATION = Calibration(0.30, 0.35, 0.15, 0.80)


def weakest_leg(bonuses: Iterable[float]) -> float:
    """A multi-leg wager is only as strong as its worst leg."""
    values = list(bonuses)
    return min(values) if values else 0.0


def to_pct(fraction: float) -> int:
    """Round half up to a whole percentage."""
    return int(math.floor(fraction * 100 + 0.5))


def build_reasoning(
    time_bonus: float, weather_bonus: float, total: float,
    bet_type: str = "bet",
) -> str:
    """Deterministic explanation of an offer from its bucketed components."""
    noun = _NOUNS.get(bet_type, "Bet")
    reasons = []
    if time_bonus >= TIME_CLOSE:
        reasons.append(f"{noun} is close to expiration")
    elif time_bonus >= TIME_PROGRESSING:
        reasons.append(f"{noun} is progressing")

    if weather_bonus >= WEATHER_STRONG:
        reasons.append("Current weather strongly favors your prediction")
    elif weather_bonus >= WEATHER_SOME:
        reasons.append("Current weather somewhat favors your prediction")
    else:
        reasons.append("Weather conditions uncertain")

    kind = "single" if bet_type == "bet" else "multi"
    headline = _EARLY
    for threshold, phrase in _QUALITY[kind]:
        if total >= threshold - 1e-9:
            headline = phrase
            break
    return f"{headline} {'. '.join(reasons)}."


def fresh_ceiling(stake: int, cap: float) -> int:
    """Largest offer for a just-placed wager, strictly below stake * cap."""
    return max(math.ceil(round(stake * cap, 9)) - 1, 0)


def validate_wager(wager: Wager) -> None:
    if wager.stake <= 0:
        raise InvalidWager(f"stake must be > 0, got {wager.stake}")
    if wager.odds < 1.0:
        raise InvalidWager(f"odds must be >= 1.0, got {wager.odds}")
    if not wager.is_pending:
        raise InvalidWager(f"wager {wager.id} is {wager.result}, not pending")
    if not wager.legs:
        raise InvalidWager(f"wager {wager.id} has no legs")


class CashoutValuationEngine:

    def __init__(
        self, *, provider: WeatherSignalProvider,
        single: Calibration = SINGLE_CALIBRATION,
        multi: Calibration = MULTI_CALIBRATION,
        time_exponent: float = 1.0,
        default_window: float = DEFAULT_WINDOW_SECONDS,
        fresh_window: float = 0.0,
    ) -> None:
        self.provider = provider
        self.calibrations = {"single": single, "multi": multi}
        self.time_models = {
            kind: TimeDecayModel(time_scale=cal.time_scale,
                                 exponent=time_exponent,
                                 default_window=default_window)
            for kind, cal in self.calibrations.items()
        }
        self.weather_models = {
            kind: WeatherConfidenceModel(weather_scale=cal.weather_scale)
            for kind, cal in self.calibrations.items()
        }
        self.fresh_window = fresh_window
        self._fresh_cap = min(single.cap, multi.cap)

    @classmethod
    def from_settings(cls, provider: WeatherSignalProvider) -> "CashoutValuationEngine":
        from config.settings import settings
        return cls(
            provider=provider,
            single=Calibration.from_settings("single"),
            multi=Calibration.from_settings("multi"),
            time_exponent=settings.CASHOUT_TIME_CURVE_EXPONENT,
            default_window=settings.CASHOUT_DEFAULT_WINDOW_SECONDS,
            fresh_window=settings.CASHOUT_FRESH_WINDOW_SECONDS,
        )

    async def valuate(
        self, wager: Wager, now: Optional[float] = None,
        observations: Optional[ObservationCache] = None,
    ) -> CashoutValuation:
        """Compute the current offer for a pending wager.

        Raises InvalidWager. Weather failures never propagate: an
        unreachable signal contributes a zero weather bonus.
        """
        validate_wager(wager)
        if now is None:
            now = time.time()
        if observations is None:
            observations = ObservationCache(self.provider)

        weather_model = self.weather_models[wager.kind]
        observed = await asyncio.gather(
            *(observations.get(leg.city) for leg in wager.legs))
        leg_bonuses = [
            weather_model.weather_bonus(
                obs, leg.prediction_type, leg.prediction_value)
            for leg, obs in zip(wager.legs, observed)
        ]
        return self.compose(wager, weakest_leg(leg_bonuses), now)

    def compose(
        self, wager: Wager, weather_bonus: float, now: float,
    ) -> CashoutValuation:
        """Blend base, time and weather into an offer at ``now``."""
        cal = self.calibrations[wager.kind]
        time_bonus = self.time_models[wager.kind].time_bonus(
            wager.created_at, wager.expires_at, now)
        weather_bonus = min(max(weather_bonus, 0.0), cal.weather_scale)

        total = min(cal.base_rate + time_bonus + weather_bonus, cal.cap)
        amount = math.floor(wager.potential_win * total)
        if now - wager.created_at < self.fresh_window:
            amount = min(amount, fresh_ceiling(wager.stake, self._fresh_cap))

        return CashoutValuation(
            bet_id=wager.id,
            amount=amount,
            percentage=to_pct(total),
            time_bonus_pct=to_pct(time_bonus),
            weather_bonus_pct=to_pct(weather_bonus),
            reasoning=build_reasoning(
                time_bonus, weather_bonus, total, wager.bet_type),
            last_updated=now,
        )
