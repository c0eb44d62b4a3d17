# skycast/cashout/state.py
from __future__ import annotations

import math
import time
from dataclasses import dataclass, field
from typing import Any, Optional

BET_TYPES = ("bet", "parlay", "combined_bet")
RESULTS = ("pending", "win", "loss", "partial", "cashed_out")
TRENDS = ("up", "down", "stable")

RULE_TYPES = (
    "percentage_above",
    "percentage_below",
    "weather_bonus_above",
    "weather_bonus_below",
    "time_bonus_above",
    "time_bonus_below",
    "amount_above",
)

RULE_TYPE_LABELS: dict[str, str] = {
    "percentage_above": "Cash-out % exceeds",
    "percentage_below": "Cash-out % drops below",
    "weather_bonus_above": "Weather bonus exceeds",
    "weather_bonus_below": "Weather bonus drops below",
    "time_bonus_above": "Time bonus exceeds",
    "time_bonus_below": "Time bonus drops below",
    "amount_above": "Cash-out amount exceeds",
}


@dataclass(frozen=True, slots=True)
class WagerLeg:
    city: str
    prediction_type: str
    prediction_value: str


@dataclass
class Wager:
    """A single bet, parlay or combined bet awaiting resolution.

    All three kinds share this shape; single bets carry exactly one leg.
    Timestamps are unix seconds.
    """

    id: str
    bet_type: str
    stake: int
    odds: float
    created_at: float
    legs: list[WagerLeg]
    expires_at: Optional[float] = None
    result: str = "pending"
    cashout_amount: Optional[int] = None
    cashed_out_at: Optional[float] = None
    user_id: str = ""

    @property
    def kind(self) -> str:
        return "single" if self.bet_type == "bet" else "multi"

    @property
    def potential_win(self) -> int:
        return math.floor(self.stake * self.odds)

    @property
    def is_pending(self) -> bool:
        return self.result == "pending"


@dataclass
class CashoutValuation:
    """Ephemeral cash-out offer for one wager, rebuilt every cycle."""

    bet_id: str
    amount: int
    percentage: int
    time_bonus_pct: int
    weather_bonus_pct: int
    reasoning: str
    last_updated: float = field(default_factory=time.time)
    trend: str = "stable"
    previous_amount: Optional[int] = None
    sequence: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "bet_id": self.bet_id,
            "amount": self.amount,
            "percentage": self.percentage,
            "time_bonus": self.time_bonus_pct,
            "weather_bonus": self.weather_bonus_pct,
            "reasoning": self.reasoning,
            "trend": self.trend,
            "previous_amount": self.previous_amount,
            "last_updated": self.last_updated,
        }


@dataclass
class AutoCashoutRule:
    id: str
    bet_id: str
    bet_type: str
    rule_type: str
    threshold_value: float
    is_active: bool = True
    triggered_at: Optional[float] = None
    cashout_amount: Optional[int] = None
    user_id: str = ""

    @property
    def is_armed(self) -> bool:
        """Rules fire at most once: a set triggered_at disarms for good."""
        return self.is_active and self.triggered_at is None

    @property
    def label(self) -> str:
        return RULE_TYPE_LABELS.get(self.rule_type, self.rule_type)


@dataclass(frozen=True, slots=True)
class PartialCashout:
    """Append-only ledger entry for one partial cash-out."""

    id: str
    bet_id: str
    bet_type: str
    wallet_amount: int
    created_at: float
    percentage: int
    remaining_stake: int
    stake_before: int = 0
