# skycast/cashout/trend.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True, slots=True)
class TrendResult:
    trend: str
    previous_amount: Optional[int]
    stale: bool = False


class TrendTracker:
    """Last-seen cash-out amount per wager, held in memory only.

    Each orchestrator owns its own tracker. Updates carrying a sequence
    number at or below the last applied one for that wager are stale and
    leave the state untouched.
    """

    def __init__(self) -> None:
        self._last: dict[str, int] = {}
        self._seq: dict[str, int] = {}

    def classify(
        self, bet_id: str, new_amount: int, sequence: Optional[int] = None,
    ) -> TrendResult:
        previous = self._last.get(bet_id)
        if sequence is not None:
            last_seq = self._seq.get(bet_id)
            if last_seq is not None and sequence <= last_seq:
                return TrendResult("stable", previous, stale=True)
            self._seq[bet_id] = sequence

        if previous is None or new_amount == previous:
            trend = "stable"
        elif new_amount > previous:
            trend = "up"
        else:
            trend = "down"
        self._last[bet_id] = new_amount
        return TrendResult(trend, previous)

    def previous(self, bet_id: str) -> Optional[int]:
        return self._last.get(bet_id)

    def reset(self, bet_id: str) -> None:
        """Forget a wager once it leaves the pending state."""
        self._last.pop(bet_id, None)
        self._seq.pop(bet_id, None)

    def retain(self, bet_ids: set[str]) -> list[str]:
        """Reset every tracked wager not in ``bet_ids``. Returns the dropped ids."""
        dropped = [bid for bid in self._last if bid not in bet_ids]
        for bid in dropped:
            self.reset(bid)
        return dropped

    def __len__(self) -> int:
        return len(self._last)
