# skycast/cashout/partial.py
from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass
from typing import Any, Optional

import structlog

from skycast.cashout.state import CashoutValuation, PartialCashout, Wager
from skycast.exceptions import InvalidPartialCashout, SettlementConflict

logger = structlog.get_logger()


@dataclass(frozen=True)
class PartialResult:
    payout_amount: int
    remaining_stake: int
    closed: bool
    settled_at: float
    entry: Optional[PartialCashout] = None


def split_partial(stake: int, offer: int, percentage: int) -> tuple[int, int]:
    """Return (payout, remaining stake) for cashing out ``percentage`` %."""
    payout = math.floor(offer * percentage / 100)
    remaining = math.floor(stake * (100 - percentage) / 100)
    return payout, remaining


class PartialSettlementLedger:
    """Partial cash-outs: pay a share of the offer, keep the rest riding.

    Each event is valued at its own moment. Ledger entries are never
    rewritten; the wager keeps running on the reduced stake (same odds)
    until the stake reaches zero, at which point it closes as cashed out.
    """

    def __init__(self, *, store: Any, min_pct: int = 10) -> None:
        self.store = store
        self.min_pct = min_pct

    @classmethod
    def from_settings(cls, store: Any) -> "PartialSettlementLedger":
        from config.settings import settings
        return cls(store=store, min_pct=settings.CASHOUT_PARTIAL_MIN_PCT)

    def validate_percentage(self, percentage: Any) -> int:
        if isinstance(percentage, bool) or not isinstance(percentage, int):
            raise InvalidPartialCashout(f"percentage must be an integer, got {percentage!r}")
        if not self.min_pct <= percentage <= 100:
            raise InvalidPartialCashout(
                f"percentage must be in [{self.min_pct}, 100], got {percentage}")
        return percentage

    async def apply_partial(
        self, wager: Wager, percentage: int, valuation: CashoutValuation,
        *, mode: str = "virtual",
    ) -> PartialResult:
        pct = self.validate_percentage(percentage)
        if not wager.is_pending:
            raise SettlementConflict(f"{wager.bet_type} {wager.id} is {wager.result}")
        if valuation.bet_id != wager.id:
            raise InvalidPartialCashout(
                f"valuation for {valuation.bet_id} does not match wager {wager.id}")

        prior = await self.store.list_partials(wager.id)
        already_paid = sum(p.wallet_amount for p in prior)
        original_stake = prior[0].stake_before if prior else wager.stake
        ceiling = math.floor(original_stake * wager.odds)

        if pct == 100:
            return await self._settle_full(wager, valuation, already_paid,
                                           ceiling, mode)

        payout, remaining = split_partial(wager.stake, valuation.amount, pct)
        if already_paid + payout > ceiling:
            raise InvalidPartialCashout(
                f"payout {payout} would exceed potential win {ceiling} "
                f"(already paid {already_paid})")

        closed = remaining == 0
        now = time.time()
        entry = PartialCashout(
            id=str(uuid.uuid4()),
            bet_id=wager.id,
            bet_type=wager.bet_type,
            wallet_amount=payout,
            created_at=now,
            percentage=pct,
            remaining_stake=remaining,
            stake_before=wager.stake,
        )
        total = already_paid + payout
        await self.store.record_partial(
            wager, entry, closed=closed,
            total_amount=total if closed else None, mode=mode)

        wager.stake = remaining
        if closed:
            wager.result = "cashed_out"
            wager.cashout_amount = total
            wager.cashed_out_at = now
        logger.info("partial_cashout_applied", bet_id=wager.id, pct=pct,
                    payout=payout, remaining_stake=remaining, closed=closed)
        return PartialResult(payout, remaining, closed, now, entry)

    async def _settle_full(
        self, wager: Wager, valuation: CashoutValuation,
        already_paid: int, ceiling: int, mode: str,
    ) -> PartialResult:
        amount = valuation.amount
        if already_paid + amount > ceiling:
            raise InvalidPartialCashout(
                f"payout {amount} would exceed potential win {ceiling} "
                f"(already paid {already_paid})")
        total = already_paid + amount
        settled_at = await self.store.settle(
            wager.bet_type, wager.id, amount, mode, user_id=wager.user_id,
            total_amount=total)
        wager.result = "cashed_out"
        wager.cashout_amount = total
        wager.cashed_out_at = settled_at
        logger.info("full_cashout_applied", bet_id=wager.id, amount=amount)
        return PartialResult(amount, 0, True, settled_at)
