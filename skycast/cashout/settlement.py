# skycast/cashout/settlement.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from skycast.cashout.partial import PartialSettlementLedger
from skycast.exceptions import (
    CashoutError, CashoutFailed, InvalidWager, PersistenceError,
    SettlementConflict,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class SettlementConfirmation:
    bet_id: str
    bet_type: str
    percentage: int
    payout_amount: int
    remaining_stake: int
    closed: bool
    settled_at: float


class CashoutService:
    """User-initiated cash-outs (full and partial).

    Each call re-reads the wager and values it fresh, so the payout always
    reflects the moment of the request. Failures raise a CashoutError
    subclass whose ``user_message`` is safe to display; no state changes
    on failure.
    """

    def __init__(
        self, *, store: Any, valuation: Any, ledger: PartialSettlementLedger,
        orchestrator: Optional[Any] = None, mode: str = "virtual",
    ) -> None:
        self.store = store
        self.valuation = valuation
        self.ledger = ledger
        self.orchestrator = orchestrator
        self.mode = mode

    async def cash_out_full(self, bet_type: str, bet_id: str) -> SettlementConfirmation:
        return await self._cash_out(bet_type, bet_id, 100)

    async def cash_out_partial(
        self, bet_type: str, bet_id: str, percentage: int,
    ) -> SettlementConfirmation:
        return await self._cash_out(bet_type, bet_id, percentage)

    async def _cash_out(
        self, bet_type: str, bet_id: str, percentage: int,
    ) -> SettlementConfirmation:
        self.ledger.validate_percentage(percentage)
        try:
            wager = await self.store.get_wager(bet_type, bet_id)
            if wager is None or not wager.is_pending:
                raise SettlementConflict(f"{bet_type} {bet_id} is not pending")
            valuation = await self.valuation.valuate(wager)
            result = await self.ledger.apply_partial(
                wager, percentage, valuation, mode=self.mode)
        except CashoutError as e:
            logger.warning("cashout_rejected", bet_id=bet_id, pct=percentage,
                           error=str(e))
            raise
        except InvalidWager as e:
            logger.warning("cashout_invalid_wager", bet_id=bet_id, error=str(e))
            raise SettlementConflict(str(e)) from e
        except ValueError as e:
            logger.warning("cashout_unknown_wager", bet_type=bet_type,
                           bet_id=bet_id, error=str(e))
            raise SettlementConflict(str(e)) from e
        except PersistenceError as e:
            logger.error("cashout_persistence_error", bet_id=bet_id, error=str(e))
            raise CashoutFailed(str(e)) from e

        if self.orchestrator is not None:
            if result.closed:
                self.orchestrator.close_wager(bet_id)
            else:
                await self.orchestrator.refresh_one(bet_id, wager)

        logger.info("cashout_completed", bet_id=bet_id, bet_type=bet_type,
                    pct=percentage, payout=result.payout_amount,
                    closed=result.closed)
        return SettlementConfirmation(
            bet_id=bet_id,
            bet_type=bet_type,
            percentage=percentage,
            payout_amount=result.payout_amount,
            remaining_stake=result.remaining_stake,
            closed=result.closed,
            settled_at=result.settled_at,
        )
