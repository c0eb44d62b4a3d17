"""Async wager store: open wagers, settlement, partial ledger and rule CRUD."""

from __future__ import annotations

import time
import uuid
from typing import Any, Optional

import structlog
from sqlalchemy import select, update, delete as sa_delete
from sqlalchemy.exc import SQLAlchemyError

from skycast.cashout.state import (
    BET_TYPES, RULE_TYPES, AutoCashoutRule, PartialCashout, Wager, WagerLeg,
)
from skycast.db.database import get_session, DEFAULT_ASYNC_DATABASE_URL
from skycast.db.models import (
    AutoCashoutRuleRow,
    BetRow,
    CombinedBetRow,
    FinancialTransactionRow,
    ParlayRow,
    PartialCashoutRow,
)
from skycast.exceptions import PersistenceError, SettlementConflict

logger = structlog.get_logger()

# bet_type -> (model, stake column name)
_TABLES: dict[str, tuple[Any, str]] = {
    "bet": (BetRow, "stake"),
    "parlay": (ParlayRow, "total_stake"),
    "combined_bet": (CombinedBetRow, "total_stake"),
}


def _table(bet_type: str) -> tuple[Any, str]:
    if bet_type not in _TABLES:
        raise ValueError(f"unknown bet_type {bet_type!r}")
    return _TABLES[bet_type]


def row_to_wager(row: Any, bet_type: str) -> Wager:
    if bet_type == "bet":
        legs = [WagerLeg(row.city, row.prediction_type, row.prediction_value)]
        stake, odds = row.stake, row.odds
    elif bet_type == "parlay":
        legs = [WagerLeg(l.city, l.prediction_type, l.prediction_value)
                for l in row.legs]
        stake, odds = row.total_stake, row.combined_odds
    else:
        legs = [WagerLeg(row.city, c.prediction_type, c.prediction_value)
                for c in row.categories]
        stake, odds = row.total_stake, row.combined_odds
    return Wager(
        id=row.id,
        bet_type=bet_type,
        stake=stake,
        odds=float(odds),
        created_at=row.created_at,
        expires_at=row.expires_at,
        legs=legs,
        result=row.result,
        cashout_amount=row.cashout_amount,
        cashed_out_at=row.cashed_out_at,
        user_id=row.user_id,
    )


def _row_to_rule(row: AutoCashoutRuleRow) -> AutoCashoutRule:
    return AutoCashoutRule(
        id=row.id,
        bet_id=row.bet_id,
        bet_type=row.bet_type,
        rule_type=row.rule_type,
        threshold_value=row.threshold_value,
        is_active=row.is_active,
        triggered_at=row.triggered_at,
        cashout_amount=row.cashout_amount,
        user_id=row.user_id,
    )


class WagerStore:
    """Relational store behind the cash-out engine.

    Every state transition on a wager is a conditional update scoped by
    id and ``result = 'pending'`` so two concurrent settlements of the
    same wager cannot both succeed.
    """

    def __init__(self, db_url: str = DEFAULT_ASYNC_DATABASE_URL) -> None:
        self.db_url = db_url

    # ── Reads ───────────────────────────────────────────────────────

    async def list_open_wagers(self, user_id: str) -> list[Wager]:
        wagers: list[Wager] = []
        try:
            async with get_session(self.db_url) as s:
                for bet_type, (model, _) in _TABLES.items():
                    result = await s.execute(
                        select(model).where(
                            model.user_id == user_id,
                            model.result == "pending",
                        ).order_by(model.created_at)
                    )
                    wagers.extend(row_to_wager(r, bet_type)
                                  for r in result.scalars().all())
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return wagers

    async def get_wager(self, bet_type: str, bet_id: str) -> Optional[Wager]:
        model, _ = _table(bet_type)
        try:
            async with get_session(self.db_url) as s:
                row = await s.get(model, bet_id)
                return row_to_wager(row, bet_type) if row else None
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e

    async def list_partials(self, bet_id: str) -> list[PartialCashout]:
        try:
            async with get_session(self.db_url) as s:
                result = await s.execute(
                    select(PartialCashoutRow)
                    .where(PartialCashoutRow.bet_id == bet_id)
                    .order_by(PartialCashoutRow.created_at)
                )
                rows = result.scalars().all()
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        return [
            PartialCashout(
                id=r.id, bet_id=r.bet_id, bet_type=r.bet_type,
                wallet_amount=r.wallet_amount, created_at=r.created_at,
                percentage=r.percentage, remaining_stake=r.remaining_stake,
                stake_before=r.stake_before,
            )
            for r in rows
        ]

    # ── Settlement ──────────────────────────────────────────────────

    async def settle(
        self, bet_type: str, bet_id: str, amount: int, mode: str = "virtual",
        *, rule_id: Optional[str] = None, user_id: str = "",
        total_amount: Optional[int] = None,
    ) -> float:
        """Close a pending wager as cashed out. Returns the settlement time.

        With ``rule_id`` the rule is marked triggered in the same
        transaction, so a rule can never fire without its settlement and
        vice versa. ``amount`` is the wallet credit; ``total_amount``
        (default ``amount``) is the wager's recorded cash-out value, which
        includes any earlier partial payouts. Raises SettlementConflict if
        the wager is no longer pending or the rule already fired.
        """
        model, _ = _table(bet_type)
        now = time.time()
        try:
            async with get_session(self.db_url) as s:
                if rule_id is not None:
                    claimed = await s.execute(
                        update(AutoCashoutRuleRow)
                        .where(
                            AutoCashoutRuleRow.id == rule_id,
                            AutoCashoutRuleRow.triggered_at.is_(None),
                            AutoCashoutRuleRow.is_active.is_(True),
                        )
                        .values(triggered_at=now, cashout_amount=amount,
                                is_active=False, updated_at=now)
                    )
                    if claimed.rowcount == 0:
                        raise SettlementConflict(f"rule {rule_id} already triggered")

                result = await s.execute(
                    update(model)
                    .where(model.id == bet_id, model.result == "pending")
                    .values(result="cashed_out",
                            cashout_amount=amount if total_amount is None else total_amount,
                            cashed_out_at=now)
                )
                if result.rowcount == 0:
                    raise SettlementConflict(f"{bet_type} {bet_id} is not pending")

                owner = user_id or await self._owner(s, model, bet_id)
                s.add(FinancialTransactionRow(
                    user_id=owner,
                    amount_cents=amount,
                    transaction_type="cashout",
                    reference_id=bet_id,
                    reference_type=bet_type,
                    currency_type=mode,
                    details={"rule_id": rule_id} if rule_id else None,
                    created_at=now,
                ))
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        logger.info("wager_settled", bet_id=bet_id, bet_type=bet_type,
                    amount=amount, rule_id=rule_id)
        return now

    async def record_partial(
        self, wager: Wager, entry: PartialCashout, *,
        closed: bool, total_amount: Optional[int] = None, mode: str = "virtual",
    ) -> None:
        """Append a ledger entry and shrink the wager's stake atomically.

        The update is guarded on the stake read by the caller; a wager whose
        stake or result changed in between raises SettlementConflict.
        """
        model, stake_col = _table(wager.bet_type)
        values: dict[str, Any] = {stake_col: entry.remaining_stake}
        if closed:
            values.update(result="cashed_out", cashout_amount=total_amount,
                          cashed_out_at=entry.created_at)
        try:
            async with get_session(self.db_url) as s:
                result = await s.execute(
                    update(model)
                    .where(
                        model.id == wager.id,
                        model.result == "pending",
                        getattr(model, stake_col) == entry.stake_before,
                    )
                    .values(**values)
                )
                if result.rowcount == 0:
                    raise SettlementConflict(
                        f"{wager.bet_type} {wager.id} changed during partial cash-out")
                owner = wager.user_id or await self._owner(s, model, wager.id)
                s.add(PartialCashoutRow(
                    id=entry.id,
                    user_id=owner,
                    bet_id=entry.bet_id,
                    bet_type=entry.bet_type,
                    wallet_amount=entry.wallet_amount,
                    percentage=entry.percentage,
                    stake_before=entry.stake_before,
                    remaining_stake=entry.remaining_stake,
                    created_at=entry.created_at,
                ))
                s.add(FinancialTransactionRow(
                    user_id=owner,
                    amount_cents=entry.wallet_amount,
                    transaction_type="partial_cashout",
                    reference_id=wager.id,
                    reference_type=wager.bet_type,
                    currency_type=mode,
                    details={
                        "percentage": entry.percentage,
                        "original_stake": entry.stake_before,
                        "remaining_stake": entry.remaining_stake,
                        "cashed_out_amount": entry.wallet_amount,
                    },
                    created_at=entry.created_at,
                ))
        except SQLAlchemyError as e:
            raise PersistenceError(str(e)) from e
        logger.info("partial_recorded", bet_id=wager.id, pct=entry.percentage,
                    amount=entry.wallet_amount, closed=closed)

    @staticmethod
    async def _owner(s: Any, model: Any, bet_id: str) -> str:
        result = await s.execute(select(model.user_id).where(model.id == bet_id))
        return result.scalar_one()

    # ── Auto cash-out rules ─────────────────────────────────────────

    async def create_rule(
        self, *, user_id: str, bet_type: str, bet_id: str,
        rule_type: str, threshold_value: float,
    ) -> AutoCashoutRule:
        if bet_type not in BET_TYPES:
            raise ValueError(f"unknown bet_type {bet_type!r}")
        if rule_type not in RULE_TYPES:
            raise ValueError(f"unknown rule_type {rule_type!r}")
        async with get_session(self.db_url) as s:
            row = AutoCashoutRuleRow(
                id=str(uuid.uuid4()),
                user_id=user_id,
                bet_type=bet_type,
                bet_id=bet_id,
                rule_type=rule_type,
                threshold_value=threshold_value,
                is_active=True,
            )
            s.add(row)
            await s.flush()
            return _row_to_rule(row)

    async def list_rules(
        self, user_id: str, *, armed_only: bool = False,
        bet_id: Optional[str] = None,
    ) -> list[AutoCashoutRule]:
        async with get_session(self.db_url) as s:
            q = select(AutoCashoutRuleRow).where(
                AutoCashoutRuleRow.user_id == user_id)
            if armed_only:
                q = q.where(AutoCashoutRuleRow.is_active.is_(True),
                            AutoCashoutRuleRow.triggered_at.is_(None))
            if bet_id:
                q = q.where(AutoCashoutRuleRow.bet_id == bet_id)
            result = await s.execute(
                q.order_by(AutoCashoutRuleRow.created_at.desc()))
            return [_row_to_rule(r) for r in result.scalars().all()]

    async def update_rule(
        self, rule_id: str, *, threshold_value: Optional[float] = None,
        is_active: Optional[bool] = None,
    ) -> bool:
        """Edit an untriggered rule. Triggered rules are immutable."""
        values: dict[str, Any] = {"updated_at": time.time()}
        if threshold_value is not None:
            values["threshold_value"] = threshold_value
        if is_active is not None:
            values["is_active"] = is_active
        async with get_session(self.db_url) as s:
            result = await s.execute(
                update(AutoCashoutRuleRow)
                .where(AutoCashoutRuleRow.id == rule_id,
                       AutoCashoutRuleRow.triggered_at.is_(None))
                .values(**values)
            )
            return result.rowcount > 0

    async def delete_rule(self, rule_id: str) -> bool:
        async with get_session(self.db_url) as s:
            result = await s.execute(
                sa_delete(AutoCashoutRuleRow).where(AutoCashoutRuleRow.id == rule_id)
            )
            return result.rowcount > 0
