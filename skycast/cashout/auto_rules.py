# skycast/cashout/auto_rules.py
from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import structlog

from skycast.cashout.state import AutoCashoutRule, CashoutValuation
from skycast.exceptions import NotificationFailure, SettlementConflict

logger = structlog.get_logger()

# rule_type -> (CashoutValuation attribute, direction)
_PREDICATES: dict[str, tuple[str, str]] = {
    "percentage_above": ("percentage", "above"),
    "percentage_below": ("percentage", "below"),
    "weather_bonus_above": ("weather_bonus_pct", "above"),
    "weather_bonus_below": ("weather_bonus_pct", "below"),
    "time_bonus_above": ("time_bonus_pct", "above"),
    "time_bonus_below": ("time_bonus_pct", "below"),
    "amount_above": ("amount", "above"),
}


@dataclass(frozen=True, slots=True)
class ExecutedRule:
    rule_id: str
    bet_id: str
    bet_type: str
    rule_type: str
    threshold_value: float
    amount: int
    triggered_at: float


def should_trigger(rule: AutoCashoutRule, valuation: CashoutValuation) -> bool:
    """Inclusive threshold check. Disarmed rules never match."""
    if not rule.is_armed:
        return False
    predicate = _PREDICATES.get(rule.rule_type)
    if predicate is None:
        return False
    attr, direction = predicate
    value = getattr(valuation, attr)
    if direction == "above":
        return value >= rule.threshold_value
    return value <= rule.threshold_value


class AutoCashoutRuleEngine:
    """Fires one-shot auto cash-out rules against the latest valuations.

    The rule's triggered state and the wager settlement are written in one
    store transaction; the notification goes out afterwards and its
    outcome never touches either.
    """

    def __init__(
        self, *, store: Any, notifier: Optional[Any] = None,
        user_id: str = "", mode: str = "virtual",
    ) -> None:
        self.store = store
        self.notifier = notifier
        self.user_id = user_id
        self.mode = mode
        self._firing: set[str] = set()
        self._notifications: set[asyncio.Task] = set()

    async def run(self, valuations: dict[str, CashoutValuation]) -> list[ExecutedRule]:
        """Orchestrator subscriber: load armed rules and evaluate them."""
        rules = await self.store.list_rules(self.user_id, armed_only=True)
        return await self.evaluate(rules, valuations)

    async def evaluate(
        self, rules: Iterable[AutoCashoutRule],
        valuations: dict[str, CashoutValuation],
    ) -> list[ExecutedRule]:
        executed: list[ExecutedRule] = []
        for rule in rules:
            if not rule.is_armed or rule.id in self._firing:
                continue
            valuation = valuations.get(rule.bet_id)
            if valuation is None:
                logger.debug("rule_evaluation_skipped", rule_id=rule.id,
                             bet_id=rule.bet_id)
                continue
            if not should_trigger(rule, valuation):
                continue
            result = await self._execute(rule, valuation)
            if result is not None:
                executed.append(result)
        return executed

    async def _execute(
        self, rule: AutoCashoutRule, valuation: CashoutValuation,
    ) -> Optional[ExecutedRule]:
        amount = valuation.amount
        self._firing.add(rule.id)
        try:
            triggered_at = await self.store.settle(
                rule.bet_type, rule.bet_id, amount, self.mode,
                rule_id=rule.id, user_id=rule.user_id or self.user_id)
        except SettlementConflict as e:
            logger.info("auto_cashout_conflict", rule_id=rule.id,
                        bet_id=rule.bet_id, error=str(e))
            return None
        except Exception as e:
            logger.error("auto_cashout_failed", rule_id=rule.id,
                         bet_id=rule.bet_id, error=str(e))
            return None
        finally:
            self._firing.discard(rule.id)

        rule.triggered_at = triggered_at
        rule.cashout_amount = amount
        rule.is_active = False
        logger.info("auto_cashout_triggered", rule_id=rule.id,
                    bet_id=rule.bet_id, rule_type=rule.rule_type,
                    threshold=rule.threshold_value, amount=amount)

        self._fire_notification(rule, amount)
        return ExecutedRule(
            rule_id=rule.id,
            bet_id=rule.bet_id,
            bet_type=rule.bet_type,
            rule_type=rule.rule_type,
            threshold_value=rule.threshold_value,
            amount=amount,
            triggered_at=triggered_at,
        )

    # ── Notifications ───────────────────────────────────────────────

    def _fire_notification(self, rule: AutoCashoutRule, amount: int) -> None:
        if self.notifier is None:
            return
        task = asyncio.ensure_future(self._notify(rule, amount))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _notify(self, rule: AutoCashoutRule, amount: int) -> None:
        try:
            delivered = await self.notifier.send_auto_cashout(
                user_id=rule.user_id or self.user_id,
                bet_id=rule.bet_id,
                bet_type=rule.bet_type,
                rule_type=rule.rule_type,
                threshold_value=rule.threshold_value,
                cashout_amount=amount,
            )
            if not delivered:
                raise NotificationFailure(f"push for rule {rule.id} not delivered")
        except Exception as e:
            logger.warning("auto_cashout_notification_failed",
                           rule_id=rule.id, error=str(e))

    async def drain(self) -> None:
        """Wait for outstanding notifications (shutdown and tests)."""
        if self._notifications:
            await asyncio.gather(*list(self._notifications),
                                 return_exceptions=True)
