"""Tests for the async wager store."""

from contextlib import asynccontextmanager

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from skycast.cashout.state import PartialCashout
from skycast.db.database import get_session, init_db_async, reset_engines
from skycast.db.models import (
    BetRow, CombinedBetCategoryRow, CombinedBetRow, FinancialTransactionRow,
    ParlayLegRow, ParlayRow, PartialCashoutRow,
)
from skycast.db.wagers import WagerStore
from skycast.exceptions import PersistenceError, SettlementConflict

DB_URL = "sqlite+aiosqlite:///:memory:"
T0 = 1_700_000_000.0


async def _init_db() -> WagerStore:
    reset_engines()
    await init_db_async(DB_URL)
    return WagerStore(DB_URL)


async def _seed(user_id="u1") -> None:
    async with get_session(DB_URL) as s:
        s.add(BetRow(id="b1", user_id=user_id, city="London",
                     prediction_type="rain", prediction_value="yes",
                     stake=100, odds=3.0, created_at=T0))
        s.add(BetRow(id="b2", user_id=user_id, city="Paris",
                     prediction_type="temperature", prediction_value="20-25",
                     stake=50, odds=2.0, result="win", created_at=T0))
        s.add(BetRow(id="other", user_id="u2", city="Tokyo",
                     prediction_type="rain", prediction_value="no",
                     stake=10, odds=2.0, created_at=T0))
        s.add(ParlayRow(
            id="p1", user_id=user_id, total_stake=40, combined_odds=6.0,
            created_at=T0 + 1, expires_at=T0 + 7200,
            legs=[
                ParlayLegRow(position=0, city="London", prediction_type="rain",
                             prediction_value="yes", odds=2.0),
                ParlayLegRow(position=1, city="Cairo", prediction_type="temperature",
                             prediction_value="30", odds=3.0),
            ],
        ))
        s.add(CombinedBetRow(
            id="c1", user_id=user_id, city="Sydney", total_stake=20,
            combined_odds=4.0, created_at=T0 + 2,
            categories=[
                CombinedBetCategoryRow(position=0, prediction_type="rain",
                                       prediction_value="no", odds=2.0),
                CombinedBetCategoryRow(position=1, prediction_type="wind",
                                       prediction_value="10-20", odds=2.0),
            ],
        ))


async def _transactions(reference_id: str) -> list[FinancialTransactionRow]:
    async with get_session(DB_URL) as s:
        result = await s.execute(
            select(FinancialTransactionRow)
            .where(FinancialTransactionRow.reference_id == reference_id))
        return list(result.scalars().all())


# -- Reads --

@pytest.mark.asyncio
async def test_list_open_wagers_returns_pending_for_user():
    store = await _init_db()
    await _seed()
    wagers = await store.list_open_wagers("u1")
    by_id = {w.id: w for w in wagers}
    assert set(by_id) == {"b1", "p1", "c1"}
    assert by_id["b1"].kind == "single"
    assert by_id["b1"].potential_win == 300
    assert [leg.city for leg in by_id["p1"].legs] == ["London", "Cairo"]
    assert by_id["p1"].expires_at == T0 + 7200
    assert {leg.city for leg in by_id["c1"].legs} == {"Sydney"}
    assert [leg.prediction_type for leg in by_id["c1"].legs] == ["rain", "wind"]


@pytest.mark.asyncio
async def test_get_wager_missing_returns_none():
    store = await _init_db()
    assert await store.get_wager("bet", "missing") is None


@pytest.mark.asyncio
async def test_get_wager_unknown_type_rejected():
    store = await _init_db()
    with pytest.raises(ValueError):
        await store.get_wager("accumulator", "b1")


# -- Settlement --

@pytest.mark.asyncio
async def test_settle_marks_cashed_out_and_logs_transaction():
    store = await _init_db()
    await _seed()
    settled_at = await store.settle("bet", "b1", 210, "real")
    wager = await store.get_wager("bet", "b1")
    assert wager.result == "cashed_out"
    assert wager.cashout_amount == 210
    assert wager.cashed_out_at == settled_at
    txs = await _transactions("b1")
    assert len(txs) == 1
    assert txs[0].transaction_type == "cashout"
    assert txs[0].currency_type == "real"
    assert txs[0].user_id == "u1"


@pytest.mark.asyncio
async def test_double_settle_conflicts():
    store = await _init_db()
    await _seed()
    await store.settle("bet", "b1", 210)
    with pytest.raises(SettlementConflict):
        await store.settle("bet", "b1", 250)
    wager = await store.get_wager("bet", "b1")
    assert wager.cashout_amount == 210
    assert len(await _transactions("b1")) == 1


@pytest.mark.asyncio
async def test_settle_resolved_wager_conflicts():
    store = await _init_db()
    await _seed()
    with pytest.raises(SettlementConflict):
        await store.settle("bet", "b2", 10)


@pytest.mark.asyncio
async def test_settle_with_rule_marks_rule_triggered():
    store = await _init_db()
    await _seed()
    rule = await store.create_rule(user_id="u1", bet_type="parlay", bet_id="p1",
                                   rule_type="percentage_above", threshold_value=70)
    settled_at = await store.settle("parlay", "p1", 150, rule_id=rule.id)
    [stored] = await store.list_rules("u1")
    assert stored.triggered_at == settled_at
    assert stored.cashout_amount == 150
    assert not stored.is_armed
    assert await store.list_rules("u1", armed_only=True) == []


@pytest.mark.asyncio
async def test_rule_stays_armed_when_settlement_conflicts():
    store = await _init_db()
    await _seed()
    rule = await store.create_rule(user_id="u1", bet_type="bet", bet_id="b1",
                                   rule_type="amount_above", threshold_value=100)
    await store.settle("bet", "b1", 200)
    with pytest.raises(SettlementConflict):
        await store.settle("bet", "b1", 220, rule_id=rule.id)
    [stored] = await store.list_rules("u1", armed_only=True)
    assert stored.id == rule.id
    assert stored.triggered_at is None


@pytest.mark.asyncio
async def test_triggered_rule_cannot_fire_twice():
    store = await _init_db()
    await _seed()
    rule = await store.create_rule(user_id="u1", bet_type="bet", bet_id="b1",
                                   rule_type="amount_above", threshold_value=100)
    await store.settle("bet", "b1", 200, rule_id=rule.id)
    with pytest.raises(SettlementConflict):
        await store.settle("parlay", "p1", 100, rule_id=rule.id)
    parlay = await store.get_wager("parlay", "p1")
    assert parlay.is_pending


# -- Partial ledger --

def _entry(stake_before=100, remaining=50, amount=105) -> PartialCashout:
    return PartialCashout(id="e1", bet_id="b1", bet_type="bet",
                          wallet_amount=amount, created_at=T0 + 600,
                          percentage=50, remaining_stake=remaining,
                          stake_before=stake_before)


@pytest.mark.asyncio
async def test_record_partial_shrinks_stake_and_appends_ledger():
    store = await _init_db()
    await _seed()
    wager = await store.get_wager("bet", "b1")
    await store.record_partial(wager, _entry(), closed=False)

    updated = await store.get_wager("bet", "b1")
    assert updated.stake == 50
    assert updated.is_pending
    [entry] = await store.list_partials("b1")
    assert entry.wallet_amount == 105
    assert entry.stake_before == 100
    [tx] = await _transactions("b1")
    assert tx.transaction_type == "partial_cashout"
    assert tx.details["remaining_stake"] == 50


@pytest.mark.asyncio
async def test_record_partial_closing_entry_settles_wager():
    store = await _init_db()
    await _seed()
    wager = await store.get_wager("bet", "b1")
    await store.record_partial(wager, _entry(remaining=0), closed=True,
                               total_amount=105)
    updated = await store.get_wager("bet", "b1")
    assert updated.result == "cashed_out"
    assert updated.stake == 0
    assert updated.cashout_amount == 105


@pytest.mark.asyncio
async def test_record_partial_with_stale_stake_conflicts():
    store = await _init_db()
    await _seed()
    wager = await store.get_wager("bet", "b1")
    await store.record_partial(wager, _entry(), closed=False)
    with pytest.raises(SettlementConflict):
        await store.record_partial(wager, _entry(stake_before=100), closed=False)
    async with get_session(DB_URL) as s:
        rows = (await s.execute(select(PartialCashoutRow))).scalars().all()
    assert len(rows) == 1


# -- Rules --

@pytest.mark.asyncio
async def test_rule_crud():
    store = await _init_db()
    rule = await store.create_rule(user_id="u1", bet_type="bet", bet_id="b1",
                                   rule_type="percentage_below", threshold_value=50)
    assert rule.is_armed
    assert rule.label == "Cash-out % drops below"

    assert await store.update_rule(rule.id, threshold_value=45) is True
    [stored] = await store.list_rules("u1", bet_id="b1")
    assert stored.threshold_value == 45

    assert await store.update_rule(rule.id, is_active=False) is True
    assert await store.list_rules("u1", armed_only=True) == []

    assert await store.delete_rule(rule.id) is True
    assert await store.list_rules("u1") == []
    assert await store.delete_rule(rule.id) is False


@pytest.mark.asyncio
async def test_triggered_rule_cannot_be_rearmed():
    store = await _init_db()
    await _seed()
    rule = await store.create_rule(user_id="u1", bet_type="bet", bet_id="b1",
                                   rule_type="amount_above", threshold_value=100)
    await store.settle("bet", "b1", 200, rule_id=rule.id)
    assert await store.update_rule(rule.id, is_active=True) is False
    assert await store.list_rules("u1", armed_only=True) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("kwargs", [
    {"bet_type": "accumulator", "rule_type": "amount_above"},
    {"bet_type": "bet", "rule_type": "moon_phase"},
])
async def test_create_rule_validates_types(kwargs):
    store = await _init_db()
    with pytest.raises(ValueError):
        await store.create_rule(user_id="u1", bet_id="b1", threshold_value=1, **kwargs)


# -- Failure wrapping --

@asynccontextmanager
async def _broken_session(db_url):
    raise OperationalError("SELECT", {}, Exception("database is locked"))
    yield


@pytest.mark.asyncio
@pytest.mark.parametrize("call", [
    lambda store: store.list_open_wagers("u1"),
    lambda store: store.get_wager("bet", "b1"),
    lambda store: store.list_partials("b1"),
])
async def test_read_errors_become_persistence_errors(monkeypatch, call):
    store = await _init_db()
    monkeypatch.setattr("skycast.db.wagers.get_session", _broken_session)
    with pytest.raises(PersistenceError):
        await call(store)


@pytest.mark.asyncio
async def test_settle_records_total_including_partials():
    store = await _init_db()
    await _seed()
    await store.settle("bet", "b1", 150, total_amount=255)
    wager = await store.get_wager("bet", "b1")
    assert wager.cashout_amount == 255
    [tx] = await _transactions("b1")
    assert tx.amount_cents == 150
