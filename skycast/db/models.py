"""SQLAlchemy ORM models for wagers, auto cash-out rules and the cash-out ledger.

Timestamps are stored as unix seconds (Float), matching the in-memory
state objects.
"""

import time
import uuid

from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    JSON,
    Boolean,
    ForeignKey,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class BetRow(Base):
    """Single weather bet."""

    __tablename__ = "bets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    city = Column(String(100), nullable=False)
    prediction_type = Column(String(50), nullable=False)  # rain, temperature, wind...
    prediction_value = Column(String(50), nullable=False)  # "yes", "20-25", "18"
    stake = Column(Integer, nullable=False)
    odds = Column(Float, nullable=False)
    result = Column(String(20), nullable=False, default="pending", index=True)
    currency_type = Column(String(10), nullable=False, default="virtual")
    created_at = Column(Float, nullable=False, default=time.time)
    expires_at = Column(Float, nullable=True)
    cashout_amount = Column(Integer, nullable=True)
    cashed_out_at = Column(Float, nullable=True)

    def __repr__(self) -> str:
        return f"<BetRow(id={self.id}, city={self.city}, result={self.result})>"


class ParlayRow(Base):
    """Parlay: several predictions that must all win."""

    __tablename__ = "parlays"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    total_stake = Column(Integer, nullable=False)
    combined_odds = Column(Float, nullable=False)
    result = Column(String(20), nullable=False, default="pending", index=True)
    currency_type = Column(String(10), nullable=False, default="virtual")
    created_at = Column(Float, nullable=False, default=time.time)
    expires_at = Column(Float, nullable=True)
    cashout_amount = Column(Integer, nullable=True)
    cashed_out_at = Column(Float, nullable=True)

    legs = relationship(
        "ParlayLegRow", back_populates="parlay",
        order_by="ParlayLegRow.position", lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<ParlayRow(id={self.id}, legs={len(self.legs)}, result={self.result})>"


class ParlayLegRow(Base):
    __tablename__ = "parlay_legs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    parlay_id = Column(String(36), ForeignKey("parlays.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    city = Column(String(100), nullable=False)
    prediction_type = Column(String(50), nullable=False)
    prediction_value = Column(String(50), nullable=False)
    odds = Column(Float, nullable=False)

    parlay = relationship("ParlayRow", back_populates="legs")


class CombinedBetRow(Base):
    """Combined bet: several prediction categories on one city."""

    __tablename__ = "combined_bets"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    city = Column(String(100), nullable=False)
    total_stake = Column(Integer, nullable=False)
    combined_odds = Column(Float, nullable=False)
    result = Column(String(20), nullable=False, default="pending", index=True)
    currency_type = Column(String(10), nullable=False, default="virtual")
    created_at = Column(Float, nullable=False, default=time.time)
    expires_at = Column(Float, nullable=True)
    cashout_amount = Column(Integer, nullable=True)
    cashed_out_at = Column(Float, nullable=True)

    categories = relationship(
        "CombinedBetCategoryRow", back_populates="combined_bet",
        order_by="CombinedBetCategoryRow.position", lazy="selectin",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<CombinedBetRow(id={self.id}, city={self.city}, result={self.result})>"


class CombinedBetCategoryRow(Base):
    __tablename__ = "combined_bet_categories"

    id = Column(Integer, primary_key=True, autoincrement=True)
    combined_bet_id = Column(
        String(36), ForeignKey("combined_bets.id"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)
    prediction_type = Column(String(50), nullable=False)
    prediction_value = Column(String(50), nullable=False)
    odds = Column(Float, nullable=False)

    combined_bet = relationship("CombinedBetRow", back_populates="categories")


class AutoCashoutRuleRow(Base):
    """User-defined one-shot auto cash-out trigger."""

    __tablename__ = "auto_cashout_rules"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    bet_type = Column(String(20), nullable=False)  # bet, parlay, combined_bet
    bet_id = Column(String(36), nullable=False, index=True)
    rule_type = Column(String(30), nullable=False)
    threshold_value = Column(Float, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    triggered_at = Column(Float, nullable=True)
    cashout_amount = Column(Integer, nullable=True)
    created_at = Column(Float, nullable=False, default=time.time)
    updated_at = Column(Float, nullable=False, default=time.time, onupdate=time.time)

    def __repr__(self) -> str:
        return (f"<AutoCashoutRuleRow(id={self.id}, bet_id={self.bet_id}, "
                f"rule_type={self.rule_type}, active={self.is_active})>")


class PartialCashoutRow(Base):
    """Append-only partial cash-out ledger."""

    __tablename__ = "partial_cashouts"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    bet_id = Column(String(36), nullable=False, index=True)
    bet_type = Column(String(20), nullable=False)
    wallet_amount = Column(Integer, nullable=False)
    percentage = Column(Integer, nullable=False)
    stake_before = Column(Integer, nullable=False)
    remaining_stake = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False, default=time.time)

    def __repr__(self) -> str:
        return (f"<PartialCashoutRow(bet_id={self.bet_id}, pct={self.percentage}, "
                f"amount={self.wallet_amount})>")


class FinancialTransactionRow(Base):
    """Wallet movements caused by cash-outs."""

    __tablename__ = "financial_transactions"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), nullable=False, index=True)
    amount_cents = Column(Integer, nullable=False)
    transaction_type = Column(String(30), nullable=False)  # cashout, partial_cashout
    reference_id = Column(String(36), nullable=False, index=True)
    reference_type = Column(String(20), nullable=False)
    currency_type = Column(String(10), nullable=False, default="virtual")
    details = Column("metadata", JSON, nullable=True)
    created_at = Column(Float, nullable=False, default=time.time)
