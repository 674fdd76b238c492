"""
Wager Ledger - Database Schema
==============================

Durable tables behind the SQL ledger store:
- players: balance holder and profile
- bet_rounds: one wager from escrowed stake to settlement
- deposits: one PassimPay funding request from address issuance to credit
- ledger_entries: append-only journal of every balance change

Every mutable table carries a version column; writers update with
``WHERE version = :expected`` so a stale writer changes nothing.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    BigInteger, CheckConstraint, DateTime, Index, Integer, Numeric, String,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all database models"""
    pass


# ============================================================================
# ENUMS - Business Logic Constants
# ============================================================================

class RoundStatus(Enum):
    """Bet round lifecycle states"""
    ACTIVE = "active"
    WON = "won"
    LOST = "lost"


class RoundOutcome(Enum):
    """Outcome reported by the game client when finishing a round"""
    WON = "won"
    LOST = "lost"


class DepositStatus(Enum):
    """
    Deposit lifecycle states.

    Gateway-reported intermediate statuses (e.g. "wait", "processing") are
    stored verbatim between PENDING and CONFIRMED.
    """
    PENDING = "pending"
    CONFIRMED = "confirmed"


class EntryReason(Enum):
    """Why a ledger entry moved a balance"""
    ROUND_STAKE = "round_stake"
    ROUND_WIN = "round_win"
    DEPOSIT = "deposit"


# ============================================================================
# CORE ENTITIES
# ============================================================================

class Player(Base):
    """Balance holder, keyed by a caller-supplied handle or a generated id"""
    __tablename__ = "players"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    balance: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    nickname: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_players_balance_non_negative"),
    )


class BetRound(Base):
    """A single wager; the stake is debited when the round opens"""
    __tablename__ = "bet_rounds"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    bet: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    multiplier: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 6), nullable=True)
    win: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False, default=Decimal("0"))
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=RoundStatus.ACTIVE.value)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    settled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("bet > 0", name="ck_bet_rounds_bet_positive"),
    )


class Deposit(Base):
    """PassimPay deposit correlated by order id"""
    __tablename__ = "deposits"

    order_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    payment_id: Mapped[int] = mapped_column(Integer, nullable=False)
    amount_fiat: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    destination_tag: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=DepositStatus.PENDING.value)
    credited_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("amount_fiat > 0", name="ck_deposits_amount_positive"),
    )


class LedgerEntry(Base):
    """Append-only balance journal"""
    __tablename__ = "ledger_entries"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    player_id: Mapped[str] = mapped_column(String(64), nullable=False)
    delta: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    reason: Mapped[str] = mapped_column(String(32), nullable=False)
    reference: Mapped[str] = mapped_column(String(64), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_ledger_entries_player_sequence", "player_id", "sequence"),
    )
