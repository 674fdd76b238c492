"""
Player Store
============

Single source of truth for balances. Every balance change is planned
against the player record the caller read under the player's lock, and is
committed together with a journal entry through one compare-and-swap.
Ledgers that need to pair a balance change with their own state
transition take the plan and add their change to the same swap.
"""

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional, Tuple

from models import EntryReason
from services.ledger_store import (
    Change, LedgerEntryRecord, LedgerStore, PlayerRecord, RecordKind, bump, new_id, utc_now,
)
from utils.data_sanitizer import data_sanitizer
from utils.decimal_precision import Number, to_money
from utils.exception_handler import InsufficientFunds, InvalidAmount, PlayerNotFound, ValidationError
from utils.keyed_locks import KeyedLocks
from utils.optimistic_locking import OptimisticLockingError, with_async_optimistic_locking

logger = logging.getLogger(__name__)

MAX_NICKNAME_LENGTH = 32
MAX_EMAIL_LENGTH = 255


@dataclass(frozen=True)
class BalancePlan:
    """A balance change ready to be swapped in, plus the journal entry describing it"""

    player: PlayerRecord
    entry: LedgerEntryRecord
    changes: Tuple[Change, ...]


def parse_amount(amount: Number, context: str = "amount") -> Decimal:
    try:
        return to_money(amount, context)
    except ValueError as e:
        raise InvalidAmount(str(e)) from e


def clean_profile(nickname: Optional[str], email: Optional[str]) -> Tuple[str, Optional[str]]:
    """Trimmed nickname (required) and e-mail (optional, blank means none)"""
    clean_nickname = (nickname or "").strip()
    if not clean_nickname:
        raise ValidationError("nickname is required")
    if len(clean_nickname) > MAX_NICKNAME_LENGTH:
        raise ValidationError(f"nickname must be at most {MAX_NICKNAME_LENGTH} characters")

    clean_email = (email or "").strip() or None
    if clean_email is not None and (len(clean_email) > MAX_EMAIL_LENGTH or "@" not in clean_email):
        raise ValidationError("email is not valid")

    return clean_nickname, clean_email


class PlayerStore:
    def __init__(self, store: LedgerStore, locks: Optional[KeyedLocks] = None):
        self.store = store
        self.locks = locks or KeyedLocks()

    async def get(self, player_id: str) -> Optional[PlayerRecord]:
        return await self.store.get(RecordKind.PLAYER, player_id)

    async def require(self, player_id: str) -> PlayerRecord:
        player = await self.get(player_id)
        if player is None:
            raise PlayerNotFound()
        return player

    def lock(self, player_id: str) -> asyncio.Lock:
        """Mutual exclusion scope for every balance mutation of one player"""
        return self.locks(player_id)

    async def history(self, player_id: str) -> List[LedgerEntryRecord]:
        return await self.store.entries_for(player_id)

    # ------------------------------------------------------------------
    # Planning
    # ------------------------------------------------------------------

    def _plan(self, player: PlayerRecord, delta: Decimal, reason: EntryReason, reference: str) -> BalancePlan:
        now = utc_now()
        updated = bump(player, balance=player.balance + delta, updated_at=now)
        entry = LedgerEntryRecord(
            id=new_id("e_"),
            player_id=player.id,
            sequence=updated.version,
            delta=delta,
            balance_after=updated.balance,
            reason=reason.value,
            reference=reference,
            created_at=now,
        )
        return BalancePlan(
            player=updated,
            entry=entry,
            changes=(
                Change.update(RecordKind.PLAYER, player.id, player, updated),
                Change.insert(RecordKind.ENTRY, entry.id, entry),
            ),
        )

    def plan_credit(self, player: PlayerRecord, amount: Number, reason: EntryReason, reference: str) -> BalancePlan:
        return self._plan(player, parse_amount(amount), reason, reference)

    def plan_debit(self, player: PlayerRecord, amount: Number, reason: EntryReason, reference: str) -> BalancePlan:
        value = parse_amount(amount)
        if value > player.balance:
            raise InsufficientFunds()
        return self._plan(player, -value, reason, reference)

    # ------------------------------------------------------------------
    # Direct mutations
    # ------------------------------------------------------------------

    @with_async_optimistic_locking()
    async def credit(
        self, player_id: str, amount: Number, reason: EntryReason = EntryReason.DEPOSIT, reference: str = ""
    ) -> PlayerRecord:
        parse_amount(amount)
        async with self.lock(player_id):
            plan = self.plan_credit(await self.require(player_id), amount, reason, reference)
            if not await self.store.compare_and_swap(*plan.changes):
                raise OptimisticLockingError(f"player {player_id} changed during credit")
        logger.info(f"💰 BALANCE_CREDITED: player={player_id} +{plan.entry.delta} -> {plan.player.balance}")
        return plan.player

    @with_async_optimistic_locking()
    async def debit(
        self, player_id: str, amount: Number, reason: EntryReason = EntryReason.ROUND_STAKE, reference: str = ""
    ) -> PlayerRecord:
        parse_amount(amount)
        async with self.lock(player_id):
            plan = self.plan_debit(await self.require(player_id), amount, reason, reference)
            if not await self.store.compare_and_swap(*plan.changes):
                raise OptimisticLockingError(f"player {player_id} changed during debit")
        logger.info(f"💸 BALANCE_DEBITED: player={player_id} {plan.entry.delta} -> {plan.player.balance}")
        return plan.player

    @with_async_optimistic_locking()
    async def update_profile(self, player_id: str, nickname: Optional[str], email: Optional[str]) -> PlayerRecord:
        """The only operation that touches nickname and email"""
        clean_nickname, clean_email = clean_profile(nickname, email)

        async with self.lock(player_id):
            player = await self.require(player_id)
            updated = bump(player, nickname=clean_nickname, email=clean_email, updated_at=utc_now())
            if not await self.store.compare_and_swap(Change.update(RecordKind.PLAYER, player_id, player, updated)):
                raise OptimisticLockingError(f"player {player_id} changed during profile update")

        logger.info(
            f"📝 PROFILE_UPDATED: player={player_id} nickname={clean_nickname} "
            f"email={data_sanitizer.mask_email(clean_email) if clean_email else None}"
        )
        return updated
