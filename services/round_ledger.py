"""
Round Ledger
============

Bet round lifecycle: the stake is escrowed (debited) when a round opens,
and the round is settled exactly once. A settle call on a round that is
already won or lost pays nothing and reports the current balance.
"""

import logging
from decimal import Decimal, ROUND_HALF_UP
from typing import NamedTuple, Optional

from models import EntryReason, RoundOutcome, RoundStatus
from services.identity_resolver import IdentityResolver
from services.ledger_store import Change, RecordKind, RoundRecord, bump, new_id, utc_now
from services.player_store import PlayerStore, parse_amount
from utils.decimal_precision import MonetaryDecimal, Number
from utils.exception_handler import RoundNotFound, RoundOwnershipMismatch, ValidationError
from utils.ledger_state_validator import RoundStateValidator
from utils.optimistic_locking import OptimisticLockingError, with_async_optimistic_locking

logger = logging.getLogger(__name__)

MIN_MULTIPLIER = Decimal("1")
MULTIPLIER_PRECISION = Decimal("0.000001")
ZERO = Decimal("0.00")


class RoundStarted(NamedTuple):
    round_id: str
    balance: Decimal


class RoundSettlement(NamedTuple):
    win: Decimal
    balance: Decimal
    already_settled: bool = False


def parse_outcome(outcome: Optional[str]) -> RoundOutcome:
    try:
        return RoundOutcome(str(outcome).strip().lower())
    except ValueError as e:
        raise ValidationError("result must be 'won' or 'lost'") from e


def parse_multiplier(multiplier: Optional[Number]) -> Decimal:
    """Finite multiplier clamped to at least 1; absent means 1"""
    if multiplier is None:
        return MIN_MULTIPLIER
    try:
        value = MonetaryDecimal.to_decimal(multiplier, "multiplier")
    except ValueError as e:
        raise ValidationError("multiplier must be a finite number") from e
    return max(MIN_MULTIPLIER, value)


class RoundLedger:
    def __init__(self, players: PlayerStore, resolver: IdentityResolver):
        self.players = players
        self.resolver = resolver
        self.store = players.store

    async def get(self, round_id: str) -> Optional[RoundRecord]:
        return await self.store.get(RecordKind.ROUND, round_id)

    async def start(self, player_id: Optional[str], bet: Number) -> RoundStarted:
        """Debit ``bet`` and open an active round; nothing is written on failure"""
        stake = parse_amount(bet, "bet")
        player = await self.resolver.resolve_handle(player_id)
        return await self._open_round(player.id, stake)

    @with_async_optimistic_locking()
    async def _open_round(self, player_id: str, stake: Decimal) -> RoundStarted:
        async with self.players.lock(player_id):
            player = await self.players.require(player_id)
            round_id = new_id("r_")
            plan = self.players.plan_debit(player, stake, EntryReason.ROUND_STAKE, round_id)
            record = RoundRecord(
                id=round_id,
                player_id=player_id,
                bet=stake,
                status=RoundStatus.ACTIVE.value,
                created_at=utc_now(),
            )
            if not await self.store.compare_and_swap(*plan.changes, Change.insert(RecordKind.ROUND, round_id, record)):
                raise OptimisticLockingError(f"player {player_id} changed while opening a round")

        logger.info(f"🎲 ROUND_STARTED: round={round_id} player={player_id} bet={stake} balance={plan.player.balance}")
        return RoundStarted(round_id, plan.player.balance)

    async def finish(
        self,
        player_id: Optional[str],
        round_id: Optional[str],
        outcome: Optional[str],
        multiplier: Optional[Number] = None,
    ) -> RoundSettlement:
        """
        Settle a round once.

        Unknown rounds raise RoundNotFound and rounds owned by someone else
        raise RoundOwnershipMismatch. For a round that is already settled the
        outcome and multiplier are not looked at: the answer is win 0 and the
        current balance.
        """
        caller = self.resolver.require_handle(player_id)
        if not round_id:
            raise ValidationError("roundId is required")
        return await self._settle(caller, str(round_id), outcome, multiplier)

    @with_async_optimistic_locking()
    async def _settle(
        self, caller: str, round_id: str, outcome: Optional[str], multiplier: Optional[Number]
    ) -> RoundSettlement:
        record = await self.get(round_id)
        if record is None:
            raise RoundNotFound()
        if record.player_id != caller:
            logger.warning(f"🚫 ROUND_OWNERSHIP_MISMATCH: round={round_id} owner={record.player_id} caller={caller}")
            raise RoundOwnershipMismatch()

        async with self.players.lock(record.player_id):
            record = await self.get(round_id)
            player = await self.players.require(record.player_id)

            if RoundStateValidator.is_terminal(record.status):
                logger.info(f"🔁 ROUND_ALREADY_SETTLED: round={round_id} status={record.status}")
                return RoundSettlement(ZERO, player.balance, already_settled=True)

            result = parse_outcome(outcome)
            factor = parse_multiplier(multiplier)
            new_status = RoundStatus.WON if result is RoundOutcome.WON else RoundStatus.LOST
            RoundStateValidator.assert_transition(record.status, new_status.value, round_id)

            win = MonetaryDecimal.multiply_precise(record.bet, factor) if new_status is RoundStatus.WON else ZERO

            settled = bump(
                record,
                status=new_status.value,
                multiplier=factor.quantize(MULTIPLIER_PRECISION, rounding=ROUND_HALF_UP),
                win=win,
                settled_at=utc_now(),
            )
            changes = [Change.update(RecordKind.ROUND, round_id, record, settled)]
            balance = player.balance
            if win > 0:
                plan = self.players.plan_credit(player, win, EntryReason.ROUND_WIN, round_id)
                changes.extend(plan.changes)
                balance = plan.player.balance

            if not await self.store.compare_and_swap(*changes):
                raise OptimisticLockingError(f"round {round_id} changed while settling")

        logger.info(
            f"🏁 ROUND_SETTLED: round={round_id} player={record.player_id} status={new_status.value} "
            f"multiplier={factor} win={win} balance={balance}"
        )
        return RoundSettlement(win, balance)
