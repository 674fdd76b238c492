"""
Identity Resolver

Maps a caller-supplied player handle to a player record, creating the
player with the starting balance on first contact. Existing players are
returned untouched; resolution never overwrites a balance or profile.
"""

import logging
from typing import Optional

from config import LedgerSettings
from services.ledger_store import Change, LedgerStore, PlayerRecord, RecordKind, new_id, utc_now
from utils.decimal_precision import quantize_money
from utils.exception_handler import InternalError, ValidationError

logger = logging.getLogger(__name__)

MAX_CREATE_ATTEMPTS = 5


class IdentityResolver:
    def __init__(self, store: LedgerStore, settings: LedgerSettings):
        self.store = store
        self.settings = settings

    def normalize_handle(self, caller_id: Optional[str]) -> Optional[str]:
        """Trimmed handle, or None when the caller sent nothing usable"""
        if caller_id is None:
            return None
        handle = str(caller_id).strip()
        if not handle:
            return None
        if len(handle) > self.settings.max_handle_length:
            raise ValidationError(f"player id must be at most {self.settings.max_handle_length} characters")
        if not handle.isprintable():
            raise ValidationError("player id contains unsupported characters")
        return handle

    def require_handle(self, caller_id: Optional[str], field_name: str = "playerId") -> str:
        handle = self.normalize_handle(caller_id)
        if handle is None:
            raise ValidationError(f"{field_name} is required")
        return handle

    async def resolve(self, caller_id: Optional[str]) -> PlayerRecord:
        """
        Session resolution: a known id returns its player, anything else
        gets a freshly generated id. Never rejects the caller's id; one that
        could not be a player id is treated like no id at all.
        """
        try:
            handle = self.normalize_handle(caller_id)
        except ValidationError as e:
            logger.info(f"🆔 SESSION_HANDLE_IGNORED: {e.message}")
            handle = None

        if handle is not None:
            existing = await self.store.get(RecordKind.PLAYER, handle)
            if existing is not None:
                return existing

        for _ in range(MAX_CREATE_ATTEMPTS):
            player = await self._create(new_id("p_"), adopt_existing=False)
            if player is not None:
                return player
        raise InternalError("could not allocate a unique player id")

    async def resolve_handle(self, caller_id: Optional[str], field_name: str = "playerId") -> PlayerRecord:
        """
        Ledger-path resolution: an unknown handle becomes the new player's
        id, so follow-up calls with the same handle reach the same balance.
        """
        handle = self.require_handle(caller_id, field_name)
        existing = await self.store.get(RecordKind.PLAYER, handle)
        if existing is not None:
            return existing
        return await self._create(handle, adopt_existing=True)

    async def _create(self, player_id: str, adopt_existing: bool) -> Optional[PlayerRecord]:
        now = utc_now()
        player = PlayerRecord(
            id=player_id,
            balance=quantize_money(self.settings.starting_balance),
            created_at=now,
            updated_at=now,
        )
        if await self.store.compare_and_swap(Change.insert(RecordKind.PLAYER, player_id, player)):
            logger.info(f"👤 PLAYER_CREATED: player={player_id} balance={player.balance}")
            return player

        # Lost a race with a concurrent first contact for the same id
        if adopt_existing:
            return await self.store.get(RecordKind.PLAYER, player_id)
        return None
