"""
SQL Ledger Store

Durable LedgerStore on SQLAlchemy's asyncio extension. A compare-and-swap
group runs in one transaction: inserts rely on the primary key, updates on
``WHERE version = :expected``. The first conflict rolls the whole group back.

SQLite runs every session over one shared connection, so on that dialect
sessions are taken one at a time; other backends use the pool freely.
"""

import asyncio
import dataclasses
import logging
from contextlib import nullcontext
from typing import Any, Dict, List, Optional, Tuple, Type

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncEngine

from database import build_session_factory, managed_session
from models import Base, BetRound, Deposit, LedgerEntry, Player
from services.ledger_store import (
    Change, DepositRecord, LedgerEntryRecord, PlayerRecord, RecordKind, RoundRecord,
)
from utils.optimistic_locking import OptimisticLockingError, OptimisticLockManager

logger = logging.getLogger(__name__)

_TABLES: Dict[RecordKind, Tuple[Type[Base], type]] = {
    RecordKind.PLAYER: (Player, PlayerRecord),
    RecordKind.ROUND: (BetRound, RoundRecord),
    RecordKind.DEPOSIT: (Deposit, DepositRecord),
    RecordKind.ENTRY: (LedgerEntry, LedgerEntryRecord),
}


def _to_record(kind: RecordKind, row: Base) -> Any:
    record_cls = _TABLES[kind][1]
    return record_cls(**{field.name: getattr(row, field.name) for field in dataclasses.fields(record_cls)})


def _to_values(record: Any) -> Dict[str, Any]:
    return {field.name: getattr(record, field.name) for field in dataclasses.fields(record)}


class SqlLedgerStore:
    backend = "sql"

    def __init__(self, engine: AsyncEngine):
        self.engine = engine
        self.session_factory = build_session_factory(engine)
        self._serial = asyncio.Lock() if engine.dialect.name == "sqlite" else None

    def _session_scope(self):
        return self._serial if self._serial is not None else nullcontext()

    async def get(self, kind: RecordKind, key: str) -> Optional[Any]:
        model = _TABLES[kind][0]
        async with self._session_scope():
            async with managed_session(self.session_factory) as session:
                row = await session.get(model, key)
                return _to_record(kind, row) if row is not None else None

    async def put(self, kind: RecordKind, key: str, record: Any) -> None:
        model = _TABLES[kind][0]
        async with self._session_scope():
            async with managed_session(self.session_factory) as session:
                await session.merge(model(**_to_values(record)))

    async def compare_and_swap(self, *changes: Change) -> bool:
        async with self._session_scope():
            try:
                async with managed_session(self.session_factory) as session:
                    manager = OptimisticLockManager(session)
                    for change in changes:
                        model = _TABLES[change.kind][0]
                        values = _to_values(change.record)
                        if change.expected_version is None:
                            await manager.versioned_insert(model, values)
                        else:
                            await manager.versioned_update(model, change.key, values, change.expected_version)
            except (OptimisticLockingError, IntegrityError) as e:
                logger.debug(f"🔒 CAS_CONFLICT: {type(e).__name__}: {e}")
                return False
        return True

    async def entries_for(self, player_id: str) -> List[LedgerEntryRecord]:
        async with self._session_scope():
            async with managed_session(self.session_factory) as session:
                result = await session.execute(
                    select(LedgerEntry)
                    .where(LedgerEntry.player_id == player_id)
                    .order_by(LedgerEntry.sequence)
                )
                return [_to_record(RecordKind.ENTRY, row) for row in result.scalars().all()]

    async def close(self) -> None:
        await self.engine.dispose()
