"""
Ledger Store
============

Async storage abstraction behind the ledgers. Records are immutable snapshots
carrying a version; every write names the version it expects so a stale
writer can never overwrite a newer record.

``compare_and_swap`` applies a group of changes all-or-nothing, which is
how a balance change, its journal entry and the round or deposit
transition that caused it land as one unit.
"""

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def new_id(prefix: str) -> str:
    """Opaque unique id such as ``p_3f9c0a7d21e84b6c``"""
    return f"{prefix}{uuid.uuid4().hex[:16]}"


class RecordKind(Enum):
    PLAYER = "player"
    ROUND = "round"
    DEPOSIT = "deposit"
    ENTRY = "entry"


@dataclass(frozen=True)
class PlayerRecord:
    id: str
    balance: Decimal
    nickname: Optional[str] = None
    email: Optional[str] = None
    version: int = 1
    created_at: datetime = None
    updated_at: datetime = None


@dataclass(frozen=True)
class RoundRecord:
    id: str
    player_id: str
    bet: Decimal
    status: str
    multiplier: Optional[Decimal] = None
    win: Decimal = Decimal("0.00")
    version: int = 1
    created_at: datetime = None
    settled_at: Optional[datetime] = None


@dataclass(frozen=True)
class DepositRecord:
    order_id: str
    user_id: str
    payment_id: int
    amount_fiat: Decimal
    status: str
    address: Optional[str] = None
    destination_tag: Optional[str] = None
    credited_amount: Optional[Decimal] = None
    version: int = 1
    created_at: datetime = None
    confirmed_at: Optional[datetime] = None


@dataclass(frozen=True)
class LedgerEntryRecord:
    id: str
    player_id: str
    sequence: int
    delta: Decimal
    balance_after: Decimal
    reason: str
    reference: str
    version: int = 1
    created_at: datetime = None


def bump(record, **changes):
    """Next version of a record with the given fields changed"""
    return replace(record, version=record.version + 1, **changes)


@dataclass(frozen=True)
class Change:
    """
    One conditional write.

    ``expected_version`` is the version the writer read, or None when the
    key must not exist yet (insert).
    """

    kind: RecordKind
    key: str
    expected_version: Optional[int]
    record: Any

    @classmethod
    def insert(cls, kind: RecordKind, key: str, record: Any) -> "Change":
        return cls(kind, key, None, record)

    @classmethod
    def update(cls, kind: RecordKind, key: str, previous: Any, record: Any) -> "Change":
        return cls(kind, key, previous.version, record)


class LedgerStore(Protocol):
    """Keyed storage with atomic multi-record compare-and-swap"""

    backend: str

    async def get(self, kind: RecordKind, key: str) -> Optional[Any]:
        ...

    async def put(self, kind: RecordKind, key: str, record: Any) -> None:
        ...

    async def compare_and_swap(self, *changes: Change) -> bool:
        ...

    async def entries_for(self, player_id: str) -> List[LedgerEntryRecord]:
        ...

    async def close(self) -> None:
        ...


class InMemoryLedgerStore:
    """
    Process-local store; the default backend and the fake used by tests.

    Methods never await internally, so each call runs to completion on the
    event loop without interleaving.
    """

    backend = "memory"

    def __init__(self):
        self._tables: Dict[RecordKind, Dict[str, Any]] = {kind: {} for kind in RecordKind}

    async def get(self, kind: RecordKind, key: str) -> Optional[Any]:
        return self._tables[kind].get(key)

    async def put(self, kind: RecordKind, key: str, record: Any) -> None:
        """Unconditional write, for seeding and administrative fixes"""
        self._tables[kind][key] = record

    async def compare_and_swap(self, *changes: Change) -> bool:
        for change in changes:
            current = self._tables[change.kind].get(change.key)
            if change.expected_version is None:
                if current is not None:
                    logger.debug(f"🔒 CAS_CONFLICT: {change.kind.value} {change.key} already exists")
                    return False
            elif current is None or current.version != change.expected_version:
                logger.debug(
                    f"🔒 CAS_CONFLICT: {change.kind.value} {change.key} "
                    f"expected v{change.expected_version}, found "
                    f"{'nothing' if current is None else f'v{current.version}'}"
                )
                return False

        for change in changes:
            self._tables[change.kind][change.key] = change.record
        return True

    async def entries_for(self, player_id: str) -> List[LedgerEntryRecord]:
        entries = [
            entry for entry in self._tables[RecordKind.ENTRY].values()
            if entry.player_id == player_id
        ]
        return sorted(entries, key=lambda entry: entry.sequence)

    async def close(self) -> None:
        """Nothing to release; records live as long as the store object"""
