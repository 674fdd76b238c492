"""Wiring of the ledger components for one application instance"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from config import LedgerSettings
from database import build_engine, create_tables
from services.deposit_ledger import DepositLedger, PaymentGateway
from services.identity_resolver import IdentityResolver
from services.ledger_store import InMemoryLedgerStore, LedgerStore
from services.passimpay_service import PassimPayService
from services.passimpay_signer import PassimPaySigner
from services.player_store import PlayerStore
from services.round_ledger import RoundLedger
from services.sql_ledger_store import SqlLedgerStore

logger = logging.getLogger(__name__)


@dataclass
class LedgerServices:
    settings: LedgerSettings
    store: LedgerStore
    players: PlayerStore
    resolver: IdentityResolver
    rounds: RoundLedger
    deposits: DepositLedger
    signer: PassimPaySigner
    gateway: PaymentGateway


async def build_store(settings: LedgerSettings) -> LedgerStore:
    if settings.store_backend == "sql":
        engine = build_engine(settings.database_url)
        await create_tables(engine)
        return SqlLedgerStore(engine)
    return InMemoryLedgerStore()


async def build_ledger_services(
    settings: LedgerSettings,
    store: Optional[LedgerStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> LedgerServices:
    store = store if store is not None else await build_store(settings)
    passimpay = settings.passimpay
    signer = PassimPaySigner(passimpay.platform_id, passimpay.secret_key, passimpay.signature_placement)
    gateway = gateway if gateway is not None else PassimPayService(passimpay, signer)

    players = PlayerStore(store)
    resolver = IdentityResolver(store, settings)

    logger.info(f"🔧 LEDGER_SERVICES: store={store.backend} signature={passimpay.signature_placement}")
    return LedgerServices(
        settings=settings,
        store=store,
        players=players,
        resolver=resolver,
        rounds=RoundLedger(players, resolver),
        deposits=DepositLedger(players, resolver, gateway, signer, passimpay),
        signer=signer,
        gateway=gateway,
    )


def get_services(request: Request) -> LedgerServices:
    """FastAPI dependency returning the services bound to the running app"""
    return request.app.state.ledger
