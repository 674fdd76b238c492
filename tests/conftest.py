"""
Shared fixtures for the ledger test suite

Every fixture builds its own store, so tests never share balances. The
payment gateway is replaced by FakeGateway unless a test exercises the
aiohttp client itself.
"""

import json
import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

from config import LedgerSettings, PassimPaySettings
from database import build_engine, create_tables
from services.deposit_ledger import DepositLedger
from services.identity_resolver import IdentityResolver
from services.ledger_store import InMemoryLedgerStore
from services.passimpay_service import GatewayAddress
from services.passimpay_signer import PassimPaySigner
from services.player_store import PlayerStore
from services.round_ledger import RoundLedger
from services.sql_ledger_store import SqlLedgerStore
from utils.exception_handler import GatewayError
from webhook_server import create_app

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

PLATFORM_ID = "4242"
SECRET_KEY = "test_passimpay_secret_0123456789"


class FakeGateway:
    """Records address requests and answers from a script"""

    def __init__(self):
        self.calls: List[Dict[str, Any]] = []
        self.error: Optional[Exception] = None
        self.address = "TXkq5p3w9sWmZzL1oCk1WmNq3X7yRzA8bE"
        self.destination_tag: Optional[str] = None

    async def create_address(self, order_id: str, payment_id: int, amount: Decimal) -> GatewayAddress:
        self.calls.append({"order_id": order_id, "payment_id": payment_id, "amount": amount})
        if self.error is not None:
            raise self.error
        return GatewayAddress(address=self.address, destination_tag=self.destination_tag)

    def fail_with(self, message: str = "Payment gateway temporarily unavailable") -> None:
        self.error = GatewayError(message)


def make_settings(**passimpay_overrides) -> LedgerSettings:
    passimpay = dict(
        platform_id=PLATFORM_ID,
        secret_key=SECRET_KEY,
        callback_url="https://ledger.example.com/webhook/deposit",
        signature_placement="header",
    )
    passimpay.update(passimpay_overrides)
    return LedgerSettings(starting_balance=Decimal("100"), passimpay=PassimPaySettings(**passimpay))


def signed_webhook(signer: PassimPaySigner, payload: Dict[str, Any]) -> tuple:
    """(raw_body, header_signature) the way the gateway would send it"""
    if signer.placement == "header":
        raw = json.dumps(payload, separators=(",", ":"))
        return raw.encode("utf-8"), signer.sign_serialized(raw)

    body = dict(payload)
    body["sign"] = signer.sign(payload, None)
    return json.dumps(body).encode("utf-8"), None


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def memory_store():
    return InMemoryLedgerStore()


async def _sqlite_store() -> SqlLedgerStore:
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await create_tables(engine)
    return SqlLedgerStore(engine)


@pytest_asyncio.fixture
async def sql_store():
    store = await _sqlite_store()
    yield store
    await store.close()


@pytest_asyncio.fixture(params=["memory", "sql"])
async def store(request):
    """Run a test against both store backends"""
    backend = InMemoryLedgerStore() if request.param == "memory" else await _sqlite_store()
    yield backend
    await backend.close()


@pytest.fixture
def signer(settings):
    passimpay = settings.passimpay
    return PassimPaySigner(passimpay.platform_id, passimpay.secret_key, passimpay.signature_placement)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def players(store):
    return PlayerStore(store)


@pytest.fixture
def resolver(store, settings):
    return IdentityResolver(store, settings)


@pytest.fixture
def rounds(players, resolver):
    return RoundLedger(players, resolver)


@pytest.fixture
def deposits(players, resolver, gateway, signer, settings):
    return DepositLedger(players, resolver, gateway, signer, settings.passimpay)


@pytest.fixture
def client(settings, memory_store, gateway):
    app = create_app(settings=settings, store=memory_store, gateway=gateway)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def settings_factory():
    return make_settings


@pytest.fixture
def sign_webhook():
    return signed_webhook
