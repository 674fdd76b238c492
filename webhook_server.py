"""
FastAPI Server for the Wager Ledger
Player sessions, bet rounds, PassimPay deposits and the deposit webhook
"""
import logging
import os
import sys
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from config import Config, LedgerSettings
from handlers.bet_api import router as bet_router
from handlers.deposit_api import router as deposit_router
from handlers.passimpay_webhook import router as passimpay_webhook_router
from handlers.player_api import router as player_router
from services.deposit_ledger import PaymentGateway
from services.ledger_services import build_ledger_services
from services.ledger_store import LedgerStore
from utils.exception_handler import register_exception_handlers

logger = logging.getLogger(__name__)


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or Config.LOG_LEVEL), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def create_app(
    settings: Optional[LedgerSettings] = None,
    store: Optional[LedgerStore] = None,
    gateway: Optional[PaymentGateway] = None,
) -> FastAPI:
    """
    Build the application.

    Settings default to the environment; ``store`` and ``gateway`` are
    injectable so tests can run against an in-memory store and a fake gateway.
    """
    settings = settings or Config.ledger_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(f"🔧 Ledger worker {os.getpid()} starting...")
        Config.validate_passimpay_configuration(settings.passimpay)
        app.state.ledger = await build_ledger_services(settings, store=store, gateway=gateway)
        logger.info(f"✅ Worker {os.getpid()} ready (store={app.state.ledger.store.backend})")

        yield

        logger.info(f"🔄 Ledger worker {os.getpid()} shutting down...")
        if store is None:
            await app.state.ledger.store.close()

    app = FastAPI(
        title="Wager Ledger",
        description="Player balances, bet rounds and PassimPay deposit reconciliation",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(Config.CORS_ALLOW_ORIGINS) or ["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(player_router)
    app.include_router(bet_router)
    app.include_router(deposit_router)
    app.include_router(passimpay_webhook_router)

    @app.get("/")
    async def root():
        """Liveness probe"""
        return {"status": "online"}

    @app.get("/health")
    async def health_check(request: Request):
        services = request.app.state.ledger
        return {
            "status": "healthy",
            "store": services.store.backend,
            "gateway_configured": services.settings.passimpay.is_configured,
            "signature_placement": services.settings.passimpay.signature_placement,
        }

    return app


def main() -> None:
    configure_logging()
    logger.info(f"🚀 Starting ledger server on port {Config.PORT} ({Config.CURRENT_ENVIRONMENT})")
    uvicorn.run("webhook_server:create_app", factory=True, host="0.0.0.0", port=Config.PORT)


if __name__ == "__main__":
    main()
