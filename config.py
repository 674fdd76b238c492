"""Configuration management for the Wager Ledger service"""

import os
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import FrozenSet, Optional, Tuple

from dotenv import load_dotenv

from utils.data_sanitizer import mask_api_key_safe

load_dotenv()

logger = logging.getLogger(__name__)


def _split_csv(raw: Optional[str]) -> Tuple[str, ...]:
    if not raw:
        return ()
    return tuple(part.strip() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class PassimPaySettings:
    """Everything the signer, gateway client and webhook path need"""

    platform_id: str = ""
    secret_key: str = ""
    base_url: str = "https://api.passimpay.io"
    callback_url: str = ""
    currency: str = "USD"
    address_lifetime: int = 3600
    timeout_seconds: float = 15.0
    signature_placement: str = "header"
    credit_source: str = "requested"
    payment_ids: FrozenSet[int] = frozenset()
    success_statuses: FrozenSet[str] = frozenset({"success", "paid", "1"})

    @property
    def is_configured(self) -> bool:
        return bool(self.platform_id and self.secret_key)

    @property
    def address_endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/v2/address"


@dataclass(frozen=True)
class LedgerSettings:
    """Explicit configuration passed into the ledger components"""

    starting_balance: Decimal = Decimal("100")
    store_backend: str = "memory"
    database_url: str = "sqlite:///./ledger.db"
    max_handle_length: int = 64
    passimpay: PassimPaySettings = field(default_factory=PassimPaySettings)


class Config:
    """Application configuration"""

    # Environment detection
    ENVIRONMENT = os.getenv("ENVIRONMENT", "development").lower().strip()
    IS_PRODUCTION = ENVIRONMENT == "production"
    CURRENT_ENVIRONMENT = "production" if IS_PRODUCTION else "development"

    # HTTP surface
    PORT = int(os.getenv("PORT", "3001"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    CORS_ALLOW_ORIGINS = _split_csv(os.getenv("CORS_ALLOW_ORIGINS", "*"))

    # Ledger
    STARTING_BALANCE = os.getenv("STARTING_BALANCE", "100")
    LEDGER_STORE_BACKEND = os.getenv("LEDGER_STORE_BACKEND", "memory").lower().strip()
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./ledger.db")

    # PassimPay configuration
    PASSIMPAY_PLATFORM_ID = os.getenv("PASSIMPAY_PLATFORM_ID", "")
    PASSIMPAY_API_KEY = os.getenv("PASSIMPAY_API_KEY", os.getenv("PASSIMPAY_SECRET_KEY", ""))
    PASSIMPAY_BASE_URL = os.getenv("PASSIMPAY_BASE_URL", "https://api.passimpay.io")
    PASSIMPAY_CALLBACK_URL = os.getenv("PASSIMPAY_CALLBACK_URL", "")
    PASSIMPAY_CURRENCY = os.getenv("PASSIMPAY_CURRENCY", "USD")
    PASSIMPAY_ADDRESS_LIFETIME = int(os.getenv("PASSIMPAY_ADDRESS_LIFETIME", "3600"))
    PASSIMPAY_TIMEOUT_SECONDS = float(os.getenv("PASSIMPAY_TIMEOUT_SECONDS", "15"))
    # "header": signature in x-signature over the exact body bytes
    # "body": signature in a "sign" field next to the payload
    PASSIMPAY_SIGNATURE_PLACEMENT = os.getenv("PASSIMPAY_SIGNATURE_PLACEMENT", "header").lower().strip()
    # "requested": credit the deposit's amountFiat, "reported": credit the webhook amount
    PASSIMPAY_CREDIT_SOURCE = os.getenv("PASSIMPAY_CREDIT_SOURCE", "requested").lower().strip()
    PASSIMPAY_PAYMENT_IDS = _split_csv(os.getenv("PASSIMPAY_PAYMENT_IDS"))
    PASSIMPAY_SUCCESS_STATUSES = _split_csv(os.getenv("PASSIMPAY_SUCCESS_STATUSES", "success,paid,1"))

    @staticmethod
    def passimpay_settings() -> PassimPaySettings:
        placement = Config.PASSIMPAY_SIGNATURE_PLACEMENT
        if placement not in ("header", "body"):
            raise ValueError(f"PASSIMPAY_SIGNATURE_PLACEMENT must be 'header' or 'body', got {placement!r}")

        credit_source = Config.PASSIMPAY_CREDIT_SOURCE
        if credit_source not in ("requested", "reported"):
            raise ValueError(f"PASSIMPAY_CREDIT_SOURCE must be 'requested' or 'reported', got {credit_source!r}")

        return PassimPaySettings(
            platform_id=Config.PASSIMPAY_PLATFORM_ID,
            secret_key=Config.PASSIMPAY_API_KEY,
            base_url=Config.PASSIMPAY_BASE_URL,
            callback_url=Config.PASSIMPAY_CALLBACK_URL,
            currency=Config.PASSIMPAY_CURRENCY,
            address_lifetime=Config.PASSIMPAY_ADDRESS_LIFETIME,
            timeout_seconds=Config.PASSIMPAY_TIMEOUT_SECONDS,
            signature_placement=placement,
            credit_source=credit_source,
            payment_ids=frozenset(int(code) for code in Config.PASSIMPAY_PAYMENT_IDS),
            success_statuses=frozenset(status.lower() for status in Config.PASSIMPAY_SUCCESS_STATUSES),
        )

    @staticmethod
    def ledger_settings() -> LedgerSettings:
        """Build the immutable settings object handed to the app factory"""
        backend = Config.LEDGER_STORE_BACKEND
        if backend not in ("memory", "sql"):
            raise ValueError(f"LEDGER_STORE_BACKEND must be 'memory' or 'sql', got {backend!r}")

        return LedgerSettings(
            starting_balance=Decimal(Config.STARTING_BALANCE),
            store_backend=backend,
            database_url=Config.DATABASE_URL,
            passimpay=Config.passimpay_settings(),
        )

    @staticmethod
    def validate_passimpay_configuration(settings: Optional[PassimPaySettings] = None) -> bool:
        """Log the PassimPay security posture without printing secrets"""
        settings = settings or Config.passimpay_settings()

        logger.info("🔧 PassimPay Configuration:")
        logger.info(f"   Environment: {Config.CURRENT_ENVIRONMENT.upper()}")
        logger.info(f"   Platform ID: {settings.platform_id or '[NOT SET]'}")
        logger.info(f"   Secret: {mask_api_key_safe(settings.secret_key)}")
        logger.info(f"   Signature placement: {settings.signature_placement}")
        logger.info(f"   Credit source: {settings.credit_source}")

        if not settings.is_configured:
            if Config.IS_PRODUCTION:
                logger.error("❌ PASSIMPAY_PLATFORM_ID/PASSIMPAY_API_KEY missing - deposits and webhooks will be rejected")
            else:
                logger.warning("⚠️ PassimPay credentials not configured - deposits and webhooks will be rejected")
            return False

        if not settings.callback_url:
            logger.warning("⚠️ PASSIMPAY_CALLBACK_URL not set - gateway will not know where to deliver webhooks")

        return True
