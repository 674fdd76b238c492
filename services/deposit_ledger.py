"""
Deposit Ledger
==============

PassimPay deposit lifecycle:

    create   -> gateway issues an address -> deposit stored as pending
    webhook  -> signature verified -> intermediate status recorded, or
                confirmed and credited exactly once

The webhook is the only untrusted entry point. Nothing is read from the
body until the signature checks out, and every verified notification is
acknowledged (unknown order, duplicate, malformed) so the gateway does not
retry into a credit that already happened.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, Protocol, Union

import orjson
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PayloadValidationError

from config import PassimPaySettings
from models import DepositStatus, EntryReason
from services.identity_resolver import IdentityResolver
from services.ledger_store import Change, DepositRecord, RecordKind, bump, new_id, utc_now
from services.passimpay_service import GatewayAddress
from services.passimpay_signer import PassimPaySigner
from services.player_store import PlayerStore, parse_amount
from utils.data_sanitizer import mask_signature
from utils.decimal_precision import quantize_money
from utils.exception_handler import InternalError, InvalidSignature, ValidationError
from utils.ledger_state_validator import DepositStateValidator
from utils.optimistic_locking import OptimisticLockingError, with_async_optimistic_locking

logger = logging.getLogger(__name__)

MAX_STATUS_LENGTH = 32


class PaymentGateway(Protocol):
    async def create_address(self, order_id: str, payment_id: int, amount: Decimal) -> GatewayAddress:
        ...


class DepositNotification(BaseModel):
    """Verified PassimPay deposit callback"""

    model_config = ConfigDict(extra="allow", populate_by_name=True)

    order_id: str = Field(validation_alias=AliasChoices("order_id", "orderId"), min_length=1, max_length=64)
    status: str = Field(min_length=1)
    amount: Optional[str] = Field(default=None, validation_alias=AliasChoices("amount", "amountReceive"))

    @field_validator("order_id", "status", mode="before")
    @classmethod
    def _stringify(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("must be a string or number")
        if isinstance(value, (int, float)):
            return str(value)
        return value

    @field_validator("status")
    @classmethod
    def _normalize_status(cls, value: str) -> str:
        status = value.strip().lower()
        if not status:
            raise ValueError("status must not be blank")
        return status

    @field_validator("amount", mode="before")
    @classmethod
    def _amount_text(cls, value: Any) -> Any:
        if value is None or value == "" or isinstance(value, bool):
            return None
        return str(value)


class WebhookOutcome(Enum):
    CREDITED = "credited"
    DUPLICATE = "duplicate"
    PENDING = "pending"
    UNKNOWN_ORDER = "unknown_order"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class WebhookResult:
    accepted: bool
    outcome: WebhookOutcome
    order_id: Optional[str] = None


def parse_payment_id(payment_id: Any, allowed: frozenset) -> int:
    if isinstance(payment_id, bool):
        raise ValidationError("paymentId must be a positive integer")
    try:
        code = int(str(payment_id).strip())
    except (TypeError, ValueError) as e:
        raise ValidationError("paymentId must be a positive integer") from e
    if code <= 0:
        raise ValidationError("paymentId must be a positive integer")
    if allowed and code not in allowed:
        raise ValidationError(f"paymentId {code} is not supported")
    return code


class DepositLedger:
    def __init__(
        self,
        players: PlayerStore,
        resolver: IdentityResolver,
        gateway: PaymentGateway,
        signer: PassimPaySigner,
        settings: PassimPaySettings,
    ):
        self.players = players
        self.resolver = resolver
        self.gateway = gateway
        self.signer = signer
        self.settings = settings
        self.store = players.store

    async def get(self, order_id: str) -> Optional[DepositRecord]:
        return await self.store.get(RecordKind.DEPOSIT, order_id)

    async def create(self, user_id: Optional[str], amount_fiat: Any, payment_id: Any) -> DepositRecord:
        """
        Ask the gateway for an address and record a pending deposit.

        Gateway failures propagate as GatewayError before anything is stored.
        """
        amount = parse_amount(amount_fiat, "amountFiat")
        coin = parse_payment_id(payment_id, self.settings.payment_ids)
        player = await self.resolver.resolve_handle(user_id, "userId")

        order_id = new_id("d_")
        issued = await self.gateway.create_address(order_id, coin, amount)

        deposit = DepositRecord(
            order_id=order_id,
            user_id=player.id,
            payment_id=coin,
            amount_fiat=amount,
            status=DepositStatus.PENDING.value,
            address=issued.address,
            destination_tag=issued.destination_tag,
            created_at=utc_now(),
        )
        if not await self.store.compare_and_swap(Change.insert(RecordKind.DEPOSIT, order_id, deposit)):
            raise InternalError(f"order id collision for {order_id}")

        logger.info(
            f"🧾 DEPOSIT_CREATED: order={order_id} player={player.id} amount={amount} payment_id={coin}"
        )
        return deposit

    async def apply_webhook(self, raw_body: Union[bytes, str], provided_signature: Optional[str]) -> WebhookResult:
        """
        Verify and apply one gateway notification.

        Raises InvalidSignature without touching state when the signature does
        not match. Every other outcome is accepted.
        """
        if not self.signer.verify_notification(raw_body, provided_signature):
            logger.critical(
                f"🚨 PASSIMPAY_SIGNATURE_FAILED: signature={mask_signature(provided_signature)} "
                f"body_bytes={len(raw_body or b'')}"
            )
            raise InvalidSignature()

        try:
            notification = DepositNotification.model_validate(orjson.loads(raw_body))
        except (orjson.JSONDecodeError, PayloadValidationError) as e:
            logger.warning(f"⚠️ PASSIMPAY_WEBHOOK_MALFORMED: verified body rejected by schema: {e}")
            return WebhookResult(True, WebhookOutcome.MALFORMED)

        return await self._apply_notification(notification)

    def _credit_amount(self, deposit: DepositRecord, notification: DepositNotification) -> Decimal:
        if self.settings.credit_source != "reported":
            return deposit.amount_fiat

        try:
            reported = quantize_money(notification.amount)
        except ValueError as e:
            logger.warning(
                f"⚠️ PASSIMPAY_REPORTED_AMOUNT_UNUSABLE: order={deposit.order_id} {e}, "
                f"crediting requested {deposit.amount_fiat}"
            )
            return deposit.amount_fiat

        if reported <= 0:
            logger.warning(
                f"⚠️ PASSIMPAY_REPORTED_AMOUNT_UNUSABLE: order={deposit.order_id} amount={reported}, "
                f"crediting requested {deposit.amount_fiat}"
            )
            return deposit.amount_fiat
        return reported

    @with_async_optimistic_locking()
    async def _apply_notification(self, notification: DepositNotification) -> WebhookResult:
        order_id = notification.order_id
        deposit = await self.get(order_id)
        if deposit is None:
            logger.warning(f"❓ PASSIMPAY_UNKNOWN_ORDER: order={order_id} status={notification.status}")
            return WebhookResult(True, WebhookOutcome.UNKNOWN_ORDER, order_id)

        async with self.players.lock(deposit.user_id):
            deposit = await self.get(order_id)

            if DepositStateValidator.is_terminal(deposit.status):
                logger.info(f"🔁 DEPOSIT_ALREADY_CONFIRMED: order={order_id} redelivery ignored")
                return WebhookResult(True, WebhookOutcome.DUPLICATE, order_id)

            if notification.status not in self.settings.success_statuses:
                return await self._record_intermediate_status(deposit, notification.status)

            player = await self.players.require(deposit.user_id)
            credit = self._credit_amount(deposit, notification)
            DepositStateValidator.assert_transition(deposit.status, DepositStatus.CONFIRMED.value, order_id)

            confirmed = bump(
                deposit,
                status=DepositStatus.CONFIRMED.value,
                credited_amount=credit,
                confirmed_at=utc_now(),
            )
            plan = self.players.plan_credit(player, credit, EntryReason.DEPOSIT, order_id)
            if not await self.store.compare_and_swap(
                Change.update(RecordKind.DEPOSIT, order_id, deposit, confirmed), *plan.changes
            ):
                raise OptimisticLockingError(f"deposit {order_id} changed while confirming")

        logger.info(
            f"✅ DEPOSIT_CONFIRMED: order={order_id} player={deposit.user_id} "
            f"credited={credit} balance={plan.player.balance}"
        )
        return WebhookResult(True, WebhookOutcome.CREDITED, order_id)

    async def _record_intermediate_status(self, deposit: DepositRecord, reported: str) -> WebhookResult:
        order_id = deposit.order_id
        status = reported[:MAX_STATUS_LENGTH]

        if status == DepositStatus.CONFIRMED.value:
            # Only a recognized success status may reach the terminal state
            logger.warning(f"⚠️ PASSIMPAY_STATUS_RESERVED: order={order_id} reported '{status}' is not a success value")
            return WebhookResult(True, WebhookOutcome.PENDING, order_id)

        if status == deposit.status:
            return WebhookResult(True, WebhookOutcome.PENDING, order_id)

        valid, reason = DepositStateValidator.validate_transition(deposit.status, status, order_id)
        if not valid:
            logger.warning(f"⚠️ PASSIMPAY_STATUS_IGNORED: {reason}")
            return WebhookResult(True, WebhookOutcome.PENDING, order_id)

        updated = bump(deposit, status=status)
        if not await self.store.compare_and_swap(Change.update(RecordKind.DEPOSIT, order_id, deposit, updated)):
            raise OptimisticLockingError(f"deposit {order_id} changed while recording status")

        logger.info(f"⏳ DEPOSIT_STATUS_UPDATED: order={order_id} {deposit.status} -> {status}")
        return WebhookResult(True, WebhookOutcome.PENDING, order_id)
