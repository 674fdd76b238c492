"""
DepositLedger tests
Deposit creation against a fake gateway and signed webhook reconciliation
"""

import json
from decimal import Decimal

import pytest

from models import DepositStatus
from services.deposit_ledger import DepositLedger, WebhookOutcome
from services.passimpay_signer import PassimPaySigner
from utils.exception_handler import GatewayError, InvalidAmount, InvalidSignature, ValidationError


async def _create(deposits, user="u1", amount="50", payment_id=10):
    return await deposits.create(user, amount, payment_id)


class TestDepositCreate:

    @pytest.mark.asyncio
    async def test_create_persists_pending_deposit_with_gateway_address(self, deposits, gateway, players):
        gateway.destination_tag = "123456"
        deposit = await _create(deposits)

        assert deposit.order_id.startswith("d_")
        assert deposit.status == DepositStatus.PENDING.value
        assert deposit.address == gateway.address
        assert deposit.destination_tag == "123456"
        assert deposit.amount_fiat == Decimal("50.00")

        stored = await deposits.get(deposit.order_id)
        assert stored.user_id == "u1"
        assert stored.payment_id == 10
        assert gateway.calls == [{"order_id": deposit.order_id, "payment_id": 10, "amount": Decimal("50.00")}]
        # Creating a deposit never moves money
        assert (await players.get("u1")).balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_gateway_failure_persists_nothing(self, deposits, gateway, store):
        gateway.fail_with()
        with pytest.raises(GatewayError):
            await _create(deposits)

        order_id = gateway.calls[0]["order_id"]
        assert await deposits.get(order_id) is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [0, "-1", "1.234", "fifty"])
    async def test_invalid_amount_never_reaches_gateway(self, deposits, gateway, amount):
        with pytest.raises(InvalidAmount):
            await _create(deposits, amount=amount)
        assert gateway.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payment_id", [0, -3, "btc", None, True])
    async def test_invalid_payment_id_is_rejected(self, deposits, gateway, payment_id):
        with pytest.raises(ValidationError):
            await _create(deposits, payment_id=payment_id)
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_payment_id_allow_list(self, players, resolver, gateway, signer, settings_factory):
        settings = settings_factory(payment_ids=frozenset({10, 20}))
        ledger = DepositLedger(players, resolver, gateway, signer, settings.passimpay)

        with pytest.raises(ValidationError):
            await ledger.create("u1", "5", 30)
        deposit = await ledger.create("u1", "5", "20")
        assert deposit.payment_id == 20


class TestDepositWebhook:

    @pytest.mark.asyncio
    async def test_worked_example_credit_once(self, deposits, players, signer, sign_webhook):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "success", "amount": "50.00"})

        first = await deposits.apply_webhook(raw, signature)
        assert first.accepted is True
        assert first.outcome is WebhookOutcome.CREDITED
        assert (await players.get("u1")).balance == Decimal("150.00")
        confirmed = await deposits.get(deposit.order_id)
        assert confirmed.status == DepositStatus.CONFIRMED.value
        assert confirmed.credited_amount == Decimal("50.00")

        for _ in range(3):
            replay = await deposits.apply_webhook(raw, signature)
            assert replay.accepted is True
            assert replay.outcome is WebhookOutcome.DUPLICATE
        assert (await players.get("u1")).balance == Decimal("150.00")
        assert len(await players.history("u1")) == 1

    @pytest.mark.asyncio
    async def test_invalid_signature_changes_nothing(self, deposits, players, signer, sign_webhook):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "success"})
        forged = raw.replace(b"success", b"paid")

        with pytest.raises(InvalidSignature):
            await deposits.apply_webhook(forged, signature)
        with pytest.raises(InvalidSignature):
            await deposits.apply_webhook(raw, None)
        with pytest.raises(InvalidSignature):
            await deposits.apply_webhook(raw, "0" * 64)

        assert (await players.get("u1")).balance == Decimal("100.00")
        assert (await deposits.get(deposit.order_id)).status == DepositStatus.PENDING.value

    @pytest.mark.asyncio
    async def test_unknown_order_is_accepted_and_ignored(self, deposits, signer, sign_webhook):
        raw, signature = sign_webhook(signer, {"order_id": "d_unknown", "status": "success"})
        result = await deposits.apply_webhook(raw, signature)
        assert result.accepted is True
        assert result.outcome is WebhookOutcome.UNKNOWN_ORDER

    @pytest.mark.asyncio
    async def test_intermediate_status_is_recorded_without_credit(self, deposits, players, signer, sign_webhook):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "wait"})

        result = await deposits.apply_webhook(raw, signature)

        assert result.outcome is WebhookOutcome.PENDING
        assert (await deposits.get(deposit.order_id)).status == "wait"
        assert (await players.get("u1")).balance == Decimal("100.00")

        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "paid"})
        await deposits.apply_webhook(raw, signature)
        assert (await deposits.get(deposit.order_id)).status == DepositStatus.CONFIRMED.value
        assert (await players.get("u1")).balance == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_reserved_confirmed_status_does_not_confirm(self, deposits, players, signer, sign_webhook):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "confirmed"})

        result = await deposits.apply_webhook(raw, signature)

        assert result.outcome is WebhookOutcome.PENDING
        assert (await deposits.get(deposit.order_id)).status == DepositStatus.PENDING.value
        assert (await players.get("u1")).balance == Decimal("100.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", ["success", "PAID", 1, "1"])
    async def test_success_statuses(self, deposits, players, signer, sign_webhook, status):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"orderId": deposit.order_id, "status": status})

        result = await deposits.apply_webhook(raw, signature)

        assert result.outcome is WebhookOutcome.CREDITED
        assert (await players.get("u1")).balance == Decimal("150.00")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [{"status": "success"}, {"order_id": "d_x"}, [1, 2], "text"])
    async def test_verified_but_malformed_payload_is_ignored(self, deposits, signer, payload):
        raw = json.dumps(payload, separators=(",", ":"))
        result = await deposits.apply_webhook(raw.encode("utf-8"), signer.sign_serialized(raw))
        assert result.accepted is True
        assert result.outcome is WebhookOutcome.MALFORMED

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [" ", "\t\n", ""])
    async def test_blank_status_is_malformed_and_leaves_deposit_pending(self, deposits, players, signer, sign_webhook, status):
        deposit = await _create(deposits)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": status})

        result = await deposits.apply_webhook(raw, signature)

        assert result.accepted is True
        assert result.outcome is WebhookOutcome.MALFORMED
        assert (await deposits.get(deposit.order_id)).status == DepositStatus.PENDING.value
        assert (await players.get("u1")).balance == Decimal("100.00")

    @pytest.mark.asyncio
    async def test_refused_intermediate_status_is_acknowledged_without_change(self, deposits):
        deposit = await _create(deposits)

        result = await deposits._record_intermediate_status(deposit, "")

        assert result.accepted is True
        assert result.outcome is WebhookOutcome.PENDING
        stored = await deposits.get(deposit.order_id)
        assert stored.status == DepositStatus.PENDING.value
        assert stored.version == deposit.version

    @pytest.mark.asyncio
    async def test_reported_amount_credit_source(self, players, resolver, gateway, settings_factory, sign_webhook):
        settings = settings_factory(credit_source="reported")
        passimpay = settings.passimpay
        signer = PassimPaySigner(passimpay.platform_id, passimpay.secret_key, passimpay.signature_placement)
        ledger = DepositLedger(players, resolver, gateway, signer, passimpay)

        deposit = await ledger.create("u1", "50", 10)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "success", "amount": "48.125"})
        await ledger.apply_webhook(raw, signature)

        assert (await players.get("u1")).balance == Decimal("148.13")
        assert (await ledger.get(deposit.order_id)).credited_amount == Decimal("48.13")

    @pytest.mark.asyncio
    async def test_reported_amount_missing_falls_back_to_requested(self, players, resolver, gateway, settings_factory, sign_webhook):
        settings = settings_factory(credit_source="reported")
        passimpay = settings.passimpay
        signer = PassimPaySigner(passimpay.platform_id, passimpay.secret_key, passimpay.signature_placement)
        ledger = DepositLedger(players, resolver, gateway, signer, passimpay)

        deposit = await ledger.create("u1", "50", 10)
        raw, signature = sign_webhook(signer, {"order_id": deposit.order_id, "status": "success"})
        await ledger.apply_webhook(raw, signature)

        assert (await players.get("u1")).balance == Decimal("150.00")

    @pytest.mark.asyncio
    async def test_body_signature_placement(self, players, resolver, gateway, settings_factory, sign_webhook):
        settings = settings_factory(signature_placement="body")
        passimpay = settings.passimpay
        signer = PassimPaySigner(passimpay.platform_id, passimpay.secret_key, "body")
        ledger = DepositLedger(players, resolver, gateway, signer, passimpay)

        deposit = await ledger.create("u1", "50", 10)
        raw, header = sign_webhook(signer, {"order_id": deposit.order_id, "status": "success"})
        assert header is None

        result = await ledger.apply_webhook(raw, None)

        assert result.outcome is WebhookOutcome.CREDITED
        assert (await players.get("u1")).balance == Decimal("150.00")
