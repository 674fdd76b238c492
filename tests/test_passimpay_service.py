"""
PassimPay address client tests
aiohttp is patched at ClientSession.post; no network access
"""

import asyncio
import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from services.passimpay_service import PassimPayService
from services.passimpay_signer import PassimPaySigner
from utils.exception_handler import GatewayError


def _mock_response(status=200, payload=None, text=""):
    mock_response = AsyncMock()
    mock_response.status = status
    mock_response.json = AsyncMock(return_value=payload)
    mock_response.text = AsyncMock(return_value=text)
    return mock_response


class TestPassimPayService:

    @pytest.fixture
    def service(self, settings):
        return PassimPayService(settings.passimpay)

    def test_request_fields_follow_documented_order(self, service):
        payload = service.build_address_request("d_1", 10, Decimal("50"))
        assert list(payload) == [
            "platform_id", "payment_id", "amount", "currency",
            "order_id", "is_payment_multiple", "lifetime", "callback_url",
        ]
        assert payload["amount"] == "50.00"
        assert payload["is_payment_multiple"] == 0
        assert payload["lifetime"] == 3600

    @pytest.mark.asyncio
    async def test_header_placement_sends_exact_signed_bytes(self, service, settings):
        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value = _mock_response(
                payload={"result": 1, "address": "addr-1", "destination_tag": 777}
            )

            issued = await service.create_address("d_1", 10, Decimal("50"))

        assert issued.address == "addr-1"
        assert issued.destination_tag == "777"

        args, kwargs = mock_post.call_args
        assert args[0] == "https://api.passimpay.io/v2/address"
        body = kwargs["data"].decode("utf-8")
        signer = PassimPaySigner(settings.passimpay.platform_id, settings.passimpay.secret_key)
        assert kwargs["headers"]["x-signature"] == signer.sign_serialized(body)
        assert "\\/" in body
        assert "sign" not in json.loads(body)

    @pytest.mark.asyncio
    async def test_body_placement_appends_sign_field(self, settings_factory):
        settings = settings_factory(signature_placement="body")
        service = PassimPayService(settings.passimpay)

        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value = _mock_response(
                payload={"result": 1, "payin_address": "addr-2", "payin_extra_id": "memo-9"}
            )
            issued = await service.create_address("d_2", 10, Decimal("12.5"))

        assert issued.address == "addr-2"
        assert issued.destination_tag == "memo-9"

        kwargs = mock_post.call_args.kwargs
        sent = json.loads(kwargs["data"])
        signature = sent.pop("sign")
        assert "x-signature" not in kwargs["headers"]
        assert service.signer.verify(sent, signature) is True
        assert sent["amount"] == "12.50"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,payload", [
        (500, None),
        (200, {"result": 0, "message": "platform disabled"}),
        (200, {"result": 1}),
        (200, ["unexpected"]),
    ])
    async def test_unsuccessful_answers_raise_gateway_error(self, service, status, payload):
        with patch("aiohttp.ClientSession.post") as mock_post:
            mock_post.return_value.__aenter__.return_value = _mock_response(
                status=status, payload=payload, text="upstream failure"
            )
            with pytest.raises(GatewayError):
                await service.create_address("d_3", 10, Decimal("5"))

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [asyncio.TimeoutError(), aiohttp.ClientConnectionError("refused")])
    async def test_transport_failures_raise_gateway_error(self, service, error):
        with patch("aiohttp.ClientSession.post", side_effect=error):
            with pytest.raises(GatewayError):
                await service.create_address("d_4", 10, Decimal("5"))

    @pytest.mark.asyncio
    async def test_undecodable_body_raises_gateway_error(self, service):
        with patch("aiohttp.ClientSession.post") as mock_post:
            response = _mock_response()
            response.json = AsyncMock(side_effect=json.JSONDecodeError("bad", "<html>", 0))
            mock_post.return_value.__aenter__.return_value = response

            with pytest.raises(GatewayError):
                await service.create_address("d_5", 10, Decimal("5"))

    @pytest.mark.asyncio
    async def test_unconfigured_gateway_fails_without_network(self, settings_factory):
        service = PassimPayService(settings_factory(secret_key="").passimpay)
        with patch("aiohttp.ClientSession.post") as mock_post:
            with pytest.raises(GatewayError):
                await service.create_address("d_6", 10, Decimal("5"))
            mock_post.assert_not_called()
