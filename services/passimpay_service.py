"""PassimPay address-issuance API client"""

import asyncio
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

import aiohttp

from config import PassimPaySettings
from services.passimpay_signer import ADDRESS_REQUEST_FIELDS, SIGNATURE_FIELD, PassimPaySigner
from utils.data_sanitizer import mask_api_key_safe, sanitize_for_log
from utils.decimal_precision import MonetaryDecimal
from utils.exception_handler import GatewayError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GatewayAddress:
    address: str
    destination_tag: Optional[str] = None


class PassimPayService:
    """Service for requesting PassimPay deposit addresses"""

    def __init__(self, settings: PassimPaySettings, signer: Optional[PassimPaySigner] = None):
        self.settings = settings
        self.signer = signer or PassimPaySigner(
            settings.platform_id, settings.secret_key, settings.signature_placement
        )

        if not settings.is_configured:
            logger.warning("PassimPay API credentials not configured - address requests will fail")
        else:
            logger.info(f"PassimPay API initialized with key: {mask_api_key_safe(settings.secret_key)}")

    def _get_headers(self, signature: Optional[str] = None) -> Dict[str, str]:
        """Get headers for PassimPay API requests"""
        headers = {
            "accept": "application/json",
            "content-type": "application/json",
        }
        if signature:
            headers["x-signature"] = signature
        return headers

    def build_address_request(self, order_id: str, payment_id: int, amount: Decimal) -> Dict[str, Any]:
        """Payload fields in the signed order"""
        payload = {
            "platform_id": self.settings.platform_id,
            "payment_id": payment_id,
            "amount": MonetaryDecimal.format_amount(amount),
            "currency": self.settings.currency,
            "order_id": order_id,
            "is_payment_multiple": 0,
            "lifetime": self.settings.address_lifetime,
            "callback_url": self.settings.callback_url,
        }
        return {key: payload[key] for key in ADDRESS_REQUEST_FIELDS}

    def _encode_request(self, payload: Dict[str, Any]) -> tuple:
        """Return (body, headers) for the configured signature placement"""
        serialized = self.signer.canonicalize(payload, ADDRESS_REQUEST_FIELDS)
        signature = self.signer.sign_serialized(serialized)

        if self.settings.signature_placement == "header":
            # The body must be byte-identical to what was signed
            return serialized.encode("utf-8"), self._get_headers(signature)

        signed_body = dict(payload)
        signed_body[SIGNATURE_FIELD] = signature
        body = json.dumps(signed_body, separators=(",", ":"), ensure_ascii=False)
        return body.encode("utf-8"), self._get_headers()

    @staticmethod
    def _extract_address(data: Dict[str, Any]) -> GatewayAddress:
        address = data.get("address") or data.get("payin_address")
        if not address:
            raise GatewayError("Payment gateway returned no address")

        tag = data.get("destination_tag") or data.get("memo") or data.get("payin_extra_id")
        return GatewayAddress(
            address=str(address),
            destination_tag=str(tag) if tag not in (None, "") else None,
        )

    async def create_address(self, order_id: str, payment_id: int, amount: Decimal) -> GatewayAddress:
        """
        Request a deposit address for ``order_id``.

        Raises GatewayError on timeout, transport failure, non-200 answers
        and any body whose ``result`` is not 1.
        """
        if not self.settings.is_configured:
            raise GatewayError("Payment gateway is not configured")

        payload = self.build_address_request(order_id, payment_id, amount)
        body, headers = self._encode_request(payload)
        timeout = aiohttp.ClientTimeout(total=self.settings.timeout_seconds)

        logger.info(f"📤 PASSIMPAY_ADDRESS_REQUEST: order={order_id} payload={sanitize_for_log(payload)}")

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(
                    self.settings.address_endpoint,
                    data=body,
                    headers=headers,
                ) as response:
                    if response.status != 200:
                        error_text = await response.text()
                        logger.error(
                            f"❌ PASSIMPAY_HTTP_ERROR: order={order_id} HTTP {response.status}: {error_text[:500]}"
                        )
                        raise GatewayError("Payment gateway temporarily unavailable")

                    data = await response.json(content_type=None)

        except asyncio.TimeoutError:
            logger.error(f"⏱️ PASSIMPAY_TIMEOUT: order={order_id} after {self.settings.timeout_seconds}s")
            raise GatewayError("Payment gateway timed out")
        except aiohttp.ClientError as e:
            logger.error(f"❌ PASSIMPAY_NETWORK_ERROR: order={order_id}: {e}")
            raise GatewayError("Payment gateway unreachable")
        except ValueError as e:
            logger.error(f"❌ PASSIMPAY_BAD_RESPONSE: order={order_id}: undecodable body: {e}")
            raise GatewayError("Payment gateway returned an invalid response")

        if not isinstance(data, dict) or str(data.get("result")) != "1":
            logger.error(f"❌ PASSIMPAY_REJECTED: order={order_id} response={sanitize_for_log(data)}")
            raise GatewayError("Payment gateway rejected the deposit request")

        gateway_address = self._extract_address(data)
        logger.info(f"✅ PASSIMPAY_ADDRESS_ISSUED: order={order_id} payment_id={payment_id}")
        return gateway_address
