"""
PassimPay request signing and webhook verification

Signature contract (HMAC-SHA256, lowercase hex):

    key     = secret
    message = "{platform_id};{serialized};{secret}"

``serialized`` is compact JSON (no spaces, UTF-8 kept as is) with every
``/`` written as ``\\/``. Outbound address requests emit keys in the
ADDRESS_REQUEST_FIELDS order (the field order of the v2/address request);
keys outside that order follow in lexicographic order. Values are written
exactly as given, so amounts should travel as strings ("50.00") to avoid
float rendering differences between implementations.

Webhook placement:
    header - x-signature carries the signature of the raw body bytes as
             received; nothing is re-serialized.
    body   - the body carries a ``sign`` field; it is removed and the rest
             is serialized in the order the keys arrived, which is how the
             sender built the string it signed.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Mapping, Optional, Sequence, Union

import orjson

logger = logging.getLogger(__name__)

ADDRESS_REQUEST_FIELDS = (
    "platform_id",
    "payment_id",
    "amount",
    "currency",
    "order_id",
    "is_payment_multiple",
    "lifetime",
    "callback_url",
)

SIGNATURE_FIELD = "sign"


class PassimPaySigner:
    """Stateless apart from the credentials it was built with"""

    def __init__(self, platform_id: str, secret_key: str, placement: str = "header"):
        if placement not in ("header", "body"):
            raise ValueError(f"Unknown signature placement: {placement!r}")
        self.platform_id = str(platform_id or "")
        self.secret_key = secret_key or ""
        self.placement = placement

    @staticmethod
    def canonicalize(
        payload: Mapping[str, Any],
        field_order: Optional[Sequence[str]] = ADDRESS_REQUEST_FIELDS,
    ) -> str:
        """
        Serialize ``payload`` compactly with escaped slashes.

        With ``field_order`` the listed keys come first and the rest follow
        sorted; with None the mapping's own order is kept.
        """
        if field_order is None:
            ordered: Dict[str, Any] = dict(payload)
        else:
            ordered = {key: payload[key] for key in field_order if key in payload}
            for key in sorted(k for k in payload if k not in ordered):
                ordered[key] = payload[key]
        serialized = json.dumps(ordered, separators=(",", ":"), ensure_ascii=False)
        return serialized.replace("/", "\\/")

    def sign_serialized(self, serialized: str) -> str:
        message = f"{self.platform_id};{serialized};{self.secret_key}"
        return hmac.new(
            self.secret_key.encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

    def verify_serialized(self, serialized: str, candidate: Optional[str]) -> bool:
        if not self.secret_key or not isinstance(candidate, str) or not candidate:
            return False
        expected = self.sign_serialized(serialized)
        return hmac.compare_digest(
            expected.encode("utf-8"),
            candidate.strip().lower().encode("utf-8"),
        )

    def sign(self, payload: Mapping[str, Any], field_order: Optional[Sequence[str]] = ADDRESS_REQUEST_FIELDS) -> str:
        return self.sign_serialized(self.canonicalize(payload, field_order))

    def verify(
        self,
        payload: Mapping[str, Any],
        candidate: Optional[str],
        field_order: Optional[Sequence[str]] = ADDRESS_REQUEST_FIELDS,
    ) -> bool:
        """Constant-time check; any mismatch or malformed input is False"""
        try:
            serialized = self.canonicalize(payload, field_order)
        except (TypeError, ValueError) as e:
            logger.warning(f"⚠️ PASSIMPAY_CANONICALIZE_FAILED: {e}")
            return False
        return self.verify_serialized(serialized, candidate)

    def verify_notification(self, raw_body: Union[bytes, str], header_signature: Optional[str]) -> bool:
        """Verify an inbound webhook according to the configured placement"""
        if isinstance(raw_body, bytes):
            try:
                raw_text = raw_body.decode("utf-8")
            except UnicodeDecodeError:
                return False
        else:
            raw_text = raw_body

        if self.placement == "header":
            return self.verify_serialized(raw_text, header_signature)

        try:
            payload = orjson.loads(raw_text)
        except orjson.JSONDecodeError:
            return False
        if not isinstance(payload, dict):
            return False

        candidate = payload.pop(SIGNATURE_FIELD, None)
        return self.verify(payload, candidate, field_order=None)
