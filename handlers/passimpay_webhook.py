"""
PassimPay Deposit Webhook Handler

Flow: raw body + signature -> DepositLedger.apply_webhook -> plain "ok".

The response never depends on what the ledger found (unknown order,
duplicate, pending, credited), so the endpoint cannot be used to probe
order ids. Only a bad signature gets a different answer.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import PlainTextResponse

from services.ledger_services import LedgerServices, get_services
from utils.exception_handler import InvalidSignature

logger = logging.getLogger(__name__)

# Create FastAPI router
router = APIRouter(tags=["webhooks"])


@router.post("/webhook/deposit", response_class=PlainTextResponse)
@router.post("/passimpay/webhook/deposit", response_class=PlainTextResponse)
async def passimpay_deposit_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="x-signature"),
    services: LedgerServices = Depends(get_services),
):
    raw_body = await request.body()

    try:
        result = await services.deposits.apply_webhook(raw_body, x_signature)
    except InvalidSignature:
        return PlainTextResponse("invalid signature", status_code=403)
    except Exception as e:
        logger.error(f"❌ PASSIMPAY_WEBHOOK: unexpected error: {e}", exc_info=True)
        return PlainTextResponse("error", status_code=500)

    logger.info(f"📥 PASSIMPAY_WEBHOOK: order={result.order_id} outcome={result.outcome.value}")
    return PlainTextResponse("ok", status_code=200)
