"""Deposit creation endpoint"""

import logging

from fastapi import APIRouter, Depends

from handlers.schemas import DepositCreateIn, DepositCreateOut
from services.ledger_services import LedgerServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/deposit", tags=["deposits"])


@router.post("/create", response_model=DepositCreateOut)
async def create_deposit(body: DepositCreateIn, services: LedgerServices = Depends(get_services)):
    """
    Request a PassimPay address for a new deposit.

    Fails with 400 GatewayError when the gateway is down or refuses; no
    deposit is stored in that case.
    """
    deposit = await services.deposits.create(body.user_id, body.amount_fiat, body.payment_id)
    return DepositCreateOut.from_record(deposit)
