"""Bet round endpoints"""

import logging

from fastapi import APIRouter, Depends

from handlers.schemas import BetFinishIn, BetFinishOut, BetStartIn, BetStartOut
from services.ledger_services import LedgerServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/bet", tags=["bets"])


@router.post("/start", response_model=BetStartOut)
async def start_round(body: BetStartIn, services: LedgerServices = Depends(get_services)):
    started = await services.rounds.start(body.player_id, body.bet)
    return BetStartOut(round_id=started.round_id, balance=float(started.balance))


@router.post("/finish", response_model=BetFinishOut)
async def finish_round(body: BetFinishIn, services: LedgerServices = Depends(get_services)):
    settlement = await services.rounds.finish(body.player_id, body.round_id, body.result, body.multiplier)
    return BetFinishOut(balance=float(settlement.balance), win=float(settlement.win))
