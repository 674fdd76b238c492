"""Session and profile endpoints"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Query

from handlers.schemas import PlayerOut, ProfileRegisterIn
from services.ledger_services import LedgerServices, get_services
from services.player_store import clean_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["players"])


@router.get("/session", response_model=PlayerOut)
async def get_session(
    player_id: Optional[str] = Query(None, alias="playerId"),
    x_player_id: Optional[str] = Header(None, alias="x-player-id"),
    services: LedgerServices = Depends(get_services),
):
    """Return the caller's player, creating one with the starting balance on first contact"""
    player = await services.resolver.resolve(x_player_id or player_id)
    return PlayerOut.from_record(player)


@router.post("/profile/register", response_model=PlayerOut)
async def register_profile(body: ProfileRegisterIn, services: LedgerServices = Depends(get_services)):
    # Reject a blank nickname before a new handle gets a player record
    clean_profile(body.nickname, body.email)
    player = await services.resolver.resolve_handle(body.player_id)
    updated = await services.players.update_profile(player.id, body.nickname, body.email)
    return PlayerOut.from_record(updated)
