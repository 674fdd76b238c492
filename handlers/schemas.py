"""
Request and response bodies for the ledger HTTP surface

Wire names are camelCase; Python attributes are snake_case. Amount fields
are accepted loosely here and validated by the ledgers, so a bad amount is
reported as InvalidAmount rather than a generic schema failure.
"""

from decimal import Decimal
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from services.ledger_store import DepositRecord, PlayerRecord

AmountIn = Optional[Union[int, float, str]]


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, coerce_numbers_to_str=True)


# --- API inputs ---

class ProfileRegisterIn(_CamelModel):
    player_id: Optional[str] = Field(default=None, alias="playerId")
    nickname: Optional[str] = None
    email: Optional[str] = None


class BetStartIn(_CamelModel):
    player_id: Optional[str] = Field(default=None, alias="playerId")
    bet: AmountIn = None


class BetFinishIn(_CamelModel):
    player_id: Optional[str] = Field(default=None, alias="playerId")
    round_id: Optional[str] = Field(default=None, alias="roundId")
    result: Optional[str] = None
    multiplier: AmountIn = None


class DepositCreateIn(_CamelModel):
    user_id: Optional[str] = Field(default=None, alias="userId")
    amount_fiat: AmountIn = Field(default=None, alias="amountFiat")
    payment_id: Optional[Union[int, str]] = Field(default=None, alias="paymentId")


# --- API outputs ---

def _money(value: Decimal) -> float:
    return float(value)


class PlayerOut(_CamelModel):
    player_id: str = Field(alias="playerId")
    balance: float
    nickname: Optional[str] = None
    email: Optional[str] = None

    @classmethod
    def from_record(cls, player: PlayerRecord) -> "PlayerOut":
        return cls(
            player_id=player.id,
            balance=_money(player.balance),
            nickname=player.nickname,
            email=player.email,
        )


class BetStartOut(_CamelModel):
    round_id: str = Field(alias="roundId")
    balance: float


class BetFinishOut(_CamelModel):
    balance: float
    win: float


class DepositCreateOut(_CamelModel):
    order_id: str = Field(alias="orderId")
    address: Optional[str] = None
    destination_tag: Optional[str] = Field(default=None, alias="destinationTag")

    @classmethod
    def from_record(cls, deposit: DepositRecord) -> "DepositCreateOut":
        return cls(order_id=deposit.order_id, address=deposit.address, destination_tag=deposit.destination_tag)
