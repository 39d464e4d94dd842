from decimal import Decimal
from pydantic import BaseModel, Field
from typing import Optional, Union


class BetIn(BaseModel):
    roundId: int
    betType: str
    betValue: Union[str, int]
    amount: Decimal
    multiplier: int = Field(default=1, ge=1)


class BetOut(BaseModel):
    success: bool = True
    betId: int
    balance: Decimal


class ControlResultIn(BaseModel):
    roundId: int
    winningNumber: int = Field(ge=0, le=9)
    winningColor: Optional[str] = None


class ControlResultOut(BaseModel):
    success: bool = True
    roundId: int
    winningNumber: int
    winningColor: str
    bigSmall: str


class RoundOut(BaseModel):
    id: int
    game: str
    duration: int
    number: int
    period: str
    status: str
    openTime: str
    closeTime: str
    secondsRemaining: float
    totalBets: int
    totalAmount: Decimal
    winningNumber: int | None = None
    winningColor: str | None = None
    bigSmall: str | None = None
    totalPayout: Decimal | None = None


class BetItem(BaseModel):
    id: int
    roundId: int
    userId: int
    betType: str
    betValue: str
    amount: Decimal
    multiplier: int
    status: str
    payout: Decimal
    placedAt: str


class Page(BaseModel):
    items: list
    total: int
    page: int
    totalPages: int


class DepositIn(BaseModel):
    userId: int
    amount: Decimal
    reference: Optional[str] = None


class BalanceOut(BaseModel):
    userId: int
    balance: Decimal
    totalCommission: Decimal


class LedgerItem(BaseModel):
    id: int
    type: str
    amount: Decimal
    balanceAfter: Decimal
    reference: str
    description: str | None
    createdAt: str


class CommissionLevel(BaseModel):
    level: int = Field(ge=1, le=10)
    percentage: float = Field(ge=0, le=100)
    isActive: bool = True
    description: str = ""
