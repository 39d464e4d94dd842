from datetime import datetime, timezone
from sqlalchemy import DateTime, Index, UniqueConstraint, text
from sqlalchemy.types import TypeDecorator
from sqlmodel import SQLModel, Field

# round status
OPEN = "open"
CLOSED = "closed"
SETTLING = "settling"
COMPLETED = "completed"
VOIDED = "voided"

# bet status
PENDING = "pending"
WON = "won"
LOST = "lost"
REFUNDED = "refunded"

DEBIT = "debit"
CREDIT = "credit"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC in and out; SQLite drops the offset on write."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class User(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    role: str = "user"  # 'user' | 'admin'
    balance_cents: int = 0
    referral_code: str | None = Field(default=None, index=True, unique=True)
    referred_by_id: int | None = Field(default=None, foreign_key="user.id", index=True)
    total_commission_cents: int = 0
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class Round(SQLModel, table=True):
    __table_args__ = (
        UniqueConstraint("game", "duration", "number", name="uq_round_stream_number"),
        # at most one open round per stream
        Index(
            "uq_round_open_stream", "game", "duration", unique=True,
            sqlite_where=text("status = 'open'"),
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: int | None = Field(default=None, primary_key=True)
    game: str = Field(index=True)
    duration: int  # minutes
    number: int
    open_time: datetime = Field(sa_type=UTCDateTime)
    close_time: datetime = Field(sa_type=UTCDateTime, index=True)
    status: str = Field(default=OPEN, index=True)
    winning_number: int | None = None
    winning_color: str | None = None
    big_small: str | None = None
    resolution: str | None = None  # 'manual' | 'auto'
    resolved_at: datetime | None = Field(default=None, sa_type=UTCDateTime)
    settled_at: datetime | None = Field(default=None, sa_type=UTCDateTime)
    total_bets: int = 0
    total_amount_cents: int = 0
    total_payout_cents: int = 0
    void_reason: str | None = None

    @property
    def period(self) -> str:
        return f"{self.open_time:%Y%m%d}{self.duration:02d}{self.number:05d}"

    @property
    def is_resolved(self) -> bool:
        return self.winning_number is not None


class Bet(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    round_id: int = Field(foreign_key="round.id", index=True)
    bet_type: str  # 'color' | 'number' | 'bigsmall'
    bet_value: str
    amount_cents: int
    fee_cents: int = 0
    multiplier: int = 1
    status: str = Field(default=PENDING, index=True)
    payout_cents: int = 0
    placed_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)
    settled_at: datetime | None = Field(default=None, sa_type=UTCDateTime)


class LedgerEntry(SQLModel, table=True):
    id: int | None = Field(default=None, primary_key=True)
    user_id: int = Field(foreign_key="user.id", index=True)
    type: str  # 'debit' | 'credit'
    amount_cents: int
    balance_after_cents: int
    reference: str = Field(index=True)  # 'bet:12', 'payout:12', 'refund:12', 'commission:3', 'deposit:...'
    description: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)


class CommissionSetting(SQLModel, table=True):
    level: int = Field(primary_key=True)  # 1..10
    percentage: float  # 0..100
    is_active: bool = True
    description: str = ""


class CommissionRecord(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("source_reference", "level", name="uq_commission_source_level"),)

    id: int | None = Field(default=None, primary_key=True)
    beneficiary_id: int = Field(foreign_key="user.id", index=True)
    source_user_id: int = Field(foreign_key="user.id", index=True)
    level: int
    percentage: float
    amount_cents: int
    source_reference: str
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
