import logging
from datetime import datetime, timedelta
from sqlalchemy import update
from sqlmodel import Session

from roundengine.analytics import betstats
from roundengine.config import settings
from roundengine.core.errors import InvalidAmount, RoundClosed, RoundNotFound
from roundengine.core.money import to_cents, scale_cents
from roundengine.core.outcomes import Multipliers
from roundengine.core.validation import normalize_bet
from roundengine.db import crud
from roundengine.db.models import Bet, Round, OPEN, utcnow
from roundengine.services import ledger

log = logging.getLogger(__name__)


def seconds_remaining(round_: Round, now: datetime | None = None) -> float:
    """Countdown derived from the stored deadline, never below zero."""
    now = now or utcnow()
    if round_.status != OPEN:
        return 0.0
    return max(0.0, (round_.close_time - now).total_seconds())


def place_bet(session: Session, user_id: int, round_id: int, bet_type: str, bet_value, amount,
              multiplier: int = 1, now: datetime | None = None, cfg=settings) -> Bet:
    """Validate a wager, debit the stake and record the bet in one transaction.

    The round row is claimed first with a conditional UPDATE on
    ``status='open' AND close_time > now``, so a bet either commits before
    the scheduler's close transition or fails with ``RoundClosed``.
    """
    bet_type, bet_value = normalize_bet(bet_type, bet_value)
    try:
        cents = to_cents(amount)
    except ValueError as e:
        raise InvalidAmount(str(e))
    if cents <= 0:
        raise InvalidAmount("amount must be positive")
    if cents < to_cents(cfg.min_bet):
        raise InvalidAmount(f"minimum bet is {cfg.min_bet:.2f}")
    if not isinstance(multiplier, int) or multiplier < 1:
        raise InvalidAmount("multiplier must be a positive integer")

    now = now or utcnow()
    deadline = now + timedelta(seconds=cfg.bet_cutoff_seconds)
    try:
        res = session.connection().execute(
            update(Round)
            .where(Round.id == round_id, Round.status == OPEN, Round.close_time > deadline)
            .values(total_bets=Round.total_bets + 1, total_amount_cents=Round.total_amount_cents + cents)
        )
        if res.rowcount != 1:
            if crud.get_round(session, round_id) is None:
                raise RoundNotFound(f"round {round_id} not found")
            raise RoundClosed(f"round {round_id} is closed for betting")

        bet = Bet(
            user_id=user_id,
            round_id=round_id,
            bet_type=bet_type,
            bet_value=bet_value,
            amount_cents=cents,
            fee_cents=scale_cents(cents, cfg.service_fee_rate),
            multiplier=multiplier,
            placed_at=now,
        )
        session.add(bet)
        session.flush()
        ledger.debit(session, user_id, cents, reference=f"bet:{bet.id}",
                     description=f"Bet {bet_type}:{bet_value} on round {round_id}")
        session.commit()
    except Exception as e:
        session.rollback()
        log.debug("bet rejected user=%s round=%s: %s", user_id, round_id, e)
        raise
    session.refresh(bet)
    log.info("bet %s placed: user=%s round=%s %s:%s %s", bet.id, user_id, round_id, bet_type, bet_value, cents)
    return bet


def round_stats(session: Session, round_id: int, cfg=settings) -> dict:
    """BetStats for one round plus the advisory lowest-payout bucket."""
    round_ = crud.get_round(session, round_id)
    if round_ is None:
        raise RoundNotFound(f"round {round_id} not found")
    m = Multipliers.from_settings(cfg)
    bets = crud.bets_for_round(session, round_id)
    stats = betstats.aggregate(bets, m)
    out = betstats.summary(stats)
    best = betstats.lowest_payout_bucket(stats)
    out["round_id"] = round_id
    out["recommendation"] = {"bucket": best[0], "potential_payout_cents": best[1].potential_payout_cents}
    out["liability_by_number"] = betstats.liability_by_number(bets, m)
    return out
