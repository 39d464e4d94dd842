"""Turn a resolved round into ledger mutations.

Settlement runs in three steps, each its own transaction:

1. claim the round (``closed -> settling``),
2. settle each pending bet (status CAS + payout credit together),
3. complete the round (``settling -> completed``) and run the commission
   cascade in the same commit.

A crash or storage error between steps leaves the round in ``settling``;
calling :func:`settle_round` again skips bets that are no longer pending and
finishes the remaining work, so no bet is paid twice.
"""
import logging
import time
from sqlalchemy import update, func, select
from sqlalchemy.exc import OperationalError
from sqlmodel import Session

from roundengine.config import settings
from roundengine.core.errors import EngineError, ResolutionError, RoundNotFound, TransientError
from roundengine.core.money import scale_cents
from roundengine.core.outcomes import Multipliers, Outcome, payout_multiplier
from roundengine.db import crud
from roundengine.db.base import engine as default_engine
from roundengine.db.models import (
    Bet, Round, CLOSED, SETTLING, COMPLETED, VOIDED, OPEN, PENDING, WON, LOST, REFUNDED, utcnow,
)
from roundengine.services import commission, ledger

log = logging.getLogger(__name__)


def _retry(fn, attempts: int, what: str):
    for i in range(1, attempts + 1):
        try:
            return fn()
        except OperationalError as e:
            if i == attempts:
                raise TransientError(f"{what}: {e}") from e
            log.warning("%s failed (attempt %s/%s), retrying: %s", what, i, attempts, e)
            time.sleep(0.05 * i)


def _settle_bet(bind, bet_id: int, outcome: Outcome, m: Multipliers) -> int:
    with Session(bind) as session:
        try:
            bet = session.get(Bet, bet_id)
            mult = payout_multiplier(bet.bet_type, bet.bet_value, outcome, m)
            payout = scale_cents(bet.amount_cents - bet.fee_cents, mult) if mult else 0
            res = session.connection().execute(
                update(Bet)
                .where(Bet.id == bet_id, Bet.status == PENDING)
                .values(status=WON if mult else LOST, payout_cents=payout, settled_at=utcnow())
            )
            if res.rowcount != 1:
                session.rollback()
                return 0
            if payout > 0:
                ledger.credit(session, bet.user_id, payout, reference=f"payout:{bet_id}",
                              description=f"Win {bet.bet_type}:{bet.bet_value} on round {bet.round_id}")
            session.commit()
            return payout
        except Exception:
            session.rollback()
            raise


def _complete(bind, round_id: int, cfg) -> bool:
    with Session(bind) as session:
        try:
            total = session.connection().execute(
                select(func.coalesce(func.sum(Bet.payout_cents), 0)).where(Bet.round_id == round_id)
            ).scalar_one()
            res = session.connection().execute(
                update(Round)
                .where(Round.id == round_id, Round.status == SETTLING)
                .values(status=COMPLETED, settled_at=utcnow(), total_payout_cents=total)
            )
            if res.rowcount != 1:
                session.rollback()
                return False
            trigger = cfg.commission_trigger
            if trigger in ("stake", "loss"):
                for bet in crud.bets_for_round(session, round_id):
                    if trigger == "loss" and bet.status != LOST:
                        continue
                    commission.cascade(session, bet.user_id, bet.amount_cents, f"bet:{bet.id}", cfg)
            session.commit()
            return True
        except Exception:
            session.rollback()
            raise


def settle_round(round_id: int, bind=None, cfg=settings) -> Round:
    """Pay out every bet of a resolved round. Safe to call repeatedly."""
    bind = bind or default_engine
    with Session(bind) as session:
        res = session.connection().execute(
            update(Round)
            .where(Round.id == round_id, Round.status == CLOSED, Round.winning_number.is_not(None))
            .values(status=SETTLING)
        )
        session.commit()
        round_ = crud.get_round(session, round_id)
    if round_ is None:
        raise RoundNotFound(f"round {round_id} not found")
    if res.rowcount != 1:
        if round_.status in (COMPLETED, VOIDED):
            return round_
        if round_.status == CLOSED:
            raise ResolutionError(f"round {round_id} has no outcome")
        if round_.status != SETTLING:
            raise EngineError(f"round {round_id} is {round_.status}, cannot settle")
        log.info("re-entering settlement of round %s", round_id)

    outcome = Outcome.from_number(round_.winning_number)
    m = Multipliers.from_settings(cfg)
    with Session(bind) as session:
        pending = crud.pending_bet_ids(session, round_id)
    paid = 0
    for bet_id in pending:
        paid += _retry(lambda: _settle_bet(bind, bet_id, outcome, m), cfg.settle_retries, f"settle bet {bet_id}")
    _retry(lambda: _complete(bind, round_id, cfg), cfg.settle_retries, f"complete round {round_id}")

    with Session(bind) as session:
        round_ = crud.get_round(session, round_id)
    log.info("round %s %s: %s bets, paid %s", round_id, round_.status, len(pending), paid)
    return round_


def void_round(round_id: int, reason: str, bind=None) -> Round:
    """Cancel an unsettled round and refund every stake in one transaction."""
    bind = bind or default_engine
    with Session(bind) as session:
        try:
            res = session.connection().execute(
                update(Round)
                .where(Round.id == round_id, Round.status.in_((OPEN, CLOSED)))
                .values(status=VOIDED, void_reason=reason[:500], settled_at=utcnow())
            )
            if res.rowcount == 1:
                for bet in crud.bets_for_round(session, round_id):
                    if bet.status != PENDING:
                        continue
                    session.connection().execute(
                        update(Bet).where(Bet.id == bet.id).values(status=REFUNDED, settled_at=utcnow())
                    )
                    ledger.credit(session, bet.user_id, bet.amount_cents, reference=f"refund:{bet.id}",
                                  description=f"Refund for voided round {round_id}")
            session.commit()
        except Exception:
            session.rollback()
            raise
        round_ = crud.get_round(session, round_id)
    if round_ is None:
        raise RoundNotFound(f"round {round_id} not found")
    if res.rowcount == 1:
        log.error("round %s voided: %s", round_id, reason)
    return round_
