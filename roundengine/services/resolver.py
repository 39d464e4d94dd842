"""Fix the winning outcome of a round exactly once.

Both the admin override and the autonomous resolver claim the round with
the same compare-and-set (``winning_number IS NULL``); whichever commits
first wins and the other sees ``AlreadyResolved`` (override) or the stored
result (autonomous).
"""
import logging
import random
import secrets
from datetime import datetime
from sqlalchemy import update
from sqlmodel import Session

from roundengine.analytics import betstats
from roundengine.config import settings
from roundengine.core.errors import AlreadyResolved, ResolutionError, RoundClosed, RoundNotFound
from roundengine.core.outcomes import Multipliers, Outcome, NUMBERS
from roundengine.core.validation import outcome_from_input
from roundengine.db import crud
from roundengine.db.models import Round, OPEN, CLOSED, utcnow

log = logging.getLogger(__name__)

MANUAL = "manual"
AUTO = "auto"

_sysrand = secrets.SystemRandom()


def _claim(session: Session, round_id: int, outcome: Outcome, mode: str, statuses: tuple, now: datetime) -> bool:
    res = session.connection().execute(
        update(Round)
        .where(Round.id == round_id, Round.winning_number.is_(None), Round.status.in_(statuses))
        .values(
            winning_number=outcome.number,
            winning_color=outcome.color,
            big_small=outcome.big_small,
            resolution=mode,
            resolved_at=now,
        )
    )
    return res.rowcount == 1


def override(session: Session, round_id: int, number, color: str | None = None,
             now: datetime | None = None) -> Round:
    """Admin-forced result; allowed while the round is open or closed-unresolved."""
    outcome = outcome_from_input(number, color)
    now = now or utcnow()
    try:
        claimed = _claim(session, round_id, outcome, MANUAL, (OPEN, CLOSED), now)
        session.commit()
    except Exception:
        session.rollback()
        raise
    round_ = crud.get_round(session, round_id)
    if not claimed:
        if round_ is None:
            raise RoundNotFound(f"round {round_id} not found")
        if round_.is_resolved:
            raise AlreadyResolved(f"round {round_id} already resolved to {round_.winning_number}")
        raise RoundClosed(f"round {round_id} is {round_.status}")
    log.info("round %s result set by operator: %s (%s)", round_id, outcome.number, outcome.color)
    return round_


def pick_number(session: Session, round_: Round, cfg=settings, rng: random.Random | None = None) -> int:
    rng = rng or _sysrand
    policy = (cfg.resolution_policy or "").lower()
    if policy == "random":
        return rng.choice(NUMBERS)
    if policy == "lowest_payout":
        liab = betstats.liability_by_number(crud.bets_for_round(session, round_.id), Multipliers.from_settings(cfg))
        low = min(liab.values())
        return rng.choice([n for n in NUMBERS if liab[n] == low])
    raise ResolutionError(f"unknown resolution policy {cfg.resolution_policy!r}")


def resolve(session: Session, round_id: int, cfg=settings, rng: random.Random | None = None,
            now: datetime | None = None) -> Round:
    """Autonomous resolution of a closed round. Returns the round with its (possibly pre-existing) result."""
    round_ = crud.get_round(session, round_id)
    if round_ is None:
        raise RoundNotFound(f"round {round_id} not found")
    if round_.is_resolved:
        return round_
    if round_.status != CLOSED:
        raise RoundClosed(f"round {round_id} is {round_.status}, expected closed")
    outcome = Outcome.from_number(pick_number(session, round_, cfg, rng))
    try:
        claimed = _claim(session, round_id, outcome, AUTO, (CLOSED,), now or utcnow())
        session.commit()
    except Exception:
        session.rollback()
        raise
    round_ = crud.get_round(session, round_id)
    if claimed:
        log.info("round %s resolved (%s): %s (%s)", round_id, cfg.resolution_policy, outcome.number, outcome.color)
    return round_
