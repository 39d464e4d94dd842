import math
from typing import Optional
from sqlalchemy import func
from sqlmodel import Session, select
from roundengine.db.models import Round, Bet, LedgerEntry, User, OPEN, PENDING


def get_user(session: Session, user_id: int) -> Optional[User]:
    return session.exec(select(User).where(User.id == user_id).execution_options(populate_existing=True)).first()


def create_user(session: Session, username: str, role: str = "user", referred_by_id: int | None = None,
                referral_code: str | None = None) -> User:
    u = User(username=username, role=role, referred_by_id=referred_by_id, referral_code=referral_code)
    session.add(u)
    session.commit()
    session.refresh(u)
    return u


def get_round(session: Session, round_id: int) -> Optional[Round]:
    return session.exec(select(Round).where(Round.id == round_id).execution_options(populate_existing=True)).first()


def open_round(session: Session, game: str, duration: int) -> Optional[Round]:
    return session.exec(
        select(Round)
        .where(Round.game == game, Round.duration == duration, Round.status == OPEN)
        .execution_options(populate_existing=True)
    ).first()


def last_round_number(session: Session, game: str, duration: int) -> int:
    n = session.exec(select(func.max(Round.number)).where(Round.game == game, Round.duration == duration)).one()
    return n or 0


def rounds_by_status(session: Session, *statuses: str) -> list[Round]:
    return session.exec(
        select(Round).where(Round.status.in_(statuses)).order_by(Round.close_time)
        .execution_options(populate_existing=True)
    ).all()


def list_rounds(session: Session, game: str | None = None, statuses: list[str] | None = None,
                duration: int | None = None, limit: int = 50) -> list[Round]:
    q = select(Round)
    if game:
        q = q.where(Round.game == game)
    if statuses:
        q = q.where(Round.status.in_(statuses))
    if duration:
        q = q.where(Round.duration == duration)
    return session.exec(q.order_by(Round.close_time.desc()).limit(limit)).all()


def bets_for_round(session: Session, round_id: int) -> list[Bet]:
    return session.exec(
        select(Bet).where(Bet.round_id == round_id).order_by(Bet.id).execution_options(populate_existing=True)
    ).all()


def pending_bet_ids(session: Session, round_id: int) -> list[int]:
    return session.exec(
        select(Bet.id).where(Bet.round_id == round_id, Bet.status == PENDING).order_by(Bet.id)
    ).all()


def _page(session: Session, q, count_q, page: int, limit: int) -> dict:
    page = max(page, 1)
    total = session.exec(count_q).one()
    items = session.exec(q.offset((page - 1) * limit).limit(limit)).all()
    return {
        "items": items,
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


def bet_history(session: Session, user_id: int | None = None, page: int = 1, limit: int = 20,
                settled_only: bool = False) -> dict:
    q = select(Bet)
    count_q = select(func.count()).select_from(Bet)
    if user_id is not None:
        q = q.where(Bet.user_id == user_id)
        count_q = count_q.where(Bet.user_id == user_id)
    if settled_only:
        q = q.where(Bet.status != PENDING)
        count_q = count_q.where(Bet.status != PENDING)
    return _page(session, q.order_by(Bet.placed_at.desc(), Bet.id.desc()), count_q, page, limit)


def round_history(session: Session, game: str, duration: int, statuses: list[str],
                  page: int = 1, limit: int = 20) -> dict:
    cond = (Round.game == game, Round.duration == duration, Round.status.in_(statuses))
    q = select(Round).where(*cond).order_by(Round.close_time.desc())
    count_q = select(func.count()).select_from(Round).where(*cond)
    return _page(session, q, count_q, page, limit)


def ledger_entries(session: Session, user_id: int, limit: int = 100) -> list[LedgerEntry]:
    return session.exec(
        select(LedgerEntry).where(LedgerEntry.user_id == user_id).order_by(LedgerEntry.id.desc()).limit(limit)
    ).all()
