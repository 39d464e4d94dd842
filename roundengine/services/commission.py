"""Multi-level referral commission cascade.

Walks a user's upline one referrer at a time (level 1 is the direct
referrer) and credits ``amount * percentage[level] / 100`` to each
beneficiary. Levels without an active setting are skipped but the walk
continues upward. The walk stops at the end of the chain, at the configured
depth, or on a repeated user.
"""
import logging
from sqlalchemy import update
from sqlmodel import Session, select

from roundengine.config import settings
from roundengine.core.errors import InvalidAmount
from roundengine.core.money import scale_cents
from roundengine.db.models import User, CommissionSetting, CommissionRecord
from roundengine.services import ledger

log = logging.getLogger(__name__)

MAX_LEVELS = 10


def max_depth(cfg=settings) -> int:
    return max(0, min(cfg.commission_max_depth, MAX_LEVELS))


def active_levels(session: Session) -> dict[int, float]:
    rows = session.exec(select(CommissionSetting).where(CommissionSetting.is_active == True)).all()  # noqa: E712
    return {r.level: r.percentage for r in rows if r.percentage > 0}


def get_levels(session: Session) -> list[CommissionSetting]:
    return session.exec(select(CommissionSetting).order_by(CommissionSetting.level)).all()


def set_levels(session: Session, levels: list[dict]) -> list[CommissionSetting]:
    for item in levels:
        level = int(item["level"])
        pct = float(item["percentage"])
        if not 1 <= level <= MAX_LEVELS:
            raise InvalidAmount(f"level must be 1..{MAX_LEVELS}")
        if not 0 <= pct <= 100:
            raise InvalidAmount("percentage must be 0..100")
        row = session.get(CommissionSetting, level)
        if row is None:
            row = CommissionSetting(level=level, percentage=pct)
        row.percentage = pct
        row.is_active = bool(item.get("is_active", True))
        row.description = item.get("description", row.description or "")
        session.add(row)
    session.commit()
    return get_levels(session)


def upline(session: Session, user_id: int, depth: int) -> list[int]:
    """Referrer ids from level 1 upward, at most ``depth`` of them."""
    chain: list[int] = []
    seen = {user_id}
    current = session.exec(select(User.referred_by_id).where(User.id == user_id)).first()
    while current is not None and len(chain) < depth:
        if current in seen:
            log.error("referral cycle at user %s (source %s)", current, user_id)
            break
        chain.append(current)
        seen.add(current)
        current = session.exec(select(User.referred_by_id).where(User.id == current)).first()
    return chain


def cascade(session: Session, source_user_id: int, amount_cents: int, source_reference: str,
            cfg=settings) -> list[CommissionRecord]:
    """Credit the upline of ``source_user_id``. Does not commit.

    Re-running with the same ``source_reference`` pays nothing twice: each
    (reference, level) pair is recorded once.
    """
    if amount_cents <= 0:
        return []
    levels = active_levels(session)
    if not levels:
        return []
    paid: list[CommissionRecord] = []
    for level, beneficiary in enumerate(upline(session, source_user_id, max_depth(cfg)), start=1):
        pct = levels.get(level)
        if not pct:
            continue
        cents = scale_cents(amount_cents, pct / 100)
        if cents <= 0:
            continue
        exists = session.exec(
            select(CommissionRecord.id).where(
                CommissionRecord.source_reference == source_reference, CommissionRecord.level == level
            )
        ).first()
        if exists is not None:
            continue
        rec = CommissionRecord(
            beneficiary_id=beneficiary,
            source_user_id=source_user_id,
            level=level,
            percentage=pct,
            amount_cents=cents,
            source_reference=source_reference,
        )
        # a concurrent pass inserting the same pair fails the unique
        # constraint and rolls the whole caller transaction back
        session.add(rec)
        session.flush()
        ledger.credit(
            session, beneficiary, cents,
            reference=f"commission:{rec.id}",
            description=f"Referral commission (level {level}) from user {source_user_id}",
        )
        session.connection().execute(
            update(User).where(User.id == beneficiary)
            .values(total_commission_cents=User.total_commission_cents + cents)
        )
        log.debug("commission %s L%s -> user %s: %s", source_reference, level, beneficiary, cents)
        paid.append(rec)
    return paid


def downline(session: Session, user_id: int, depth: int = MAX_LEVELS) -> list[dict]:
    """Users referred by ``user_id``, breadth first, tagged with their level."""
    out = []
    frontier = [user_id]
    seen = {user_id}
    for level in range(1, depth + 1):
        if not frontier:
            break
        rows = session.exec(select(User).where(User.referred_by_id.in_(frontier))).all()
        frontier = []
        for u in rows:
            if u.id in seen:
                continue
            seen.add(u.id)
            frontier.append(u.id)
            out.append({"user_id": u.id, "username": u.username, "level": level})
    return out
