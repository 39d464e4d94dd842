"""Append-only balance log.

Every balance change goes through :func:`debit` or :func:`credit`, which
update the cached ``User.balance_cents`` with a single conditional UPDATE and
append the matching :class:`LedgerEntry` in the caller's transaction. Neither
function commits; the caller owns the transaction boundary so the ledger
write lands together with the event that triggered it.
"""
import logging
from sqlalchemy import case, func, select, update
from sqlmodel import Session

from roundengine.core.errors import InsufficientBalance, InvalidAmount, UserNotFound
from roundengine.db.models import User, LedgerEntry, DEBIT, CREDIT

log = logging.getLogger(__name__)


def _balance(session: Session, user_id: int) -> int:
    return session.connection().execute(
        select(User.balance_cents).where(User.id == user_id)
    ).scalar_one()


def _user_exists(session: Session, user_id: int) -> bool:
    return session.connection().execute(select(User.id).where(User.id == user_id)).first() is not None


def _append(session: Session, user_id: int, kind: str, cents: int, reference: str, description: str | None):
    entry = LedgerEntry(
        user_id=user_id,
        type=kind,
        amount_cents=cents,
        balance_after_cents=_balance(session, user_id),
        reference=reference,
        description=description,
    )
    session.add(entry)
    session.flush()
    return entry


def debit(session: Session, user_id: int, cents: int, reference: str, description: str | None = None) -> LedgerEntry:
    if cents <= 0:
        raise InvalidAmount("debit amount must be positive")
    res = session.connection().execute(
        update(User)
        .where(User.id == user_id, User.balance_cents >= cents)
        .values(balance_cents=User.balance_cents - cents)
    )
    if res.rowcount != 1:
        if not _user_exists(session, user_id):
            raise UserNotFound(f"user {user_id} not found")
        raise InsufficientBalance(f"balance below {cents / 100:.2f}")
    return _append(session, user_id, DEBIT, cents, reference, description)


def credit(session: Session, user_id: int, cents: int, reference: str, description: str | None = None) -> LedgerEntry:
    if cents <= 0:
        raise InvalidAmount("credit amount must be positive")
    res = session.connection().execute(
        update(User).where(User.id == user_id).values(balance_cents=User.balance_cents + cents)
    )
    if res.rowcount != 1:
        raise UserNotFound(f"user {user_id} not found")
    return _append(session, user_id, CREDIT, cents, reference, description)


def balance_of(session: Session, user_id: int) -> int:
    row = session.connection().execute(select(User.balance_cents).where(User.id == user_id)).first()
    if row is None:
        raise UserNotFound(f"user {user_id} not found")
    return row[0]


def ledger_total(session: Session, user_id: int) -> int:
    """Signed sum of all entries; equals the wallet balance when the log is intact."""
    signed = case((LedgerEntry.type == CREDIT, LedgerEntry.amount_cents), else_=-LedgerEntry.amount_cents)
    total = session.connection().execute(
        select(func.coalesce(func.sum(signed), 0)).where(LedgerEntry.user_id == user_id)
    ).scalar_one()
    return int(total)


def has_reference(session: Session, reference: str) -> bool:
    return session.connection().execute(
        select(LedgerEntry.id).where(LedgerEntry.reference == reference)
    ).first() is not None


def find_reference(session: Session, reference: str) -> LedgerEntry | None:
    return session.scalars(
        select(LedgerEntry).where(LedgerEntry.reference == reference).order_by(LedgerEntry.id)
    ).first()


def verify(session: Session, user_id: int) -> bool:
    ok = ledger_total(session, user_id) == balance_of(session, user_id)
    if not ok:
        log.error("ledger mismatch for user %s", user_id)
    return ok
