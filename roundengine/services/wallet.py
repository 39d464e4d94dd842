import logging
from decimal import Decimal
from sqlmodel import Session

from roundengine.config import settings
from roundengine.core.errors import DuplicateReference, InvalidAmount
from roundengine.core.money import to_cents
from roundengine.db.models import LedgerEntry, CREDIT
from roundengine.services import commission, ledger

log = logging.getLogger(__name__)


def deposit(session: Session, user_id: int, amount: Decimal, reference: str | None = None,
            cfg=settings) -> LedgerEntry:
    """Credit an admin-approved deposit and, if configured, pay the upline.

    ``reference`` identifies the deposit request. Submitting the same request
    again returns the entry already written instead of crediting twice.
    """
    try:
        cents = to_cents(amount)
    except ValueError as e:
        raise InvalidAmount(str(e))
    if cents <= 0:
        raise InvalidAmount("deposit amount must be positive")
    if reference is not None:
        existing = ledger.find_reference(session, reference)
        if existing is not None:
            if (existing.user_id, existing.type, existing.amount_cents) != (user_id, CREDIT, cents):
                raise DuplicateReference(f"reference {reference} belongs to another ledger entry")
            log.info("deposit %s already credited, skipping", reference)
            return existing
    try:
        entry = ledger.credit(session, user_id, cents, reference or "deposit", description="Deposit approved")
        if reference is None:
            entry.reference = f"deposit:{entry.id}"
        if cfg.commission_trigger == "deposit":
            commission.cascade(session, user_id, cents, entry.reference, cfg)
        session.commit()
    except Exception:
        session.rollback()
        raise
    session.refresh(entry)
    log.info("deposit %s for user %s", cents, user_id)
    return entry
