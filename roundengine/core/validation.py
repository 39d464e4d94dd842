import re

from roundengine.core.errors import InvalidBetValue, InvalidOutcome
from roundengine.core.outcomes import BET_TYPES, COLOR, NUMBER, BIG_SMALL, COLORS, SIZES, colors_of, Outcome


def is_valid_number(n) -> bool:
    return isinstance(n, int) and not isinstance(n, bool) and 0 <= n <= 9


def normalize_bet(bet_type: str, bet_value) -> tuple[str, str]:
    """Canonical (type, value) pair, or InvalidBetValue."""
    t = (bet_type or "").strip().lower().replace("_", "")
    if t not in BET_TYPES:
        raise InvalidBetValue(f"unknown bet type {bet_type!r}")
    v = str(bet_value).strip()
    if t == COLOR:
        v = v.capitalize()
        if v not in COLORS:
            raise InvalidBetValue(f"color must be one of {', '.join(COLORS)}")
    elif t == NUMBER:
        if not re.fullmatch(r"[0-9]", v):
            raise InvalidBetValue("number must be 0..9")
    elif t == BIG_SMALL:
        v = v.capitalize()
        if v not in SIZES:
            raise InvalidBetValue(f"bigsmall must be one of {', '.join(SIZES)}")
    return t, v


def outcome_from_input(number, color: str | None = None) -> Outcome:
    """Build an outcome from an operator-supplied (number, color) pair.

    The color is optional; when given it must be one of the colors the
    number maps to, so the stored result can never disagree with itself.
    """
    if not is_valid_number(number):
        raise InvalidOutcome("winning number must be 0..9")
    if color:
        parts = [p.strip().capitalize() for p in color.split("+")]
        if any(p not in colors_of(number) for p in parts):
            raise InvalidOutcome(f"color {color} does not match number {number}")
    return Outcome.from_number(number)
