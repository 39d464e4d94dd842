from decimal import Decimal, ROUND_DOWN, InvalidOperation

CENT = Decimal("0.01")


def to_cents(value) -> int:
    """Decimal/float/str amount -> integer minor units. Sub-cent precision is refused."""
    try:
        d = Decimal(str(value))
        if not d.is_finite():
            raise ValueError(f"not a money amount: {value!r}")
        exact = d == d.quantize(CENT, rounding=ROUND_DOWN)
    except InvalidOperation:
        raise ValueError(f"not a money amount: {value!r}")
    if not exact:
        raise ValueError(f"more than two decimal places: {value!r}")
    return int((d * 100).to_integral_value(rounding=ROUND_DOWN))


def from_cents(cents: int) -> Decimal:
    return (Decimal(cents) / 100).quantize(CENT)


def scale_cents(cents: int, factor) -> int:
    # payouts and commissions never round up
    return int((Decimal(cents) * Decimal(str(factor))).to_integral_value(rounding=ROUND_DOWN))
