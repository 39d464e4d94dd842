from dataclasses import dataclass

COLOR = "color"
NUMBER = "number"
BIG_SMALL = "bigsmall"
BET_TYPES = (COLOR, NUMBER, BIG_SMALL)

RED, GREEN, VIOLET = "Red", "Green", "Violet"
BIG, SMALL = "Big", "Small"
COLORS = (RED, GREEN, VIOLET)
SIZES = (BIG, SMALL)
NUMBERS = tuple(range(10))

_GREEN = {1, 3, 7, 9}
_RED = {2, 4, 6, 8}


def color_of(number: int) -> str:
    if number == 0:
        return f"{RED}+{VIOLET}"
    if number == 5:
        return f"{GREEN}+{VIOLET}"
    if number in _GREEN:
        return GREEN
    if number in _RED:
        return RED
    raise ValueError(f"number out of range: {number}")


def colors_of(number: int) -> tuple[str, ...]:
    return tuple(color_of(number).split("+"))


def size_of(number: int) -> str:
    if number not in NUMBERS:
        raise ValueError(f"number out of range: {number}")
    return BIG if number >= 5 else SMALL


@dataclass(frozen=True)
class Outcome:
    number: int
    color: str
    big_small: str

    @classmethod
    def from_number(cls, number: int) -> "Outcome":
        return cls(number=number, color=color_of(number), big_small=size_of(number))

    def is_dual(self) -> bool:
        return VIOLET in colors_of(self.number)


@dataclass(frozen=True)
class Multipliers:
    color: float = 2.0
    dual_color: float = 1.5
    violet: float = 4.5
    number: float = 9.0
    big_small: float = 2.0

    @classmethod
    def from_settings(cls, s) -> "Multipliers":
        return cls(
            color=s.color_multiplier,
            dual_color=s.dual_color_multiplier,
            violet=s.violet_multiplier,
            number=s.number_multiplier,
            big_small=s.big_small_multiplier,
        )


def matches(bet_type: str, bet_value: str, outcome: Outcome) -> bool:
    if bet_type == COLOR:
        return bet_value in colors_of(outcome.number)
    if bet_type == NUMBER:
        return int(bet_value) == outcome.number
    if bet_type == BIG_SMALL:
        return bet_value == outcome.big_small
    return False


def payout_multiplier(bet_type: str, bet_value: str, outcome: Outcome, m: Multipliers) -> float:
    """Multiplier applied to the stake of a bet; 0.0 when the bet lost."""
    if not matches(bet_type, bet_value, outcome):
        return 0.0
    if bet_type == COLOR:
        if bet_value == VIOLET:
            return m.violet
        # Red on 0 / Green on 5 share the round with Violet
        return m.dual_color if outcome.is_dual() else m.color
    if bet_type == NUMBER:
        return m.number
    return m.big_small


def bucket_key(bet_type: str, bet_value: str) -> str:
    return f"{bet_type}:{bet_value}"


def all_buckets() -> list[str]:
    keys = [bucket_key(COLOR, c) for c in COLORS]
    keys += [bucket_key(NUMBER, str(n)) for n in NUMBERS]
    keys += [bucket_key(BIG_SMALL, s) for s in SIZES]
    return keys
