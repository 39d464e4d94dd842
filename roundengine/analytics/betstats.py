from dataclasses import dataclass, asdict
from typing import Iterable

from roundengine.core.money import scale_cents
from roundengine.core.outcomes import (
    COLOR, NUMBER, VIOLET, NUMBERS, Multipliers, Outcome, all_buckets, bucket_key, payout_multiplier,
)


@dataclass
class BucketStats:
    count: int = 0
    total_cents: int = 0
    potential_payout_cents: int = 0


def nominal_multiplier(bet_type: str, bet_value: str, m: Multipliers) -> float:
    # the multiplier shown to players for a straight hit
    if bet_type == COLOR:
        return m.violet if bet_value == VIOLET else m.color
    if bet_type == NUMBER:
        return m.number
    return m.big_small


def aggregate(bets: Iterable, m: Multipliers) -> dict[str, BucketStats]:
    """Group a round's bets by outcome bucket. Every bucket is present, zero-filled."""
    out = {k: BucketStats() for k in all_buckets()}
    for b in bets:
        s = out.setdefault(bucket_key(b.bet_type, b.bet_value), BucketStats())
        stake = b.amount_cents - b.fee_cents
        s.count += 1
        s.total_cents += b.amount_cents
        s.potential_payout_cents += scale_cents(stake, nominal_multiplier(b.bet_type, b.bet_value, m))
    return out


def lowest_payout_bucket(stats: dict[str, BucketStats]) -> tuple[str, BucketStats] | None:
    """Advisory only: bucket with the smallest potential payout, first key wins ties."""
    best = None
    for key, s in stats.items():
        if best is None or s.potential_payout_cents < best[1].potential_payout_cents:
            best = (key, s)
    return best


def liability_by_number(bets: Iterable, m: Multipliers) -> dict[int, int]:
    """Total payout (cents) the house would owe for each possible winning number."""
    bets = list(bets)
    out = {}
    for n in NUMBERS:
        outcome = Outcome.from_number(n)
        total = 0
        for b in bets:
            total += scale_cents(b.amount_cents - b.fee_cents, payout_multiplier(b.bet_type, b.bet_value, outcome, m))
        out[n] = total
    return out


def summary(stats: dict[str, BucketStats]) -> dict:
    return {
        "total_bets": sum(s.count for s in stats.values()),
        "total_cents": sum(s.total_cents for s in stats.values()),
        "buckets": {k: asdict(s) for k, s in stats.items()},
    }
