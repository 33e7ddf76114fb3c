# crash_round_backend/app/game_logic.py

import math
import secrets
import uuid
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

from app.exceptions import InvalidInput


def round_multiplier(value: float) -> float:
    """Rounds half-up to 2 decimal places (1.005 -> 1.01, never banker's rounding)."""
    return math.floor(value * 100 + 0.5) / 100


def get_multiplier_at_time(seconds: float, growth_rate: float = 0.0055, exponent: float = 2.2) -> float:
    """
    Multiplier shown after `seconds` of flight: m(t) = 1 + k * t^p, rounded to 2 dp.

    The value is a pure function of elapsed time. The scheduler recomputes it from
    (now - started_at) on every tick instead of accumulating increments, so a late
    or skipped tick never drifts the display away from wall-clock time.
    """
    if seconds <= 0:
        return 1.0
    return round_multiplier(1 + growth_rate * math.pow(seconds, exponent))


def parse_multiplier(value, *, minimum: float = 1.0, inclusive: bool = False) -> float:
    """Validates one caller-supplied multiplier and returns it rounded to 2 dp."""
    if isinstance(value, bool):
        raise InvalidInput(f"Multiplier must be a number, got {value!r}")
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Multiplier must be a number, got {value!r}")
    if not math.isfinite(number):
        raise InvalidInput(f"Multiplier must be finite, got {value!r}")
    number = round_multiplier(number)
    if number < minimum or (number == minimum and not inclusive):
        op = ">=" if inclusive else ">"
        raise InvalidInput(f"Multiplier must be {op} {minimum}, got {value!r}")
    return number


def parse_amount(value) -> float:
    if isinstance(value, bool):
        raise InvalidInput(f"Amount must be a number, got {value!r}")
    try:
        amount = float(value)
    except (TypeError, ValueError):
        raise InvalidInput(f"Amount must be a number, got {value!r}")
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidInput(f"Amount must be positive, got {value!r}")
    return amount


def parse_multipliers(values) -> List[float]:
    """Validates a non-empty list of crash values (each strictly above 1.0)."""
    if isinstance(values, (str, bytes)) or not isinstance(values, Iterable):
        raise InvalidInput("Provide a list of multipliers")
    parsed = [parse_multiplier(v) for v in values]
    if not parsed:
        raise InvalidInput("Provide at least one multiplier")
    return parsed


@dataclass(frozen=True)
class Outcome:
    """One pre-generated crash value waiting in the queue."""
    multiplier: float
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {"id": self.id, "multiplier": self.multiplier}


@dataclass(frozen=True)
class Tier:
    name: str
    bound: float  # cumulative probability upper bound
    start: float
    span: float


DEFAULT_TIERS = (
    Tier("low", 0.10, 1.01, 0.49),
    Tier("mid", 0.65, 1.50, 1.50),
    Tier("high", 0.90, 3.00, 7.00),
    Tier("extreme", 1.00, 10.00, 40.00),
)


class WeightedOutcomeGenerator:
    """
    Draws crash values from probability-weighted tiers.

    Two independent uniform draws per outcome: the first picks a tier by its
    cumulative bound, the second interpolates linearly inside the tier's
    [start, start + span) range. With the default tiers this gives frequent low
    crashes, a plurality of mid ones and rare extreme ones.
    """
    algorithm_key = "weighted_tiers"

    def __init__(self, tiers: Sequence[Tier] = DEFAULT_TIERS, rng=None):
        self._validate_tiers(tiers)
        self.tiers = tuple(tiers)
        # SystemRandom reads os.urandom; tests pass a seeded random.Random instead.
        self.rng = rng or secrets.SystemRandom()

    @staticmethod
    def _validate_tiers(tiers: Sequence[Tier]) -> None:
        if not tiers:
            raise ValueError("At least one tier is required")
        previous = 0.0
        for tier in tiers:
            if tier.bound <= previous:
                raise ValueError(f"Tier bounds must increase, {tier.name} has {tier.bound}")
            if tier.start <= 1.0 or tier.span < 0:
                raise ValueError(f"Tier {tier.name} must start above 1.0 with a non-negative span")
            previous = tier.bound
        if not math.isclose(previous, 1.0):
            raise ValueError(f"Last tier bound must be 1.0, got {previous}")

    def pick_tier(self, draw: float) -> Tier:
        for tier in self.tiers:
            if draw < tier.bound:
                return tier
        return self.tiers[-1]

    def generate(self) -> Outcome:
        tier = self.pick_tier(self.rng.random())
        fine = self.rng.random()
        return Outcome(multiplier=round_multiplier(tier.start + fine * tier.span))


class ReplayPoolGenerator:
    """Replays a fixed list of crash values in order, wrapping around at the end."""
    algorithm_key = "replay_pool"

    def __init__(self, pool: Iterable):
        self.pool: List[float] = []
        self.index = 0
        self.set_pool(pool)

    def set_pool(self, pool: Iterable) -> None:
        self.pool = parse_multipliers(pool)
        self.index = 0

    def generate(self) -> Outcome:
        value = self.pool[self.index % len(self.pool)]
        self.index = (self.index + 1) % len(self.pool)
        return Outcome(multiplier=value)


def build_generator(algorithm: str, pool: Iterable = ()):
    """Returns the generator named by the CRASH_ALGORITHM setting."""
    if algorithm == "weighted":
        return WeightedOutcomeGenerator()
    if algorithm == "replay":
        return ReplayPoolGenerator(pool)
    raise ValueError(f"Unknown crash algorithm {algorithm!r} (expected 'weighted' or 'replay')")
