import math
import random

import pytest

from app.exceptions import InvalidInput
from app.game_logic import (
    DEFAULT_TIERS,
    ReplayPoolGenerator,
    Tier,
    WeightedOutcomeGenerator,
    build_generator,
    get_multiplier_at_time,
    parse_amount,
    parse_multiplier,
    round_multiplier,
)


def test_curve_starts_at_one():
    assert get_multiplier_at_time(0) == 1.0
    assert get_multiplier_at_time(-3) == 1.0


def test_curve_known_values():
    assert get_multiplier_at_time(5.0) == 1.19
    assert get_multiplier_at_time(4.0) == 1.12
    assert get_multiplier_at_time(7.7) == 1.49
    assert get_multiplier_at_time(7.8) == 1.50


def test_curve_is_pure_function_of_elapsed_time():
    expected = math.floor(100 * (1 + 0.0055 * 5.0 ** 2.2) + 0.5) / 100
    assert all(get_multiplier_at_time(5.0) == expected for _ in range(100))


def test_curve_never_decreases():
    values = [get_multiplier_at_time(t / 10) for t in range(0, 300)]
    assert values == sorted(values)


def test_round_multiplier_rounds_half_up():
    assert round_multiplier(1.125) == 1.13
    assert round_multiplier(2.0) == 2.0


def test_weighted_outcomes_are_above_one():
    gen = WeightedOutcomeGenerator(rng=random.Random(7))
    values = [gen.generate().multiplier for _ in range(5000)]
    assert min(values) > 1.0
    assert all(round(v, 2) == v for v in values)


def test_weighted_tier_frequencies_converge():
    gen = WeightedOutcomeGenerator(rng=random.Random(12345))
    counts = {"low": 0, "mid": 0, "high": 0, "extreme": 0}
    n = 20000
    for _ in range(n):
        m = gen.generate().multiplier
        if m < 1.50:
            counts["low"] += 1
        elif m < 3.00:
            counts["mid"] += 1
        elif m < 10.00:
            counts["high"] += 1
        else:
            counts["extreme"] += 1
    expected = {"low": 0.10, "mid": 0.55, "high": 0.25, "extreme": 0.10}
    for name, p in expected.items():
        assert abs(counts[name] / n - p) < 0.015, (name, counts[name] / n)


def test_pick_tier_uses_cumulative_bounds():
    gen = WeightedOutcomeGenerator(rng=random.Random(1))
    assert gen.pick_tier(0.0).name == "low"
    assert gen.pick_tier(0.0999).name == "low"
    assert gen.pick_tier(0.10).name == "mid"
    assert gen.pick_tier(0.6499).name == "mid"
    assert gen.pick_tier(0.65).name == "high"
    assert gen.pick_tier(0.90).name == "extreme"
    assert gen.pick_tier(0.9999).name == "extreme"


@pytest.mark.parametrize("tiers", [
    [],
    [Tier("a", 0.5, 1.5, 1.0), Tier("b", 0.4, 2.0, 1.0)],
    [Tier("a", 0.5, 1.0, 1.0), Tier("b", 1.0, 2.0, 1.0)],
    [Tier("a", 0.5, 1.5, 1.0)],
])
def test_weighted_generator_rejects_bad_tiers(tiers):
    with pytest.raises(ValueError):
        WeightedOutcomeGenerator(tiers=tiers)


def test_default_tiers_end_at_one():
    assert DEFAULT_TIERS[-1].bound == 1.0


def test_replay_pool_cycles_and_wraps():
    gen = ReplayPoolGenerator([2.31, 1.74, 4.12])
    values = [gen.generate().multiplier for _ in range(7)]
    assert values == [2.31, 1.74, 4.12, 2.31, 1.74, 4.12, 2.31]


def test_replay_pool_swap_resets_index():
    gen = ReplayPoolGenerator([2.0, 3.0, 4.0])
    gen.generate()
    gen.generate()
    gen.set_pool([5.5, 6.5])
    assert gen.index == 0
    assert gen.generate().multiplier == 5.5


def test_replay_pool_outcomes_get_fresh_ids():
    gen = ReplayPoolGenerator([2.0])
    assert gen.generate().id != gen.generate().id


@pytest.mark.parametrize("pool", [[], [1.0], [0.5, 2.0], ["abc"], [True], "2.0,3.0", None])
def test_replay_pool_rejects_bad_pool(pool):
    with pytest.raises(InvalidInput):
        ReplayPoolGenerator(pool)


def test_failed_pool_swap_keeps_old_pool():
    gen = ReplayPoolGenerator([2.0, 3.0])
    gen.generate()
    with pytest.raises(InvalidInput):
        gen.set_pool([])
    assert gen.pool == [2.0, 3.0]
    assert gen.index == 1


def test_parse_multiplier():
    assert parse_multiplier("2.346") == 2.35
    assert parse_multiplier(1.0, inclusive=True) == 1.0
    for bad in (1.0, "nope", None, float("nan"), float("inf"), False):
        with pytest.raises(InvalidInput):
            parse_multiplier(bad)


def test_parse_amount():
    assert parse_amount("10") == 10.0
    for bad in (0, -5, "x", None, True, float("inf")):
        with pytest.raises(InvalidInput):
            parse_amount(bad)


def test_build_generator():
    assert build_generator("weighted").algorithm_key == "weighted_tiers"
    assert build_generator("replay", [2.0]).algorithm_key == "replay_pool"
    with pytest.raises(ValueError):
        build_generator("fair")
