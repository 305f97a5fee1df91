import random

import pytest

from config import SolverOptions
from data import BANDS, CHECKER, UNIVERSAL, catalog
from models import Bounds
from solver.grid import Grid
from solver.patterns import Pattern, PatternDictionary, extract_patterns, learn_from_examples
from solver.session import SolveSession


def _grid(payload, bounds, seed=0):
    return Grid(catalog(payload), Bounds.parse(bounds), random.Random(seed), SolverOptions())


def _solved(payload, bounds, seed=0):
    session = SolveSession(catalog(payload), Bounds.parse(bounds), seed=seed, options=SolverOptions())
    return session.run()


def test_flat_grid_windows_clip_to_height_one():
    patterns = extract_patterns(_grid(UNIVERSAL, "4x1x4"), size=2)
    assert len(patterns) == 9
    assert sorted(patterns)[0] == (0, 0, 0)
    assert all(p.dims == (2, 1, 2) for p in patterns.values())
    assert all(p.tile_ids == ("floor",) * 4 for p in patterns.values())


def test_unresolved_cells_yield_no_windows():
    assert extract_patterns(_grid(CHECKER, "3x1x3")) == {}


def test_size_must_be_positive():
    with pytest.raises(ValueError):
        extract_patterns(_grid(UNIVERSAL, "2x1x2"), size=0)


def test_pattern_key_depends_on_dims_and_ids():
    a = Pattern.build((2, 1, 1), ["red", "blue"], [0.0, 1.0])
    b = Pattern.build((2, 1, 1), ["red", "blue"], [3.0, 2.0])
    c = Pattern.build((1, 1, 2), ["red", "blue"], [0.0, 1.0])
    d = Pattern.build((2, 1, 1), ["blue", "red"], [0.0, 1.0])
    assert a.key == b.key
    assert len({a.key, c.key, d.key}) == 3


def test_tile_at_indexes_x_then_y_then_z():
    p = Pattern.build((2, 1, 2), ["a", "b", "c", "d"], [0.0] * 4)
    assert p.tile_at(0, 0, 0) == "a"
    assert p.tile_at(0, 0, 1) == "b"
    assert p.tile_at(1, 0, 0) == "c"
    assert p.tile_at(1, 0, 1) == "d"


def test_dictionary_counts_then_normalizes():
    learned = PatternDictionary()
    snap = _grid(UNIVERSAL, "3x1x3").snapshot()
    for pattern in extract_patterns(snap).values():
        learned.add(pattern)
    assert len(learned) == 1
    (only,) = list(learned)
    assert learned.weight(only.key) == 4.0
    assert only.key in learned
    assert learned.get(only.key) is only

    learned.normalize()
    assert learned.weight(only.key) == pytest.approx(1.0)
    assert learned.tile_prior() == {"floor": pytest.approx(1.0)}


def test_learned_weights_sum_to_one():
    learned = learn_from_examples([_solved(BANDS, "5x1x5", seed=s) for s in range(3)])
    assert len(learned) >= 1
    assert sum(learned.weights().values()) == pytest.approx(1.0)
    prior = learned.tile_prior()
    assert set(prior) <= {"red", "blue"}
    assert sum(prior.values()) == pytest.approx(1.0)


def test_prior_feeds_catalog_reweighting():
    learned = learn_from_examples([_grid(UNIVERSAL, "2x1x2")])
    reweighted = catalog(BANDS).reweighted({"blue": 1.0, **learned.tile_prior()})
    weights = {t.id: t.weight for t in reweighted}
    assert weights["blue"] > weights["red"] > 0


def test_sample_is_seeded_and_empty_safe():
    assert PatternDictionary().sample(random.Random(0)) is None
    learned = learn_from_examples([_solved(CHECKER, "4x1x4", seed=1)])
    picks = [learned.sample(random.Random(3)).key for _ in range(2)]
    assert picks[0] == picks[1]
    assert picks[0] in learned
