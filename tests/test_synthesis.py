import pytest

from models import Direction, DIRECTIONS, Possibility, Rotation, Size3
from solver.errors import (
    ConfigurationError,
    Contradiction,
    EngineStateError,
    SelectionFailure,
)
from solver.geometry import footprint_cells, offset, scan_order
from solver.instrumentation import PerformanceMeasurement
from solver.synthesis import ModelSynthesis, SynthesisState
from tiles import parse_catalog
from tests.data import (
    EDGE_CATALOG,
    PARITY_CATALOG,
    FixedRandom,
    all_compatible,
    one_sided_catalog,
    slab_catalog,
    stacking_catalog,
)


def _run(tileset, w, l, h, seed, preplaced=()):
    engine = ModelSynthesis(tileset, w, l, h, seed)
    events = []
    engine.on_place_tile.append(lambda cell, placement: events.append((cell, placement)))
    for cell, p in preplaced:
        engine.place_tile(*cell, p)
    engine.synthesize()
    return engine, events


def _cells(engine):
    return list(scan_order(engine.width, engine.height, engine.length))


def _in_grid(engine, cell):
    return engine.grid.in_grid(cell)


# ---------- construction and state ----------

@pytest.mark.parametrize("dims", [(0, 1, 1), (1, 0, 1), (1, 1, -2), (1.5, 1, 1), (True, 1, 1)])
def test_bad_dimensions_fail_fast(dims):
    ts = all_compatible("A")
    with pytest.raises(ConfigurationError):
        ModelSynthesis(ts, *dims, seed=1)


def test_empty_tileset_rejected():
    ts = all_compatible()
    with pytest.raises(ConfigurationError):
        ModelSynthesis(ts, 1, 1, 1, seed=1)


def test_state_machine_and_finish_event():
    ts = all_compatible("A", "B")
    engine = ModelSynthesis(ts, 2, 2, 1, seed=5)
    finished = []
    engine.on_finish.append(lambda: finished.append(engine.state))
    assert engine.state is SynthesisState.UNINITIALIZED
    engine.synthesize()
    assert engine.state is SynthesisState.FINISHED
    assert finished == [SynthesisState.FINISHED]


def test_synthesize_twice_and_late_place_tile_are_rejected():
    ts = all_compatible("A")
    engine = ModelSynthesis(ts, 1, 1, 1, seed=0)
    engine.synthesize()
    with pytest.raises(EngineStateError):
        engine.synthesize()
    with pytest.raises(EngineStateError):
        engine.place_tile(0, 0, 0, Possibility(ts.tiles[0]))


def test_place_tile_validates_its_input():
    ts, m, s = slab_catalog()
    stranger = all_compatible("X").tiles[0]
    engine = ModelSynthesis(ts, 3, 1, 1, seed=0)
    with pytest.raises(ConfigurationError):
        engine.place_tile(3, 0, 0, Possibility(s))
    with pytest.raises(ConfigurationError):
        engine.place_tile(0, -1, 0, Possibility(s))
    with pytest.raises(ConfigurationError):
        engine.place_tile(2, 0, 0, Possibility(m))  # footprint leaves the grid
    with pytest.raises(ConfigurationError):
        engine.place_tile(0, 0, 0, Possibility(stranger))
    with pytest.raises(ConfigurationError):
        engine.place_tile(0, 0, 0, Possibility(s, Rotation.NINETY))
    assert engine.state is SynthesisState.UNINITIALIZED


@pytest.mark.parametrize("first, second", [("A", "B"), ("B", "A")])
def test_fixed_neighbours_must_allow_each_other(first, second):
    ts, a, b = one_sided_catalog(a_east=("A",))
    tiles = {"A": a, "B": b}
    engine = ModelSynthesis(ts, 2, 1, 1, seed=0)
    cells = {"A": (0, 0, 0), "B": (1, 0, 0)}
    engine.place_tile(*cells[first], Possibility(tiles[first]))
    with pytest.raises(ConfigurationError, match="do not allow each other"):
        engine.place_tile(*cells[second], Possibility(tiles[second]))


def test_fixed_tile_must_accept_the_border():
    ts, a, _b = one_sided_catalog()
    a.allowed[Direction.EAST].discard(ts.border)
    engine = ModelSynthesis(ts, 2, 1, 1, seed=0)
    engine.place_tile(0, 0, 0, Possibility(a))
    with pytest.raises(ConfigurationError, match="border"):
        engine.place_tile(1, 0, 0, Possibility(a))


def test_fixed_footprints_may_not_overlap():
    ts, m, s = slab_catalog()
    engine = ModelSynthesis(ts, 3, 1, 1, seed=0)
    engine.place_tile(0, 0, 0, Possibility(m))
    with pytest.raises(ConfigurationError, match="already placed"):
        engine.place_tile(1, 0, 0, Possibility(s))


def test_fixed_stack_must_share_rotation():
    ts = stacking_catalog()
    f, r = ts.tiles
    engine = ModelSynthesis(ts, 1, 1, 2, seed=0)
    engine.place_tile(0, 0, 0, Possibility(f))
    with pytest.raises(ConfigurationError, match="share its rotation"):
        engine.place_tile(0, 1, 0, Possibility(r, Rotation.NINETY))
    engine.place_tile(0, 1, 0, Possibility(r))
    engine.synthesize()
    assert engine.state is SynthesisState.FINISHED


def test_consistent_fixed_cells_finish():
    ts, a, _b = one_sided_catalog(a_east=("A",))
    fixed = [((0, 0, 0), Possibility(a)), ((1, 0, 0), Possibility(a))]
    engine, events = _run(ts, 2, 1, 1, seed=0, preplaced=fixed)
    assert events == []
    assert engine.state is SynthesisState.FINISHED


# ---------- properties of completed runs ----------

@pytest.mark.parametrize("seed", range(12))
def test_two_open_tiles_always_resolve(seed):
    ts = all_compatible("A", "B")
    engine, events = _run(ts, 2, 2, 1, seed)
    assert len(events) == 4
    assert [cell for cell, _ in events] == _cells(engine)
    for cell in _cells(engine):
        assert engine.grid.size(cell) == 1
        assert engine.grid.is_placed(cell)


@pytest.mark.parametrize("seed", range(6))
def test_final_assignment_is_mutually_adjacent(seed):
    ts = parse_catalog(PARITY_CATALOG)
    engine, _ = _run(ts, 3, 3, 2, seed)
    for cell in _cells(engine):
        p = engine.resolved(cell).possibility
        for d in DIRECTIONS:
            n = offset(cell, d)
            if not _in_grid(engine, n):
                continue
            q = engine.resolved(n).possibility
            assert q.tile in p.tile.get_allowed(d, p.rotation)
            assert p.tile in q.tile.get_allowed(d.opposite, q.rotation)


@pytest.mark.parametrize("seed", range(6))
def test_boundary_cells_allow_the_border(seed):
    ts = parse_catalog(EDGE_CATALOG)
    engine, _ = _run(ts, 3, 3, 2, seed)
    for cell in _cells(engine):
        p = engine.resolved(cell).possibility
        for d in DIRECTIONS:
            if not _in_grid(engine, offset(cell, d)):
                assert ts.border in p.tile.get_allowed(d, p.rotation)
    centre = engine.resolved((1, 0, 1)).tile.name
    assert centre in ("edge", "inner")
    assert engine.resolved((0, 1, 0)).tile.name == "edge"


@pytest.mark.parametrize("seed", range(8))
def test_stacked_rotation_follows_the_cell_below(seed):
    ts = stacking_catalog()
    engine, _ = _run(ts, 2, 2, 3, seed)
    for x, y, z in _cells(engine):
        if y == 0:
            continue
        below = engine.resolved((x, y - 1, z))
        above = engine.resolved((x, y, z))
        if below.tile.same_rotation_when_stacked and above.tile.allow_rotation:
            assert above.rotation == below.rotation


@pytest.mark.parametrize("seed", range(12))
def test_cell_below_a_fixed_tile_takes_its_rotation(seed):
    ts = stacking_catalog()
    f, r = ts.tiles
    engine, _ = _run(ts, 1, 1, 2, seed, preplaced=[((0, 1, 0), Possibility(r, Rotation.NINETY))])
    below = engine.resolved((0, 0, 0))
    if below.tile is f:
        assert below.rotation == Rotation.NINETY
    assert engine.state is SynthesisState.FINISHED


def test_fixed_tile_above_prunes_stacked_rotations():
    ts = stacking_catalog()
    f, r = ts.tiles
    engine = ModelSynthesis(ts, 1, 1, 2, seed=0)
    engine.place_tile(0, 1, 0, Possibility(r, Rotation.ONE_EIGHTY))
    engine.propagator.propagate_all()
    left = engine.grid.domain((0, 0, 0))
    assert [p.rotation for p in left if p.tile is f] == [Rotation.ONE_EIGHTY]
    assert len([p for p in left if p.tile is r]) == 4


@pytest.mark.parametrize("seed", range(10))
def test_multi_cell_footprints_are_whole(seed):
    ts = all_compatible(
        "M", "S",
        M={"size": Size3(2, 1, 1), "allow_rotation": True, "weight": 3.0},
    )
    engine, events = _run(ts, 3, 3, 2, seed)
    covered = {}
    for cell, placement in events:
        assert placement.root
        for f in footprint_cells(cell, placement.possibility):
            assert f not in covered
            covered[f] = cell
            r = engine.resolved(f)
            assert r.possibility == placement.possibility
            assert r.root == (f == cell)
    assert sorted(covered) == sorted(_cells(engine))


def test_placement_events_fire_once_per_footprint():
    ts, m, s = slab_catalog()
    engine = ModelSynthesis(ts, 3, 1, 1, seed=0)
    engine.random = FixedRandom(0.1)
    events = []
    engine.on_place_tile.append(lambda cell, placement: events.append((cell, placement.possibility)))
    engine.synthesize()
    assert events == [((0, 0, 0), Possibility(m)), ((2, 0, 0), Possibility(s))]
    middle = engine.resolved((1, 0, 0))
    assert middle.possibility == Possibility(m)
    assert middle.root is False
    assert engine.resolved((0, 0, 0)).root is True
    assert engine.resolved((2, 0, 0)).tile is s


def test_greedy_choice_can_strand_a_footprint_cell():
    ts, m, s = slab_catalog()
    engine = ModelSynthesis(ts, 3, 1, 1, seed=0)
    engine.random = FixedRandom(0.99)
    with pytest.raises(Contradiction) as exc:
        engine.synthesize()
    assert exc.value.cell == (1, 0, 0)
    assert exc.value.origin == (0, 0, 0)
    assert exc.value.attempted == Possibility(s)
    assert engine.state is SynthesisState.FAILED


# ---------- one-sided declarations ----------

def test_one_sided_allowance_on_the_neighbour_is_not_enough():
    ts, a, b = one_sided_catalog(a_east=("A",), b_west=("A", "B"))
    engine, events = _run(ts, 2, 1, 1, seed=3, preplaced=[((0, 0, 0), Possibility(a))])
    assert [cell for cell, _ in events] == [(1, 0, 0)]
    assert engine.resolved((1, 0, 0)).tile is a


def test_one_sided_allowance_on_the_cell_is_not_enough():
    ts, a, b = one_sided_catalog(a_east=("A", "B"), b_west=("B",))
    engine, _ = _run(ts, 2, 1, 1, seed=3, preplaced=[((0, 0, 0), Possibility(a))])
    assert engine.resolved((1, 0, 0)).tile is a


def test_contradiction_in_global_pass_has_no_origin():
    ts, a, _b = one_sided_catalog(a_east=())
    engine = ModelSynthesis(ts, 2, 1, 1, seed=3)
    engine.place_tile(0, 0, 0, Possibility(a))
    with pytest.raises(Contradiction) as exc:
        engine.synthesize()
    assert exc.value.cell == (1, 0, 0)
    assert exc.value.origin is None
    assert engine.stats["placements"] == 0


# ---------- selection ----------

def test_weighted_pick_walks_roots_in_catalog_order():
    ts = all_compatible("A", "B", A={"weight": 1.0}, B={"weight": 3.0})
    a, b = ts.tiles
    engine = ModelSynthesis(ts, 1, 1, 1, seed=0)
    for value, expected in ((0.0, a), (0.2, a), (0.25, a), (0.26, b), (0.99, b)):
        engine.random = FixedRandom(value)
        assert engine.pick_weighted((0, 0, 0)).tile is expected


def test_zero_total_weight_is_a_selection_failure():
    ts = all_compatible("A", A={"weight": 0.0})
    engine = ModelSynthesis(ts, 1, 1, 1, seed=0)
    with pytest.raises(SelectionFailure) as exc:
        engine.synthesize()
    assert exc.value.cell == (0, 0, 0)
    assert exc.value.candidates == 1


def test_free_rotation_angle_comes_from_the_engine_generator():
    ts = all_compatible("rock", rock={"allow_free_rotation": True})
    engine, events = _run(ts, 2, 1, 1, seed=9)
    angles = [placement.free_angle for _, placement in events]
    assert all(a is not None and 0.0 <= a < 360.0 for a in angles)
    assert [engine.resolved(cell).free_angle for cell, _ in events] == angles
    _, again = _run(ts, 2, 1, 1, seed=9)
    assert angles == [placement.free_angle for _, placement in again]


# ---------- determinism ----------

def _trace(events):
    return [
        (cell, p.tile.name, p.rotation, p.root, p.free_angle)
        for cell, p in events
    ]


@pytest.mark.parametrize("seed", [0, 1, 42])
def test_same_seed_same_run(seed):
    def build():
        return all_compatible(
            "A", "B", "C",
            A={"allow_rotation": True},
            B={"weight": 2.0},
            C={"allow_free_rotation": True, "size": Size3(1, 2, 1)},
        )

    first = _run(build(), 3, 3, 2, seed)[1]
    second = _run(build(), 3, 3, 2, seed)[1]
    assert _trace(first) == _trace(second)


def test_preplaced_cells_are_kept_and_skipped():
    ts = parse_catalog(PARITY_CATALOG)
    dark = ts.by_name("dark")
    engine, events = _run(ts, 2, 2, 1, seed=4, preplaced=[((1, 0, 1), Possibility(dark))])
    assert (1, 0, 1) not in [cell for cell, _ in events]
    assert engine.resolved((1, 0, 1)).tile is dark
    assert engine.resolved((0, 0, 1)).tile.name == "light"
    assert engine.resolved((0, 0, 0)).tile.name == "dark"


def test_instrumentation_and_stats_are_recorded():
    ts = all_compatible("A", "B")
    perf = PerformanceMeasurement()
    engine = ModelSynthesis(ts, 2, 2, 2, seed=1, instrumentation=perf)
    engine.synthesize()
    assert set(perf.measurements) >= {"synthesize", "propagate", "observe"}
    assert len(perf.measurements["observe"]) == 8
    assert engine.stats["placements"] == 8
    assert engine.stats["propagations"] == 9
    assert engine.stats["cells_propagated"] > 0
    assert engine.stats["possibilities_removed"] == 0
