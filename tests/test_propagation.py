import pytest

from models import Direction, Possibility
from solver.domain import DomainGrid
from solver.errors import Contradiction
from solver.propagation import Propagator, Worklist
from tiles import parse_catalog, parse_preplaced, possibilities_from_tiles
from tests.data import PARITY_CATALOG, one_sided_catalog, slab_catalog


def _grid(tileset, w, h, l):
    return DomainGrid(w, h, l, possibilities_from_tiles(tileset.tiles))


def _names(grid, cell):
    return [p.name for p in grid.domain(cell)]


def test_worklist_merges_arrival_directions():
    work = Worklist()
    work.push((0, 0, 0), [Direction.EAST])
    work.push((1, 0, 0), [Direction.WEST])
    work.push((0, 0, 0), [Direction.ABOVE])
    assert len(work) == 2
    assert (0, 0, 0) in work

    cell, dirs = work.pop()
    assert cell == (1, 0, 0) and dirs == {Direction.WEST}
    cell, dirs = work.pop()
    assert cell == (0, 0, 0) and dirs == {Direction.EAST, Direction.ABOVE}
    assert len(work) == 0


def test_worklist_none_means_all_directions():
    work = Worklist()
    work.push((0, 0, 0), [Direction.EAST])
    work.push((0, 0, 0), None)
    work.push((0, 0, 0), [Direction.WEST])
    assert work.pop() == ((0, 0, 0), None)


def test_domain_grid_flags_are_per_cell():
    ts, m, _s = slab_catalog()
    grid = _grid(ts, 2, 1, 1)
    pm = Possibility(m)
    grid.collapse((0, 0, 0), pm, root=False)
    assert grid.has_root((1, 0, 0), pm)
    assert not grid.has_root((0, 0, 0), pm)
    assert grid.is_resolved((0, 0, 0))
    assert not grid.is_placed((1, 0, 0))
    assert grid.size((1, 0, 0)) == 2


def test_n_allows_c_is_checked_on_its_own():
    # B accepts A on its WEST, but A does not accept B on its EAST
    ts, a, b = one_sided_catalog(a_east=("A",), b_west=("A", "B"))
    grid = _grid(ts, 2, 1, 1)
    grid.collapse((0, 0, 0), Possibility(a), root=True)
    Propagator(grid, ts).propagate_all()
    assert _names(grid, (1, 0, 0)) == ["A"]


def test_c_allows_n_is_checked_on_its_own():
    # A accepts B on its EAST, but B does not accept A on its WEST
    ts, a, b = one_sided_catalog(a_east=("A", "B"), b_west=("B",))
    grid = _grid(ts, 2, 1, 1)
    grid.collapse((0, 0, 0), Possibility(a), root=True)
    Propagator(grid, ts).propagate_all()
    assert _names(grid, (1, 0, 0)) == ["A"]


def test_contradiction_names_cell_origin_and_attempt():
    ts, a, _b = one_sided_catalog(a_east=())
    grid = _grid(ts, 2, 1, 1)
    pa = Possibility(a)
    grid.collapse((0, 0, 0), pa, root=True)
    prop = Propagator(grid, ts)
    with pytest.raises(Contradiction) as exc:
        prop.propagate([((1, 0, 0), (Direction.WEST,))], origin=(0, 0, 0), attempted=pa)
    err = exc.value
    assert err.cell == (1, 0, 0)
    assert err.origin == (0, 0, 0)
    assert err.attempted == pa
    assert "Originally propagating from (0, 0, 0)" in str(err)
    assert "Tried to place A" in str(err)


def test_border_prunes_outward_faces():
    ts, a, b = one_sided_catalog()
    # Neither tile may face the border on its NORTH side
    for t in (a, b):
        t.allowed[Direction.NORTH].discard(ts.border)
    grid = _grid(ts, 1, 1, 2)
    with pytest.raises(Contradiction) as exc:
        Propagator(grid, ts).propagate_all()
    assert exc.value.cell == (0, 0, 1)
    assert exc.value.origin is None


def test_slab_global_pass_forces_middle_cell():
    ts, m, s = slab_catalog()
    grid = _grid(ts, 3, 1, 1)
    Propagator(grid, ts).propagate_all()
    pm, ps = Possibility(m), Possibility(s)
    assert grid.domain((0, 0, 0)) == {pm: True, ps: True}
    assert grid.domain((1, 0, 0)) == {pm: False}
    assert grid.domain((2, 0, 0)) == {ps: True}


def test_orphaned_footprint_cell_is_pruned():
    ts, m, s = slab_catalog()
    grid = _grid(ts, 3, 1, 1)
    prop = Propagator(grid, ts)
    prop.propagate_all()
    ps = Possibility(s)
    grid.collapse((0, 0, 0), ps, root=True)
    with pytest.raises(Contradiction) as exc:
        prop.propagate([((1, 0, 0), (Direction.WEST,))], origin=(0, 0, 0), attempted=ps)
    assert exc.value.cell == (1, 0, 0)


@pytest.mark.parametrize("direction_aware", [True, False])
def test_both_worklist_modes_reach_the_same_fixpoint(direction_aware):
    ts = parse_catalog(PARITY_CATALOG)
    grid = _grid(ts, 3, 2, 2)
    (cell, p), = parse_preplaced(ts, [{"x": 0, "y": 0, "z": 0, "tile": "light"}])
    grid.collapse(cell, p, root=True)
    Propagator(grid, ts, direction_aware=direction_aware).propagate_all()
    for x in range(3):
        for y in range(2):
            for z in range(2):
                expected = "light" if (x + z) % 2 == 0 else "dark"
                assert _names(grid, (x, y, z)) == [expected]


def test_stats_count_work():
    ts = parse_catalog(PARITY_CATALOG)
    grid = _grid(ts, 2, 1, 1)
    (cell, p), = parse_preplaced(ts, [{"x": 0, "y": 0, "z": 0, "tile": "dark"}])
    grid.collapse(cell, p, root=True)
    stats = {}
    Propagator(grid, ts, stats=stats).propagate_all()
    assert stats["propagations"] == 1
    assert stats["cells_propagated"] == 1
    assert stats["possibilities_removed"] == 1
